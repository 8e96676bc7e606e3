"""Main VoiceFlow application."""

from __future__ import annotations

import logging
import signal
import threading
from concurrent.futures import Future

from voiceflow.audio import MicrophoneSource, get_device_name, play_tone
from voiceflow.config import Config, TranscriptionMode
from voiceflow.controller import RecordingController
from voiceflow.errors import DeviceError, RegistrationError
from voiceflow.events import EventBus
from voiceflow.hotkey import EdgeTranslator, HotkeyBridge, SurfaceRouter
from voiceflow.models import ErrorRaised, HistoryAppended, SessionStatus, StatusChanged, TriggerMode
from voiceflow.output import create_injector
from voiceflow.presenter import ConsolePresenter, ErrorBanner
from voiceflow.store import HistoryStore, SettingsStore
from voiceflow.transcribe import create_transcriber

logger = logging.getLogger(__name__)

CONSOLE_SURFACE = "console"


class VoiceFlowApp:
    """
    Global dictation application.

    Holds (or toggles) a system-wide hotkey to record, transcribes the
    speech with Deepgram and types the text into the focused window. Every
    transcript is kept in a capped history that can be typed again.
    """

    def __init__(
        self,
        config: Config | None = None,
        settings_store: SettingsStore | None = None,
        history_store: HistoryStore | None = None,
        hotkey_bridge: HotkeyBridge | None = None,
        controller: RecordingController | None = None,
    ) -> None:
        self._config = config or Config()
        self._settings = settings_store or SettingsStore()
        self._history = history_store or HistoryStore(max_size=self._config.history_max)
        self._bus = controller.bus if controller is not None else EventBus()
        self._stop_event = threading.Event()

        self._controller = controller or RecordingController(
            microphone=MicrophoneSource(self._config.audio),
            transcriber=create_transcriber(self._config),
            injector=create_injector(self._config.output_mode),
            bus=self._bus,
            credential=lambda: self._config.deepgram.api_key,
            min_capture_s=self._config.min_capture_s,
            max_session_s=self._config.max_session_s,
        )

        self._hotkeys = hotkey_bridge or HotkeyBridge()
        self._router = SurfaceRouter()
        self._translator = EdgeTranslator(self._controller, self._config.hotkey.mode)

        self._presenter: ConsolePresenter | None = None
        self._banner: ErrorBanner | None = None

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def controller(self) -> RecordingController:
        return self._controller

    @property
    def hotkeys(self) -> HotkeyBridge:
        return self._hotkeys

    @property
    def router(self) -> SurfaceRouter:
        return self._router

    def setup(self) -> None:
        """Initialize all components."""
        self._print_banner()
        self._print_devices()

        self._presenter = ConsolePresenter(self._bus, lambda: self._hotkeys.binding)
        self._banner = ErrorBanner(self._bus, self._config.error_display_s)
        self._bus.subscribe(HistoryAppended, self._on_history_appended)
        self._bus.subscribe(StatusChanged, self._on_status_changed)

        self._router.add(
            CONSOLE_SURFACE,
            self._translator,
            is_visible=self._presenter.is_visible,
            default=True,
        )
        self._hotkeys.on_edge(self._router.route)

        self._controller.start_worker()

        if not self._config.is_configured:
            print("\n⚠️ No Deepgram API key. Set DEEPGRAM_API_KEY or run with --set-key.")

        try:
            self._hotkeys.register(self._config.hotkey.binding)
        except RegistrationError as e:
            logger.error("Hotkey registration failed: %s", e)
            self._bus.publish(ErrorRaised(e.kind, str(e)))
            print(f"\n⚠️ Global hotkey unavailable ({e}). Dictation can still be started manually.")

        self._print_instructions()

    def _print_banner(self) -> None:
        """Print application banner."""
        print("=" * 60)
        print("🎙️ VOICEFLOW - Dictate Anywhere")
        print("=" * 60)

    def _print_devices(self) -> None:
        """Print the input device in use."""
        try:
            device_name = get_device_name(self._config.audio.device_id)
        except DeviceError as e:
            print(f"\n⚠️ No usable input device: {e}")
            return

        if self._config.audio.device_id is not None:
            print(f"\n✅ Using input device [{self._config.audio.device_id}]: {device_name}")
        else:
            print(f"\n✅ Using DEFAULT input device: {device_name}")

        transcription = "live stream" if self._config.transcription == TranscriptionMode.STREAM else "batch"
        print(f"🔊 Output mode: {self._config.output_mode.value}, transcription: {transcription}")

    def _print_instructions(self) -> None:
        """Print usage instructions."""
        binding = self._hotkeys.binding
        print("\n" + "=" * 60)
        print("📌 INSTRUCTIONS:")
        if binding is None:
            print("   • No global hotkey registered.")
        elif self._config.hotkey.mode == TriggerMode.TOGGLE:
            print(f"   • Press {binding} to start dictating, press again to stop.")
        else:
            print(f"   • Hold {binding} to talk. Release to stop.")
        print("   • Press Ctrl+C to quit.")
        print(f"   • Text will be {'TYPED into the focused window' if self._config.output_mode.value == 'type' else 'copied to CLIPBOARD'}.")
        print("=" * 60)

    def _on_history_appended(self, event: HistoryAppended) -> None:
        try:
            self._history.append(event.item)
        except OSError as e:
            logger.error("Could not save history: %s", e)

    def _on_status_changed(self, event: StatusChanged) -> None:
        if event.status == SessionStatus.RECORDING:
            play_tone(self._config.tones, self._config.tones.start_hz, self._config.audio.sample_rate)
        elif event.previous == SessionStatus.RECORDING:
            play_tone(self._config.tones, self._config.tones.stop_hz, self._config.audio.sample_rate)

    def start_recording(self) -> "Future[bool]":
        return self._controller.start()

    def stop_recording(self) -> "Future[bool]":
        return self._controller.stop()

    def cancel(self) -> "Future[bool]":
        return self._controller.cancel()

    def retype(self, index: int | str) -> "Future[None]":
        """Type a history item again, by position (0 is the newest) or id."""
        item = self._history.get(index)
        return self._controller.retype(item.text)

    def set_hotkey(self, binding: str) -> None:
        """
        Replace the global hotkey and persist it.

        Raises:
            RegistrationError: If the new binding cannot be registered. The
                previous one stays active and nothing is saved.
        """
        try:
            self._hotkeys.register(binding)
        except RegistrationError as e:
            self._bus.publish(ErrorRaised(e.kind, str(e)))
            raise
        self._config.hotkey.binding = binding
        self._settings.set_hotkey(binding)

    def set_credential(self, key: str) -> None:
        self._config.deepgram.api_key = key
        self._settings.set_credential(key)

    def shutdown(self) -> None:
        """Shutdown the application gracefully."""
        logger.info("Shutting down...")
        self._stop_event.set()
        self._hotkeys.unregister()
        self._controller.shutdown()
        if self._banner is not None:
            self._banner.close()
        if self._presenter is not None:
            self._presenter.close()

    def run(self) -> None:
        """Run until interrupted."""
        self.setup()

        def handle_sigint(sig: int, frame: object) -> None:
            print("\n👋 Quitting...")
            self._stop_event.set()

        signal.signal(signal.SIGINT, handle_sigint)

        while not self._stop_event.wait(timeout=0.5):
            pass

        if self._controller.status != SessionStatus.IDLE:
            self._controller.cancel()
