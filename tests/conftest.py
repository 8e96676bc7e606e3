"""Pytest configuration and fixtures."""

from __future__ import annotations

import os

# No display server in CI; pynput must not try to load the X11 backend
os.environ.setdefault("PYNPUT_BACKEND", "dummy")

import threading
import time
from typing import TYPE_CHECKING, Any, Callable, Generator

import numpy as np
import pytest

from voiceflow.errors import DeviceError, InjectionError
from voiceflow.events import EventBus
from voiceflow.models import StatusChanged, TranscriptResult

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from voiceflow.capture import CapturedAudio
    from voiceflow.controller import RecordingController

WAIT_TIMEOUT = 2.0


@pytest.fixture
def sample_audio_16k() -> NDArray[np.int16]:
    """Generate 1 second of sample audio at 16kHz."""
    sample_rate = 16000
    duration = 1.0
    t = np.linspace(0, duration, int(sample_rate * duration), dtype=np.float32)
    # Generate a 440Hz sine wave
    audio = np.sin(2 * np.pi * 440 * t) * 0.5
    return (audio * 32767).astype(np.int16)


@pytest.fixture
def sample_audio_silent() -> NDArray[np.int16]:
    """Generate 1 second of silent audio at 16kHz."""
    return np.zeros(16000, dtype=np.int16)


@pytest.fixture
def clean_env() -> Generator[None, None, None]:
    """Fixture to clean environment variables before/after tests."""
    env_vars = [
        "DEEPGRAM_API_KEY",
        "VOICEFLOW_HOTKEY",
        "VOICEFLOW_TRIGGER_MODE",
        "VOICEFLOW_TRANSCRIPTION",
        "VOICEFLOW_OUTPUT_MODE",
        "VOICEFLOW_AUDIO_DEVICE",
        "VOICEFLOW_LANGUAGE",
        "VOICEFLOW_MODEL",
        "VOICEFLOW_VERBOSE",
    ]
    original_values = {var: os.environ.get(var) for var in env_vars}

    for var in env_vars:
        os.environ.pop(var, None)

    yield

    for var, value in original_values.items():
        if value is not None:
            os.environ[var] = value
        else:
            os.environ.pop(var, None)


@pytest.fixture
def wait_until() -> Callable[..., bool]:
    """Poll a predicate until it holds or the timeout expires."""

    def _wait(predicate: Callable[[], bool], timeout: float = WAIT_TIMEOUT) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(0.005)
        return predicate()

    return _wait


# ----------------------------------------------------------------------
# Fakes
# ----------------------------------------------------------------------


class FakeHandle:
    """Microphone handle driven by the test."""

    def __init__(self, on_chunk: Callable[[Any], None], on_error: Callable[[DeviceError], None] | None) -> None:
        self._on_chunk = on_chunk
        self._on_error = on_error
        self.release_count = 0

    @property
    def released(self) -> bool:
        return self.release_count > 0

    def release(self) -> bool:
        self.release_count += 1
        return self.release_count == 1

    def emit(self, chunk: NDArray[np.int16]) -> None:
        if not self.released:
            self._on_chunk(chunk)

    def fail(self, message: str = "Microphone disconnected") -> None:
        if self._on_error is not None:
            self._on_error(DeviceError(message))


class FakeMicrophone:
    """
    Stand-in for ``MicrophoneSource``.

    ``gate`` (when set) holds ``open`` until the test releases it, which keeps
    a session in CONNECTING.
    """

    def __init__(self, sample_rate: int = 16000) -> None:
        self.sample_rate = sample_rate
        self.handles: list[FakeHandle] = []
        self.error: Exception | None = None
        self.gate: threading.Event | None = None

    @property
    def handle(self) -> FakeHandle:
        return self.handles[-1]

    def open(self, on_chunk: Callable[[Any], None], on_error: Callable[[DeviceError], None] | None = None) -> FakeHandle:
        if self.gate is not None:
            self.gate.wait(WAIT_TIMEOUT)
        if self.error is not None:
            raise self.error
        handle = FakeHandle(on_chunk, on_error)
        self.handles.append(handle)
        return handle


class FakeBatchTranscriber:
    """Returns a canned transcript, or raises ``error``."""

    def __init__(self, text: str = "hello world") -> None:
        self.text = text
        self.error: Exception | None = None
        self.gate: threading.Event | None = None
        self.payloads: list[CapturedAudio] = []

    @property
    def calls(self) -> int:
        return len(self.payloads)

    def submit(self, payload: CapturedAudio) -> str:
        self.payloads.append(payload)
        if self.gate is not None:
            self.gate.wait(WAIT_TIMEOUT)
        if self.error is not None:
            raise self.error
        return self.text


class FakeChannel:
    """Streaming channel whose service side is driven by the test."""

    def __init__(self, on_result: Callable, on_error: Callable, on_closed: Callable) -> None:
        self._on_result = on_result
        self._on_error = on_error
        self._on_closed = on_closed
        self.sent: list[bytes] = []
        self.closed = False
        self.aborted = False

    @property
    def is_open(self) -> bool:
        return not self.closed and not self.aborted

    def send(self, chunk: bytes) -> None:
        self.sent.append(chunk)

    def close(self) -> None:
        self.closed = True

    def abort(self) -> None:
        self.aborted = True

    def result(self, text: str, is_final: bool = True) -> None:
        self._on_result(TranscriptResult(text=text, is_final=is_final))

    def drained(self) -> None:
        self._on_closed()

    def drop(self, error: Exception) -> None:
        self._on_error(error)


class FakeStreamingTranscriber:
    def __init__(self) -> None:
        self.channels: list[FakeChannel] = []
        self.error: Exception | None = None

    @property
    def channel(self) -> FakeChannel:
        return self.channels[-1]

    def open(self, on_result: Callable, on_error: Callable, on_closed: Callable) -> FakeChannel:
        if self.error is not None:
            raise self.error
        channel = FakeChannel(on_result, on_error, on_closed)
        self.channels.append(channel)
        return channel


class RecordingInjector:
    """Records injected text and notices overlapping calls."""

    def __init__(self, delay_s: float = 0.0) -> None:
        self.delay_s = delay_s
        self.texts: list[str] = []
        self.error: Exception | None = None
        self.overlapped = False
        self._active = 0
        self._lock = threading.Lock()

    def inject(self, text: str) -> None:
        with self._lock:
            self._active += 1
            if self._active > 1:
                self.overlapped = True
        try:
            if self.delay_s:
                time.sleep(self.delay_s)
            if self.error is not None:
                raise self.error
            self.texts.append(text)
        finally:
            with self._lock:
                self._active -= 1


class EventRecorder:
    """Collects every event published on a bus."""

    def __init__(self, bus: EventBus) -> None:
        self.events: list[Any] = []
        bus.subscribe(None, self.events.append)

    def of_type(self, event_type: type) -> list[Any]:
        return [e for e in self.events if isinstance(e, event_type)]

    @property
    def statuses(self) -> list[Any]:
        return [e.status for e in self.of_type(StatusChanged)]


@pytest.fixture
def microphone() -> FakeMicrophone:
    return FakeMicrophone()


@pytest.fixture
def batch_transcriber() -> FakeBatchTranscriber:
    return FakeBatchTranscriber()


@pytest.fixture
def streaming_transcriber() -> FakeStreamingTranscriber:
    return FakeStreamingTranscriber()


@pytest.fixture
def injector() -> RecordingInjector:
    return RecordingInjector()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(bus: EventBus) -> EventRecorder:
    return EventRecorder(bus)


@pytest.fixture
def make_controller(
    microphone: FakeMicrophone,
    injector: RecordingInjector,
    bus: EventBus,
) -> Generator[Callable[..., RecordingController], None, None]:
    """Build a running controller around the fakes; shut down after the test."""
    from voiceflow.controller import RecordingController

    controllers: list[RecordingController] = []

    def _make(transcriber: Any, credential: str = "dg-test-key", **kwargs: Any) -> RecordingController:
        controller = RecordingController(
            microphone=microphone,  # type: ignore[arg-type]
            transcriber=transcriber,
            injector=injector,  # type: ignore[arg-type]
            bus=bus,
            credential=lambda: credential,
            **kwargs,
        )
        controller.start_worker()
        controllers.append(controller)
        return controller

    yield _make

    for controller in controllers:
        controller.shutdown()
