"""Microphone source built on sounddevice."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

import numpy as np
import sounddevice as sd

from voiceflow.errors import DeviceError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from voiceflow.config import AudioConfig, ToneConfig

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_RATE = 16_000
FADE_DURATION_SECONDS = 0.008
FIRST_CHANNEL_INDEX = 0

ChunkCallback = Callable[["NDArray[np.int16]"], None]
ErrorCallback = Callable[[DeviceError], None]


@dataclass
class AudioDevice:
    index: int
    name: str
    is_default: bool = False

    def __str__(self) -> str:
        marker = " (DEFAULT)" if self.is_default else ""
        return f"[{self.index}] {self.name}{marker}"


def list_input_devices() -> list[AudioDevice]:
    devices = sd.query_devices()
    default_input = sd.default.device[FIRST_CHANNEL_INDEX]

    input_devices = []
    for i, dev in enumerate(devices):
        if dev["max_input_channels"] > 0:  # type: ignore[index]
            input_devices.append(
                AudioDevice(
                    index=i,
                    name=dev["name"],  # type: ignore[index]
                    is_default=(i == default_input),
                )
            )
    return input_devices


def get_device_name(device_id: int | None) -> str:
    try:
        if device_id is not None:
            info = sd.query_devices(device_id)
        else:
            default_id = sd.default.device[FIRST_CHANNEL_INDEX]
            info = sd.query_devices(default_id)
    except (sd.PortAudioError, ValueError) as e:
        raise DeviceError(f"No such input device: {e}") from e
    return info["name"]  # type: ignore[index,return-value]


def play_tone(
    config: "ToneConfig",
    frequency_hz: int,
    sample_rate: int = DEFAULT_SAMPLE_RATE,
) -> None:
    if not config.enabled:
        return

    n_samples = int(sample_rate * config.duration_s)
    t = np.arange(n_samples, dtype=np.float32) / sample_rate
    tone = np.sin(2.0 * np.pi * frequency_hz * t) * config.volume

    fade_samples = max(1, int(FADE_DURATION_SECONDS * sample_rate))
    if fade_samples * 2 < n_samples:
        window = np.ones(n_samples, dtype=np.float32)
        window[:fade_samples] = np.linspace(0, 1, fade_samples, dtype=np.float32)
        window[-fade_samples:] = np.linspace(1, 0, fade_samples, dtype=np.float32)
        tone *= window

    try:
        sd.play(tone.astype(np.float32), sample_rate, blocking=False)
    except sd.PortAudioError as e:
        logger.debug("Could not play tone: %s", e)


class MicrophoneHandle:
    """
    An open capture stream owned by exactly one session.

    ``release()`` stops and closes the stream once; later calls do nothing.
    If the stream ends without being released (device unplugged, driver
    error), ``on_error`` receives a ``DeviceError``.
    """

    def __init__(
        self,
        on_chunk: ChunkCallback,
        on_error: ErrorCallback | None = None,
    ) -> None:
        self._on_chunk = on_chunk
        self._on_error = on_error
        self._stream: sd.InputStream | None = None
        self._released = False
        self._lock = threading.Lock()

    @property
    def is_active(self) -> bool:
        with self._lock:
            return self._stream is not None and not self._released

    @property
    def released(self) -> bool:
        return self._released

    def attach(self, stream: sd.InputStream) -> None:
        self._stream = stream

    def release(self) -> bool:
        """Stop capture. Returns True only for the call that actually released."""
        with self._lock:
            if self._released:
                return False
            self._released = True
            stream, self._stream = self._stream, None

        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except sd.PortAudioError as e:
                logger.warning("Error stopping audio stream: %s", e)
        return True

    def _audio_callback(
        self,
        indata: "NDArray[np.int16]",
        frames: int,
        time_info: object,
        status: sd.CallbackFlags,
    ) -> None:
        if status:
            logger.warning("Audio callback status: %s", status)
        if self._released:
            return
        self._on_chunk(indata[:, FIRST_CHANNEL_INDEX].astype(np.int16, copy=True))

    def _finished_callback(self) -> None:
        if self._released:
            return
        logger.warning("Audio stream ended unexpectedly")
        if self._on_error is not None:
            self._on_error(DeviceError("Microphone disconnected"))


class MicrophoneSource:
    """Opens int16 input streams delivering one chunk per ``chunk_ms``."""

    def __init__(self, audio_config: "AudioConfig") -> None:
        self._audio_config = audio_config

    @property
    def sample_rate(self) -> int:
        return self._audio_config.sample_rate

    def open(
        self,
        on_chunk: ChunkCallback,
        on_error: ErrorCallback | None = None,
    ) -> MicrophoneHandle:
        """
        Acquire the microphone and start capturing.

        Args:
            on_chunk: Called from the audio thread with each captured chunk.
            on_error: Called if the device disappears mid-capture.

        Returns:
            A handle that must be released exactly once.

        Raises:
            DeviceError: If the device cannot be opened.
        """
        handle = MicrophoneHandle(on_chunk, on_error)
        try:
            stream = sd.InputStream(
                samplerate=self._audio_config.sample_rate,
                channels=self._audio_config.channels,
                dtype="int16",
                blocksize=self._audio_config.block_size,
                device=self._audio_config.device_id,
                callback=handle._audio_callback,
                finished_callback=handle._finished_callback,
            )
            handle.attach(stream)
            stream.start()
        except (sd.PortAudioError, OSError, ValueError) as e:
            handle.release()
            raise DeviceError(f"Cannot open microphone: {e}") from e

        logger.info(
            "Microphone open (device=%s, %d Hz)",
            self._audio_config.device_id,
            self._audio_config.sample_rate,
        )
        return handle
