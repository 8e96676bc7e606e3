"""Audio capture strategies: buffer for one batch request, or stream live."""

from __future__ import annotations

import io
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from scipy.io.wavfile import write as wav_write

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from voiceflow.transcribe import StreamingChannel

logger = logging.getLogger(__name__)


@dataclass
class CapturedAudio:
    samples: "NDArray[np.int16]"
    sample_rate: int

    @property
    def duration_s(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return len(self.samples) / self.sample_rate


def encode_wav(audio: CapturedAudio) -> bytes:
    """Encode captured audio as a 16-bit PCM WAV payload."""
    buf = io.BytesIO()
    wav_write(buf, audio.sample_rate, audio.samples.astype(np.int16, copy=False))
    return buf.getvalue()


class CaptureStrategy(ABC):
    """
    Receives microphone chunks for one session.

    Chunks fed before ``activate()`` are held back and delivered in order on
    activation. After ``finalize()`` or ``discard()`` every buffer is dropped
    and further chunks are ignored.
    """

    def __init__(self) -> None:
        self._active = False
        self._closed = False
        self._held: list["NDArray[np.int16]"] = []

    @property
    def is_active(self) -> bool:
        return self._active and not self._closed

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    @abstractmethod
    def pending_chunks(self) -> list["NDArray[np.int16]"]:
        """Chunks captured but not yet handed on."""

    def activate(self) -> None:
        if self._active or self._closed:
            return
        self._active = True
        held, self._held = self._held, []
        for chunk in held:
            self._accept(chunk)

    def feed(self, chunk: "NDArray[np.int16]") -> None:
        if self._closed or chunk.size == 0:
            return
        if not self._active:
            self._held.append(chunk)
            return
        self._accept(chunk)

    def discard(self) -> None:
        self._closed = True
        self._held = []
        self._release_buffers()

    @abstractmethod
    def _accept(self, chunk: "NDArray[np.int16]") -> None: ...

    def _release_buffers(self) -> None:
        pass


class BatchCapture(CaptureStrategy):
    """Accumulates chunks in memory and hands them over once on finalize."""

    def __init__(self, sample_rate: int, min_duration_s: float) -> None:
        super().__init__()
        self._sample_rate = sample_rate
        self._min_duration_s = min_duration_s
        self._chunks: list["NDArray[np.int16]"] = []

    @property
    def pending_chunks(self) -> list["NDArray[np.int16]"]:
        return self._held + self._chunks

    @property
    def duration_s(self) -> float:
        total = sum(len(c) for c in self.pending_chunks)
        return total / self._sample_rate

    def _accept(self, chunk: "NDArray[np.int16]") -> None:
        self._chunks.append(chunk)

    def _release_buffers(self) -> None:
        self._chunks = []

    def finalize(self) -> CapturedAudio | None:
        """
        Close the capture and build the payload.

        Returns:
            The concatenated audio, or None if nothing usable was captured
            (shorter than the minimum duration).
        """
        if self._closed:
            return None
        chunks = self._chunks if self._active else []
        self.discard()

        if not chunks:
            logger.debug("Batch capture finalized with no audio")
            return None

        audio = CapturedAudio(np.concatenate(chunks).astype(np.int16), self._sample_rate)
        if audio.duration_s < self._min_duration_s:
            logger.debug("Skipping short capture (%.2fs)", audio.duration_s)
            return None
        return audio


class StreamingCapture(CaptureStrategy):
    """Forwards chunks to an open streaming channel as they arrive."""

    def __init__(self, channel: "StreamingChannel | None" = None) -> None:
        super().__init__()
        self._channel = channel
        self.sent_chunks = 0
        self.dropped_chunks = 0

    @property
    def pending_chunks(self) -> list["NDArray[np.int16]"]:
        return list(self._held)

    def bind(self, channel: "StreamingChannel") -> None:
        self._channel = channel

    def activate(self) -> None:
        if self._channel is None:
            raise RuntimeError("StreamingCapture activated without a channel")
        super().activate()

    def _accept(self, chunk: "NDArray[np.int16]") -> None:
        if self._channel is None or not self._channel.is_open:
            self.dropped_chunks += 1
            if self.dropped_chunks == 1:
                logger.warning("Streaming channel closed, dropping audio")
            return
        self._channel.send(chunk.tobytes())
        self.sent_chunks += 1

    def finalize(self) -> None:
        self.discard()
