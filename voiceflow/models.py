"""Core data models for the VoiceFlow application."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import threading

    import numpy as np
    from numpy.typing import NDArray

    from voiceflow.audio import MicrophoneHandle
    from voiceflow.capture import CaptureStrategy
    from voiceflow.errors import ErrorKind
    from voiceflow.output import TranscriptComposer
    from voiceflow.transcribe import StreamingChannel
    from voiceflow.types import HistoryRecord


class SessionStatus(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    RECORDING = "recording"
    PROCESSING = "processing"
    INJECTING = "injecting"
    ERROR = "error"


ACTIVE_STATUSES = frozenset(
    {
        SessionStatus.CONNECTING,
        SessionStatus.RECORDING,
        SessionStatus.PROCESSING,
        SessionStatus.INJECTING,
    }
)


class Edge(Enum):
    PRESSED = "pressed"
    RELEASED = "released"


class TriggerMode(str, Enum):
    PUSH_TO_TALK = "push_to_talk"
    TOGGLE = "toggle"


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class RecordingSession:
    """The one live record-to-injection cycle. Owned by the controller."""

    id: int
    streaming: bool
    status: SessionStatus = SessionStatus.CONNECTING
    started_at: float = field(default_factory=time.time)
    pending_transcript: str | None = None
    error_detail: str | None = None
    cancelled: bool = False
    microphone: "MicrophoneHandle | None" = None
    channel: "StreamingChannel | None" = None
    capture: "CaptureStrategy | None" = None
    composer: "TranscriptComposer | None" = None
    stopping: bool = False
    pending_injections: int = 0
    timer: "threading.Timer | None" = None

    @property
    def buffered_audio(self) -> list["NDArray[np.int16]"]:
        if self.capture is None:
            return []
        return self.capture.pending_chunks


@dataclass(frozen=True)
class TranscriptResult:
    text: str
    is_final: bool = True
    received_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if not self.text or not self.text.strip():
            raise ValueError("TranscriptResult text must be non-empty")


@dataclass(frozen=True)
class HistoryItem:
    id: str
    text: str
    timestamp: int

    @classmethod
    def create(cls, text: str) -> "HistoryItem":
        return cls(id=uuid.uuid4().hex, text=text, timestamp=now_ms())

    def to_dict(self) -> "HistoryRecord":
        return {"id": self.id, "text": self.text, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HistoryItem":
        return cls(
            id=str(data["id"]),
            text=str(data["text"]),
            timestamp=int(data["timestamp"]),
        )


# Events published by the controller


@dataclass(frozen=True)
class StatusChanged:
    status: SessionStatus
    previous: SessionStatus


@dataclass(frozen=True)
class TranscriptUpdated:
    text: str
    is_final: bool = True


@dataclass(frozen=True)
class ErrorRaised:
    kind: "ErrorKind"
    message: str


@dataclass(frozen=True)
class HistoryAppended:
    item: HistoryItem
