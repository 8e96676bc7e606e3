"""Type definitions for Deepgram payloads and stored records."""

from __future__ import annotations

from typing import Literal, TypedDict


class DeepgramAlternative(TypedDict, total=False):
    transcript: str
    confidence: float


class DeepgramChannel(TypedDict, total=False):
    alternatives: list[DeepgramAlternative]


class DeepgramResults(TypedDict, total=False):
    channels: list[DeepgramChannel]


class DeepgramBatchResponse(TypedDict, total=False):
    """Body returned by the pre-recorded ``/v1/listen`` endpoint."""

    results: DeepgramResults


class DeepgramStreamMessage(TypedDict, total=False):
    """Message received over the live ``/v1/listen`` WebSocket."""

    type: Literal["Results", "Metadata", "UtteranceEnd", "SpeechStarted"]
    channel: DeepgramChannel
    is_final: bool
    speech_final: bool


class HistoryRecord(TypedDict):
    id: str
    text: str
    timestamp: int
