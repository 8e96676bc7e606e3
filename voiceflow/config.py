"""Configuration for the VoiceFlow application."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from voiceflow.models import TriggerMode

if TYPE_CHECKING:
    from voiceflow.store import Settings


DEFAULT_HOTKEY = "Ctrl+Shift+F9"
DEEPGRAM_REST_URL = "https://api.deepgram.com/v1/listen"
DEEPGRAM_WS_URL = "wss://api.deepgram.com/v1/listen"


class OutputMode(str, Enum):
    TYPE = "type"
    CLIPBOARD = "clipboard"


class TranscriptionMode(str, Enum):
    BATCH = "batch"
    STREAM = "stream"


class Theme(str, Enum):
    DARK = "dark"
    LIGHT = "light"
    SYSTEM = "system"


@dataclass
class AudioConfig:
    sample_rate: int = 16_000
    channels: int = 1
    chunk_ms: int = 250
    device_id: int | None = None

    @property
    def block_size(self) -> int:
        return int(self.sample_rate * (self.chunk_ms / 1000.0))


@dataclass
class ToneConfig:
    enabled: bool = True
    start_hz: int = 880
    stop_hz: int = 440
    duration_s: float = 0.04
    volume: float = 0.15


@dataclass
class DeepgramConfig:
    api_key: str = ""
    model: str = "nova-2"
    language: str | None = None
    smart_format: bool = True
    interim_results: bool = True
    request_timeout_s: float = 30.0
    rest_url: str = DEEPGRAM_REST_URL
    ws_url: str = DEEPGRAM_WS_URL


@dataclass
class HotkeyConfig:
    binding: str = DEFAULT_HOTKEY
    mode: TriggerMode = TriggerMode.PUSH_TO_TALK


def _is_true(value: str) -> bool:
    return value.lower() in ("1", "true", "yes")


@dataclass
class Config:
    audio: AudioConfig = field(default_factory=AudioConfig)
    tones: ToneConfig = field(default_factory=ToneConfig)
    deepgram: DeepgramConfig = field(default_factory=DeepgramConfig)
    hotkey: HotkeyConfig = field(default_factory=HotkeyConfig)
    transcription: TranscriptionMode = TranscriptionMode.BATCH
    output_mode: OutputMode = OutputMode.TYPE
    theme: Theme = Theme.SYSTEM
    min_capture_s: float = 0.25
    max_session_s: float = 300.0
    error_display_s: float = 3.0
    history_max: int = 50
    verbose: bool = False

    @property
    def is_configured(self) -> bool:
        return bool(self.deepgram.api_key.strip())

    @classmethod
    def from_env(cls, settings: "Settings | None" = None) -> "Config":
        config = cls()

        # Persisted settings first, environment wins
        if settings is not None:
            if settings.credential:
                config.deepgram.api_key = settings.credential
            if settings.hotkey_binding:
                config.hotkey.binding = settings.hotkey_binding
            try:
                config.theme = Theme(settings.theme)
            except ValueError:
                pass  # Keep default if invalid value

        if api_key := os.environ.get("DEEPGRAM_API_KEY"):
            config.deepgram.api_key = api_key

        if binding := os.environ.get("VOICEFLOW_HOTKEY"):
            config.hotkey.binding = binding

        if mode := os.environ.get("VOICEFLOW_TRIGGER_MODE"):
            try:
                config.hotkey.mode = TriggerMode(mode.lower())
            except ValueError:
                pass

        if transcription := os.environ.get("VOICEFLOW_TRANSCRIPTION"):
            try:
                config.transcription = TranscriptionMode(transcription.lower())
            except ValueError:
                pass

        if output := os.environ.get("VOICEFLOW_OUTPUT_MODE"):
            try:
                config.output_mode = OutputMode(output.lower())
            except ValueError:
                pass

        if device := os.environ.get("VOICEFLOW_AUDIO_DEVICE"):
            config.audio.device_id = int(device)

        if lang := os.environ.get("VOICEFLOW_LANGUAGE"):
            config.deepgram.language = None if lang.lower() == "auto" else lang

        if model := os.environ.get("VOICEFLOW_MODEL"):
            config.deepgram.model = model

        if verbose := os.environ.get("VOICEFLOW_VERBOSE"):
            config.verbose = _is_true(verbose)

        return config
