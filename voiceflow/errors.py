"""Error taxonomy for the VoiceFlow application."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    CONFIG = "config"
    DEVICE = "device"
    REGISTRATION = "registration"
    SERVICE = "service"
    INJECTION = "injection"


ERROR_MESSAGES = {
    ErrorKind.CONFIG: "Missing API key",
    ErrorKind.DEVICE: "Mic error",
    ErrorKind.REGISTRATION: "Hotkey fail",
    ErrorKind.SERVICE: "AI error",
    ErrorKind.INJECTION: "Typing failed, text kept in history",
}


class VoiceFlowError(Exception):
    """Base exception for all VoiceFlow errors."""

    kind: ErrorKind = ErrorKind.SERVICE

    @property
    def user_message(self) -> str:
        return ERROR_MESSAGES[self.kind]


class ConfigError(VoiceFlowError):
    """Missing or invalid credential or binding. User-correctable."""

    kind = ErrorKind.CONFIG


class DeviceError(VoiceFlowError):
    """Microphone unavailable, permission denied or lost mid-session."""

    kind = ErrorKind.DEVICE


class RegistrationError(VoiceFlowError):
    """Global hotkey is invalid or cannot be claimed."""

    kind = ErrorKind.REGISTRATION


class ServiceError(VoiceFlowError):
    """Transcription service network, protocol or auth failure."""

    kind = ErrorKind.SERVICE


class AuthError(ServiceError):
    """Transcription service rejected the credential."""


class InjectionError(VoiceFlowError):
    """Keystroke simulation failed."""

    kind = ErrorKind.INJECTION
