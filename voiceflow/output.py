"""Text injection into the focused window."""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from typing import TYPE_CHECKING

import pyperclip
from pynput.keyboard import Controller as KeyboardController

from voiceflow.errors import InjectionError

if TYPE_CHECKING:
    from voiceflow.config import OutputMode

logger = logging.getLogger(__name__)

TYPE_SETTLE_DELAY_SECONDS = 0.05


class TextInjector(ABC):
    """Abstract base class for text injectors."""

    @abstractmethod
    def inject(self, text: str) -> None:
        """Deliver the text. Raises InjectionError on failure."""
        ...


class ClipboardInjector(TextInjector):
    """Puts text on the system clipboard."""

    def inject(self, text: str) -> None:
        try:
            pyperclip.copy(text)
        except pyperclip.PyperclipException as e:
            raise InjectionError(f"Clipboard unavailable: {e}") from e


class TyperInjector(TextInjector):
    """Types text into the focused window."""

    def __init__(self, settle_delay_s: float = TYPE_SETTLE_DELAY_SECONDS) -> None:
        self._controller = KeyboardController()
        self._settle_delay_s = settle_delay_s

    def inject(self, text: str) -> None:
        try:
            # Small delay to ensure the window is ready
            time.sleep(self._settle_delay_s)
            self._controller.type(text)
        except (KeyboardController.InvalidKeyException, KeyboardController.InvalidCharacterException) as e:
            raise InjectionError(f"Failed to type text: {e}") from e
        except OSError as e:
            raise InjectionError(f"Keyboard simulation unavailable: {e}") from e


class CompositeInjector(TextInjector):
    """Injects through a primary handler and keeps a best-effort backup."""

    def __init__(self, primary: TextInjector, *backups: TextInjector) -> None:
        self._primary = primary
        self._backups = backups

    def inject(self, text: str) -> None:
        for backup in self._backups:
            try:
                backup.inject(text)
            except InjectionError as e:
                logger.error("Backup injector %s failed: %s", type(backup).__name__, e)
        self._primary.inject(text)


def create_injector(mode: "OutputMode") -> TextInjector:
    """
    Create a text injector for the configured output mode.

    Args:
        mode: The output mode.

    Returns:
        An appropriate injector.
    """
    from voiceflow.config import OutputMode

    clipboard = ClipboardInjector()

    if mode == OutputMode.CLIPBOARD:
        return clipboard

    # TYPE mode: type into window + clipboard backup
    return CompositeInjector(TyperInjector(), clipboard)


class TranscriptComposer:
    """Builds the running transcript of a streaming session."""

    def __init__(self) -> None:
        self._text = ""

    @property
    def text(self) -> str:
        return self._text

    def append(self, segment: str) -> str:
        """
        Append a final segment.

        Args:
            segment: Settled transcript fragment.

        Returns:
            The increment to display and inject: the segment, prefixed with
            a single space unless it is the first one. Empty when the
            segment is blank.
        """
        segment = segment.strip()
        if not segment:
            return ""
        increment = f" {segment}" if self._text else segment
        self._text += increment
        return increment

    def preview(self, interim: str) -> str:
        """Running transcript with an unsettled segment appended."""
        interim = interim.strip()
        if not interim:
            return self._text
        return f"{self._text} {interim}" if self._text else interim

    def clear(self) -> None:
        self._text = ""


class InjectionGuard:
    """
    The one gateway to the text injector.

    Calls run one at a time on a single worker, in submission order; a call
    submitted while another is outstanding waits. Failures are reported
    through the returned future and never retried.
    """

    def __init__(self, injector: TextInjector) -> None:
        self._injector = injector
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="TextInjector")

    def submit(self, text: str) -> "Future[None]":
        if not text:
            future: Future[None] = Future()
            future.set_exception(InjectionError("Nothing to inject"))
            return future
        return self._executor.submit(self._inject, text)

    def _inject(self, text: str) -> None:
        with self._lock:
            try:
                self._injector.inject(text)
            except InjectionError:
                raise
            except Exception as e:
                logger.exception("Injector crashed")
                raise InjectionError(f"Text injection failed: {e}") from e

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
