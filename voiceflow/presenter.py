"""Console presentation of controller events."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Callable

from voiceflow.errors import ERROR_MESSAGES
from voiceflow.models import (
    ErrorRaised,
    HistoryAppended,
    SessionStatus,
    StatusChanged,
    TranscriptUpdated,
)

if TYPE_CHECKING:
    from voiceflow.events import EventBus

logger = logging.getLogger(__name__)

STATUS_LINES = {
    SessionStatus.CONNECTING: "🔌 Connecting...",
    SessionStatus.RECORDING: "🎙️ Recording...",
    SessionStatus.PROCESSING: "🧠 Transcribing...",
    SessionStatus.INJECTING: "⌨️ Typing...",
    SessionStatus.IDLE: "🟢 Ready.",
}


class ErrorBanner:
    """
    The currently shown error, cleared automatically.

    A new error replaces the previous one and restarts the clock. Nothing
    needs to be acknowledged.
    """

    def __init__(
        self,
        bus: "EventBus",
        display_s: float = 3.0,
        on_change: Callable[[str | None], None] | None = None,
    ) -> None:
        self._display_s = display_s
        self._on_change = on_change
        self._message: str | None = None
        self._timer: threading.Timer | None = None
        self._lock = threading.Lock()
        self._unsubscribe = bus.subscribe(ErrorRaised, self._on_error)

    @property
    def message(self) -> str | None:
        return self._message

    def _on_error(self, event: ErrorRaised) -> None:
        text = ERROR_MESSAGES.get(event.kind, event.message)
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._message = text
            self._timer = threading.Timer(self._display_s, self._clear, args=(text,))
            self._timer.daemon = True
            self._timer.start()
        if self._on_change:
            self._on_change(text)

    def _clear(self, text: str) -> None:
        with self._lock:
            if self._message != text:
                return
            self._message = None
            self._timer = None
        if self._on_change:
            self._on_change(None)

    def close(self) -> None:
        self._unsubscribe()
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None


class ConsolePresenter:
    """Prints session progress to the terminal."""

    def __init__(self, bus: "EventBus", hotkey_label: Callable[[], str | None]) -> None:
        self._hotkey_label = hotkey_label
        self.visible = True
        self._unsubscribers = [
            bus.subscribe(StatusChanged, self._on_status),
            bus.subscribe(TranscriptUpdated, self._on_transcript),
            bus.subscribe(ErrorRaised, self._on_error),
            bus.subscribe(HistoryAppended, self._on_history),
        ]

    def is_visible(self) -> bool:
        return self.visible

    def _on_status(self, event: StatusChanged) -> None:
        if event.status == SessionStatus.ERROR:
            return
        if event.status == SessionStatus.IDLE:
            label = self._hotkey_label()
            print(f"🟢 Ready. Hold {label} to dictate." if label else "🟢 Ready.")
            return
        print(STATUS_LINES[event.status])

    def _on_transcript(self, event: TranscriptUpdated) -> None:
        if event.is_final:
            print(f"\n✅ Transcript: \"{event.text}\"")
        else:
            print(f"   … {event.text}", end="\r", flush=True)

    def _on_error(self, event: ErrorRaised) -> None:
        print(f"❌ {ERROR_MESSAGES.get(event.kind, 'Error')}: {event.message}")

    def _on_history(self, event: HistoryAppended) -> None:
        logger.debug("History item %s saved", event.item.id)

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
