"""Publish/subscribe registry for controller events."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

logger = logging.getLogger(__name__)

Observer = Callable[[Any], None]


class EventBus:
    """
    Delivers events synchronously, in publish order, to subscribers.

    Subscribing with ``event_type=None`` receives every event. A failing
    observer is logged and skipped; it never affects the publisher.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: list[tuple[type | None, Observer]] = []

    def subscribe(self, event_type: type | None, callback: Observer) -> Callable[[], None]:
        entry = (event_type, callback)
        with self._lock:
            self._subscribers.append(entry)

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._subscribers:
                    self._subscribers.remove(entry)

        return unsubscribe

    def publish(self, event: Any) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for event_type, callback in subscribers:
            if event_type is not None and not isinstance(event, event_type):
                continue
            try:
                callback(event)
            except Exception as e:
                logger.error("Observer %r failed on %s: %s", callback, type(event).__name__, e)
