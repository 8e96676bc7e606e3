"""JSON-backed settings record and capped transcript history."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from voiceflow.models import HistoryItem

logger = logging.getLogger(__name__)

DEFAULT_STORE_DIR = Path.home() / ".config" / "voiceflow"
DEFAULT_HISTORY_MAX = 50


def _read_json(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Ignoring unreadable store %s: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def _write_json(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
    tmp.replace(path)


@dataclass
class Settings:
    credential: str = ""
    hotkey_binding: str = ""
    theme: str = "system"


class SettingsStore:
    """Persists the settings record to ``settings.json``."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or DEFAULT_STORE_DIR / "settings.json"

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Settings:
        data = _read_json(self._path)
        return Settings(
            credential=str(data.get("deepgram_api_key", "")),
            hotkey_binding=str(data.get("global_shortcut", "")),
            theme=str(data.get("theme", "system")),
        )

    def save(self, settings: Settings) -> None:
        _write_json(
            self._path,
            {
                "deepgram_api_key": settings.credential,
                "global_shortcut": settings.hotkey_binding,
                "theme": settings.theme,
            },
        )

    def set_credential(self, key: str) -> None:
        settings = self.load()
        settings.credential = key
        self.save(settings)

    def set_hotkey(self, binding: str) -> None:
        settings = self.load()
        settings.hotkey_binding = binding
        self.save(settings)

    def set_theme(self, theme: str) -> None:
        settings = self.load()
        settings.theme = theme
        self.save(settings)


class HistoryStore:
    """
    Capped transcript history, newest first.

    Appending beyond ``max_size`` evicts the oldest items. The file layout is
    ``{"items": [{"id": ..., "text": ..., "timestamp": ...}, ...]}``.
    """

    def __init__(self, path: Path | None = None, max_size: int = DEFAULT_HISTORY_MAX) -> None:
        self._path = path or DEFAULT_STORE_DIR / "history.json"
        self._max_size = max_size
        self._lock = threading.Lock()

    @property
    def max_size(self) -> int:
        return self._max_size

    def items(self) -> list[HistoryItem]:
        with self._lock:
            return self._load()

    def append(self, item: HistoryItem) -> list[HistoryItem]:
        """
        Add an item to the front of the history.

        Args:
            item: The history item to store.

        Returns:
            The updated history, newest first.
        """
        with self._lock:
            items = [item, *self._load()][: self._max_size]
            self._save(items)
            return items

    def get(self, key: int | str) -> HistoryItem:
        """Return the item at position ``key`` (0 is the newest) or with id ``key``."""
        items = self.items()
        if isinstance(key, str):
            for item in items:
                if item.id == key:
                    return item
            raise IndexError(f"No history item with id {key!r}")
        if not 0 <= key < len(items):
            raise IndexError(f"No history item at position {key}")
        return items[key]

    def clear(self) -> None:
        with self._lock:
            self._save([])

    def _load(self) -> list[HistoryItem]:
        raw = _read_json(self._path).get("items", [])
        items = []
        for entry in raw if isinstance(raw, list) else []:
            try:
                items.append(HistoryItem.from_dict(entry))
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed history entry: %r", entry)
        return items

    def _save(self, items: list[HistoryItem]) -> None:
        _write_json(self._path, {"items": [item.to_dict() for item in items]})
