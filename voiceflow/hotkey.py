"""Global hotkey bridge: one system-wide key combination, press/release edges."""

from __future__ import annotations

import logging
import sys
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from pynput import keyboard

from voiceflow.errors import RegistrationError
from voiceflow.models import Edge, TriggerMode

if TYPE_CHECKING:
    from voiceflow.controller import RecordingController

logger = logging.getLogger(__name__)

EdgeCallback = Callable[[Edge], None]
ListenerFactory = Callable[..., Any]

MODIFIERS = frozenset({"ctrl", "shift", "alt", "cmd"})
NAMED_KEYS = frozenset(
    {
        "space", "enter", "tab", "esc", "backspace", "delete", "insert",
        "home", "end", "page_up", "page_down", "up", "down", "left", "right",
        *(f"f{n}" for n in range(1, 25)),
    }
)
ALIASES = {
    "control": "ctrl",
    "option": "alt",
    "super": "cmd",
    "meta": "cmd",
    "win": "cmd",
    "command": "cmd",
    "commandorcontrol": "cmd" if sys.platform == "darwin" else "ctrl",
    "cmdorctrl": "cmd" if sys.platform == "darwin" else "ctrl",
    "return": "enter",
    "escape": "esc",
    "del": "delete",
    "pageup": "page_up",
    "pagedown": "page_down",
}
SIDE_SUFFIXES = ("_l", "_r", "_gr")
CONTROL_CHAR_OFFSET = 96  # Ctrl+A arrives as "\x01" on some platforms


def parse_binding(binding: str) -> frozenset[str]:
    """
    Parse a combination such as ``"Ctrl+Shift+F9"`` into key tokens.

    Raises:
        RegistrationError: If the combination names an unknown key or is
            not at least two distinct keys, one of them a non-modifier.
    """
    parts = [part.strip().lower() for part in binding.split("+")]
    if not binding.strip() or any(not part for part in parts):
        raise RegistrationError(f"Invalid hotkey: {binding!r}")

    tokens = []
    for part in parts:
        token = ALIASES.get(part, part)
        if token not in MODIFIERS and token not in NAMED_KEYS and len(token) != 1:
            raise RegistrationError(f"Unknown key {part!r} in hotkey {binding!r}")
        tokens.append(token)

    if len(set(tokens)) != len(tokens):
        raise RegistrationError(f"Repeated key in hotkey {binding!r}")
    if len(tokens) < 2 or all(token in MODIFIERS for token in tokens):
        raise RegistrationError(f"Hotkey {binding!r} needs at least one non-modifier key")
    return frozenset(tokens)


def _vk_names() -> dict[int, str]:
    names: dict[int, str] = {}
    for name, member in keyboard.Key.__members__.items():
        vk = getattr(member.value, "vk", None)
        if vk:
            names.setdefault(vk, name)
    return names


_VK_NAMES: dict[int, str] | None = None


def key_token(key: Any) -> str | None:
    """Normalise a listener key to the token vocabulary of ``parse_binding``."""
    global _VK_NAMES

    if key is None:
        return None
    if isinstance(key, keyboard.KeyCode):
        if key.char:
            char = key.char
            if len(char) == 1 and 1 <= ord(char) <= 26:
                char = chr(ord(char) + CONTROL_CHAR_OFFSET)
            return char.lower()
        if key.vk is None:
            return None
        if _VK_NAMES is None:
            _VK_NAMES = _vk_names()
        name = _VK_NAMES.get(key.vk, f"vk{key.vk}")
    else:
        name = getattr(key, "name", None) or str(key)

    name = name.lower()
    if name.startswith("key."):
        name = name[len("key."):]
    for suffix in SIDE_SUFFIXES:
        if name.endswith(suffix):
            name = name[: -len(suffix)]
            break
    return ALIASES.get(name, name)


class _Registration:
    """
    Press/release tracking for one registered combination.

    Listener callbacks go through this object; once ``active`` is cleared
    they emit nothing, so a listener that outlives its registration is inert.
    """

    def __init__(self, binding: str, keys: frozenset[str], emit: EdgeCallback) -> None:
        self.binding = binding
        self.keys = keys
        self.active = True
        self.listener: Any = None
        self._emit = emit
        self._held: set[str] = set()
        self._engaged = False
        self._lock = threading.Lock()

    def on_press(self, key: Any) -> None:
        token = key_token(key)
        if token is None:
            return
        with self._lock:
            if not self.active:
                return
            self._held.add(token)
            if self._engaged or not self.keys <= self._held:
                return
            self._engaged = True
        self._emit(Edge.PRESSED)

    def on_release(self, key: Any) -> None:
        token = key_token(key)
        if token is None:
            return
        with self._lock:
            if not self.active:
                return
            self._held.discard(token)
            if not self._engaged or token not in self.keys:
                return
            self._engaged = False
        self._emit(Edge.RELEASED)


class HotkeyBridge:
    """
    Owns the single global hotkey registration.

    ``register`` replaces the current binding atomically: the old listener is
    stopped before the new one starts, and if the new one cannot be started
    the old binding is put back. Edges go to every ``on_edge`` subscriber,
    normally a ``SurfaceRouter``.
    """

    def __init__(self, listener_factory: ListenerFactory | None = None) -> None:
        self._listener_factory = listener_factory or keyboard.Listener
        self._lock = threading.Lock()
        self._registration: _Registration | None = None
        self._subscribers: list[EdgeCallback] = []

    @property
    def binding(self) -> str | None:
        registration = self._registration
        return registration.binding if registration else None

    @property
    def is_registered(self) -> bool:
        return self._registration is not None

    def on_edge(self, callback: EdgeCallback) -> None:
        self._subscribers.append(callback)

    def register(self, binding: str) -> None:
        """
        Claim ``binding`` as the global trigger.

        Raises:
            RegistrationError: If the binding is invalid or the listener
                cannot be started. The previous binding stays active.
        """
        keys = parse_binding(binding)
        with self._lock:
            previous = self._registration
            if previous is not None:
                self._stop(previous)
                self._registration = None
            try:
                self._registration = self._start(binding, keys)
            except RegistrationError:
                if previous is not None:
                    logger.warning("Restoring previous hotkey %s", previous.binding)
                    self._registration = self._start(previous.binding, previous.keys)
                raise
        logger.info("Hotkey registered: %s", binding)

    def unregister(self) -> None:
        with self._lock:
            registration, self._registration = self._registration, None
            if registration is not None:
                self._stop(registration)
                logger.info("Hotkey unregistered: %s", registration.binding)

    def _start(self, binding: str, keys: frozenset[str]) -> _Registration:
        registration = _Registration(binding, keys, self._emit)
        try:
            listener = self._listener_factory(
                on_press=registration.on_press,
                on_release=registration.on_release,
            )
            listener.start()
            listener.wait()
        except Exception as e:
            registration.active = False
            raise RegistrationError(f"Cannot register hotkey {binding!r}: {e}") from e
        if not listener.is_alive():
            registration.active = False
            raise RegistrationError(f"Hotkey listener for {binding!r} stopped immediately")
        registration.listener = listener
        return registration

    @staticmethod
    def _stop(registration: _Registration) -> None:
        registration.active = False
        if registration.listener is not None:
            registration.listener.stop()
            registration.listener = None

    def _emit(self, edge: Edge) -> None:
        for callback in list(self._subscribers):
            try:
                callback(edge)
            except Exception as e:
                logger.error("Hotkey edge handler failed: %s", e)


@dataclass
class Surface:
    name: str
    handler: EdgeCallback
    is_visible: Callable[[], bool]
    priority: int = 0


class SurfaceRouter:
    """
    Delivers each hotkey edge to exactly one surface.

    The target is the highest-priority visible surface, or the default
    surface when none is visible. Edges are never broadcast.
    """

    def __init__(self) -> None:
        self._surfaces: dict[str, Surface] = {}
        self._default: str | None = None
        self._lock = threading.Lock()

    def add(
        self,
        name: str,
        handler: EdgeCallback,
        is_visible: Callable[[], bool] = lambda: True,
        priority: int = 0,
        default: bool = False,
    ) -> None:
        with self._lock:
            self._surfaces[name] = Surface(name, handler, is_visible, priority)
            if default or self._default is None:
                self._default = name

    def remove(self, name: str) -> None:
        with self._lock:
            self._surfaces.pop(name, None)
            if self._default == name:
                self._default = next(iter(self._surfaces), None)

    def resolve(self) -> Surface | None:
        with self._lock:
            surfaces = sorted(self._surfaces.values(), key=lambda s: -s.priority)
            default = self._surfaces.get(self._default) if self._default else None
        for surface in surfaces:
            if surface.is_visible():
                return surface
        return default

    def route(self, edge: Edge) -> str | None:
        surface = self.resolve()
        if surface is None:
            logger.debug("No surface for %s edge", edge.value)
            return None
        surface.handler(edge)
        return surface.name


class EdgeTranslator:
    """Turns hotkey edges into controller commands for a trigger mode."""

    def __init__(self, controller: "RecordingController", mode: TriggerMode) -> None:
        self._controller = controller
        self.mode = mode

    def __call__(self, edge: Edge) -> None:
        if self.mode == TriggerMode.PUSH_TO_TALK:
            if edge == Edge.PRESSED:
                self._controller.start()
            else:
                self._controller.stop()
            return

        if edge == Edge.PRESSED:
            self._controller.toggle()
