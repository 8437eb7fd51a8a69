"""
Outbound notification channel.

Components publish typed notifications (``ready``, ``file``,
``task-completed``, ``task-failed``, ...) on an ``EventBus``; consumers
register listeners per notification kind. A failing listener is logged
and never affects the publisher or other listeners.
"""

import threading
from collections import defaultdict
from enum import Enum
from typing import Any, Callable, DefaultDict, List

from loguru import logger

Listener = Callable[[Any], None]


class Notification(str, Enum):
    """Notification kinds published by the pipeline."""

    READY = "ready"
    FILE = "file"
    TASK_COMPLETED = "task-completed"
    TASK_FAILED = "task-failed"
    ERROR = "error"
    HEALTH = "health"
    DUPLICATE = "duplicate"


class EventBus:
    """Thread-safe publish/subscribe registry."""

    def __init__(self):
        self._listeners: DefaultDict[str, List[Listener]] = defaultdict(list)
        self._lock = threading.Lock()

    def on(self, kind: str, listener: Listener) -> Callable[[], None]:
        """
        Register ``listener`` for ``kind``.

        Returns:
            A callable that unregisters the listener
        """
        kind = Notification(kind).value
        with self._lock:
            self._listeners[kind].append(listener)
        return lambda: self.off(kind, listener)

    def once(self, kind: str, listener: Listener) -> Callable[[], None]:
        """Register a listener that is removed after its first delivery."""
        fired = threading.Event()

        def _wrapper(payload: Any) -> None:
            if fired.is_set():
                return
            fired.set()
            self.off(kind, _wrapper)
            listener(payload)

        return self.on(kind, _wrapper)

    def off(self, kind: str, listener: Listener) -> None:
        """Unregister ``listener``; unknown listeners are ignored."""
        kind = Notification(kind).value
        with self._lock:
            try:
                self._listeners[kind].remove(listener)
            except ValueError:
                pass

    def emit(self, kind: str, payload: Any = None) -> int:
        """
        Deliver ``payload`` to every listener of ``kind``.

        Returns:
            Number of listeners that were called
        """
        kind = Notification(kind).value
        with self._lock:
            listeners = list(self._listeners[kind])

        for listener in listeners:
            try:
                listener(payload)
            except Exception:
                logger.exception(f"Listener for '{kind}' failed")
        return len(listeners)

    def listener_count(self, kind: str) -> int:
        with self._lock:
            return len(self._listeners[Notification(kind).value])
