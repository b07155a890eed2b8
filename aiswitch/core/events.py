"""
aiswitch.core.events — Minimal ordered broadcast channel.

Listeners are invoked synchronously, in registration order, on whatever task
fires the event.  ``fire()`` with no listeners is a no-op (fire-and-forget).
"""

from __future__ import annotations

import logging
from typing import Callable, Generic, TypeVar

logger = logging.getLogger("aiswitch.events")

T = TypeVar("T")


class Emitter(Generic[T]):
    """Broadcast a value to every subscribed listener."""

    def __init__(self) -> None:
        self._listeners: list[Callable[[T], None]] = []

    def subscribe(self, listener: Callable[[T], None]) -> Callable[[], None]:
        """Register *listener*; returns a callable that removes it again."""
        self._listeners.append(listener)

        def _dispose() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return _dispose

    def fire(self, value: T) -> None:
        # Snapshot so a listener may unsubscribe itself mid-dispatch
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                logger.exception("Event listener %r failed", listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def clear(self) -> None:
        self._listeners.clear()
