"""Lifecycle events emitted for observability hooks."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    CREATED = "created"
    DESTROYED = "destroyed"
    ERROR = "error"
    RECOVERED = "recovered"


@dataclass
class LifecycleEvent:
    """A sandbox lifecycle transition."""

    kind: EventKind
    task_id: str
    container_name: str = ""
    detail: dict[str, Any] = field(default_factory=lambda: dict[str, Any]())


EventCallback = Callable[[LifecycleEvent], None]


class EventHooks:
    """Synchronous fan-out of :class:`LifecycleEvent` to subscribers.

    The subsystem emits events but never consumes them.  A subscriber that
    raises is logged and skipped.
    """

    def __init__(self) -> None:
        self._subscribers: list[EventCallback] = []

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """Register *callback*; return a function that unsubscribes it."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def emit(self, event: LifecycleEvent) -> None:
        logger.debug("sandbox event %s for task %s", event.kind.value, event.task_id)
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("Lifecycle hook %r failed on %s", callback, event.kind.value)
