"""Event bus for task lifecycle events.

The supervisor emits one event per spawn, exit, restart and kill; the
session logs them and tests assert on the history.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable

from taskmux.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class TaskEvent:
    """A single task lifecycle event."""

    event_type: str         # "spawn" | "spawn_error" | "exit" | "fail" | "auto_restart" | "restart" | "kill"
    index: int = -1
    label: str = ""
    timestamp: float = field(default_factory=time.time)
    data: dict[str, Any] = field(default_factory=dict)
    message: str = ""


class EventBus:
    """In-process pub/sub for task events."""

    def __init__(self, history_limit: int = 1000) -> None:
        self._subscribers: list[Callable[[TaskEvent], Any]] = []
        self._history: list[TaskEvent] = []
        self._history_limit = history_limit

    def emit(self, event: TaskEvent) -> None:
        """Emit an event to all subscribers."""
        self._history.append(event)
        if len(self._history) > self._history_limit:
            del self._history[: len(self._history) - self._history_limit]

        for cb in self._subscribers:
            try:
                cb(event)
            except Exception as exc:
                logger.debug("event_subscriber_error", error=str(exc))

    def subscribe(self, callback: Callable[[TaskEvent], Any]) -> None:
        """Register a subscriber."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[TaskEvent], Any]) -> None:
        """Remove a subscriber."""
        self._subscribers = [cb for cb in self._subscribers if cb is not callback]

    @property
    def history(self) -> list[TaskEvent]:
        return list(self._history)

    def of_type(self, event_type: str) -> list[TaskEvent]:
        return [e for e in self._history if e.event_type == event_type]
