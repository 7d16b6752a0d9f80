"""taskmux error hierarchy."""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCategory(StrEnum):
    """Category of error for classification and handling."""

    RESOLUTION = "resolution"
    SPAWN = "spawn"
    RUNTIME = "runtime"
    CONFIGURATION = "configuration"
    COORDINATION = "coordination"


class TaskmuxError(Exception):
    """Base error for all taskmux exceptions."""

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory = ErrorCategory.RUNTIME,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.category = category
        self.details: dict[str, Any] = details or {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self)!r}, category={self.category!r})"


class ResolutionError(TaskmuxError):
    """No runnable task could be resolved from the requested names."""

    def __init__(self, message: str, *, requested: list[str] | None = None, **kwargs: Any) -> None:
        super().__init__(message, category=ErrorCategory.RESOLUTION, **kwargs)
        self.requested = list(requested or [])


class SpawnError(TaskmuxError):
    """The OS refused to start a task process."""

    def __init__(self, message: str, *, task_label: str | None = None, **kwargs: Any) -> None:
        super().__init__(message, category=ErrorCategory.SPAWN, **kwargs)
        self.task_label = task_label


class ConfigurationError(TaskmuxError):
    """Invalid configuration value."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(message, category=ErrorCategory.CONFIGURATION, **kwargs)


class CoordinatorError(TaskmuxError):
    """Misuse of the exit coordinator (e.g. a second instance)."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(message, category=ErrorCategory.COORDINATION, **kwargs)
