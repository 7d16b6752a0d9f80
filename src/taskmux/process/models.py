"""Task data model shared by the resolver, supervisor and control surface."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import StrEnum


class TaskState(StrEnum):
    """Lifecycle of one managed task.

    ``RESTARTING`` and ``KILLING`` mark an intentional transition so the
    exit observer can tell "we did this" apart from a crash.
    """

    STARTING = "starting"
    RUNNING = "running"
    RESTARTING = "restarting"
    KILLING = "killing"
    STOPPED = "stopped"
    EXITED = "exited"

    @property
    def intentional(self) -> bool:
        return self in (TaskState.RESTARTING, TaskState.KILLING, TaskState.STOPPED)


@dataclass(frozen=True, slots=True)
class TaskSpec:
    """One resolved (task name, working directory, label) triple."""

    name: str
    cwd: str = "."
    label: str = ""
    extra_args: tuple[str, ...] = ()

    @property
    def display_label(self) -> str:
        return self.label or self.name


@dataclass(slots=True)
class ManagedTask:
    """Registry entry for one spawned task.

    ``index`` is assigned on first spawn and kept across restarts; the
    entry is mutated in place and never removed from the registry.
    """

    spec: TaskSpec
    index: int
    color: str
    shortcut: str = ""
    state: TaskState = TaskState.STARTING
    restarts: int = 0
    generation: int = 0
    exit_code: int | None = None
    process: asyncio.subprocess.Process | None = None
    watcher: asyncio.Task[None] | None = field(default=None, repr=False)

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def label(self) -> str:
        return self.spec.display_label

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process is not None else None

    @property
    def alive(self) -> bool:
        return self.process is not None and self.process.returncode is None

    @property
    def stopped(self) -> bool:
        return self.state in (TaskState.KILLING, TaskState.STOPPED)

    @property
    def tag(self) -> str:
        """Prefix text: shortcut (or 1-based index before shortcuts exist) and label."""
        return f"{self.shortcut or self.index + 1} {self.label}"

    def stdin_writable(self) -> bool:
        if self.process is None or self.process.stdin is None:
            return False
        return self.alive and not self.process.stdin.is_closing()
