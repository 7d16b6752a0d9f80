"""Interactive control surface: a modal keyboard state machine.

NORMAL forwards keystrokes to the stdin target. Ctrl-R / Ctrl-K enter
SELECT (restart / kill), where typed letters are matched against task
shortcuts. The disambiguation timer is an explicit ``call_later`` handle
that is cancelled on every mode change.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Callable, Coroutine, Iterator, Sequence
from enum import StrEnum
from typing import Any, Protocol

from rich.text import Text

from taskmux.process.models import ManagedTask
from taskmux.process.output import OutputMux
from taskmux.utils.logger import get_logger

logger = get_logger(__name__)

KEY_INTERRUPT = "\x03"
KEY_ESCAPE = "\x1b"
KEY_RESTART = "\x12"
KEY_KILL = "\x0b"
KEY_CLEAR = "\x0c"

HINT = "ctrl+r restart · ctrl+k kill · ctrl+l clear · ctrl+c exit"

# CSI (ESC [ ... final) and SS3 (ESC O x) sequences count as one key.
_KEY_PATTERN = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]|\x1bO.|.", re.DOTALL)


def split_keys(data: str) -> Iterator[str]:
    for match in _KEY_PATTERN.finditer(data):
        yield match.group(0)


class Mode(StrEnum):
    NORMAL = "normal"
    RESTART = "restart"
    KILL = "kill"


class TaskController(Protocol):
    tasks: list[ManagedTask]

    async def restart(self, index: int) -> None: ...

    async def kill(self, index: int) -> bool: ...

    def forward_input(self, task: ManagedTask | None, data: str) -> bool: ...


class ControlSurface:
    def __init__(
        self,
        controller: TaskController,
        *,
        output: OutputMux,
        on_interrupt: Callable[[], Coroutine[Any, Any, Any]],
        stdin_target: ManagedTask | None = None,
        disambiguation_ms: int = 500,
    ) -> None:
        self.controller = controller
        self.output = output
        self.stdin_target = stdin_target
        self.mode = Mode.NORMAL
        self.buffer = ""
        self._on_interrupt = on_interrupt
        self._delay = disambiguation_ms / 1000
        self._timer: asyncio.TimerHandle | None = None
        self._actions: set[asyncio.Task[Any]] = set()

    @property
    def timer_pending(self) -> bool:
        return self._timer is not None

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    def feed(self, data: str) -> None:
        """Consume one chunk of raw terminal input."""
        passthrough: list[str] = []
        for key in split_keys(data):
            if self.mode is Mode.NORMAL and not _is_reserved(key):
                passthrough.append(key)
                continue
            if passthrough:
                self._forward("".join(passthrough))
                passthrough.clear()
            self._handle_key(key)
        if passthrough:
            self._forward("".join(passthrough))

    def _handle_key(self, key: str) -> None:
        if key == KEY_INTERRUPT:
            self._reset()
            self._schedule(self._on_interrupt())
            return

        if key == KEY_ESCAPE and self.mode is not Mode.NORMAL:
            self._cancel()
            return

        if key == KEY_RESTART:
            self.enter(Mode.RESTART)
            return

        if key == KEY_KILL:
            self.enter(Mode.KILL)
            return

        if key == KEY_CLEAR:
            self.output.clear_screen()
            return

        if self.mode is Mode.NORMAL:
            self._forward(key)
            return

        letter = key.lower()
        if len(letter) == 1 and "a" <= letter <= "z":
            self._select_letter(letter)
        else:
            self._cancel()

    def _forward(self, data: str) -> None:
        if not self.controller.forward_input(self.stdin_target, data):
            logger.debug("input_dropped", target=self.stdin_target.label if self.stdin_target else None)

    # ------------------------------------------------------------------
    # SELECT mode
    # ------------------------------------------------------------------

    def enter(self, mode: Mode) -> None:
        self._reset()
        self.mode = mode
        self._show_task_list(str(mode))

    def _select_letter(self, letter: str) -> None:
        self.buffer += letter
        self._clear_timer()

        exact = self._exact(self.buffer)
        if exact is not None:
            self._dispatch(exact)
            return

        if not any(t.shortcut.startswith(self.buffer) for t in self.controller.tasks):
            self._no_match()
            return

        self._timer = asyncio.get_running_loop().call_later(self._delay, self._finish_match)

    def _finish_match(self) -> None:
        self._timer = None
        if not self.buffer:
            return
        exact = self._exact(self.buffer)
        if exact is not None:
            self._dispatch(exact)
        else:
            self._no_match()

    def _exact(self, buffer: str) -> ManagedTask | None:
        for task in self.controller.tasks:
            if task.shortcut == buffer:
                return task
        return None

    def _dispatch(self, task: ManagedTask) -> None:
        mode = self.mode
        self._reset()
        logger.debug("control_dispatch", mode=str(mode), label=task.label)
        if mode is Mode.RESTART:
            self._schedule(self.controller.restart(task.index))
        elif mode is Mode.KILL:
            self._schedule(self.controller.kill(task.index))

    def _no_match(self) -> None:
        self.output.notice(f'  no match for "{self.buffer}"')
        self._reset()

    def _cancel(self) -> None:
        self._reset()
        self.output.notice("  cancelled")

    def _reset(self) -> None:
        self._clear_timer()
        self.buffer = ""
        self.mode = Mode.NORMAL

    def _clear_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _show_task_list(self, verb: str) -> None:
        self.output.blank()
        self.output.notice(f"  {verb} which process?")
        for task in self.controller.tasks:
            line = Text.assemble(
                ("  ", "dim"),
                (task.shortcut, task.color),
                (f" {task.label}", "dim"),
                (" (stopped)" if task.stopped else "", "dim"),
            )
            self.output.print(line)
        self.output.blank()

    # ------------------------------------------------------------------
    # Background actions
    # ------------------------------------------------------------------

    def _schedule(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._actions.add(task)
        task.add_done_callback(self._action_done)

    def _action_done(self, task: asyncio.Task[Any]) -> None:
        self._actions.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("control_action_failed", error=str(task.exception()))

    async def drain(self) -> None:
        """Wait for dispatched restart/kill/exit actions to finish."""
        while self._actions:
            await asyncio.gather(*list(self._actions), return_exceptions=True)

    def close(self) -> None:
        self._reset()


def _is_reserved(key: str) -> bool:
    return key in (KEY_INTERRUPT, KEY_RESTART, KEY_KILL, KEY_CLEAR)


def print_hint(output: OutputMux, tasks: Sequence[ManagedTask]) -> None:
    if not tasks:
        return
    output.notice(f"  {HINT}")
    output.blank()
