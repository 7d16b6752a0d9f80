"""Exit coordination: run shutdown cleanup exactly once.

Every way out of the session (Ctrl-C, SIGTERM, a fatal task failure, an
explicit ``exit()``) funnels through ``ExitCoordinator.cleanup``. The first
caller starts the cleanup task; later and concurrent callers await the
same task. Cleanup signals every registered process group, waits a short
grace period, then SIGKILLs whatever is still alive.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import signal
import sys
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import TYPE_CHECKING, ClassVar

from taskmux.config.schema import ShutdownConfig
from taskmux.errors import CoordinatorError
from taskmux.process.groups import PosixProcessGroups, ProcessGroups
from taskmux.utils.logger import get_logger

if TYPE_CHECKING:
    from taskmux.process.output import OutputMux

logger = get_logger(__name__)

TeardownHook = Callable[["ExitReason"], Awaitable[None] | None]


class ExitReason(StrEnum):
    INTERRUPT = "interrupt"
    TERMINATE = "terminate"


class ExitCoordinator:
    """One-per-process shutdown owner.

    Constructed by the entry point and passed to whoever needs it; a second
    live instance raises ``CoordinatorError``. ``close()`` releases the slot.
    """

    _active: ClassVar[bool] = False

    def __init__(
        self,
        *,
        groups: ProcessGroups | None = None,
        config: ShutdownConfig | None = None,
        output: OutputMux | None = None,
        on_exit: TeardownHook | None = None,
    ) -> None:
        if ExitCoordinator._active:
            raise CoordinatorError("Only one ExitCoordinator per process should be registered")
        ExitCoordinator._active = True

        self._groups = groups or PosixProcessGroups()
        self._config = config or ShutdownConfig()
        self._output = output
        self._teardown_hooks: list[TeardownHook] = [on_exit] if on_exit else []
        self._processes: list[asyncio.subprocess.Process] = []
        self._cleanup_task: asyncio.Task[None] | None = None
        self._exit_future: asyncio.Future[int] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._signals: list[signal.Signals] = []
        self.cleanup_runs = 0

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    @property
    def exiting(self) -> bool:
        return self._cleanup_task is not None

    @property
    def processes(self) -> list[asyncio.subprocess.Process]:
        return list(self._processes)

    def add_teardown(self, hook: TeardownHook) -> None:
        self._teardown_hooks.append(hook)

    def add_process(self, process: asyncio.subprocess.Process) -> None:
        """Track a spawned group leader; reclaim it at once if shutdown already began.

        Handles whose leader was reaped and whose group is empty are dropped,
        so restarts do not grow the list. A reaped leader with descendants
        still in its group stays tracked.
        """
        self._processes = [
            p
            for p in self._processes
            if p.pid != process.pid and (p.returncode is None or self._groups.is_alive(p.pid))
        ]
        self._processes.append(process)
        if self.exiting and self._groups.send(process.pid, signal.SIGTERM):
            logger.debug("late_process_reclaimed", pid=process.pid)
            asyncio.get_running_loop().call_later(
                self._config.force_kill_delay_ms / 1000,
                self._groups.send,
                process.pid,
                signal.SIGKILL,
            )

    def install(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Route SIGINT/SIGTERM through the coordinator."""
        if self._signals:
            raise CoordinatorError("ExitCoordinator signal handlers are already installed")
        self._loop = loop or asyncio.get_running_loop()
        for sig, reason in ((signal.SIGINT, ExitReason.INTERRUPT), (signal.SIGTERM, ExitReason.TERMINATE)):
            try:
                self._loop.add_signal_handler(sig, self._on_signal, reason)
            except (NotImplementedError, RuntimeError):  # pragma: no cover - non-POSIX loops
                logger.debug("signal_handler_unavailable", signal=sig.name)
                continue
            self._signals.append(sig)

    def close(self) -> None:
        """Remove signal handlers and release the one-per-process slot."""
        if self._loop is not None and not self._loop.is_closed():
            for sig in self._signals:
                self._loop.remove_signal_handler(sig)
        self._signals.clear()
        ExitCoordinator._active = False

    # ------------------------------------------------------------------
    # Exit paths
    # ------------------------------------------------------------------

    def _on_signal(self, reason: ExitReason) -> None:
        coro = self.interrupt() if reason is ExitReason.INTERRUPT else self.exit(0, reason)
        asyncio.get_running_loop().create_task(coro)

    async def interrupt(self) -> None:
        """Ctrl-C path, from SIGINT or from the raw-mode keyboard."""
        if not self.exiting:
            # Leave the prompt on a clean line with default attributes.
            sys.stdout.write("\n\x1b[0m")
            sys.stdout.flush()
        await self.exit(0, ExitReason.INTERRUPT)

    async def cleanup(self, reason: ExitReason = ExitReason.TERMINATE) -> None:
        """Run cleanup once; every caller observes the same completion."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.get_running_loop().create_task(self._do_cleanup(reason))
        await asyncio.shield(self._cleanup_task)

    async def exit(self, code: int = 0, reason: ExitReason = ExitReason.TERMINATE) -> None:
        """Clean up, then release ``wait()`` with *code* (first code wins)."""
        try:
            await self.cleanup(reason)
        finally:
            future = self._get_future()
            if not future.done():
                future.set_result(code)

    async def wait(self) -> int:
        """Block until some exit path has completed cleanup; returns the exit code."""
        return await self._get_future()

    def _get_future(self) -> asyncio.Future[int]:
        if self._exit_future is None:
            self._exit_future = asyncio.get_running_loop().create_future()
        return self._exit_future

    # ------------------------------------------------------------------
    # Cleanup sequence
    # ------------------------------------------------------------------

    async def _do_cleanup(self, reason: ExitReason) -> None:
        self.cleanup_runs += 1
        interrupt = reason is ExitReason.INTERRUPT

        if interrupt:
            logging.disable(logging.INFO)
            if self._output is not None:
                self._output.mute()

        for hook in self._teardown_hooks:
            try:
                result = hook(reason)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("exit_hook_failed")

        if not self._processes:
            return

        loop = asyncio.get_running_loop()
        force_delay = self._config.force_kill_delay_ms / 1000
        # The leader's returncode says nothing about the rest of its group.
        for process in list(self._processes):
            if self._groups.send(process.pid, signal.SIGTERM) and interrupt:
                loop.call_later(force_delay, self._groups.send, process.pid, signal.SIGKILL)

        grace_ms = self._config.interrupt_grace_ms if interrupt else self._config.terminate_grace_ms
        await asyncio.sleep(grace_ms / 1000)

        for process in list(self._processes):
            if self._groups.is_alive(process.pid):
                self._groups.send(process.pid, signal.SIGKILL)
        logger.debug("cleanup_done", reason=str(reason), processes=len(self._processes))
