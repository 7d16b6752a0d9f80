"""One supervisor run: resolve, spawn, assign shortcuts, take input, exit."""

from __future__ import annotations

import asyncio
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from taskmux.config.loader import load_task_env
from taskmux.config.schema import TaskmuxConfig
from taskmux.control.shortcuts import compute_shortcuts
from taskmux.control.surface import ControlSurface, print_hint
from taskmux.control.terminal import RawTerminal, supports_raw_input
from taskmux.coordinator.exit import ExitCoordinator, ExitReason
from taskmux.errors import ResolutionError
from taskmux.process.events import TaskEvent
from taskmux.process.groups import PosixProcessGroups, ProcessGroups
from taskmux.process.models import ManagedTask, TaskSpec
from taskmux.process.output import OutputMux
from taskmux.process.supervisor import (
    CommandBuilder,
    ProcessSupervisor,
    SupervisorEnv,
    SupervisorHooks,
    runner_command,
)
from taskmux.resolver import ResolutionPlan, parent_running_tasks, resolve_tasks
from taskmux.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class SessionOptions:
    names: list[str]
    forward_args: list[str] = field(default_factory=list)
    include_root: bool | None = None
    flags_last: bool = False
    stdin_task: str | None = None
    interactive: bool | None = None  # None: raw input only on a TTY


class Session:
    """Owns the exit coordinator for the lifetime of one ``run()``."""

    def __init__(
        self,
        root: str | Path,
        config: TaskmuxConfig,
        options: SessionOptions,
        *,
        command_builder: CommandBuilder | None = None,
        environ: Mapping[str, str] | None = None,
        output: OutputMux | None = None,
        groups: ProcessGroups | None = None,
    ) -> None:
        self.root = str(root)
        self.config = config
        self.options = options
        self.environ = dict(os.environ if environ is None else environ)
        self.output = output or OutputMux()
        self._groups = groups or PosixProcessGroups()
        self._build_command = command_builder or runner_command(config.runner)
        self.supervisor: ProcessSupervisor | None = None
        self.surface: ControlSurface | None = None
        self._terminal: RawTerminal | None = None
        self._idle_watch: asyncio.Task[None] | None = None

    def resolve(self) -> ResolutionPlan:
        return resolve_tasks(
            self.root,
            self.options.names,
            config=self.config.resolver,
            include_root=self.options.include_root,
            forward_args=self.options.forward_args,
            flags_last=self.options.flags_last,
            parent_running=parent_running_tasks(self.environ),
        )

    async def run(self) -> int:
        coordinator = ExitCoordinator(groups=self._groups, config=self.config.shutdown, output=self.output)
        try:
            coordinator.install()
            self.output.bind_exiting(lambda: coordinator.exiting)
            coordinator.add_teardown(self._report_stopped)
            return await self._run(coordinator)
        finally:
            self._release_terminal()
            await coordinator.cleanup(ExitReason.TERMINATE)
            coordinator.close()

    async def _run(self, coordinator: ExitCoordinator) -> int:
        plan = await asyncio.to_thread(self.resolve)
        if plan.skipped:
            logger.debug("tasks_already_running_in_parent", skipped=plan.skipped)
        if not plan:
            return self._nothing_to_run(plan.requested)

        supervisor = self._build_supervisor(plan, coordinator)
        await supervisor.start_all(plan.root_tasks)
        if not coordinator.exiting:
            await supervisor.start_all(plan.workspace_tasks)

        if not supervisor.tasks:
            return self._nothing_to_run(plan.requested)

        supervisor.assign_shortcuts(compute_shortcuts([t.label for t in supervisor.tasks]))
        target = self._stdin_target(supervisor.tasks)

        interactive = self.options.interactive
        if interactive is None:
            interactive = supports_raw_input()
        if interactive and not coordinator.exiting:
            self._start_control(supervisor, coordinator, target)
        else:
            self._idle_watch = asyncio.get_running_loop().create_task(self._exit_when_idle(supervisor, coordinator))

        return await coordinator.wait()

    def _build_supervisor(self, plan: ResolutionPlan, coordinator: ExitCoordinator) -> ProcessSupervisor:
        env = SupervisorEnv(
            base=self.environ,
            extra=load_task_env(self.root, self.config.env_file),
            running_tasks=[*parent_running_tasks(self.environ), *plan.requested],
        )
        supervisor = ProcessSupervisor(
            root=self.root,
            config=self.config.supervisor,
            command_builder=self._build_command,
            output=self.output,
            groups=self._groups,
            hooks=SupervisorHooks(
                register_process=coordinator.add_process,
                request_exit=coordinator.exit,
                is_exiting=lambda: coordinator.exiting,
            ),
            env=env,
        )
        supervisor.events.subscribe(_log_event)
        self.supervisor = supervisor
        return supervisor

    def _nothing_to_run(self, requested: Sequence[str]) -> int:
        message = f"No task named {', '.join(requested)} found in root or workspaces"
        if self.config.strict:
            raise ResolutionError(message, requested=list(requested))
        self.output.notice(message)
        return 0

    def _stdin_target(self, tasks: Sequence[ManagedTask]) -> ManagedTask | None:
        wanted = self.options.stdin_task or self.config.control.stdin_task
        if wanted:
            for task in tasks:
                if task.name == wanted or task.label == wanted:
                    return task
            logger.warning("stdin_task_not_found", stdin_task=wanted)
        return tasks[-1] if tasks else None

    def _start_control(
        self,
        supervisor: ProcessSupervisor,
        coordinator: ExitCoordinator,
        target: ManagedTask | None,
    ) -> None:
        print_hint(self.output, supervisor.tasks)
        self.surface = ControlSurface(
            supervisor,
            output=self.output,
            on_interrupt=coordinator.interrupt,
            stdin_target=target,
            disambiguation_ms=self.config.control.disambiguation_ms,
        )
        terminal = RawTerminal()
        terminal.enter()
        self._terminal = terminal
        coordinator.add_teardown(lambda _reason: self._release_terminal())
        terminal.attach(self.surface.feed)

    async def _exit_when_idle(self, supervisor: ProcessSupervisor, coordinator: ExitCoordinator) -> None:
        """Without a control surface, the session ends once every task has exited."""
        while not coordinator.exiting:
            await supervisor.wait_idle()
            if all(t.watcher is None or t.watcher.done() for t in supervisor.tasks):
                break
        if not coordinator.exiting:
            await coordinator.exit(0)

    def _release_terminal(self) -> None:
        if self.surface is not None:
            self.surface.close()
        if self._terminal is not None:
            self._terminal.restore()
            self._terminal = None

    def _report_stopped(self, reason: ExitReason) -> None:
        if self.supervisor is None:
            return
        running = [t.label for t in self.supervisor.tasks if t.alive]
        if running:
            self.output.notice(f"  stopping {', '.join(running)}")
        logger.debug("session_exit", reason=str(reason), stopping=running)


def _log_event(event: TaskEvent) -> None:
    logger.debug("task_event", event_type=event.event_type, label=event.label, data=event.data)


def plan_rows(plan: ResolutionPlan) -> list[tuple[TaskSpec, str]]:
    """(spec, where) pairs for ``--list`` output."""
    return [(spec, "root" if spec.cwd == "." else spec.cwd) for spec in plan.tasks]
