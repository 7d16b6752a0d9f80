"""Process supervisor: spawn, multiplex, restart and kill tasks.

All registry mutation happens on the event loop thread. Operations on one
index can still interleave at await points (a user kill racing a crash
restart), so every step re-checks ``ManagedTask.state`` instead of
assuming the world stood still while it awaited.
"""

from __future__ import annotations

import asyncio
import os
import signal
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field

from taskmux.config.schema import (
    ENV_FORCE_COLOR,
    ENV_PARENT_TASK,
    ENV_RUNNING_TASKS,
    ENV_SILENT,
    RunnerConfig,
    SupervisorConfig,
)
from taskmux.errors import SpawnError
from taskmux.process.events import EventBus, TaskEvent
from taskmux.process.groups import PosixProcessGroups, ProcessGroups
from taskmux.process.models import ManagedTask, TaskSpec, TaskState
from taskmux.process.output import ColorWheel, OutputMux, pump_lines
from taskmux.utils.logger import get_logger

logger = get_logger(__name__)

CommandBuilder = Callable[[TaskSpec], list[str]]


def runner_command(runner: RunnerConfig) -> CommandBuilder:
    """Build ``<runner> run [--silent] <task> [extra...]`` command lines."""

    def build(spec: TaskSpec) -> list[str]:
        cmd = [runner.command, "run"]
        if runner.silent:
            cmd.append("--silent")
        cmd.append(spec.name)
        if spec.extra_args:
            if runner.command == "npm":
                cmd.append("--")
            cmd.extend(spec.extra_args)
        return cmd

    return build


@dataclass(slots=True)
class SupervisorHooks:
    """Connections to the exit coordinator."""

    register_process: Callable[[asyncio.subprocess.Process], None] = lambda _p: None
    request_exit: Callable[[int], Awaitable[None]] | None = None
    is_exiting: Callable[[], bool] = lambda: False


@dataclass(slots=True)
class SupervisorEnv:
    """Environment handed to every spawned task."""

    base: Mapping[str, str] = field(default_factory=lambda: dict(os.environ))
    extra: Mapping[str, str] = field(default_factory=dict)
    running_tasks: Sequence[str] = ()

    def for_task(self, spec: TaskSpec) -> dict[str, str]:
        env = {**self.base, **self.extra}
        env[ENV_FORCE_COLOR] = "3"
        env[ENV_PARENT_TASK] = spec.name
        env[ENV_RUNNING_TASKS] = ",".join(self.running_tasks)
        env[ENV_SILENT] = "1"
        return env


class ProcessSupervisor:
    """Owns the task registry and every process it spawns."""

    def __init__(
        self,
        *,
        root: str = ".",
        config: SupervisorConfig | None = None,
        command_builder: CommandBuilder | None = None,
        output: OutputMux | None = None,
        groups: ProcessGroups | None = None,
        hooks: SupervisorHooks | None = None,
        env: SupervisorEnv | None = None,
        events: EventBus | None = None,
    ) -> None:
        self.root = root
        self.config = config or SupervisorConfig()
        self._build_command = command_builder or runner_command(RunnerConfig())
        self.output = output or OutputMux()
        self._groups = groups or PosixProcessGroups()
        self.hooks = hooks or SupervisorHooks()
        self._env = env or SupervisorEnv()
        self.events = events or EventBus()
        self._colors = ColorWheel()
        self.tasks: list[ManagedTask] = []

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def get(self, index: int) -> ManagedTask | None:
        if 0 <= index < len(self.tasks):
            return self.tasks[index]
        return None

    def find(self, name_or_label: str) -> ManagedTask | None:
        for task in self.tasks:
            if task.name == name_or_label or task.label == name_or_label:
                return task
        return None

    def by_shortcut(self, shortcut: str) -> ManagedTask | None:
        for task in self.tasks:
            if task.shortcut == shortcut:
                return task
        return None

    def assign_shortcuts(self, shortcuts: Sequence[str]) -> None:
        for task, shortcut in zip(self.tasks, shortcuts):
            task.shortcut = shortcut

    # ------------------------------------------------------------------
    # Spawning
    # ------------------------------------------------------------------

    async def start(self, spec: TaskSpec) -> ManagedTask | None:
        """Register *spec* at the next index and spawn it."""
        if self.hooks.is_exiting():
            logger.debug("spawn_skipped_exiting", label=spec.display_label)
            return None
        task = ManagedTask(spec=spec, index=len(self.tasks), color=self._colors.next())
        self.tasks.append(task)
        await self._spawn(task)
        return task

    async def start_all(self, specs: Sequence[TaskSpec]) -> list[ManagedTask]:
        """Start a batch concurrently; registry order follows *specs* order."""
        results = await asyncio.gather(*(self.start(spec) for spec in specs))
        return [task for task in results if task is not None]

    async def _spawn(self, task: ManagedTask) -> bool:
        spec = task.spec
        cmd = self._build_command(spec)
        cwd = os.path.join(self.root, spec.cwd)
        logger.debug("task_spawning", label=task.label, cmd=cmd, cwd=cwd)

        try:
            process = await self._create_process(cmd, cwd, self._env.for_task(spec))
        except SpawnError as exc:
            task.process = None
            task.state = TaskState.STOPPED
            self.output.task_notice(task.tag, task.color, f"Failed to start: {exc}", style="red", stderr=True)
            logger.error("task_spawn_failed", label=task.label, error=str(exc))
            self.events.emit(TaskEvent("spawn_error", task.index, task.label, message=str(exc)))
            return False

        task.process = process
        task.exit_code = None
        task.generation += 1
        self.hooks.register_process(process)

        if task.state in (TaskState.KILLING, TaskState.STOPPED):
            # A kill landed while we were spawning.
            await self._terminate(process.pid)
        elif task.state is not TaskState.RESTARTING:
            task.state = TaskState.RUNNING

        task.watcher = asyncio.get_running_loop().create_task(self._watch(task, process, task.generation))
        logger.debug("task_spawned", label=task.label, pid=process.pid)
        self.events.emit(TaskEvent("spawn", task.index, task.label, data={"pid": process.pid}))
        return True

    async def _create_process(
        self, cmd: list[str], cwd: str, env: dict[str, str]
    ) -> asyncio.subprocess.Process:
        try:
            return await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=env,
                start_new_session=True,
            )
        except FileNotFoundError as exc:
            raise SpawnError(f"'{cmd[0]}' not found. Install it or add it to PATH.", details={"cmd": cmd}) from exc
        except OSError as exc:
            raise SpawnError(str(exc), details={"cmd": cmd}) from exc

    # ------------------------------------------------------------------
    # Exit observation
    # ------------------------------------------------------------------

    async def _watch(self, task: ManagedTask, process: asyncio.subprocess.Process, generation: int) -> None:
        # task.tag is read per line: shortcuts are assigned after the first spawn.
        await asyncio.gather(
            pump_lines(process.stdout, lambda line: self.output.task_line(task.tag, task.color, line)),
            pump_lines(process.stderr, lambda line: self.output.task_line(task.tag, task.color, line, stderr=True)),
        )
        code = await process.wait()
        await self._on_exit(task, generation, code)

    async def _on_exit(self, task: ManagedTask, generation: int, code: int) -> None:
        if self.hooks.is_exiting():
            return
        if generation != task.generation:
            return  # a newer process already replaced this one
        if task.state.intentional:
            if task.state is TaskState.KILLING:
                task.exit_code = code
            return

        task.exit_code = code
        if code <= 0:
            # 0 = clean exit; negative = killed by a signal we did not send.
            task.state = TaskState.EXITED
            self.events.emit(TaskEvent("exit", task.index, task.label, data={"code": code}))
            logger.debug("task_exited", label=task.label, code=code)
            return

        self.output.task_notice(task.tag, task.color, f"Process exited with code {code}", style="red", stderr=True)
        self.events.emit(TaskEvent("fail", task.index, task.label, data={"code": code}))

        if self.config.watch and task.restarts < self.config.max_restarts:
            task.restarts += 1
            self.output.notice(
                f"Restarting process {task.name} ({task.restarts}/{self.config.max_restarts} times)",
                style="yellow",
            )
            self.events.emit(TaskEvent("auto_restart", task.index, task.label, data={"attempt": task.restarts}))
            await self._spawn(task)
            return

        task.state = TaskState.EXITED
        self.output.notice("❌ Run Failed", style="red", stderr=True)
        self.output.notice(f'Process "{task.label}" failed with exit code {code}', style="red", stderr=True)
        if self.hooks.request_exit is not None:
            await self.hooks.request_exit(1)

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    async def _terminate(self, pid: int | None) -> None:
        if pid is not None:
            await self._groups.terminate_group(
                pid,
                signal.SIGTERM,
                force_after=self.config.restart_grace_ms / 1000,
            )
        await asyncio.sleep(self.config.restart_settle_ms / 1000)

    async def restart(self, index: int) -> None:
        """Kill the task's group and respawn it in place (same index, label, args)."""
        task = self.get(index)
        if task is None or task.state is TaskState.RESTARTING:
            return

        task.state = TaskState.RESTARTING
        self.output.notice(f"  restarting {task.shortcut} {task.label}...")
        self.events.emit(TaskEvent("restart", task.index, task.label))

        await self._terminate(task.pid)
        if self.hooks.is_exiting() or task.state is not TaskState.RESTARTING:
            return  # shutdown began or a kill superseded the restart

        task.restarts = 0
        # A kill may land while the new process is spawning.
        if await self._spawn(task) and task.state is TaskState.RESTARTING:
            task.state = TaskState.RUNNING
            self.output.task_notice(task.tag, task.color, "↻ restarted", style="green")

    async def kill(self, index: int) -> bool:
        """Stop the task's group and leave its entry listed as stopped.

        Returns False (and signals nothing) when the task is already stopped.
        """
        task = self.get(index)
        if task is None:
            return False
        if task.stopped:
            self.output.notice(f"  {task.shortcut} {task.label} already stopped")
            return False

        task.state = TaskState.KILLING
        self.output.notice(f"  killing {task.shortcut} {task.label}...")
        self.events.emit(TaskEvent("kill", task.index, task.label))

        await self._terminate(task.pid)
        if task.state is TaskState.KILLING:
            task.state = TaskState.STOPPED
        self.output.task_notice(task.tag, task.color, "■ stopped", style="red")
        return True

    # ------------------------------------------------------------------
    # Input forwarding
    # ------------------------------------------------------------------

    def forward_input(self, task: ManagedTask | None, data: str) -> bool:
        if task is None or not task.stdin_writable():
            return False
        assert task.process is not None and task.process.stdin is not None
        try:
            task.process.stdin.write(data.encode("utf-8"))
        except (BrokenPipeError, ConnectionResetError):
            return False
        return True

    async def wait_idle(self) -> None:
        """Await every live watcher (used by tests and shutdown)."""
        watchers = [t.watcher for t in self.tasks if t.watcher is not None and not t.watcher.done()]
        if watchers:
            await asyncio.gather(*watchers, return_exceptions=True)
