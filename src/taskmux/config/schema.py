"""Configuration schema for taskmux YAML files."""

from __future__ import annotations

from dataclasses import dataclass, field

PROJECT_CONFIG_FILE = ".taskmux.yaml"

# Environment markers shared with spawned tasks.
ENV_RUNNING_TASKS = "TASKMUX_RUNNING_TASKS"
ENV_PARENT_TASK = "TASKMUX_PARENT_TASK"
ENV_SILENT = "TASKMUX_SILENT"
ENV_FORCE_COLOR = "FORCE_COLOR"

# Environment overrides for the supervisor itself.
ENV_RUNNER = "TASKMUX_RUNNER"
ENV_WATCH = "TASKMUX_WATCH"
ENV_DEBUG = "TASKMUX_DEBUG"

KNOWN_RUNNERS = ("bun", "npm", "pnpm", "yarn")


@dataclass(slots=True)
class RunnerConfig:
    command: str = "bun"
    silent: bool = True


@dataclass(slots=True)
class ResolverConfig:
    manifest: str = "package.json"
    max_depth: int = 3
    skip_dirs: list[str] = field(default_factory=lambda: ["node_modules"])
    include_root: bool = True


@dataclass(slots=True)
class SupervisorConfig:
    watch: bool = False
    max_restarts: int = 3
    restart_grace_ms: int = 200  # SIGTERM -> SIGKILL on restart/kill
    restart_settle_ms: int = 100


@dataclass(slots=True)
class ShutdownConfig:
    interrupt_grace_ms: int = 80
    terminate_grace_ms: int = 200
    force_kill_delay_ms: int = 100  # follow-up SIGKILL scheduled on interrupt


@dataclass(slots=True)
class ControlConfig:
    disambiguation_ms: int = 500
    stdin_task: str | None = None


@dataclass(slots=True)
class TaskmuxConfig:
    version: int = 1
    env_file: str = ".env"
    strict: bool = False
    debug: bool = False
    runner: RunnerConfig = field(default_factory=RunnerConfig)
    resolver: ResolverConfig = field(default_factory=ResolverConfig)
    supervisor: SupervisorConfig = field(default_factory=SupervisorConfig)
    shutdown: ShutdownConfig = field(default_factory=ShutdownConfig)
    control: ControlConfig = field(default_factory=ControlConfig)
