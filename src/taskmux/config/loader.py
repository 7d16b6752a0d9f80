"""YAML config loader for taskmux."""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from dotenv import dotenv_values

from taskmux.config.schema import (
    ENV_DEBUG,
    ENV_RUNNER,
    ENV_WATCH,
    KNOWN_RUNNERS,
    PROJECT_CONFIG_FILE,
    ControlConfig,
    ResolverConfig,
    RunnerConfig,
    ShutdownConfig,
    SupervisorConfig,
    TaskmuxConfig,
)
from taskmux.errors import ConfigurationError
from taskmux.utils.logger import get_logger

logger = get_logger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}


def load_config(
    root: str | Path = ".",
    *,
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> TaskmuxConfig:
    """Load configuration with priority: env vars > project file > defaults.

    CLI flags are applied on top by the caller.
    """
    config_path = Path(path) if path else Path(root) / PROJECT_CONFIG_FILE
    if path and not config_path.exists():
        raise ConfigurationError(f"Config file not found: {config_path}")

    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) if config_path.exists() else {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {exc}") from exc
    if not isinstance(raw, dict):
        raw = {}

    runner_raw = raw.get("runner", {}) if isinstance(raw.get("runner"), dict) else {}
    resolver_raw = raw.get("resolver", {}) if isinstance(raw.get("resolver"), dict) else {}
    supervisor_raw = raw.get("supervisor", {}) if isinstance(raw.get("supervisor"), dict) else {}
    shutdown_raw = raw.get("shutdown", {}) if isinstance(raw.get("shutdown"), dict) else {}
    control_raw = raw.get("control", {}) if isinstance(raw.get("control"), dict) else {}

    # Shorthand: ``runner: pnpm``
    if isinstance(raw.get("runner"), str):
        runner_raw = {"command": raw["runner"]}

    config = TaskmuxConfig(
        version=int(raw.get("version", 1)),
        env_file=str(raw.get("env_file", ".env")),
        strict=bool(raw.get("strict", False)),
        debug=bool(raw.get("debug", False)),
        runner=RunnerConfig(**_pick(runner_raw, RunnerConfig)),
        resolver=ResolverConfig(**_pick(resolver_raw, ResolverConfig)),
        supervisor=SupervisorConfig(**_pick(supervisor_raw, SupervisorConfig)),
        shutdown=ShutdownConfig(**_pick(shutdown_raw, ShutdownConfig)),
        control=ControlConfig(**_pick(control_raw, ControlConfig)),
    )

    _apply_env(config, os.environ if environ is None else environ)
    validate_config(config)
    return config


def validate_config(config: TaskmuxConfig) -> None:
    if config.supervisor.max_restarts < 0:
        raise ConfigurationError("supervisor.max_restarts must be >= 0")
    if config.resolver.max_depth < 1:
        raise ConfigurationError("resolver.max_depth must be >= 1")
    if config.control.disambiguation_ms <= 0:
        raise ConfigurationError("control.disambiguation_ms must be > 0")
    if not config.runner.command.strip():
        raise ConfigurationError("runner.command must not be empty")
    if config.runner.command not in KNOWN_RUNNERS:
        logger.debug("unknown_runner", runner=config.runner.command)


def load_task_env(root: str | Path, env_file: str) -> dict[str, str]:
    """Read the project's env file for spawned tasks; missing file -> ``{}``."""
    if not env_file:
        return {}
    env_path = Path(root) / env_file
    if not env_path.is_file():
        return {}
    return {k: v for k, v in dotenv_values(env_path).items() if v is not None}


def _apply_env(config: TaskmuxConfig, environ: Mapping[str, str]) -> None:
    if runner := environ.get(ENV_RUNNER):
        config.runner.command = runner
    if environ.get(ENV_WATCH, "").lower() in _TRUTHY:
        config.supervisor.watch = True
    if environ.get(ENV_DEBUG, "").lower() in _TRUTHY:
        config.debug = True


def _pick(raw: dict[str, Any], model_type: type[Any]) -> dict[str, Any]:
    allowed = set(model_type.__dataclass_fields__.keys())
    return {k: v for k, v in raw.items() if k in allowed}
