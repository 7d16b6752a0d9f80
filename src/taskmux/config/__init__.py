"""Configuration loading for taskmux."""

from taskmux.config.loader import load_config, load_task_env
from taskmux.config.schema import TaskmuxConfig

__all__ = ["TaskmuxConfig", "load_config", "load_task_env"]
