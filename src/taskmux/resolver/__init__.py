"""Task resolution from project manifests."""

from taskmux.resolver.workspace import ResolutionPlan, parent_running_tasks, resolve_tasks

__all__ = ["ResolutionPlan", "parent_running_tasks", "resolve_tasks"]
