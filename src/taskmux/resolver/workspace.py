"""Task resolution: which directories run which requested task.

Root tasks come first in the caller's order; workspace tasks follow in
directory enumeration order, then requested-name order within a
directory. Names already running in a parent session (inherited
``TASKMUX_RUNNING_TASKS``) are dropped to prevent recursive runs.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from taskmux.config.schema import ENV_RUNNING_TASKS, ResolverConfig
from taskmux.errors import ResolutionError
from taskmux.process.models import TaskSpec
from taskmux.resolver.manifest import (
    declared_tasks,
    find_manifest_dirs,
    matches_workspace,
    read_manifest,
    workspace_patterns,
)
from taskmux.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class WorkspaceEntry:
    directory: str
    package_name: str
    tasks: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ResolutionPlan:
    requested: list[str]
    root_tasks: list[TaskSpec] = field(default_factory=list)
    workspace_tasks: list[TaskSpec] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def tasks(self) -> list[TaskSpec]:
        return [*self.root_tasks, *self.workspace_tasks]

    def __len__(self) -> int:
        return len(self.root_tasks) + len(self.workspace_tasks)


def parent_running_tasks(environ: Mapping[str, str]) -> list[str]:
    raw = environ.get(ENV_RUNNING_TASKS, "")
    return [name for name in raw.split(",") if name]


def find_workspace_directories(root: str | Path, config: ResolverConfig | None = None) -> list[str]:
    """Root-relative POSIX paths of manifest directories matching a workspace glob."""
    cfg = config or ResolverConfig()
    root_path = Path(root)
    patterns = workspace_patterns(root_path, cfg.manifest)
    if not patterns:
        return []

    found = find_manifest_dirs(
        root_path,
        cfg.manifest,
        max_depth=cfg.max_depth,
        skip_dirs=cfg.skip_dirs,
    )
    result: list[str] = []
    for directory in found:
        relative = directory.relative_to(root_path).as_posix()
        if relative in ("", "."):
            continue
        if matches_workspace(relative, patterns):
            result.append(relative)
    return result


def map_workspaces_to_tasks(
    root: str | Path,
    names: Sequence[str],
    config: ResolverConfig | None = None,
) -> list[WorkspaceEntry]:
    cfg = config or ResolverConfig()
    entries: list[WorkspaceEntry] = []
    for directory in find_workspace_directories(root, cfg):
        manifest = read_manifest(Path(root) / directory, cfg.manifest)
        available = declared_tasks(manifest, names)
        if not available:
            continue
        package_name = manifest.get("name") if manifest else None
        entries.append(
            WorkspaceEntry(
                directory=directory,
                package_name=package_name if isinstance(package_name, str) and package_name else directory,
                tasks=available,
            )
        )
    return entries


def resolve_tasks(
    root: str | Path,
    names: Sequence[str],
    *,
    config: ResolverConfig | None = None,
    include_root: bool | None = None,
    forward_args: Sequence[str] = (),
    flags_last: bool = False,
    parent_running: Sequence[str] = (),
) -> ResolutionPlan:
    """Build the spawn plan for *names*.

    ``flags_last`` forwards *forward_args* only to tasks named like the
    last requested name; otherwise every task receives them.
    """
    cfg = config or ResolverConfig()
    use_root = cfg.include_root if include_root is None else include_root
    requested = list(dict.fromkeys(names))
    if not requested:
        raise ResolutionError("Please provide at least one task name to run", requested=[])

    last_name = requested[-1]
    blocked = set(parent_running)
    plan = ResolutionPlan(requested=requested, skipped=[n for n in requested if n in blocked])
    runnable = [n for n in requested if n not in blocked]

    def _args_for(name: str) -> tuple[str, ...]:
        return tuple(forward_args) if not flags_last or name == last_name else ()

    if use_root:
        root_manifest = read_manifest(root, cfg.manifest)
        for name in declared_tasks(root_manifest, runnable):
            plan.root_tasks.append(TaskSpec(name=name, cwd=".", label=name, extra_args=_args_for(name)))

    for entry in map_workspaces_to_tasks(root, runnable, cfg):
        for name in entry.tasks:
            plan.workspace_tasks.append(
                TaskSpec(
                    name=name,
                    cwd=entry.directory,
                    label=f"{entry.package_name} {name}",
                    extra_args=_args_for(name),
                )
            )

    logger.debug(
        "tasks_resolved",
        requested=requested,
        root=[t.name for t in plan.root_tasks],
        workspace=[t.label for t in plan.workspace_tasks],
        skipped=plan.skipped,
    )
    return plan
