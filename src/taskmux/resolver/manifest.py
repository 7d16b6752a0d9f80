"""Manifest reading and workspace discovery."""

from __future__ import annotations

import json
from collections.abc import Iterable, Sequence
from fnmatch import fnmatchcase
from pathlib import Path, PurePosixPath
from typing import Any

import yaml

from taskmux.utils.logger import get_logger

logger = get_logger(__name__)

PNPM_WORKSPACE_FILE = "pnpm-workspace.yaml"


def read_manifest(directory: str | Path, manifest: str = "package.json") -> dict[str, Any] | None:
    """Parse ``<directory>/<manifest>``; unreadable or malformed -> None."""
    path = Path(directory) / manifest
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError) as exc:
        logger.debug("manifest_unreadable", path=str(path), error=str(exc))
        return None
    return data if isinstance(data, dict) else None


def declared_tasks(manifest: dict[str, Any] | None, names: Iterable[str]) -> list[str]:
    """Names from *names* that the manifest declares as scripts, in *names* order."""
    if not manifest:
        return []
    scripts = manifest.get("scripts")
    if not isinstance(scripts, dict):
        return []
    return [name for name in names if isinstance(scripts.get(name), str)]


def workspace_patterns(root: str | Path, manifest: str = "package.json") -> list[str]:
    """Workspace globs from the root manifest and ``pnpm-workspace.yaml``."""
    patterns: list[str] = []

    data = read_manifest(root, manifest)
    if data:
        workspaces = data.get("workspaces")
        if isinstance(workspaces, dict):
            workspaces = workspaces.get("packages")
        if isinstance(workspaces, list):
            patterns.extend(p for p in workspaces if isinstance(p, str))

    pnpm_path = Path(root) / PNPM_WORKSPACE_FILE
    if pnpm_path.is_file():
        try:
            raw = yaml.safe_load(pnpm_path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            logger.debug("pnpm_workspace_unreadable", path=str(pnpm_path), error=str(exc))
            raw = None
        if isinstance(raw, dict) and isinstance(raw.get("packages"), list):
            patterns.extend(p for p in raw["packages"] if isinstance(p, str) and p not in patterns)

    return patterns


def find_manifest_dirs(
    base: str | Path,
    manifest: str = "package.json",
    *,
    max_depth: int = 3,
    skip_dirs: Sequence[str] = ("node_modules",),
) -> list[Path]:
    """Directories under *base* (inclusive) that hold a manifest.

    Depth-first, parent before children, siblings sorted by name. Hidden
    directories and *skip_dirs* are never entered. ``max_depth`` counts
    levels including *base* itself.
    """
    base_path = Path(base)
    if max_depth <= 0:
        return []

    results: list[Path] = []
    if (base_path / manifest).is_file():
        results.append(base_path)

    try:
        entries = sorted(base_path.iterdir(), key=lambda p: p.name)
    except OSError as exc:
        logger.debug("scan_failed", path=str(base_path), error=str(exc))
        return results

    for entry in entries:
        if entry.name.startswith(".") or entry.name in skip_dirs:
            continue
        if not entry.is_dir() or entry.is_symlink():
            continue
        results.extend(find_manifest_dirs(entry, manifest, max_depth=max_depth - 1, skip_dirs=skip_dirs))
    return results


def normalize_path(path: str) -> str:
    normalized = path.replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized.rstrip("/")


def matches_pattern(path: str, pattern: str) -> bool:
    """Match a root-relative directory against one workspace glob.

    ``dir`` matches exactly, ``dir/*`` one level below ``dir`` and
    ``dir/**`` any depth below it. Other segments use fnmatch rules.
    """
    path_parts = PurePosixPath(normalize_path(path)).parts
    pattern_parts = PurePosixPath(normalize_path(pattern)).parts
    return _match_parts(path_parts, pattern_parts)


def _match_parts(path: tuple[str, ...], pattern: tuple[str, ...]) -> bool:
    if not pattern:
        return not path
    head, rest = pattern[0], pattern[1:]
    if head == "**":
        if not rest:
            return len(path) >= 1
        return any(_match_parts(path[i:], rest) for i in range(len(path) + 1))
    if not path or not fnmatchcase(path[0], head):
        return False
    return _match_parts(path[1:], rest)


def matches_workspace(path: str, patterns: Sequence[str]) -> bool:
    """True when *path* matches an include pattern and no ``!`` exclusion."""
    included = False
    for pattern in patterns:
        if pattern.startswith("!"):
            if matches_pattern(path, pattern[1:]):
                return False
        elif matches_pattern(path, pattern):
            included = True
    return included
