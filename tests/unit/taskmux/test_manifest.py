"""Tests for manifest reading and workspace glob matching."""

from __future__ import annotations

from pathlib import Path

import pytest

from taskmux.resolver.manifest import (
    declared_tasks,
    find_manifest_dirs,
    matches_pattern,
    matches_workspace,
    read_manifest,
    workspace_patterns,
)
from tests.conftest import ManifestWriter


class TestReadManifest:
    def test_missing_returns_none(self, tmp_path: Path) -> None:
        assert read_manifest(tmp_path) is None

    def test_malformed_returns_none(self, tmp_path: Path) -> None:
        (tmp_path / "package.json").write_text("{not json", encoding="utf-8")
        assert read_manifest(tmp_path) is None

    def test_non_object_returns_none(self, tmp_path: Path) -> None:
        (tmp_path / "package.json").write_text("[1, 2]", encoding="utf-8")
        assert read_manifest(tmp_path) is None

    def test_reads_object(self, write_manifest: ManifestWriter) -> None:
        directory = write_manifest(name="root", scripts={"dev": "vite"})
        assert read_manifest(directory) == {"name": "root", "scripts": {"dev": "vite"}}


class TestDeclaredTasks:
    def test_preserves_requested_order(self) -> None:
        manifest = {"scripts": {"build": "tsc", "dev": "vite", "lint": "eslint"}}
        assert declared_tasks(manifest, ["lint", "dev", "test"]) == ["lint", "dev"]

    def test_no_scripts(self) -> None:
        assert declared_tasks({"name": "x"}, ["dev"]) == []
        assert declared_tasks(None, ["dev"]) == []

    def test_non_string_script_ignored(self) -> None:
        assert declared_tasks({"scripts": {"dev": None}}, ["dev"]) == []


class TestWorkspacePatterns:
    def test_array_form(self, write_manifest: ManifestWriter, tmp_path: Path) -> None:
        write_manifest(workspaces=["packages/*", "apps/*"])
        assert workspace_patterns(tmp_path) == ["packages/*", "apps/*"]

    def test_object_form(self, write_manifest: ManifestWriter, tmp_path: Path) -> None:
        write_manifest(workspaces={"packages": ["libs/**"]})
        assert workspace_patterns(tmp_path) == ["libs/**"]

    def test_pnpm_workspace_file_merged(self, write_manifest: ManifestWriter, tmp_path: Path) -> None:
        write_manifest(workspaces=["packages/*"])
        (tmp_path / "pnpm-workspace.yaml").write_text(
            "packages:\n  - packages/*\n  - tools/*\n  - '!tools/legacy'\n",
            encoding="utf-8",
        )
        assert workspace_patterns(tmp_path) == ["packages/*", "tools/*", "!tools/legacy"]

    def test_no_manifest(self, tmp_path: Path) -> None:
        assert workspace_patterns(tmp_path) == []


class TestFindManifestDirs:
    def test_sorted_parent_first_and_skips(self, write_manifest: ManifestWriter, tmp_path: Path) -> None:
        write_manifest()
        write_manifest("packages/b")
        write_manifest("packages/a")
        write_manifest("node_modules/dep")
        write_manifest(".cache/thing")

        found = [p.relative_to(tmp_path).as_posix() for p in find_manifest_dirs(tmp_path)]
        assert found == [".", "packages/a", "packages/b"]

    def test_depth_bound_counts_base(self, write_manifest: ManifestWriter, tmp_path: Path) -> None:
        write_manifest("a/b")
        write_manifest("a/b/c")

        found = [p.relative_to(tmp_path).as_posix() for p in find_manifest_dirs(tmp_path, max_depth=3)]
        assert found == ["a/b"]


class TestMatchesPattern:
    @pytest.mark.parametrize(
        ("path", "pattern", "expected"),
        [
            ("packages/a", "packages/*", True),
            ("packages/a/nested", "packages/*", False),
            ("packages/a/nested", "packages/**", True),
            ("packages", "packages/**", False),
            ("apps/web", "apps/web", True),
            ("apps/web2", "apps/web", False),
            ("./apps/web/", "apps/web", True),
            ("libs/ui-kit", "libs/ui-*", True),
            ("other/a", "packages/*", False),
        ],
    )
    def test_matches(self, path: str, pattern: str, expected: bool) -> None:
        assert matches_pattern(path, pattern) is expected

    def test_exclusion_wins(self) -> None:
        patterns = ["tools/*", "!tools/legacy"]
        assert matches_workspace("tools/cli", patterns)
        assert not matches_workspace("tools/legacy", patterns)

    def test_no_include_match(self) -> None:
        assert not matches_workspace("docs", ["packages/*"])
