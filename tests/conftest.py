"""Global test fixtures for taskmux."""

from __future__ import annotations

import io
import json
import logging
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
from rich.console import Console

from taskmux.coordinator.exit import ExitCoordinator
from taskmux.process.output import OutputMux

ManifestWriter = Callable[..., Path]


@pytest.fixture(autouse=True)
def reset_exit_coordinator() -> Iterator[None]:
    """Release the one-per-process coordinator slot and undo logging.disable."""
    ExitCoordinator._active = False
    yield
    ExitCoordinator._active = False
    logging.disable(logging.NOTSET)


@pytest.fixture
def write_manifest(tmp_path: Path) -> ManifestWriter:
    """Write ``package.json`` under *tmp_path*/<rel>; returns the directory."""

    def _write(rel: str = ".", *, name: str | None = None, scripts: dict[str, str] | None = None, **extra: Any) -> Path:
        directory = tmp_path / rel
        directory.mkdir(parents=True, exist_ok=True)
        data: dict[str, Any] = dict(extra)
        if name is not None:
            data["name"] = name
        if scripts is not None:
            data["scripts"] = scripts
        (directory / "package.json").write_text(json.dumps(data), encoding="utf-8")
        return directory

    return _write


class CapturedOutput(OutputMux):
    """OutputMux writing to in-memory buffers."""

    def __init__(self) -> None:
        self.out_buffer = io.StringIO()
        self.err_buffer = io.StringIO()
        super().__init__(
            Console(file=self.out_buffer, width=200, color_system=None, highlight=False, soft_wrap=True),
            Console(file=self.err_buffer, width=200, color_system=None, highlight=False, soft_wrap=True),
        )

    @property
    def out(self) -> str:
        return self.out_buffer.getvalue()

    @property
    def err(self) -> str:
        return self.err_buffer.getvalue()


@pytest.fixture
def captured_output() -> CapturedOutput:
    return CapturedOutput()
