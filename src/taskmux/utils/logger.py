"""Supervisor diagnostics via structlog.

Task output owns stdout and the prefixed stderr lines, so supervisor logs
stay quiet unless ``--debug`` is given. Lines carry no timestamp and use the
module path below ``taskmux`` as the logger name, which keeps them short next
to interleaved task output.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import MutableMapping
from typing import Any, TextIO

import structlog

ROOT_LOGGER = "taskmux"


def _short_logger_name(
    _logger: Any, _method: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    name = event_dict.get("logger")
    if isinstance(name, str) and name.startswith(ROOT_LOGGER + "."):
        event_dict["logger"] = name[len(ROOT_LOGGER) + 1 :]
    return event_dict


def setup_logging(*, debug: bool = False, stream: TextIO | None = None) -> None:
    """Route supervisor logs to *stream* (stderr by default).

    Without *debug* only warnings and errors get through.
    """
    stream = stream or sys.stderr
    logging.basicConfig(
        format="%(message)s",
        stream=stream,
        level=logging.DEBUG if debug else logging.WARNING,
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            _short_logger_name,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer(colors=_isatty(stream), pad_event=0),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _isatty(stream: TextIO) -> bool:
    try:
        return stream.isatty()
    except (AttributeError, ValueError):
        return False


def get_logger(name: str = ROOT_LOGGER) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
