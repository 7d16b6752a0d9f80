"""Output multiplexing: line buffering, prefixing and colour assignment."""

from __future__ import annotations

import asyncio
import codecs
import re
from collections.abc import Callable, Iterator

from rich.console import Console
from rich.text import Text

# 256-colour greys, assigned round-robin at spawn time.
PALETTE: tuple[str, ...] = (
    "color(245)",
    "color(240)",
    "color(250)",
    "color(243)",
    "color(248)",
    "color(238)",
    "color(252)",
)

_ANSI_PATTERN = re.compile(r"\x1b\[[0-9;]*m")

# Runner echo of the command it is about to execute.
ECHO_MARKER = "$ "


def strip_ansi(text: str) -> str:
    return _ANSI_PATTERN.sub("", text)


def is_echo_line(line: str) -> bool:
    return strip_ansi(line).startswith(ECHO_MARKER)


class ColorWheel:
    """Round-robin colour picker."""

    def __init__(self, palette: tuple[str, ...] = PALETTE) -> None:
        self._palette = palette
        self._next = 0

    def next(self) -> str:
        color = self._palette[self._next % len(self._palette)]
        self._next += 1
        return color

    def for_index(self, index: int) -> str:
        return self._palette[index % len(self._palette)]


class LineBuffer:
    """Accumulates decoded chunks and yields complete lines only."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    def feed(self, chunk: bytes) -> Iterator[str]:
        self._pending += self._decoder.decode(chunk)
        while True:
            newline = self._pending.find("\n")
            if newline < 0:
                return
            line, self._pending = self._pending[:newline], self._pending[newline + 1:]
            yield line.rstrip("\r")

    def flush(self) -> Iterator[str]:
        """Emit any trailing partial line once the stream has ended."""
        self._pending += self._decoder.decode(b"", final=True)
        if self._pending:
            line, self._pending = self._pending, ""
            yield line.rstrip("\r")


async def pump_lines(
    stream: asyncio.StreamReader | None,
    on_line: Callable[[str], None],
    *,
    chunk_size: int = 4096,
) -> None:
    """Read *stream* incrementally until EOF, calling *on_line* per full line."""
    if stream is None:
        return
    buffer = LineBuffer()
    while True:
        chunk = await stream.read(chunk_size)
        if not chunk:
            break
        for line in buffer.feed(chunk):
            on_line(line)
    for line in buffer.flush():
        on_line(line)


class OutputMux:
    """Writes prefixed task lines and operator notices to the terminal.

    Task lines are dropped once the session is exiting; notices are
    dropped once ``mute()`` has been called (interrupt shutdown).
    """

    def __init__(
        self,
        stdout: Console | None = None,
        stderr: Console | None = None,
        *,
        is_exiting: Callable[[], bool] | None = None,
    ) -> None:
        self.stdout = stdout or Console(highlight=False, soft_wrap=True)
        self.stderr = stderr or Console(stderr=True, highlight=False, soft_wrap=True)
        self._is_exiting = is_exiting or (lambda: False)
        self.muted = False

    def bind_exiting(self, is_exiting: Callable[[], bool]) -> None:
        self._is_exiting = is_exiting

    def mute(self) -> None:
        self.muted = True

    def prefix(self, tag: str, color: str) -> Text:
        return Text(tag, style=color)

    def task_line(self, tag: str, color: str, line: str, *, stderr: bool = False) -> None:
        if self._is_exiting() or not line or is_echo_line(line):
            return
        text = Text.assemble(self.prefix(tag, color), " ", Text.from_ansi(line))
        (self.stderr if stderr else self.stdout).print(text)

    def task_notice(self, tag: str, color: str, message: str, *, style: str = "", stderr: bool = False) -> None:
        if self.muted:
            return
        text = Text.assemble(self.prefix(tag, color), " ", Text(message, style=style))
        (self.stderr if stderr else self.stdout).print(text)

    def notice(self, message: str, *, style: str = "dim", stderr: bool = False) -> None:
        if self.muted:
            return
        (self.stderr if stderr else self.stdout).print(Text(message, style=style))

    def blank(self) -> None:
        if not self.muted:
            self.stdout.print()

    def print(self, text: Text) -> None:
        if not self.muted:
            self.stdout.print(text)

    def clear_screen(self) -> None:
        self.stdout.clear()
