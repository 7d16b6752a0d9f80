"""Raw terminal mode and a non-blocking stdin reader for the event loop."""

from __future__ import annotations

import asyncio
import codecs
import os
import sys
import termios
from collections.abc import Callable
from typing import TextIO

from taskmux.utils.logger import get_logger

logger = get_logger(__name__)

# termios attribute list indices
_IFLAG = 0
_LFLAG = 3


def supports_raw_input(stream: TextIO | None = None) -> bool:
    stream = stream or sys.stdin
    try:
        return stream.isatty()
    except (AttributeError, ValueError):
        return False


class RawTerminal:
    """Puts the controlling terminal in raw input mode.

    Signals (ISIG) and line editing are disabled so Ctrl-C, Ctrl-R and
    friends arrive as plain bytes. Output post-processing (OPOST) is kept,
    so ``\\n`` still moves to the start of the next line.
    """

    def __init__(self, fd: int | None = None) -> None:
        self.fd = sys.stdin.fileno() if fd is None else fd
        self._saved: list | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def active(self) -> bool:
        return self._saved is not None

    def enter(self) -> None:
        if self._saved is not None:
            return
        saved = termios.tcgetattr(self.fd)
        attrs = termios.tcgetattr(self.fd)
        attrs[_IFLAG] &= ~(termios.BRKINT | termios.ICRNL | termios.INPCK | termios.ISTRIP | termios.IXON)
        attrs[_LFLAG] &= ~(termios.ECHO | termios.ICANON | termios.IEXTEN | termios.ISIG)
        termios.tcsetattr(self.fd, termios.TCSANOW, attrs)
        self._saved = saved
        logger.debug("terminal_raw_enabled", fd=self.fd)

    def restore(self) -> None:
        """Detach the reader and put the saved attributes back. Safe to repeat."""
        self.detach()
        if self._saved is None:
            return
        try:
            termios.tcsetattr(self.fd, termios.TCSADRAIN, self._saved)
        except termios.error as exc:
            logger.debug("terminal_restore_failed", error=str(exc))
        self._saved = None
        logger.debug("terminal_restored", fd=self.fd)

    def attach(self, on_data: Callable[[str], None], loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Deliver decoded keystroke chunks to *on_data* from the event loop."""
        self._loop = loop or asyncio.get_running_loop()
        self._loop.add_reader(self.fd, self._on_readable, on_data)

    def detach(self) -> None:
        if self._loop is not None and not self._loop.is_closed():
            self._loop.remove_reader(self.fd)
        self._loop = None

    def _on_readable(self, on_data: Callable[[str], None]) -> None:
        try:
            data = os.read(self.fd, 1024)
        except BlockingIOError:
            return
        except OSError as exc:
            logger.debug("terminal_read_failed", error=str(exc))
            self.detach()
            return
        if not data:
            self.detach()
            return
        text = self._decoder.decode(data)
        if text:
            on_data(text)

    def __enter__(self) -> RawTerminal:
        self.enter()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.restore()
