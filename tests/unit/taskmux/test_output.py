"""Tests for line buffering and output multiplexing."""

from __future__ import annotations

import asyncio

import pytest

from taskmux.process.output import PALETTE, ColorWheel, LineBuffer, is_echo_line, pump_lines, strip_ansi
from tests.conftest import CapturedOutput


class TestLineBuffer:
    def test_partial_lines_held_until_newline(self) -> None:
        buf = LineBuffer()
        assert list(buf.feed(b"hel")) == []
        assert list(buf.feed(b"lo\nwor")) == ["hello"]
        assert list(buf.feed(b"ld\n")) == ["world"]

    def test_crlf_terminators(self) -> None:
        buf = LineBuffer()
        assert list(buf.feed(b"a\r\nb\r\n")) == ["a", "b"]

    def test_multibyte_split_across_chunks(self) -> None:
        buf = LineBuffer()
        data = "héllo ✓\n".encode()
        assert list(buf.feed(data[:2])) == []
        assert list(buf.feed(data[2:])) == ["héllo ✓"]

    def test_flush_emits_trailing_partial(self) -> None:
        buf = LineBuffer()
        list(buf.feed(b"done\nno newline"))
        assert list(buf.flush()) == ["no newline"]
        assert list(buf.flush()) == []


class TestEchoFilter:
    def test_echo_detected_through_ansi(self) -> None:
        assert is_echo_line("$ vite --port 3000")
        assert is_echo_line("\x1b[2m$ tsc -w\x1b[0m")
        assert not is_echo_line("costs $ 5")

    def test_strip_ansi(self) -> None:
        assert strip_ansi("\x1b[38;5;245mhi\x1b[0m") == "hi"


class TestColorWheel:
    def test_round_robin(self) -> None:
        wheel = ColorWheel()
        colors = [wheel.next() for _ in range(len(PALETTE) + 1)]
        assert colors[: len(PALETTE)] == list(PALETTE)
        assert colors[-1] == PALETTE[0]


class TestOutputMux:
    def test_prefixed_lines_routed_by_stream(self, captured_output: CapturedOutput) -> None:
        captured_output.task_line("w web dev", PALETTE[0], "ready")
        captured_output.task_line("w web dev", PALETTE[0], "oops", stderr=True)
        assert captured_output.out == "w web dev ready\n"
        assert captured_output.err == "w web dev oops\n"

    def test_echo_and_empty_lines_dropped(self, captured_output: CapturedOutput) -> None:
        captured_output.task_line("1 dev", PALETTE[0], "$ vite")
        captured_output.task_line("1 dev", PALETTE[0], "")
        assert captured_output.out == ""

    def test_task_lines_dropped_while_exiting(self, captured_output: CapturedOutput) -> None:
        captured_output.bind_exiting(lambda: True)
        captured_output.task_line("1 dev", PALETTE[0], "late line")
        assert captured_output.out == ""

    def test_mute_silences_notices(self, captured_output: CapturedOutput) -> None:
        captured_output.notice("before")
        captured_output.mute()
        captured_output.notice("after")
        captured_output.task_notice("1 dev", PALETTE[0], "stopped")
        assert captured_output.out == "before\n"

    def test_ansi_in_task_output_is_preserved_as_text(self, captured_output: CapturedOutput) -> None:
        captured_output.task_line("a api", PALETTE[1], "\x1b[32mok\x1b[0m")
        assert captured_output.out == "a api ok\n"


class TestPumpLines:
    @pytest.mark.asyncio
    async def test_reads_until_eof(self) -> None:
        reader = asyncio.StreamReader()
        reader.feed_data(b"one\ntw")
        reader.feed_data(b"o\nthree")
        reader.feed_eof()
        lines: list[str] = []
        await pump_lines(reader, lines.append, chunk_size=4)
        assert lines == ["one", "two", "three"]

    @pytest.mark.asyncio
    async def test_none_stream(self) -> None:
        await pump_lines(None, lambda _line: None)
