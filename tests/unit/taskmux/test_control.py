"""Tests for the interactive control surface state machine."""

from __future__ import annotations

import asyncio

import pytest

from taskmux.control.surface import ControlSurface, Mode, print_hint, split_keys
from taskmux.process.models import ManagedTask, TaskSpec, TaskState
from tests.conftest import CapturedOutput


class FakeController:
    def __init__(self, shortcuts: list[str]) -> None:
        self.tasks = [
            ManagedTask(spec=TaskSpec(f"task{i}", label=f"label {sc}"), index=i, color="color(245)", shortcut=sc)
            for i, sc in enumerate(shortcuts)
        ]
        self.actions: list[tuple[str, int]] = []
        self.forwarded: list[tuple[str | None, str]] = []

    async def restart(self, index: int) -> None:
        self.actions.append(("restart", index))

    async def kill(self, index: int) -> bool:
        self.actions.append(("kill", index))
        return True

    def forward_input(self, task: ManagedTask | None, data: str) -> bool:
        self.forwarded.append((task.name if task else None, data))
        return task is not None


class InterruptRecorder:
    def __init__(self) -> None:
        self.calls = 0

    async def __call__(self) -> None:
        self.calls += 1


def make_surface(
    controller: FakeController, output: CapturedOutput, *, delay_ms: int = 30
) -> tuple[ControlSurface, InterruptRecorder]:
    interrupt = InterruptRecorder()
    surface = ControlSurface(
        controller,
        output=output,
        on_interrupt=interrupt,
        stdin_target=controller.tasks[-1] if controller.tasks else None,
        disambiguation_ms=delay_ms,
    )
    return surface, interrupt


class TestSplitKeys:
    def test_escape_sequences_are_single_keys(self) -> None:
        assert list(split_keys("a\x1b[A\x1bOPb\x1b")) == ["a", "\x1b[A", "\x1bOP", "b", "\x1b"]


class TestNormalMode:
    @pytest.mark.asyncio
    async def test_keys_forwarded_to_stdin_target(self, captured_output: CapturedOutput) -> None:
        controller = FakeController(["a", "w"])
        surface, _ = make_surface(controller, captured_output)

        surface.feed("rs\r")

        assert controller.forwarded == [("task1", "rs\r")]
        assert surface.mode is Mode.NORMAL

    @pytest.mark.asyncio
    async def test_reserved_keys_split_forwarded_runs(self, captured_output: CapturedOutput) -> None:
        controller = FakeController(["a", "w"])
        surface, _ = make_surface(controller, captured_output)

        surface.feed("x\x12")

        assert controller.forwarded == [("task1", "x")]
        assert surface.mode is Mode.RESTART

    @pytest.mark.asyncio
    async def test_ctrl_c_requests_exit(self, captured_output: CapturedOutput) -> None:
        controller = FakeController(["a"])
        surface, interrupt = make_surface(controller, captured_output)

        surface.feed("\x12\x03")
        await surface.drain()

        assert interrupt.calls == 1
        assert surface.mode is Mode.NORMAL
        assert controller.forwarded == []

    @pytest.mark.asyncio
    async def test_escape_in_normal_mode_is_forwarded(self, captured_output: CapturedOutput) -> None:
        controller = FakeController(["a"])
        surface, _ = make_surface(controller, captured_output)

        surface.feed("\x1b")

        assert controller.forwarded == [("task0", "\x1b")]


class TestSelectMode:
    @pytest.mark.asyncio
    async def test_entering_lists_tasks_with_stopped_marker(self, captured_output: CapturedOutput) -> None:
        controller = FakeController(["a", "w"])
        controller.tasks[1].state = TaskState.STOPPED
        surface, _ = make_surface(controller, captured_output)

        surface.feed("\x0b")

        assert surface.mode is Mode.KILL
        assert "kill which process?" in captured_output.out
        assert "  a label a\n" in captured_output.out
        assert "  w label w (stopped)\n" in captured_output.out

    @pytest.mark.asyncio
    async def test_exact_match_dispatches_immediately(self, captured_output: CapturedOutput) -> None:
        controller = FakeController(["a", "w"])
        surface, _ = make_surface(controller, captured_output, delay_ms=10_000)

        surface.feed("\x12")
        surface.feed("W")
        await surface.drain()

        assert controller.actions == [("restart", 1)]
        assert surface.mode is Mode.NORMAL
        assert not surface.timer_pending

    @pytest.mark.asyncio
    async def test_kill_dispatch(self, captured_output: CapturedOutput) -> None:
        controller = FakeController(["a", "w"])
        surface, _ = make_surface(controller, captured_output)

        surface.feed("\x0ba")
        await surface.drain()

        assert controller.actions == [("kill", 0)]

    @pytest.mark.asyncio
    async def test_non_prefix_letter_reports_no_match(self, captured_output: CapturedOutput) -> None:
        controller = FakeController(["a", "w"])
        surface, _ = make_surface(controller, captured_output)

        surface.feed("\x12z")

        assert 'no match for "z"' in captured_output.out
        assert surface.mode is Mode.NORMAL
        assert surface.buffer == ""
        assert controller.actions == []

    @pytest.mark.asyncio
    async def test_ambiguous_prefix_waits_then_reports_no_match(self, captured_output: CapturedOutput) -> None:
        controller = FakeController(["wa", "wb"])
        surface, _ = make_surface(controller, captured_output, delay_ms=20)

        surface.feed("\x12w")
        assert surface.mode is Mode.RESTART
        assert surface.timer_pending

        await asyncio.sleep(0.05)

        assert 'no match for "w"' in captured_output.out
        assert surface.mode is Mode.NORMAL
        assert controller.actions == []

    @pytest.mark.asyncio
    async def test_second_letter_resolves_before_timer(self, captured_output: CapturedOutput) -> None:
        controller = FakeController(["wa", "wb"])
        surface, _ = make_surface(controller, captured_output, delay_ms=20)

        surface.feed("\x12w")
        surface.feed("b")
        await asyncio.sleep(0.05)
        await surface.drain()

        assert controller.actions == [("restart", 1)]
        assert "no match" not in captured_output.out

    @pytest.mark.asyncio
    async def test_exact_match_wins_over_longer_shortcut(self, captured_output: CapturedOutput) -> None:
        controller = FakeController(["w", "wd"])
        surface, _ = make_surface(controller, captured_output)

        surface.feed("\x0bw")
        await surface.drain()

        assert controller.actions == [("kill", 0)]

    @pytest.mark.asyncio
    async def test_escape_cancels_and_clears_timer(self, captured_output: CapturedOutput) -> None:
        controller = FakeController(["wa", "wb"])
        surface, _ = make_surface(controller, captured_output, delay_ms=20)

        surface.feed("\x12w\x1b")
        await asyncio.sleep(0.05)

        assert "cancelled" in captured_output.out
        assert "no match" not in captured_output.out
        assert surface.mode is Mode.NORMAL
        assert not surface.timer_pending

    @pytest.mark.asyncio
    async def test_non_letter_cancels(self, captured_output: CapturedOutput) -> None:
        controller = FakeController(["a"])
        surface, _ = make_surface(controller, captured_output)

        surface.feed("\x0b1")

        assert "cancelled" in captured_output.out
        assert surface.mode is Mode.NORMAL
        assert controller.forwarded == []

    @pytest.mark.asyncio
    async def test_reentering_select_resets_buffer(self, captured_output: CapturedOutput) -> None:
        controller = FakeController(["wa", "wb"])
        surface, _ = make_surface(controller, captured_output, delay_ms=20)

        surface.feed("\x12w\x0b")

        assert surface.mode is Mode.KILL
        assert surface.buffer == ""
        assert not surface.timer_pending

    @pytest.mark.asyncio
    async def test_clear_screen_keeps_mode(self, captured_output: CapturedOutput) -> None:
        controller = FakeController(["a"])
        surface, _ = make_surface(controller, captured_output)

        surface.feed("\x12\x0c")

        assert surface.mode is Mode.RESTART


def test_hint_printed_only_with_tasks(captured_output: CapturedOutput) -> None:
    print_hint(captured_output, [])
    assert captured_output.out == ""
    print_hint(captured_output, FakeController(["a"]).tasks)
    assert "ctrl+r restart · ctrl+k kill · ctrl+l clear · ctrl+c exit" in captured_output.out
