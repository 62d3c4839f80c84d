"""Tests for the sysmon-trace application."""

import logging

import pytest
from conftest import FakeDirectory, emitting

from sysmon_trace.app import (
    ProcessTable,
    SyscallPanel,
    SysmonTraceApp,
    configure_logging,
    key_to_event,
)
from sysmon_trace.config import Config
from sysmon_trace.machine import StateView, create_machine
from sysmon_trace.models import EventKind, InputEvent, Mode
from sysmon_trace.trace import TraceSession

SELECTION = StateView(mode=Mode.SELECTION)
MONITORING = StateView(mode=Mode.MONITORING, target_pid=1)
FILTERING = StateView(mode=Mode.MONITORING, target_pid=1, filter_active=True)


class TestKeyToEvent:
    """Tests for the key mapping."""

    def test_special_keys_everywhere(self):
        """Test navigation keys map the same on every screen."""
        for view in (SELECTION, MONITORING, FILTERING):
            assert key_to_event(view, "enter", "\r") == InputEvent(EventKind.ENTER)
            assert key_to_event(view, "escape", "\x1b") == InputEvent(EventKind.ESCAPE)
            assert key_to_event(view, "backspace", "\x08") == InputEvent(EventKind.BACKSPACE)
            assert key_to_event(view, "up", None) == InputEvent(EventKind.UP)
            assert key_to_event(view, "down", None) == InputEvent(EventKind.DOWN)

    def test_selection_keys(self):
        """Test q quits and other characters filter on the selection screen."""
        assert key_to_event(SELECTION, "q", "q") == InputEvent(EventKind.QUIT)
        assert key_to_event(SELECTION, "b", "b") == InputEvent.typed("b")
        assert key_to_event(SELECTION, "space", " ") == InputEvent.typed(" ")
        assert key_to_event(SELECTION, "f1", None) is None

    def test_monitoring_commands_left_to_bindings(self):
        """Test command letters are not mapped while monitoring."""
        for char in "qbkfsx":
            assert key_to_event(MONITORING, char, char) is None

    def test_filter_keys_are_text(self):
        """Test command letters become text while filtering."""
        for char in "qbkfs":
            assert key_to_event(FILTERING, char, char) == InputEvent.typed(char)


def build_app(records, *lines: str, killer=None) -> SysmonTraceApp:
    config = Config(tick_rate=0.05)

    def factory(pid: int) -> TraceSession:
        return TraceSession(pid, emitting(*lines))

    machine = create_machine(
        config,
        directory=FakeDirectory(records),
        session_factory=factory,
        killer=killer or (lambda pid: None),
    )
    return SysmonTraceApp(config, machine)


async def wait_until(pilot, predicate, attempts: int = 100) -> bool:
    for _ in range(attempts):
        if predicate():
            return True
        await pilot.pause(0.05)
    return predicate()


@pytest.mark.asyncio
async def test_app_creation(records):
    """Test SysmonTraceApp can be instantiated."""
    app = build_app(records)
    assert app.title == "sysmon-trace"
    assert app.sub_title == "Live syscall monitor"
    assert app.machine.state.mode is Mode.SELECTION


@pytest.mark.asyncio
async def test_app_compose(records):
    """Test the app composes its widgets and lists processes."""
    app = build_app(records)
    async with app.run_test() as pilot:
        table = pilot.app.query_one("#process-table")
        assert await wait_until(pilot, lambda: table.row_count == len(records))
        assert pilot.app.query_one("#header") is not None
        assert pilot.app.query_one(ProcessTable).display is True
        assert pilot.app.query_one(SyscallPanel).display is False


@pytest.mark.asyncio
async def test_app_quit_key(records):
    """Test that 'q' on the selection screen quits."""
    app = build_app(records)
    async with app.run_test() as pilot:
        await pilot.press("q")
        assert app.machine.state.should_exit is True


@pytest.mark.asyncio
async def test_typing_filters_processes(records):
    """Test typed characters narrow the process table."""
    app = build_app(records)
    async with app.run_test() as pilot:
        await pilot.press("b", "a", "s")
        await pilot.pause()

        assert app.machine.state.selection.filter_text == "bas"
        assert pilot.app.query_one("#process-table").row_count == 1

        await pilot.press("backspace", "backspace", "backspace")
        await pilot.pause()
        assert pilot.app.query_one("#process-table").row_count == len(records)


@pytest.mark.asyncio
async def test_monitor_filter_and_back(records):
    """Test selecting a process, filtering its syscalls and going back."""
    app = build_app(records, "read(0) = 1", "write(1) = 1", "openat(AT_FDCWD) = 3")
    async with app.run_test() as pilot:
        await pilot.press("down", "enter")
        assert app.machine.state.mode is Mode.MONITORING
        assert app.machine.state.monitoring.target.pid == records[1].pid

        assert await wait_until(pilot, lambda: len(app.machine.view().syscalls) == 3)
        assert pilot.app.query_one(SyscallPanel).display is True

        await pilot.press("f", "r", "d")
        view = app.machine.view()
        assert view.filter_active is True
        assert view.shown_syscalls == ("read",)

        await pilot.press("enter")
        assert app.machine.view().filter_active is False

        await pilot.press("b")
        await pilot.pause()
        assert app.machine.state.mode is Mode.SELECTION
        assert pilot.app.query_one(ProcessTable).display is True


@pytest.mark.asyncio
async def test_sort_toggle(records):
    """Test 's' toggles alphabetical order of the syscall list."""
    app = build_app(records, "write(1) = 1", "read(0) = 1")
    async with app.run_test() as pilot:
        await pilot.press("enter")
        panel = pilot.app.query_one(SyscallPanel)
        assert panel.sort_alphabetically is False

        await pilot.press("s")
        assert panel.sort_alphabetically is True

        await pilot.press("s")
        assert panel.sort_alphabetically is False


@pytest.mark.asyncio
async def test_bindings_follow_mode(records):
    """Test the command bindings are enabled only while monitoring unfiltered."""
    app = build_app(records, "read(0) = 1")
    async with app.run_test() as pilot:
        for action in ("filter", "sort", "kill", "back"):
            assert app.check_action(action, ()) is False
        assert app.check_action("quit", ()) is True

        await pilot.press("enter")
        for action in ("filter", "sort", "kill", "back"):
            assert app.check_action(action, ()) is True

        await pilot.press("f")
        assert app.machine.view().filter_active is True
        for action in ("filter", "sort", "kill", "back"):
            assert app.check_action(action, ()) is False


@pytest.mark.asyncio
async def test_kill_key_runs_once(records):
    """Test 'k' kills the target exactly once and returns to the process list."""
    killed = []
    app = build_app(records, "read(0) = 1", killer=killed.append)
    async with app.run_test() as pilot:
        await pilot.press("down", "enter")
        await pilot.press("k")
        await pilot.pause()

        assert killed == [records[1].pid]
        assert app.machine.state.mode is Mode.SELECTION
        assert app.machine.state.should_exit is False


@pytest.mark.asyncio
async def test_q_while_monitoring_goes_back(records):
    """Test 'q' on the monitoring screen goes back instead of quitting."""
    app = build_app(records, "read(0) = 1")
    async with app.run_test() as pilot:
        await pilot.press("enter")
        session = app.machine.state.monitoring.session

        await pilot.press("q")
        await pilot.pause()

        assert app.machine.state.mode is Mode.SELECTION
        assert app.machine.state.should_exit is False
        assert session.has_exited()
        assert app.is_running


@pytest.mark.asyncio
async def test_command_letters_typed_while_filtering(records):
    """Test 'q', 'b' and 'k' go into the filter query instead of running commands."""
    killed = []
    app = build_app(records, "read(0) = 1", killer=killed.append)
    async with app.run_test() as pilot:
        await pilot.press("enter", "f", "q", "b", "k")

        view = app.machine.view()
        assert view.mode is Mode.MONITORING
        assert view.filter_text == "qbk"
        assert killed == []


@pytest.mark.asyncio
async def test_quit_stops_trace(records):
    """Test leaving the app stops the live trace session."""
    app = build_app(records, "read(0) = 1")
    async with app.run_test() as pilot:
        await pilot.press("enter")
        session = app.machine.state.monitoring.session
        assert session.is_running

        app.action_quit()

    assert session.has_exited()
    assert app.machine.state.monitoring is None


def test_configure_logging_with_file(tmp_path):
    """Test logging goes to the requested file."""
    log_file = tmp_path / "trace.log"
    configure_logging(Config(log_file=str(log_file), log_level="debug"))

    logging.getLogger("sysmon_trace.test").debug("hello from the test")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert "hello from the test" in log_file.read_text()
    assert logging.getLogger().level == logging.DEBUG

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(logging.WARNING)
