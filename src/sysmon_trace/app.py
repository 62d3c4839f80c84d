"""sysmon-trace - Textual front end driving the monitor state machine."""

import logging
from collections.abc import Sequence

from textual import events
from textual.app import App, ComposeResult
from textual.containers import Container, VerticalScroll
from textual.content import Content
from textual.logging import TextualHandler
from textual.widgets import DataTable, Footer, Static

from sysmon_trace.config import Config, parse_args
from sysmon_trace.machine import MonitorStateMachine, StateView, create_machine
from sysmon_trace.models import EventKind, InputEvent, Mode, ProcessRecord

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

SPECIAL_KEYS = {
    "up": EventKind.UP,
    "down": EventKind.DOWN,
    "enter": EventKind.ENTER,
    "escape": EventKind.ESCAPE,
    "backspace": EventKind.BACKSPACE,
}

MONITORING_ACTIONS = frozenset({"back", "kill", "filter", "sort"})

SELECTION_HELP = "Up/Down: Navigate | Type: Filter | Esc: Clear filter | Enter: Select | q: Quit"
MONITORING_HELP = "f: Filter syscalls | s: Sort | k: Kill process | q or b: Back"
FILTER_HELP = "Type to filter | Enter/Esc: Resume"


def key_to_event(view: StateView, key: str, character: str | None) -> InputEvent | None:
    """Map a key press to an InputEvent for the current screen, or None."""
    if key in SPECIAL_KEYS:
        return InputEvent(SPECIAL_KEYS[key])

    printable = character is not None and len(character) == 1 and character.isprintable()

    if view.mode is Mode.SELECTION:
        if character == "q":
            return InputEvent(EventKind.QUIT)
        return InputEvent.typed(character) if printable else None

    if view.filter_active:
        return InputEvent.typed(character) if printable else None

    # Monitoring commands are app bindings
    return None


class ProcessTable(Container):
    """Process list for the selection screen."""

    DEFAULT_CSS = """
    ProcessTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize ProcessTable."""
        super().__init__(*args, **kwargs)
        self._current: tuple[ProcessRecord, ...] = ()

    def compose(self) -> ComposeResult:
        """Compose the process table."""
        yield DataTable(id="process-table")

    def on_mount(self) -> None:
        """Set up columns when mounted."""
        table = self.query_one("#process-table", DataTable)
        table.cursor_type = "row"
        table.can_focus = False

        table.add_column("PID", key="pid", width=8)
        table.add_column("Name", key="name", width=20)
        table.add_column("Command", key="command")

    def update_processes(self, processes: tuple[ProcessRecord, ...], cursor: int) -> None:
        """Show `processes`, rebuilding rows only when the list changed."""
        table = self.query_one("#process-table", DataTable)

        if processes != self._current:
            table.clear()
            for proc in processes:
                table.add_row(
                    str(proc.pid),
                    proc.name[:20],
                    proc.command_line[:120],
                    key=str(proc.pid),
                )
            self._current = processes

        if processes:
            table.move_cursor(row=cursor)


class SyscallPanel(VerticalScroll):
    """Unique syscalls of the traced process."""

    can_focus = False

    DEFAULT_CSS = """
    SyscallPanel {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize SyscallPanel."""
        super().__init__(*args, **kwargs)
        self.sort_alphabetically = False
        self._shown: tuple[str, ...] = ()
        self.border_title = "Unique Syscalls"

    def compose(self) -> ComposeResult:
        """Compose the syscall list."""
        yield Static(id="syscall-list")

    def update_syscalls(self, view: StateView) -> None:
        """Render the chronological log, or ranked matches while filtering."""
        names = view.shown_syscalls
        if not view.filter_active and self.sort_alphabetically:
            names = tuple(sorted(names))
        if names == self._shown:
            return
        self._shown = names
        self.border_title = f"Unique Syscalls ({len(view.syscalls)})"
        self.query_one("#syscall-list", Static).update(Content("\n".join(names)))


class SysmonTraceApp(App):
    """Main sysmon-trace application."""

    TITLE = "sysmon-trace"
    SUB_TITLE = "Live syscall monitor"

    CSS = """
    Screen {
        layout: vertical;
    }

    #header, #instructions {
        height: 3;
        border: solid $secondary;
        padding: 0 1;
    }
    """

    BINDINGS = [
        ("f", "filter", "Filter"),
        ("s", "sort", "Sort"),
        ("k", "kill", "Kill"),
        ("b,q", "back", "Back"),
    ]

    def __init__(
        self,
        config: Config | None = None,
        machine: MonitorStateMachine | None = None,
    ) -> None:
        """
        Initialize the SysmonTraceApp.

        Args:
            config: Runtime settings.
            machine: State machine to drive; built from `config` when omitted.
        """
        super().__init__()
        self._config = config or Config()
        self._machine = machine or create_machine(self._config)
        self._command_state: tuple[Mode, bool] | None = None

    @property
    def machine(self) -> MonitorStateMachine:
        """The state machine behind this app, exposed for tests and embedding."""
        return self._machine

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield Static(id="header")
        yield ProcessTable()
        yield SyscallPanel()
        yield Static(id="instructions")
        yield Footer()

    def on_mount(self) -> None:
        """Start the tick loop."""
        self.call_after_refresh(self._render_view)
        self.set_interval(self._config.tick_rate, self._on_tick)

    def on_unmount(self) -> None:
        """Make sure no tracer outlives the app."""
        self._machine.shutdown()

    def _on_tick(self) -> None:
        try:
            self._machine.tick()
        except Exception:
            logger.exception("Tick failed")
        self._render_view()

    def on_key(self, event: events.Key) -> None:
        """Translate text and navigation keys into state machine events."""
        input_event = key_to_event(self._machine.view(), event.key, event.character)
        if input_event is None:
            return
        event.stop()
        event.prevent_default()
        self._dispatch(input_event)

    def check_action(self, action: str, parameters: tuple[object, ...]) -> bool | None:
        """Enable the monitoring commands only while the syscall filter is closed."""
        if action in MONITORING_ACTIONS:
            monitoring = self._machine.state.monitoring
            return monitoring is not None and not monitoring.filter.active
        return True

    def _dispatch(self, input_event: InputEvent) -> None:
        self._machine.handle(input_event)
        if self._machine.state.should_exit:
            self.action_quit()
            return
        self._render_view()

    def action_filter(self) -> None:
        """Open the syscall filter."""
        self._dispatch(InputEvent(EventKind.FILTER))

    def action_sort(self) -> None:
        """Toggle alphabetical order of the syscall list."""
        panel = self.query_one(SyscallPanel)
        panel.sort_alphabetically = not panel.sort_alphabetically
        self._render_view()

    def action_kill(self) -> None:
        """Kill the traced process and go back."""
        self._dispatch(InputEvent(EventKind.KILL))

    def action_back(self) -> None:
        """Stop tracing and return to the process list."""
        self._dispatch(InputEvent(EventKind.BACK))

    def _render_view(self) -> None:
        view = self._machine.view()
        command_state = (view.mode, view.filter_active)
        if command_state != self._command_state:
            self._command_state = command_state
            self.refresh_bindings()
        notice = self._machine.pop_notice()
        if notice is not None:
            self.notify(notice.message, severity="error" if notice.error else "information")

        header = self.query_one("#header", Static)
        instructions = self.query_one("#instructions", Static)
        table = self.query_one(ProcessTable)
        panel = self.query_one(SyscallPanel)

        if view.mode is Mode.SELECTION:
            table.display = True
            panel.display = False
            header.update(Content(f"Filter: {view.process_filter}"))
            instructions.update(Content(SELECTION_HELP))
            table.update_processes(view.processes, view.cursor)
            return

        table.display = False
        panel.display = True
        title = f"Monitoring syscalls for PID: {view.target_pid} ({view.target_name})"
        if view.filter_active:
            title = f"{title} | Filter: {view.filter_text}"
            if view.pending_lines:
                title = f"{title} | {view.pending_lines} lines paused"
        header.update(Content(title))
        instructions.update(Content(FILTER_HELP if view.filter_active else MONITORING_HELP))
        panel.update_syscalls(view)

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._machine.shutdown()
        self.exit()


def configure_logging(config: Config) -> None:
    """Route log records to the Textual console and optionally a file."""
    handlers: list[logging.Handler] = [TextualHandler()]
    if config.log_file:
        handlers.append(logging.FileHandler(config.log_file))
    logging.basicConfig(
        level=config.log_level,
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
        handlers=handlers,
        force=True,
    )


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for sysmon-trace application."""
    config = parse_args(argv)
    configure_logging(config)
    app = SysmonTraceApp(config)
    app.run()


if __name__ == "__main__":
    main()
