"""State machine coordinating process selection, tracing and filtering."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from sysmon_trace.config import Config
from sysmon_trace.directory import ProcessDirectory, filter_processes, kill_process
from sysmon_trace.errors import KillFailed, SpawnFailed
from sysmon_trace.ingest import SyscallLog, is_tracer_notice
from sysmon_trace.models import EventKind, InputEvent, Mode, Notice, ProcessRecord
from sysmon_trace.search import search
from sysmon_trace.trace import TraceSession, build_trace_command

logger = logging.getLogger(__name__)

SessionFactory = Callable[[int], TraceSession]
Killer = Callable[[int], None]


@dataclass(slots=True)
class FilterState:
    """Fuzzy filter over the observed syscalls."""

    active: bool = False
    query: str = ""
    results: list[str] = field(default_factory=list)

    def clear(self) -> None:
        self.active = False
        self.query = ""
        self.results = []


@dataclass(slots=True)
class SelectionState:
    """Fields of the process selection screen."""

    processes: list[ProcessRecord] = field(default_factory=list)
    visible: list[ProcessRecord] = field(default_factory=list)
    filter_text: str = ""
    cursor: int = 0
    notice: Notice | None = None


@dataclass(slots=True)
class MonitoringState:
    """Fields of the monitoring screen, alive only while a target is traced."""

    target: ProcessRecord
    session: TraceSession
    syscalls: SyscallLog = field(default_factory=SyscallLog)
    filter: FilterState = field(default_factory=FilterState)
    last_notice: str | None = None


@dataclass(slots=True)
class AppState:
    """
    Root state of the program.

    `monitoring` is set exactly when a target is being traced, which makes it
    the payload of the MONITORING mode.
    """

    selection: SelectionState = field(default_factory=SelectionState)
    monitoring: MonitoringState | None = None
    should_exit: bool = False

    @property
    def mode(self) -> Mode:
        return Mode.SELECTION if self.monitoring is None else Mode.MONITORING


@dataclass(slots=True, frozen=True)
class StateView:
    """Read-only projection of AppState for the presentation layer."""

    mode: Mode
    processes: tuple[ProcessRecord, ...] = ()
    cursor: int = 0
    process_filter: str = ""
    target_pid: int | None = None
    target_name: str = ""
    syscalls: tuple[str, ...] = ()
    filter_active: bool = False
    filter_text: str = ""
    filtered: tuple[str, ...] = ()
    pending_lines: int = 0

    @property
    def shown_syscalls(self) -> tuple[str, ...]:
        """The syscall list to render: ranked results while filtering."""
        return self.filtered if self.filter_active else self.syscalls


class MonitorStateMachine:
    """
    The only mutator of AppState.

    The presentation layer calls handle() for every input event and tick()
    on a fixed period, both from the same thread. At most one TraceSession
    is alive at a time; leaving the monitoring screen always stops it and
    refreshes the process list.
    """

    def __init__(
        self,
        state: AppState,
        directory: ProcessDirectory | None = None,
        session_factory: SessionFactory | None = None,
        killer: Killer = kill_process,
        config: Config | None = None,
    ) -> None:
        """
        Initialize the state machine.

        Args:
            state: The AppState to drive.
            directory: Source of process snapshots.
            session_factory: Builds an unstarted TraceSession for a pid.
                Defaults to one running the configured tracer.
            killer: Delivers a kill to a pid, raising KillFailed on refusal.
            config: Runtime settings.
        """
        self.state = state
        self._config = config or Config()
        self._directory = directory or ProcessDirectory()
        self._session_factory = session_factory or self._default_session
        self._killer = killer

    def _default_session(self, pid: int) -> TraceSession:
        command = build_trace_command(pid, self._config.tracer, self._config.tracer_args)
        return TraceSession(pid, command, stop_timeout=self._config.stop_timeout)

    # Events

    def handle(self, event: InputEvent) -> None:
        """Apply one input event to the current state."""
        monitoring = self.state.monitoring
        if monitoring is None:
            self._handle_selection(event)
        elif monitoring.filter.active:
            self._handle_filter(monitoring, event)
        else:
            self._handle_monitoring(event)

    def _handle_selection(self, event: InputEvent) -> None:
        selection = self.state.selection
        kind = event.kind

        if kind is EventKind.CHAR:
            selection.filter_text += event.char
            self._apply_process_filter()
        elif kind is EventKind.BACKSPACE:
            selection.filter_text = selection.filter_text[:-1]
            self._apply_process_filter()
        elif kind is EventKind.ESCAPE:
            selection.filter_text = ""
            self._apply_process_filter()
        elif kind is EventKind.UP:
            if selection.cursor > 0:
                selection.cursor -= 1
        elif kind is EventKind.DOWN:
            if selection.cursor + 1 < len(selection.visible):
                selection.cursor += 1
        elif kind is EventKind.ENTER:
            if selection.visible:
                self.select(selection.visible[selection.cursor])
        elif kind is EventKind.QUIT:
            self.state.should_exit = True

    def _handle_monitoring(self, event: InputEvent) -> None:
        kind = event.kind

        if kind in (EventKind.BACK, EventKind.QUIT):
            self.back()
        elif kind is EventKind.KILL:
            self.kill()
        elif kind is EventKind.FILTER:
            self.enter_filter()

    def _handle_filter(self, monitoring: MonitoringState, event: InputEvent) -> None:
        flt = monitoring.filter
        kind = event.kind

        if kind is EventKind.CHAR:
            self.set_query(flt.query + event.char)
        elif kind is EventKind.BACKSPACE:
            self.set_query(flt.query[:-1])
        elif kind in (EventKind.ENTER, EventKind.ESCAPE):
            flt.clear()
        elif kind in (EventKind.BACK, EventKind.QUIT):
            self.back()
        elif kind is EventKind.KILL:
            self.kill()

    # Transitions

    def select(self, record: ProcessRecord) -> bool:
        """
        Start tracing `record` and switch to the monitoring screen.

        Returns:
            False if the tracer could not be spawned; the selection screen
            stays active and carries a notice explaining why.
        """
        if self.state.monitoring is not None:
            raise RuntimeError("a trace session is already running")

        session = self._session_factory(record.pid)
        try:
            session.start()
        except SpawnFailed as exc:
            logger.warning("%s", exc)
            self.state.selection.notice = Notice(f"{exc} (are you root?)", error=True)
            return False

        self.state.selection.notice = None
        self.state.monitoring = MonitoringState(target=record, session=session)
        logger.info("Monitoring PID %d (%s)", record.pid, record.name)
        return True

    def enter_filter(self) -> None:
        """Freeze ingestion and start filtering the observed syscalls."""
        monitoring = self._require_monitoring()
        monitoring.filter.active = True
        monitoring.filter.query = ""
        monitoring.filter.results = search(monitoring.syscalls, "")

    def set_query(self, text: str) -> None:
        """Replace the filter query and rerank."""
        monitoring = self._require_monitoring()
        monitoring.filter.query = text
        monitoring.filter.results = search(monitoring.syscalls, text)

    def back(self, notice: Notice | None = None) -> None:
        """Stop the trace session and return to the selection screen."""
        monitoring = self._require_monitoring()
        monitoring.session.stop()
        self.state.monitoring = None
        self.state.selection.notice = notice
        self.refresh_processes()

    def kill(self) -> None:
        """Kill the traced process, then return to the selection screen."""
        monitoring = self._require_monitoring()
        notice = None
        try:
            self._killer(monitoring.target.pid)
        except KillFailed as exc:
            logger.warning("%s", exc)
            notice = Notice(str(exc), error=True)
        self.back(notice)

    def shutdown(self) -> None:
        """Stop any live trace session. Used when the program exits."""
        if self.state.monitoring is not None:
            self.state.monitoring.session.stop()
            self.state.monitoring = None

    # Ticks

    def tick(self) -> None:
        """Advance periodic work for the current mode."""
        monitoring = self.state.monitoring
        if monitoring is None:
            self.refresh_processes()
            return

        session = monitoring.session
        if not session.has_exited():
            if not monitoring.filter.active:
                self._ingest(monitoring, session.poll())
            return

        # Reaping first lets the reader hit EOF, so the final lines are queued
        session.stop()
        lines = session.poll()
        if monitoring.filter.active:
            lines = [line for line in lines if is_tracer_notice(line)]
        self._ingest(monitoring, lines)

        target = monitoring.target
        message = f"Trace of PID {target.pid} ({target.name}) ended"
        if monitoring.last_notice:
            message = f"{message}: {monitoring.last_notice}"
        logger.info("%s", message)
        self.back(Notice(message))

    def _ingest(self, monitoring: MonitoringState, lines: list[str]) -> None:
        if not lines:
            return
        logger.debug("Draining %d trace lines for PID %d", len(lines), monitoring.target.pid)
        calls: list[str] = []
        for line in lines:
            if is_tracer_notice(line):
                monitoring.last_notice = line.strip()
                logger.info("Tracer: %s", monitoring.last_notice)
            else:
                calls.append(line)
        monitoring.syscalls.ingest(calls)

    def refresh_processes(self) -> None:
        """Take a fresh process snapshot and reapply the process filter."""
        self.state.selection.processes = self._directory.snapshot()
        self._apply_process_filter()

    def _apply_process_filter(self) -> None:
        selection = self.state.selection
        selection.visible = filter_processes(selection.processes, selection.filter_text)
        if not selection.visible:
            selection.cursor = 0
        elif selection.cursor >= len(selection.visible):
            selection.cursor = len(selection.visible) - 1

    def _require_monitoring(self) -> MonitoringState:
        if self.state.monitoring is None:
            raise RuntimeError("no trace session is running")
        return self.state.monitoring

    # Presentation

    def pop_notice(self) -> Notice | None:
        """Return the pending selection-screen notice once, then forget it."""
        notice = self.state.selection.notice
        self.state.selection.notice = None
        return notice

    def view(self) -> StateView:
        """Build the read-only view the presentation layer renders."""
        selection = self.state.selection
        monitoring = self.state.monitoring
        if monitoring is None:
            return StateView(
                mode=Mode.SELECTION,
                processes=tuple(selection.visible),
                cursor=selection.cursor,
                process_filter=selection.filter_text,
            )
        return StateView(
            mode=Mode.MONITORING,
            processes=tuple(selection.visible),
            cursor=selection.cursor,
            process_filter=selection.filter_text,
            target_pid=monitoring.target.pid,
            target_name=monitoring.target.name,
            syscalls=tuple(monitoring.syscalls),
            filter_active=monitoring.filter.active,
            filter_text=monitoring.filter.query,
            filtered=tuple(monitoring.filter.results),
            pending_lines=monitoring.session.pending,
        )


def create_machine(
    config: Config | None = None,
    directory: ProcessDirectory | None = None,
    session_factory: SessionFactory | None = None,
    killer: Killer = kill_process,
) -> MonitorStateMachine:
    """Build the single AppState and a machine driving it, with a first snapshot."""
    machine = MonitorStateMachine(
        AppState(),
        directory=directory,
        session_factory=session_factory,
        killer=killer,
        config=config,
    )
    machine.refresh_processes()
    return machine
