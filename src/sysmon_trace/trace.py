"""Lifecycle of the external tracing subprocess."""

import logging
import os
import signal
import subprocess
import threading
from collections.abc import Sequence
from queue import Empty, Queue
from typing import IO

from sysmon_trace.errors import SpawnFailed

logger = logging.getLogger(__name__)


def build_trace_command(
    pid: int,
    tracer: str = "strace",
    extra_args: Sequence[str] = (),
) -> list[str]:
    """Build the argv that attaches `tracer` to `pid`, following forks."""
    return [tracer, "-p", str(pid), "-f", "-e", "trace=all", *extra_args]


class TraceSession:
    """
    One tracing subprocess bound to one target process.

    The tracer writes its trace to stderr. A daemon thread reads that stream
    line by line and pushes every line onto an unbounded Queue, so the tracer
    never blocks on a slow consumer. The foreground drains the queue with
    poll(), which never blocks.

    A session is single use: once stopped it cannot be started again.
    """

    def __init__(
        self,
        pid: int,
        command: Sequence[str] | None = None,
        stop_timeout: float = 1.0,
    ) -> None:
        """
        Initialize the TraceSession.

        Args:
            pid: Process id to trace.
            command: Full argv to run. Defaults to build_trace_command(pid).
            stop_timeout: How long stop() waits for the reader thread (seconds).
        """
        self.target_pid = pid
        self._command = list(command) if command is not None else build_trace_command(pid)
        self._stop_timeout = stop_timeout
        self._queue: Queue[str] = Queue()
        self._process: subprocess.Popen[str] | None = None
        self._thread: threading.Thread | None = None
        self._stopped = False

    @property
    def command(self) -> list[str]:
        """The argv used to launch the tracer."""
        return list(self._command)

    @property
    def is_running(self) -> bool:
        """Check if the tracer subprocess is alive."""
        return self._process is not None and not self._stopped and self._process.poll() is None

    @property
    def exit_code(self) -> int | None:
        """Return code of the tracer, or None while it runs."""
        if self._process is None:
            return None
        return self._process.poll()

    @property
    def pending(self) -> int:
        """Approximate number of lines waiting to be polled."""
        return self._queue.qsize()

    def start(self) -> "TraceSession":
        """
        Launch the tracer and its reader thread.

        Raises:
            SpawnFailed: If the tracer executable is missing or not runnable,
                or the session was already used.
        """
        if self._process is not None or self._stopped:
            raise SpawnFailed(self.target_pid, "session already used")

        try:
            self._process = subprocess.Popen(
                self._command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                bufsize=1,
                start_new_session=True,
            )
        except OSError as exc:
            self._stopped = True
            raise SpawnFailed(self.target_pid, exc.strerror or str(exc)) from exc

        self._thread = threading.Thread(
            target=self._read_loop,
            args=(self._process.stderr,),
            daemon=True,
            name=f"TraceReader-{self.target_pid}",
        )
        self._thread.start()
        logger.info(
            "Started tracer (pid %d) for target PID %d: %s",
            self._process.pid,
            self.target_pid,
            " ".join(self._command),
        )
        return self

    def _read_loop(self, stream: IO[str]) -> None:
        """Forward tracer output to the queue until the stream closes."""
        try:
            for line in stream:
                self._queue.put(line.rstrip("\r\n"))
        except (OSError, ValueError):
            # Stream closed underneath us during stop()
            pass
        logger.debug("Reader for target PID %d finished", self.target_pid)

    def poll(self) -> list[str]:
        """Drain every line buffered so far without blocking."""
        lines: list[str] = []
        while True:
            try:
                lines.append(self._queue.get_nowait())
            except Empty:
                break
        return lines

    def has_exited(self) -> bool:
        """Check, without blocking, whether the tracer has terminated."""
        if self._process is None:
            return self._stopped
        return self._stopped or self._process.poll() is not None

    def stop(self) -> None:
        """
        Kill the tracer and reap it.

        Children the tracer left behind share its process group and stderr,
        so the whole group is killed.

        Safe to call more than once. The reader thread may still be finishing
        when this returns; it only ever touches this session's queue.
        """
        if self._stopped:
            return
        self._stopped = True

        process = self._process
        if process is None:
            return

        self._kill_group(process)
        process.wait()
        logger.info(
            "Stopped tracer for target PID %d (exit code %s)",
            self.target_pid,
            process.returncode,
        )

        if self._thread is not None:
            self._thread.join(timeout=self._stop_timeout)
            if not self._thread.is_alive() and process.stderr is not None:
                process.stderr.close()
            self._thread = None

    @staticmethod
    def _kill_group(process: subprocess.Popen[str]) -> None:
        # The tracer leads its own session, so its pid is the group id
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except PermissionError:
            if process.poll() is None:
                process.kill()
