"""Exceptions raised by the tracing core.

Only failures the operator has to know about are exceptions. A target that
vanishes while traced is a normal session end, and trace lines that do not
look like syscalls are dropped without error.
"""


class TraceError(Exception):
    """Base class for sysmon-trace errors."""


class SpawnFailed(TraceError):
    """The tracing tool could not be launched."""

    def __init__(self, pid: int, reason: str) -> None:
        super().__init__(f"Failed to start tracer for PID {pid}: {reason}")
        self.pid = pid
        self.reason = reason


class KillFailed(TraceError):
    """The termination request for a process was rejected."""

    def __init__(self, pid: int, reason: str) -> None:
        super().__init__(f"Failed to kill PID {pid}: {reason}")
        self.pid = pid
        self.reason = reason
