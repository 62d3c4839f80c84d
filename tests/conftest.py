"""Shared helpers for sysmon-trace tests."""

import sys
import time
from collections.abc import Callable

import pytest

from sysmon_trace.models import ProcessRecord


def fake_tracer(script: str) -> list[str]:
    """Argv for a Python process that stands in for the tracer."""
    return [sys.executable, "-c", script]


def emitting(*lines: str, linger: float = 30.0) -> list[str]:
    """Fake tracer that writes `lines` to stderr and then stays alive."""
    body = "".join(f"sys.stderr.write({line + chr(10)!r})\n" for line in lines)
    script = f"import sys, time\n{body}sys.stderr.flush()\ntime.sleep({linger})\n"
    return fake_tracer(script)


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll `predicate` until it holds or `timeout` passes."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


class FakeDirectory:
    """Process directory returning a fixed list and counting snapshots."""

    def __init__(self, processes: list[ProcessRecord]) -> None:
        self.processes = processes
        self.calls = 0

    def snapshot(self) -> list[ProcessRecord]:
        self.calls += 1
        return list(self.processes)


@pytest.fixture
def records() -> list[ProcessRecord]:
    return [
        ProcessRecord(pid=1, name="init", command_line="/sbin/init"),
        ProcessRecord(pid=42, name="bash", command_line="/bin/bash --login"),
        ProcessRecord(pid=100, name="python3", command_line="python3 server.py"),
        ProcessRecord(pid=200, name="nginx", command_line="nginx: worker process"),
    ]


@pytest.fixture
def directory(records) -> FakeDirectory:
    return FakeDirectory(records)
