"""Process enumeration and termination backed by psutil."""

import logging

import psutil

from sysmon_trace.errors import KillFailed
from sysmon_trace.models import ProcessRecord

logger = logging.getLogger(__name__)


class ProcessDirectory:
    """
    Lists running processes as ProcessRecord snapshots.

    Processes that vanish, deny access or are zombies while being read are
    skipped, so a snapshot never raises because of a race with the OS.
    """

    ATTRS = ["pid", "name", "cmdline"]

    def snapshot(self) -> list[ProcessRecord]:
        """Return all running processes sorted by ascending pid."""
        records: list[ProcessRecord] = []

        for proc in psutil.process_iter(attrs=self.ATTRS):
            try:
                info = proc.info
                pid = info.get("pid") or 0
                if pid < 1:
                    continue

                name = info.get("name") or ""
                # Kernel threads and some restricted processes have no cmdline
                cmdline = info.get("cmdline") or []
                command_line = " ".join(cmdline) if cmdline else name

                records.append(ProcessRecord(pid=pid, name=name, command_line=command_line))
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue

        records.sort(key=lambda record: record.pid)
        return records


def filter_processes(processes: list[ProcessRecord], text: str) -> list[ProcessRecord]:
    """Keep processes whose name or command line contains `text`, ignoring case."""
    if not text:
        return list(processes)
    needle = text.lower()
    return [
        proc
        for proc in processes
        if needle in proc.name.lower() or needle in proc.command_line.lower()
    ]


def kill_process(pid: int) -> None:
    """
    Send an unconditional kill to `pid`.

    Raises:
        KillFailed: If the process does not exist or may not be signalled.
    """
    try:
        psutil.Process(pid).kill()
    except psutil.NoSuchProcess as exc:
        raise KillFailed(pid, "no such process") from exc
    except psutil.AccessDenied as exc:
        raise KillFailed(pid, "access denied") from exc
    logger.info("Sent kill to PID %d", pid)
