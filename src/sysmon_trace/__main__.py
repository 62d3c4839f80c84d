"""Allow running sysmon-trace with `python -m sysmon_trace`."""

from sysmon_trace.app import main

main()
