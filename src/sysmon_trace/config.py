"""Runtime configuration for sysmon-trace."""

import argparse
import shlex
from collections.abc import Sequence
from dataclasses import dataclass

MIN_TICK_RATE = 0.05
DEFAULT_TICK_RATE = 0.2
DEFAULT_TRACER = "strace"
DEFAULT_LOG_LEVEL = "INFO"


@dataclass(slots=True, frozen=True)
class Config:
    """Settings shared by the app and the tracing core."""

    tick_rate: float = DEFAULT_TICK_RATE  # Seconds between UI ticks
    tracer: str = DEFAULT_TRACER
    tracer_args: tuple[str, ...] = ()
    stop_timeout: float = 1.0  # How long stop() waits for the reader thread
    log_file: str | None = None
    log_level: str = DEFAULT_LOG_LEVEL

    def __post_init__(self) -> None:
        if self.tick_rate < MIN_TICK_RATE:
            object.__setattr__(self, "tick_rate", MIN_TICK_RATE)
        object.__setattr__(self, "log_level", self.log_level.upper())


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser."""
    parser = argparse.ArgumentParser(
        prog="sysmon-trace",
        description="Pick a process and watch the distinct syscalls it makes.",
    )
    parser.add_argument(
        "--tick-rate",
        type=float,
        default=DEFAULT_TICK_RATE,
        help="UI refresh period in seconds (default: %(default)s)",
    )
    parser.add_argument(
        "--tracer",
        default=DEFAULT_TRACER,
        help="Tracing executable to run (default: %(default)s)",
    )
    parser.add_argument(
        "--tracer-args",
        default="",
        metavar="ARGS",
        help="Extra tracer arguments as one shell-quoted string, e.g. --tracer-args='-s0 -qq'",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Also write log records to this file",
    )
    parser.add_argument(
        "--log-level",
        default=DEFAULT_LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Logging level (default: %(default)s)",
    )
    return parser


def parse_args(argv: Sequence[str] | None = None) -> Config:
    """Parse command line arguments into a Config."""
    args = build_parser().parse_args(argv)
    return Config(
        tick_rate=args.tick_rate,
        tracer=args.tracer,
        tracer_args=tuple(shlex.split(args.tracer_args)),
        log_file=args.log_file,
        log_level=args.log_level,
    )
