"""Data models for sysmon-trace."""

from dataclasses import dataclass
from enum import Enum


@dataclass(slots=True, frozen=True)
class ProcessRecord:
    """Immutable snapshot of a running process."""

    pid: int
    name: str
    command_line: str


class Mode(Enum):
    """Top-level screens of the monitor."""

    SELECTION = "selection"
    MONITORING = "monitoring"


class EventKind(Enum):
    """Abstract input events understood by the state machine."""

    CHAR = "char"
    BACKSPACE = "backspace"
    UP = "up"
    DOWN = "down"
    ENTER = "enter"
    ESCAPE = "escape"
    QUIT = "quit"
    BACK = "back"
    KILL = "kill"
    FILTER = "filter"


@dataclass(slots=True, frozen=True)
class InputEvent:
    """A single input event. `char` is only set for CHAR events."""

    kind: EventKind
    char: str = ""

    @classmethod
    def typed(cls, char: str) -> "InputEvent":
        """Build a CHAR event."""
        return cls(EventKind.CHAR, char)


@dataclass(slots=True, frozen=True)
class Notice:
    """A message for the operator, e.g. why a trace could not start."""

    message: str
    error: bool = False
