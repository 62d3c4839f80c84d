"""Turn raw tracer output into a deduplicated, ordered set of syscall names."""

import logging
from collections.abc import Iterable, Iterator

logger = logging.getLogger(__name__)

TRACER_NOTICE_PREFIX = "strace: "


def parse_syscall_name(line: str) -> str | None:
    """
    Extract the syscall name from one trace line.

    `openat(AT_FDCWD, "/etc/passwd", O_RDONLY) = 3` gives `openat`. Blank
    lines, lines not starting with a letter (pid prefixes, signal and exit
    notices, resumed calls) and lines without `(` give None.
    """
    trimmed = line.strip()
    if not trimmed or not trimmed[0].isalpha():
        return None
    paren = trimmed.find("(")
    if paren == -1:
        return None
    return trimmed[:paren]


def is_tracer_notice(line: str) -> bool:
    """Check if a line is a diagnostic from the tracer itself."""
    return line.lstrip().startswith(TRACER_NOTICE_PREFIX)


class SyscallLog:
    """
    Insertion-ordered set of syscall names seen during one trace session.

    Membership lives in a set, first-seen order in a parallel list; a name
    enters both exactly once.
    """

    def __init__(self) -> None:
        self._seen: set[str] = set()
        self._order: list[str] = []

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, name: object) -> bool:
        return name in self._seen

    def __iter__(self) -> Iterator[str]:
        return iter(self._order)

    @property
    def names(self) -> list[str]:
        """Syscall names in first-seen order."""
        return list(self._order)

    def add(self, name: str) -> bool:
        """Record `name`. Returns True if it was not seen before."""
        if name in self._seen:
            return False
        self._seen.add(name)
        self._order.append(name)
        return True

    def ingest(self, lines: Iterable[str]) -> list[str]:
        """Parse `lines` and record every syscall name. Returns the new names."""
        added: list[str] = []
        parsed = 0
        for line in lines:
            name = parse_syscall_name(line)
            if name is None:
                continue
            parsed += 1
            if self.add(name):
                added.append(name)
        if added:
            logger.debug("Ingested %d calls, %d new: %s", parsed, len(added), ", ".join(added))
        return added

    def clear(self) -> None:
        """Forget every recorded name."""
        self._seen.clear()
        self._order.clear()
