"""
User-facing trace log for simulation sessions.

Collects the numbered lines a presentation layer shows next to the
simulation: node generation, fail/revive toggles, rejected requests and
the trace lines of every applied action.
"""

from dataclasses import dataclass, field
from typing import Iterable


@dataclass
class TraceLog:
    """Ordered list of ``[t=N]``-prefixed trace lines.

    N is the number of lines already in the log when the line is pushed,
    so the prefixes restart from 0 after ``clear`` or ``reset``.

    Attributes:
        lines: Formatted lines, oldest first.
    """

    lines: list[str] = field(default_factory=list)

    def push(self, message: str) -> str:
        """Append ``message`` and return the formatted line."""
        line = f"[t={len(self.lines)}] {message}"
        self.lines.append(line)
        return line

    def extend(self, messages: Iterable[str]) -> None:
        for message in messages:
            self.push(message)

    def reset(self, messages: Iterable[str] = ()) -> None:
        """Discard all lines, then push ``messages``."""
        self.lines.clear()
        self.extend(messages)

    def clear(self) -> None:
        self.lines.clear()

    @property
    def last(self) -> str | None:
        return self.lines[-1] if self.lines else None

    def __len__(self) -> int:
        return len(self.lines)

    def __iter__(self):
        return iter(self.lines)

    def __repr__(self) -> str:
        return f"TraceLog({len(self.lines)} lines)"
