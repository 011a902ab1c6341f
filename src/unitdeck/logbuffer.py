from __future__ import annotations

from collections import deque
from typing import Iterator

from .models import LogEntry, Priority

DEFAULT_CAPACITY = 2000


class LogBuffer:
    """Bounded, arrival-ordered log lines for one unit; oldest evicted first."""

    __slots__ = ("unit", "_entries")

    def __init__(self, unit: str, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("log buffer capacity must be at least 1")
        self.unit = unit
        self._entries: deque[LogEntry] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._entries.maxlen or 0

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[LogEntry]:
        return iter(self._entries)

    def append(self, entry: LogEntry) -> None:
        self._entries.append(entry)

    def clear(self) -> None:
        self._entries.clear()

    def snapshot(self, min_priority: Priority | None = None) -> tuple[LogEntry, ...]:
        # Lower numeric priority is more severe.
        if min_priority is None:
            return tuple(self._entries)
        return tuple(e for e in self._entries if e.priority <= min_priority)
