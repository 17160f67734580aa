"""
Core Module - Clock.

============================================================
RESPONSIBILITY
============================================================
Single source of "now" for everything that is anchored to
wall-clock time rather than to block timestamps:

- Periodic history cleanup
- Active-chain filtering in the dashboard
- Mock telemetry timestamps

Block timestamps on the wire are epoch milliseconds, so every
clock here is integer milliseconds first; seconds and datetimes
are derived views.

============================================================
"""

import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional


def ms_to_datetime(ms: int) -> datetime:
    """Epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)


class ClockProtocol(ABC):
    """Epoch-millisecond clock."""

    @abstractmethod
    def now_ms(self) -> int:
        ...

    def timestamp(self) -> float:
        return self.now_ms() / 1000.0

    def now(self) -> datetime:
        return ms_to_datetime(self.now_ms())

    def format_iso(self, ms: Optional[int] = None) -> str:
        """ISO 8601 rendering of ``ms``, or of now when omitted."""
        return ms_to_datetime(self.now_ms() if ms is None else ms).isoformat()


class SystemClock(ClockProtocol):
    """Wall clock."""

    def now_ms(self) -> int:
        return time.time_ns() // 1_000_000


class MockClock(ClockProtocol):
    """
    Manually driven clock for tests.

    Time only moves through set_time_ms/advance; freeze pins a
    value for the duration of a with-block and puts the previous
    one back afterwards.
    """

    def __init__(self, initial_ms: Optional[int] = None) -> None:
        self._lock = threading.Lock()
        self._ms = SystemClock().now_ms() if initial_ms is None else int(initial_ms)

    def now_ms(self) -> int:
        with self._lock:
            return self._ms

    def set_time_ms(self, ms: int) -> None:
        with self._lock:
            self._ms = int(ms)

    def advance(self, seconds: float = 0, ms: int = 0) -> int:
        """Move forward and return the new time."""
        delta = int(seconds * 1000) + int(ms)
        with self._lock:
            self._ms += delta
            return self._ms

    @contextmanager
    def freeze(self, at_ms: Optional[int] = None) -> Iterator[int]:
        saved = self.now_ms()
        pinned = saved if at_ms is None else int(at_ms)
        self.set_time_ms(pinned)
        try:
            yield pinned
        finally:
            self.set_time_ms(saved)


__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "ms_to_datetime",
]
