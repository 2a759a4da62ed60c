"""Time sources."""

from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    def __call__(self) -> datetime: ...


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class MonotonicClock:
    """Wraps a clock so successive readings never go backwards.

    Readings that would repeat or regress are nudged forward by one microsecond,
    which keeps audit ordering by timestamp stable under concurrent writers.
    """

    def __init__(self, source: Clock = utc_now) -> None:
        self._source = source
        self._last: datetime | None = None
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            now = self._source()
            if self._last is not None and now <= self._last:
                now = self._last + timedelta(microseconds=1)
            self._last = now
            return now
