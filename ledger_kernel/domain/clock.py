"""
Injectable time source for run, investigation and delta timestamps.

Only the service layer reads the clock; engines take dates as arguments.
"""

from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        """Current timezone-aware UTC time."""
        ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock:
    """Pinned clock for tests.

    With ``tick`` set, every ``now()`` call moves the clock forward by that
    many seconds, so successive stamps within one run stay ordered.
    """

    def __init__(self, start: datetime | None = None, tick: int = 0):
        self._current = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        self._tick = timedelta(seconds=tick)

    def now(self) -> datetime:
        stamp = self._current
        self._current += self._tick
        return stamp

    def advance(self, seconds: int = 1) -> None:
        self._current += timedelta(seconds=seconds)
