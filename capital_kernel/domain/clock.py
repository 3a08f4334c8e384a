"""
Clock -- injected source of "now" for capital call timestamps.

issued_at, cancelled_at, funded_at, reminder times and integrity log entries
all read the time from a Clock handed to the service, so tests can pin and
move time without patching ``datetime``.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of timezone-aware UTC timestamps."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Pinned clock for tests.

    ``now()`` keeps returning the start time until ``advance()`` moves it
    forward, so two reads inside one operation always agree.
    """

    def __init__(self, start: datetime | None = None):
        self._current = start or EPOCH

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: int = 1) -> datetime:
        self._current += timedelta(seconds=seconds)
        return self._current
