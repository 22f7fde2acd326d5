"""
Clock -- injectable time source.

Offer expiry, delivery deadlines, on-time statistics and every stored
timestamp read the time from a Clock handed to the service, so tests can
pin and move time explicitly.

Architecture position:
    Kernel > Domain.  ``SystemClock`` is the only place the kernel asks the
    operating system for the time.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

MARKET_EPOCH = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of timezone-aware UTC datetimes."""

    @abstractmethod
    def now(self) -> datetime: ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    Starts at 2024-01-01 12:00 UTC unless given a start time.  ``now()`` is
    stable between calls, so a deadline computed at order creation can be
    compared exactly against a later ``advance``.
    """

    def __init__(self, start: datetime | None = None):
        self._now = start or MARKET_EPOCH

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: int = 1) -> None:
        self._now += timedelta(seconds=seconds)

    def advance_days(self, days: int) -> None:
        self._now += timedelta(days=days)
