"""
Clock -- injectable time source.

Responsibility:
    Services never call ``datetime.now()`` directly.  Period resolution,
    payout dates, inventory code expiry and overdue-debt checks all read
    the time from a ``Clock`` passed in at construction.

Architecture position:
    Kernel > Domain.  ``SystemClock`` is the only place that touches the
    real system time.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract time source.

    Guarantees:
        - ``now()`` returns a timezone-aware UTC ``datetime``.
        - ``today()`` is the UTC calendar date of ``now()``.
    """

    @abstractmethod
    def now(self) -> datetime:
        ...

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Controlled clock for tests.

    Contract:
        Returns the same instant until ``advance()`` or ``set_time()``.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._fixed_time = fixed_time or datetime(
            2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc
        )
        self._offset = timedelta(0)

    def now(self) -> datetime:
        return (self._fixed_time + self._offset).astimezone(timezone.utc)

    def set_time(self, time: datetime) -> None:
        if time.tzinfo is None:
            time = time.replace(tzinfo=timezone.utc)
        self._fixed_time = time
        self._offset = timedelta(0)

    def advance(self, seconds: int = 0, *, minutes: int = 0, days: int = 0) -> datetime:
        self._offset += timedelta(seconds=seconds, minutes=minutes, days=days)
        return self.now()
