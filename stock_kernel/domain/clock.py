"""
Clock -- injectable time source.

Responsibility:
    Services stamp movements, lots, audit events and purchase order
    lifecycle fields from an injected Clock, never from ``datetime.now()``.
    Reports compute their default windows from the same clock.

Architecture position:
    Kernel > Domain.  SystemClock is the one sanctioned I/O boundary for time.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Guarantees:
        - ``now()`` returns a timezone-aware UTC ``datetime``.
        - ``today()`` is the UTC calendar date of ``now()``.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time."""
        ...

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    """Production clock that returns actual system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    Guarantees:
        - ``now()`` returns the same value on repeated calls until
          ``advance()``, ``tick()`` or ``set_time()`` is called.
        - With ``auto_advance_seconds`` set, every ``now()`` call moves the
          clock forward afterwards, so consecutive movements get strictly
          increasing timestamps.
    """

    def __init__(
        self,
        fixed_time: datetime | None = None,
        auto_advance_seconds: int = 0,
    ):
        self._fixed_time = fixed_time or datetime(
            2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc
        )
        self._offset = timedelta(0)
        self._auto_advance = timedelta(seconds=auto_advance_seconds)

    def now(self) -> datetime:
        current = self._fixed_time + self._offset
        self._offset += self._auto_advance
        return current

    def set_time(self, time: datetime) -> None:
        """Set the clock to a specific time."""
        self._fixed_time = time
        self._offset = timedelta(0)

    def advance(self, seconds: int = 0, days: int = 0) -> None:
        """Advance the clock."""
        self._offset += timedelta(seconds=seconds, days=days)

    def tick(self) -> datetime:
        """Advance by 1 second and return new time."""
        self.advance(seconds=1)
        return self._fixed_time + self._offset
