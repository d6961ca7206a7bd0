"""
Clock -- Deterministic time abstraction.

Responsibility:
    Provides an injectable clock so that services never call
    ``datetime.now()`` directly.  Layer receipt timestamps and aging
    "as of" defaults all come from an injected Clock.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O (except SystemClock,
    the one sanctioned I/O boundary for time).
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Guarantees:
        - ``now()`` returns a timezone-aware UTC ``datetime``.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time."""
        ...


class SystemClock(Clock):
    """Production clock that returns actual system time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    Guarantees:
        - ``now()`` returns the same value on repeated calls until
          ``advance()``, ``advance_days()`` or ``set_time()`` is called.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._fixed_time = fixed_time or datetime(
            2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc
        )
        self._offset = timedelta()

    def now(self) -> datetime:
        return self._fixed_time + self._offset

    def set_time(self, time: datetime) -> None:
        """Set the clock to a specific time."""
        self._fixed_time = time
        self._offset = timedelta()

    def advance(self, seconds: int = 1) -> None:
        """Advance the clock by the specified seconds."""
        self._offset += timedelta(seconds=seconds)

    def advance_days(self, days: int) -> None:
        """Advance the clock by whole days."""
        self._offset += timedelta(days=days)

    def tick(self) -> datetime:
        """Advance by 1 second and return new time."""
        self.advance(1)
        return self.now()
