"""Injectable time source.

Penalties and display values depend on "today", so every service that
needs the current time receives a Clock instead of calling datetime.now().
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timezone


class Clock(ABC):
    """Abstract clock interface."""

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time (timezone-aware)."""
        ...

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    """Production clock returning the actual UTC time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Clock frozen at a given instant; advance() moves it forward."""

    def __init__(self, current: datetime | date):
        if not isinstance(current, datetime):
            current = datetime(current.year, current.month, current.day, 12, 0, tzinfo=timezone.utc)
        elif current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        self._current = current

    def now(self) -> datetime:
        return self._current

    def set(self, current: datetime | date) -> None:
        self.__init__(current)

    def advance(self, delta) -> None:
        self._current = self._current + delta


__all__ = ["Clock", "SystemClock", "FixedClock"]
