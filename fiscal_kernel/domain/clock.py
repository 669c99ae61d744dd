"""
Clock -- injectable time source.

Permit expiry, quota rollover and the modification window all depend on
"now", and each has boundary cases (the 24th hour, the last day of a
month, the day a timbrado lapses) that tests must pin exactly.  Domain and
service code therefore never call ``datetime.now()`` or ``date.today()``.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone, tzinfo

_DEFAULT_TEST_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """``now()`` is always timezone-aware; ``today()`` is its calendar date."""

    @abstractmethod
    def now(self) -> datetime: ...

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    """
    Wall-clock time.

    Pass the business timezone (e.g. ``ZoneInfo("America/Asuncion")``) so
    that ``today()``, and with it permit expiry, flips at local midnight
    rather than UTC midnight.
    """

    def __init__(self, tz: tzinfo | None = None):
        self._tz = tz or timezone.utc

    def now(self) -> datetime:
        return datetime.now(self._tz)


class DeterministicClock(Clock):
    """Test clock: time stands still until moved explicitly."""

    def __init__(self, start: datetime | None = None):
        self._current = start or _DEFAULT_TEST_TIME

    def now(self) -> datetime:
        return self._current

    def set_time(self, moment: datetime) -> None:
        self._current = moment

    def advance(self, seconds: float = 1) -> None:
        self._current += timedelta(seconds=seconds)

    def advance_hours(self, hours: float) -> None:
        self._current += timedelta(hours=hours)

    def advance_days(self, days: int) -> None:
        self._current += timedelta(days=days)
