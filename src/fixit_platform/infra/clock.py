"""Wall clock abstraction.

Every service reads time through a Clock so tests and the scheduler driver
can pin or advance it. Values are naive UTC datetimes, matching what SQLite
hands back from DateTime columns.
"""

from datetime import datetime, timedelta, timezone


def utc_naive(value: datetime | None) -> datetime | None:
    """Convert an aware datetime to naive UTC; naive values pass through."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class Clock:
    """System clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


class FrozenClock(Clock):
    """Clock pinned to a fixed instant until moved explicitly."""

    def __init__(self, at: datetime):
        self.current = utc_naive(at)

    def now(self) -> datetime:
        return self.current

    def set(self, at: datetime) -> None:
        self.current = utc_naive(at)

    def advance(self, **kwargs) -> datetime:
        """Move forward by a timedelta built from kwargs (hours=25, days=1, ...)."""
        self.current = self.current + timedelta(**kwargs)
        return self.current
