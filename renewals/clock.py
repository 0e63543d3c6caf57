"""Time sources for the lifecycle classifier and notification engine."""

from datetime import datetime, timedelta, timezone
from typing import Optional


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """A clock that only moves when told to.

    Usage:
        clock = FixedClock(datetime(2024, 1, 1, tzinfo=timezone.utc))
        clock.advance(days=1)
    """

    def __init__(self, instant: Optional[datetime] = None):
        self._now = as_utc(instant) if instant else datetime.now(timezone.utc)

    def now(self) -> datetime:
        return self._now

    def set(self, instant: datetime) -> None:
        self._now = as_utc(instant)

    def advance(self, **delta) -> datetime:
        """Move forward by ``timedelta(**delta)`` and return the new instant."""
        self._now = self._now + timedelta(**delta)
        return self._now


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
