"""
Day arithmetic on a single basis: the UTC calendar.

Completion toggles, the cleanup pipeline, reminders and stats all derive
"today" through this module so that a completion day means the same thing
everywhere.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Coerce a datetime to aware UTC (naive values are taken to be UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def day_of(value: datetime) -> date:
    """UTC calendar day of a timestamp."""
    return as_utc(value).date()


def start_of_day(day: date) -> datetime:
    """UTC midnight at the start of *day*."""
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def today(clock: Optional[Clock] = None) -> date:
    return day_of((clock or utc_now)())


def tomorrow(clock: Optional[Clock] = None) -> date:
    return today(clock) + timedelta(days=1)
