"""Next-occurrence rules for recurring scheduled notifications."""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta
from typing import Optional

from nudge_engine.schema import RECURRENCES

MAX_HORIZON = timedelta(days=365)


def add_month(value: datetime, anchor_day: Optional[int] = None) -> datetime:
    """Same calendar day next month, clamped to the last day of a short month.

    *anchor_day* is the day the series started on; it wins over ``value.day`` so
    Jan 31 -> Feb 28 -> Mar 31.
    """

    year = value.year + (1 if value.month == 12 else 0)
    month = 1 if value.month == 12 else value.month + 1
    day = min(anchor_day or value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def next_occurrence(
    previous: datetime, recurrence: str, now: datetime, anchor_day: Optional[int] = None
) -> Optional[datetime]:
    """Return the next delivery time, or None when the recurrence should stop."""

    if recurrence not in RECURRENCES:
        return None
    if recurrence == "daily":
        candidate = previous + timedelta(hours=24)
    elif recurrence == "weekly":
        candidate = previous + timedelta(days=7)
    else:
        candidate = add_month(previous, anchor_day)

    if candidate - now > MAX_HORIZON:
        return None
    return candidate
