"""
Next-execution computation for snapshot schedules.

Pure functions; all times are computed in the timezone of ``now``.

Weekdays follow the 0 = Sunday ... 6 = Saturday convention used by
schedule configuration, not Python's 0 = Monday.
"""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta

from ..models import ScheduleFrequency


def sunday_based_weekday(moment: datetime) -> int:
    """Weekday of a datetime with 0 = Sunday."""
    return (moment.weekday() + 1) % 7


def _midnight(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def _clamped(year: int, month: int, day: int, template: datetime) -> datetime:
    """Midnight of the given day, clamped to the last day of the month."""
    last_day = calendar.monthrange(year, month)[1]
    return _midnight(template).replace(year=year, month=month, day=min(day, last_day))


def next_weekly(now: datetime, day_of_week: int) -> datetime:
    """Midnight of the next target weekday, never today.

    The same weekday as today resolves to seven days out.
    """
    days = (day_of_week - sunday_based_weekday(now)) % 7 or 7
    return _midnight(now + timedelta(days=days))


def next_monthly(now: datetime, day_of_month: int) -> datetime:
    """Midnight of day_of_month this month, or next month if already passed.

    Days beyond the end of a month are clamped to its last day.
    """
    candidate = _clamped(now.year, now.month, day_of_month, now)
    if candidate <= now:
        year, month = (now.year + 1, 1) if now.month == 12 else (now.year, now.month + 1)
        candidate = _clamped(year, month, day_of_month, now)
    return candidate


def compute_next_execution(
    frequency: ScheduleFrequency,
    now: datetime,
    day_of_week: int | None = None,
    day_of_month: int | None = None,
) -> datetime | None:
    """Next execution time of a schedule, or None for event-triggered ones.

    Args:
        frequency: Schedule frequency
        now: Reference time
        day_of_week: Target weekday (0 = Sunday), weekly only; defaults to 0
        day_of_month: Target day (1-31), monthly only; defaults to 1
    """
    if frequency is ScheduleFrequency.WEEKLY:
        return next_weekly(now, day_of_week if day_of_week is not None else 0)
    if frequency is ScheduleFrequency.MONTHLY:
        return next_monthly(now, day_of_month or 1)
    return None
