"""Recurrence math for scheduled maintenance.

Month and year steps use dateutil's relativedelta, anchored on the day of
month of the original ``scheduled_date`` so a schedule starting on the 31st
lands on the last day of shorter months instead of drifting.
"""

import logging
from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta

from fixit_platform.domain.enums import FrequencyType
from fixit_platform.infra.clock import utc_naive

logger = logging.getLogger(__name__)

F = FrequencyType


def parse_end_date(value) -> datetime | None:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return utc_naive(value)
    return utc_naive(datetime.fromisoformat(str(value).replace("Z", "+00:00")))


def _first_listed(values) -> int | None:
    if isinstance(values, list) and values:
        return int(values[0])
    return None


def _next_weekday(start: datetime, weekdays: list[int]) -> datetime:
    """First date on or after ``start`` whose weekday (Monday=0) is listed."""
    for offset in range(7):
        candidate = start + timedelta(days=offset)
        if candidate.weekday() in weekdays:
            return candidate
    return start


def step(base: datetime, frequency: dict, anchor_day: int, spawn_count: int = 0) -> datetime | None:
    """Advance ``base`` by one period of ``frequency``. None for unknown types."""
    interval = max(int(frequency.get("interval") or 1), 1)
    day_of_month = _first_listed(frequency.get("day_of_month")) or anchor_day
    kind = frequency.get("type")

    if kind == F.DAILY.value:
        return base + timedelta(days=interval)
    if kind == F.WEEKLY.value:
        nxt = base + timedelta(weeks=interval)
        weekdays = frequency.get("day_of_week") or []
        return _next_weekday(nxt, weekdays) if weekdays else nxt
    if kind == F.BI_WEEKLY.value:
        return base + timedelta(weeks=2 * interval)
    if kind == F.MONTHLY.value:
        return base + relativedelta(months=interval, day=day_of_month)
    if kind == F.QUARTERLY.value:
        return base + relativedelta(months=3 * interval, day=day_of_month)
    if kind == F.YEARLY.value:
        month = _first_listed(frequency.get("month_of_year"))
        if month:
            return base + relativedelta(years=interval, month=month, day=day_of_month)
        return base + relativedelta(years=interval, day=day_of_month)
    if kind == F.CUSTOM_DAYS.value:
        gaps = [int(d) for d in (frequency.get("custom_days") or []) if int(d) > 0]
        if not gaps:
            return base + timedelta(days=1)
        return base + timedelta(days=gaps[max(spawn_count - 1, 0) % len(gaps)])

    logger.warning("Unknown frequency type %r", kind)
    return None


def calculate_next_due_date(task) -> datetime | None:
    """Next due date for a scheduled maintenance task, or None when the series ends.

    The series ends when the task is not recurring, has no frequency type,
    has reached its ``occurrences`` cap, or the next date falls after
    ``end_date``.
    """
    frequency = task.frequency or {}
    if not task.recurring or not frequency.get("type"):
        return None

    cap = frequency.get("occurrences")
    spawned = task.occurrences_generated or 0
    if cap and spawned >= int(cap):
        return None

    base = max(d for d in (task.next_due_date, task.scheduled_date) if d is not None)
    nxt = step(base, frequency, task.scheduled_date.day, spawned)
    if nxt is None:
        return None

    end_date = parse_end_date(frequency.get("end_date"))
    if end_date is not None and nxt > end_date:
        return None
    return nxt
