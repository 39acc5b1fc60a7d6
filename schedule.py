"""Date arithmetic for recurring series.

Every occurrence of a series is computed from its start date: the k-th
occurrence is ``start + k periods``. Monthly and yearly steps keep the start
day of month and snap to the last day of shorter months, so a series anchored
on Jan 31 runs Feb 29 (leap year), Mar 31, Apr 30, ... and a yearly series
anchored on Feb 29 falls on Feb 28 in common years.

A reference date equal to an occurrence means that occurrence is due on the
reference date; only a strictly later occurrence counts as the next one.
"""

from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings
from models import Frequency


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def _add_months(base: date, months: int, *, desired_day: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, min(desired_day, days_in_month(year, month)))


def add_periods(
    base: date,
    frequency: Frequency,
    count: int = 1,
    *,
    anchor_day: Optional[int] = None,
) -> date:
    """Move ``base`` by ``count`` periods (negative counts move backwards).

    ``anchor_day`` is the day of month a monthly/yearly series is pinned to;
    it defaults to ``base.day``.
    """
    if frequency == Frequency.daily:
        return base + timedelta(days=count)
    if frequency == Frequency.weekly:
        return base + timedelta(weeks=count)
    desired_day = anchor_day or base.day
    if frequency == Frequency.monthly:
        return _add_months(base, count, desired_day=desired_day)
    if frequency == Frequency.yearly:
        return _add_months(base, 12 * count, desired_day=desired_day)
    raise ValueError(f"Unsupported frequency: {frequency!r}")


def occurrence(start: date, frequency: Frequency, index: int) -> date:
    return add_periods(start, frequency, index, anchor_day=start.day)


def _first_index_after(start: date, frequency: Frequency, reference: date) -> int:
    # Requires start <= reference, so the answer is always >= 1.
    if frequency == Frequency.daily:
        return (reference - start).days + 1
    if frequency == Frequency.weekly:
        return (reference - start).days // 7 + 1
    # Calendar months are irregular; walk the offsets.
    index = 1
    while occurrence(start, frequency, index) <= reference:
        index += 1
    return index


def next_due_date(anchor: date, frequency: Frequency, reference: date) -> date:
    """Catch-up: the first occurrence strictly after ``reference``.

    An anchor that is still in the future is returned unchanged.
    """
    if anchor > reference:
        return anchor
    return occurrence(anchor, frequency, _first_index_after(anchor, frequency, reference))


def next_occurrence(
    start: date, frequency: Frequency, reference: date
) -> Optional[date]:
    """Project forward from ``start``; ``None`` while the series has not begun."""
    if start > reference:
        return None
    return occurrence(start, frequency, _first_index_after(start, frequency, reference))


def last_due_occurrence(
    start: date, frequency: Frequency, reference: date
) -> Optional[date]:
    """Latest occurrence after ``start`` that fell due strictly before ``reference``."""
    if start >= reference:
        return None
    # Index of the first occurrence on or after the reference date.
    upcoming = _first_index_after(start, frequency, reference - timedelta(days=1))
    if upcoming < 2:
        return None
    return occurrence(start, frequency, upcoming - 1)


def advance_one_period(current: date, frequency: Frequency, anchor: date) -> date:
    """Step a due date one period forward, keeping the series' day of month."""
    return add_periods(current, frequency, 1, anchor_day=anchor.day)


def previous_due_date(current: date, frequency: Frequency, anchor: date) -> date:
    return add_periods(current, frequency, -1, anchor_day=anchor.day)
