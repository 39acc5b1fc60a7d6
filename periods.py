from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from schedule import local_today


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def month_start(d: date) -> date:
    return d.replace(day=1)


def month_end(d: date) -> date:
    first = month_start(d)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return next_month - date.resolution


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
) -> Period:
    today = today or local_today()
    if not period or period == "all":
        return Period("all", date(1970, 1, 1), today)
    if period == "last_month":
        last_month_end = month_start(today) - date.resolution
        return Period("last_month", month_start(last_month_end), last_month_end)
    if period == "last_30_days":
        return Period("last_30_days", today - timedelta(days=30), today)
    if period == "this_year":
        return Period("this_year", date(today.year, 1, 1), date(today.year, 12, 31))
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", start_date, end_date)
    if period != "this_month":
        raise ValueError(f"Unknown period: {period}")
    return Period("this_month", month_start(today), month_end(today))
