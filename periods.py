from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Iterator, Optional
from zoneinfo import ZoneInfo

from config import get_settings


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def local_now() -> datetime:
    """Wall-clock time in the configured timezone, as a naive datetime."""
    tz = ZoneInfo(get_settings().timezone)
    return datetime.now(tz).replace(tzinfo=None)


def local_today() -> date:
    return local_now().date()


def local_to_utc(value: datetime) -> datetime:
    """Naive local time to naive UTC, the clock record timestamps are kept in."""
    tz = ZoneInfo(get_settings().timezone)
    return value.replace(tzinfo=tz).astimezone(timezone.utc).replace(tzinfo=None)


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(base: date, months: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    day = min(base.day, days_in_month(year, month))
    return base.replace(year=year, month=month, day=day)


def month_bounds(year: int, month: int) -> tuple[date, date]:
    return date(year, month, 1), date(year, month, days_in_month(year, month))


def iter_months(start: date, end: date) -> Iterator[tuple[int, int]]:
    """Yield (year, month) for every calendar month overlapping [start, end]."""
    current = start.replace(day=1)
    while current <= end:
        yield current.year, current.month
        current = add_months(current, 1)


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
    default: str = "this_month",
) -> Period:
    today = today or local_today()
    if start or end:
        period = "custom"
    period = period or default
    if period == "all":
        return Period("all", date(1970, 1, 1), today)
    if period == "last_month":
        first_this = today.replace(day=1)
        last_month_end = first_this - date.resolution
        last_month_start = last_month_end.replace(day=1)
        return Period("last_month", last_month_start, last_month_end)
    if period == "last_3_months":
        return Period("last_3_months", add_months(today.replace(day=1), -3), today)
    if period == "this_year":
        return Period("this_year", date(today.year, 1, 1), date(today.year, 12, 31))
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        try:
            start_date = date.fromisoformat(start)
            end_date = date.fromisoformat(end)
        except ValueError as exc:
            raise ValueError("Dates must be in YYYY-MM-DD format") from exc
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", start_date, end_date)
    if period != "this_month":
        raise ValueError(f"Unknown period '{period}'")

    first, end_this = month_bounds(today.year, today.month)
    return Period("this_month", first, end_this)
