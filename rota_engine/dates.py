"""
dates.py — Calendar helpers shared by every rota module

All dates are timezone-free calendar days (datetime.date). Day arithmetic is
done on whole days, never on timestamps, so DST transitions cannot shift a
rotation position.

  - day_of_week:       ISO day of week, Monday=1 .. Sunday=7
  - week_of_month:     ceil((day + weekday of the 1st, Sunday=0) / 7)
  - job_plan_week:     week_of_month clamped to the 1..5 job-plan template range
  - date_range:        inclusive day iterator
  - month_horizon:     first day of this month .. last day of the month N-1 ahead
"""

import calendar
import math
from datetime import date, datetime, timedelta
from typing import Iterator, List, Tuple, Union

from .errors import ValidationError

DATE_FORMAT = "%Y-%m-%d"

DateLike = Union[date, datetime, str]


def parse_date(value: DateLike, field_name: str = "date") -> date:
    """Coerce a date, datetime or 'YYYY-MM-DD' string into a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.strptime(value.strip()[:10], DATE_FORMAT).date()
        except ValueError:
            raise ValidationError(f"Invalid {field_name}: {value!r} (expected YYYY-MM-DD)")
    raise ValidationError(f"Invalid {field_name}: {value!r}")


def format_date(d: date) -> str:
    return d.strftime(DATE_FORMAT)


def validate_range(start: DateLike, end: DateLike) -> Tuple[date, date]:
    """Parse both ends and reject inverted ranges."""
    start_d = parse_date(start, "start date")
    end_d = parse_date(end, "end date")
    if start_d > end_d:
        raise ValidationError(f"Start date {start_d} is after end date {end_d}")
    return start_d, end_d


def add_days(d: date, days: int) -> date:
    return d + timedelta(days=days)


def day_of_week(d: date) -> int:
    return d.isoweekday()


def is_weekday(d: date) -> bool:
    return d.isoweekday() <= 5


def week_of_month(d: date) -> int:
    """
    Week number of d within its month, counting weeks that start on Sunday.

    The 1st is always week 1; a month starting on a Saturday can reach week 6.
    """
    first_weekday = (d.replace(day=1).weekday() + 1) % 7  # Sunday=0
    return math.ceil((d.day + first_weekday) / 7)


def job_plan_week(d: date) -> int:
    return min(5, max(1, week_of_month(d)))


def date_range(start: date, end: date) -> Iterator[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def dates_between(start: date, end: date) -> List[date]:
    return list(date_range(start, end))


def month_horizon(today: date, months: int) -> Tuple[date, date]:
    """First day of today's month through the last day of the month `months - 1` ahead."""
    start = today.replace(day=1)
    month_index = today.month - 1 + (months - 1)
    year = today.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return start, date(year, month, last_day)
