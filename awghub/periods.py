"""
Calendar bucket boundaries for production summaries.

Buckets are half-open UTC intervals:
- day:   00:00 of the calendar date to 00:00 of the next date
- week:  Monday 00:00 to the following Monday 00:00 (ISO 8601 week)
- month: 1st of the month to the 1st of the next month
- year:  Jan 1 to Jan 1 of the next year
"""

from datetime import date, datetime, timedelta
from typing import Tuple, Union

from .timezone_utils import UTC, to_utc

PERIOD_DAY = "day"
PERIOD_WEEK = "week"
PERIOD_MONTH = "month"
PERIOD_YEAR = "year"
PERIODS = (PERIOD_DAY, PERIOD_WEEK, PERIOD_MONTH, PERIOD_YEAR)

_MONTHS = ['Jan', 'Feb', 'Mar', 'Apr', 'May', 'Jun', 'Jul', 'Aug', 'Sep', 'Oct', 'Nov', 'Dec']


def _as_date(value: Union[date, datetime]) -> date:
    if isinstance(value, datetime):
        return to_utc(value).date()
    return value


def period_start(value: Union[date, datetime], period: str) -> date:
    """Return the start date of the bucket of type `period` containing `value`."""
    d = _as_date(value)
    if period == PERIOD_DAY:
        return d
    if period == PERIOD_WEEK:
        return d - timedelta(days=d.weekday())
    if period == PERIOD_MONTH:
        return d.replace(day=1)
    if period == PERIOD_YEAR:
        return d.replace(month=1, day=1)
    raise ValueError(f"Unknown period: {period}")


def next_period_start(start: date, period: str) -> date:
    """Start of the bucket following the one starting at `start`."""
    if period == PERIOD_DAY:
        return start + timedelta(days=1)
    if period == PERIOD_WEEK:
        return start + timedelta(days=7)
    if period == PERIOD_MONTH:
        if start.month == 12:
            return date(start.year + 1, 1, 1)
        return date(start.year, start.month + 1, 1)
    if period == PERIOD_YEAR:
        return date(start.year + 1, 1, 1)
    raise ValueError(f"Unknown period: {period}")


def period_bounds(start: date, period: str) -> Tuple[datetime, datetime]:
    """Half-open [start, end) UTC datetimes of a bucket."""
    end = next_period_start(start, period)
    return (
        UTC.localize(datetime(start.year, start.month, start.day)),
        UTC.localize(datetime(end.year, end.month, end.day)),
    )


def iso_week(start: date) -> Tuple[int, int]:
    """ISO week-year and week number (Thursday rule) of a date."""
    iso = start.isocalendar()
    return iso[0], iso[1]


def period_label(start: date, period: str) -> str:
    """Chart label for a bucket."""
    if period == PERIOD_DAY:
        return start.strftime('%Y-%m-%d')
    if period == PERIOD_WEEK:
        return f"Week {iso_week(start)[1]}"
    if period == PERIOD_MONTH:
        return f"{_MONTHS[start.month - 1]} {start.year}"
    if period == PERIOD_YEAR:
        return str(start.year)
    raise ValueError(f"Unknown period: {period}")

