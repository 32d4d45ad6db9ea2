"""
ISO week calendar math.

Pure functions converting between calendar dates and ISO (year, week) pairs,
computing the Monday-anchored days of a week, and walking workdays.

ISO numbering: week 1 is the week containing the year's first Thursday, weeks
start on Monday, and a year has 52 or 53 weeks. Dec 28 always falls in the
last ISO week of its year, which is how weeks_in_year is derived.
"""

from datetime import date, datetime, timedelta
from typing import Iterable, List, NamedTuple, Optional, Union

from core.config import NON_WORKING_WEEKDAYS
from core.constants import WEEKDAY_NAMES
from core.exceptions import InvalidDate
from utils.datetime_utils import clinic_today, parse_date_string

DateLike = Union[date, str]


class IsoWeek(NamedTuple):
    """An ISO (year, week) pair."""
    year: int
    week: int

    def __str__(self) -> str:
        return f"{self.year}-W{self.week:02d}"


def to_date(value: DateLike) -> date:
    """
    Coerce a date or "YYYY-MM-DD" string to a date.

    Raises:
        InvalidDate: If the string is malformed or out of calendar range
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return parse_date_string(value)
        except ValueError as e:
            raise InvalidDate(str(e)) from e
    raise InvalidDate(f"Expected a date or YYYY-MM-DD string, got {type(value).__name__}")


def make_date(year: int, month: int, day: int) -> date:
    """Build a date, failing with InvalidDate on out-of-range month/day."""
    try:
        return date(year, month, day)
    except (TypeError, ValueError) as e:
        raise InvalidDate(f"Invalid calendar date {year}-{month}-{day}: {e}") from e


def iso_week_of(value: DateLike) -> IsoWeek:
    """Return the ISO (year, week) a date belongs to."""
    iso = to_date(value).isocalendar()
    return IsoWeek(iso[0], iso[1])


def weeks_in_year(year: int) -> int:
    """Return the number of ISO weeks in a year (52 or 53)."""
    if not isinstance(year, int) or year < 1 or year > 9999:
        raise InvalidDate(f"Year out of range: {year!r}")
    # Dec 28 is always in the last ISO week
    return date(year, 12, 28).isocalendar()[1]


def validate_iso_week(year: int, week: int) -> None:
    """
    Ensure (year, week) names an existing ISO week.

    Raises:
        InvalidDate: If week is outside 1..weeks_in_year(year)
    """
    total = weeks_in_year(year)
    if not isinstance(week, int) or week < 1 or week > total:
        raise InvalidDate(f"ISO week {week!r} out of range for {year} (1-{total})")


def monday_of(year: int, week: int) -> date:
    """Return the Monday that starts ISO week (year, week)."""
    validate_iso_week(year, week)
    try:
        return date.fromisocalendar(year, week, 1)
    except ValueError as e:
        raise InvalidDate(f"Invalid ISO week {year}-W{week}: {e}") from e


def days_of_week(year: int, week: int) -> List[date]:
    """Return the 7 dates (Monday to Sunday) of ISO week (year, week)."""
    monday = monday_of(year, week)
    return [monday + timedelta(days=offset) for offset in range(7)]


def shift_week(year: int, week: int, delta: int) -> IsoWeek:
    """
    Move delta weeks forward (or backward) from (year, week).

    Rolls across year boundaries using the actual length of each ISO year,
    so (2025, 1) shifted by -1 is (2024, weeks_in_year(2024)), never week 0.
    """
    validate_iso_week(year, week)
    return iso_week_of(monday_of(year, week) + timedelta(weeks=delta))


def current_week(today: Optional[DateLike] = None) -> IsoWeek:
    """Return the ISO week containing today (clinic-local unless given)."""
    return iso_week_of(today if today is not None else clinic_today())


def previous_week(year: int, week: int) -> IsoWeek:
    """Return the ISO week preceding (year, week)."""
    validate_iso_week(year, week)
    if week > 1:
        return IsoWeek(year, week - 1)
    return IsoWeek(year - 1, weeks_in_year(year - 1))


def next_workday(value: DateLike, non_working_weekdays: Optional[Iterable[int]] = None) -> date:
    """Return the first workday strictly after the given date."""
    closed = _closed_weekdays(non_working_weekdays)
    cursor = to_date(value) + timedelta(days=1)
    while cursor.weekday() in closed:
        cursor += timedelta(days=1)
    return cursor


def workdays_from(
    start: DateLike,
    count: int,
    non_working_weekdays: Optional[Iterable[int]] = None
) -> List[date]:
    """
    Collect `count` workdays starting at `start` (inclusive).

    Advances one calendar day at a time, discarding non-working days, until
    `count` dates are collected.
    """
    if count < 0:
        raise InvalidDate(f"Workday count must not be negative: {count}")
    closed = _closed_weekdays(non_working_weekdays)
    cursor = to_date(start)
    days: List[date] = []
    while len(days) < count:
        if cursor.weekday() not in closed:
            days.append(cursor)
        cursor += timedelta(days=1)
    return days


def weekday_name(value: date) -> str:
    """Return the lower-case English weekday key ("monday".."sunday")."""
    return WEEKDAY_NAMES[value.weekday()]


def _closed_weekdays(non_working_weekdays: Optional[Iterable[int]]) -> set[int]:
    closed = set(NON_WORKING_WEEKDAYS if non_working_weekdays is None else non_working_weekdays)
    if len(closed) >= 7:
        raise InvalidDate("At least one weekday must be a working day")
    return closed
