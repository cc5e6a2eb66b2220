"""
Reporting Period Date Arithmetic

Calendar-date utilities for the dashboard's reporting periods.

Key Concepts:
- All arithmetic is on datetime.date: no time component, no time zone
- Dates cross the API boundary as ISO yyyy-MM-dd strings
- Weekly comparison = same range shifted back 7 days
- Monthly comparison = same range shifted back one calendar month, with the
  day clamped to the target month's length (Jan 31 -> Feb 28/29)
- Monthly breakdown weeks start on Monday
"""
from datetime import date, timedelta
from dataclasses import dataclass
from typing import List, Optional
from enum import Enum
import calendar

# Runaway-loop guard when splitting a range into weeks
MAX_MONTH_WEEKS = 10
WEEK_LENGTH_DAYS = 7


class PeriodType(Enum):
    """Reporting period granularities the dashboard requests."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"

    @classmethod
    def parse(cls, value) -> "PeriodType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            valid = ", ".join(p.value for p in cls)
            raise ValueError(f"Unknown period type '{value}' (expected one of: {valid})")


@dataclass(frozen=True)
class DateRange:
    """An inclusive calendar-date range."""
    start_date: date
    end_date: date

    @property
    def days(self) -> int:
        """Number of days in the range."""
        return (self.end_date - self.start_date).days + 1

    def dates(self) -> List[date]:
        """Every date in the range, in order."""
        return [self.start_date + timedelta(days=i) for i in range(self.days)]

    def shift_days(self, days: int) -> "DateRange":
        return DateRange(self.start_date + timedelta(days=days), self.end_date + timedelta(days=days))

    def shift_months(self, months: int) -> "DateRange":
        return DateRange(add_months(self.start_date, months), add_months(self.end_date, months))

    def to_params(self) -> dict:
        """Query params for the upstream API."""
        return {
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
        }

    def __str__(self) -> str:
        return f"{self.start_date.isoformat()}..{self.end_date.isoformat()}"


@dataclass(frozen=True)
class WeekRange:
    """One Monday-start week of a monthly breakdown."""
    week_key: str
    week_name: str
    start_date: date
    end_date: date

    def to_dict(self) -> dict:
        return {
            "week_key": self.week_key,
            "week_name": self.week_name,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
        }


def parse_iso_date(value) -> Optional[date]:
    """
    Parse an ISO yyyy-MM-dd string.

    Returns:
        The date, or None for empty or unparsable input
    """
    if isinstance(value, date):
        return value
    if not value or not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        return None


def parse_range(start_date, end_date) -> Optional[DateRange]:
    """
    Parse a boundary date pair.

    Returns:
        DateRange, or None when either date is missing or invalid, or start > end
    """
    start = parse_iso_date(start_date)
    end = parse_iso_date(end_date)
    if start is None or end is None or start > end:
        return None
    return DateRange(start, end)


def add_months(d: date, months: int) -> date:
    """
    Shift a date by whole calendar months, clamping the day to the target month.

    Examples:
        add_months(date(2025, 3, 31), -1) -> 2025-02-28
        add_months(date(2024, 3, 31), -1) -> 2024-02-29
    """
    month_index = d.year * 12 + (d.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(d.day, last_day))


def start_of_week(d: date) -> date:
    """Monday on or before d."""
    return d - timedelta(days=d.weekday())


def comparison_range(period: DateRange, period_type: PeriodType) -> Optional[DateRange]:
    """
    The range the period is compared against.

    Weekly and daily compare with the same weekdays one week earlier, monthly
    with the same days one month earlier. Custom ranges have no comparison.
    """
    if period_type in (PeriodType.WEEKLY, PeriodType.DAILY):
        return period.shift_days(-WEEK_LENGTH_DAYS)
    if period_type == PeriodType.MONTHLY:
        return period.shift_months(-1)
    return None


def week_breakdown_dates(period: DateRange) -> Optional[List[date]]:
    """
    The seven consecutive dates of a weekly breakdown.

    Returns:
        List of dates, or None when the range is not exactly seven days long
    """
    if period.days != WEEK_LENGTH_DAYS:
        return None
    return period.dates()


def month_weeks(period: DateRange) -> List[WeekRange]:
    """
    Split a range into Monday-start weeks.

    The first week starts on the Monday on or before the range start; the
    last week's end is clamped to the range end. At most MAX_MONTH_WEEKS
    weeks are produced.
    """
    weeks = []
    week_start = start_of_week(period.start_date)
    week_number = 1

    while week_start <= period.end_date and week_number <= MAX_MONTH_WEEKS:
        week_end = min(week_start + timedelta(days=6), period.end_date)
        weeks.append(WeekRange(
            week_key=f"week_{week_number}",
            week_name=f"Week {week_number}",
            start_date=week_start,
            end_date=week_end,
        ))
        week_start += timedelta(days=WEEK_LENGTH_DAYS)
        week_number += 1

    return weeks


def previous_month_weeks(weeks: List[WeekRange]) -> List[WeekRange]:
    """The same weeks with each boundary shifted back one calendar month."""
    return [
        WeekRange(
            week_key=w.week_key,
            week_name=w.week_name,
            start_date=add_months(w.start_date, -1),
            end_date=add_months(w.end_date, -1),
        )
        for w in weeks
    ]
