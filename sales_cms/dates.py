"""
Date Utilities

Due-date arithmetic and the injectable clock used for overdue / next-due
judgments. Pure functions never read the system clock directly.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta
from typing import Union
import calendar

from .errors import ValidationError


DateLike = Union[date, datetime, str]


def parse_date(value: DateLike, field_name: str = "date") -> date:
    """
    Parse a due/payment date

    Args:
        value: date, datetime, or ISO string (YYYY-MM-DD)
        field_name: Name used in the error message

    Returns:
        date value

    Raises:
        ValidationError: If the value is missing or unparseable
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            raise ValidationError(f"Unparseable {field_name}: '{value}'")
    raise ValidationError(f"Unparseable {field_name}: {value!r}")


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, clamping to the last day of shorter months"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def add_days(start_date: date, days: int) -> date:
    return start_date + timedelta(days=days)


def month_key(value: date) -> str:
    """Grouping key for monthly reports, e.g. '2025-03'"""
    return f"{value.year:04d}-{value.month:02d}"


class Clock(ABC):
    """Supplies 'today' for overdue and next-due computations"""

    @abstractmethod
    def today(self) -> date:
        pass


class SystemClock(Clock):
    """Clock backed by the host's local date"""

    def today(self) -> date:
        return date.today()


class FixedClock(Clock):
    """Clock pinned to a given date (tests, back-dated reports)"""

    def __init__(self, current: DateLike):
        self.current = parse_date(current)

    def today(self) -> date:
        return self.current

    def advance(self, days: int = 1) -> date:
        self.current = self.current + timedelta(days=days)
        return self.current
