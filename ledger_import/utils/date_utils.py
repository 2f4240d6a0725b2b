"""Date manipulation utilities"""

import calendar
from datetime import date
from typing import Tuple


def parse_year_month(year_month: str) -> Tuple[int, int]:
    """Split a YYYY-MM string into (year, month)"""
    year, month = year_month.split("-")
    return int(year), int(month)


def format_year_month(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def year_month_of(day: date) -> str:
    """YYYY-MM of a date"""
    return format_year_month(day.year, day.month)


def add_months(year_month: str, months: int) -> str:
    """Shift a YYYY-MM string by a (possibly negative) number of months"""
    year, month = parse_year_month(year_month)
    index = year * 12 + (month - 1) + months
    return format_year_month(index // 12, index % 12 + 1)


def clamped_date(year: int, month: int, day: int) -> date:
    """Build a date, clamping the day to the last day of the month (Feb 30 -> Feb 28/29)"""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last_day))


def day_in_month(year_month: str, day: int) -> date:
    year, month = parse_year_month(year_month)
    return clamped_date(year, month, day)


def shift_date_by_months(from_date: date, months: int) -> date:
    """Same day-of-month `months` later (or earlier), clamped to month length"""
    shifted = add_months(year_month_of(from_date), months)
    return day_in_month(shifted, from_date.day)
