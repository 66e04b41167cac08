"""Fiscal year utilities for water bill periods.

Period ids have the form 'YYYY-MM' where YYYY is the fiscal year (named by
the calendar year in which it ends) and MM is the fiscal month, 00-11.
With a July start, FY 2026 runs from July 2025 ('2026-00') through
June 2026 ('2026-11'). A start month of 1 makes fiscal and calendar years
identical.
"""

import re
from datetime import date

from waterbills.services.errors import InvalidPeriod

MONTH_NAMES_SHORT = [
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
]

_PERIOD_RE = re.compile(r"^(\d{4})-(\d{2})$")


def _check_start_month(start_month: int) -> None:
    if not 1 <= start_month <= 12:
        raise ValueError(f"fiscal year start month must be between 1 and 12, got {start_month}")


def fiscal_year_for(day: date, start_month: int = 7) -> int:
    """Fiscal year containing the given date.

    Example:
        fiscal_year_for(date(2025, 7, 15), 7) => 2026
        fiscal_year_for(date(2025, 6, 15), 7) => 2025
    """
    _check_start_month(start_month)
    if start_month == 1:
        return day.year
    return day.year + 1 if day.month >= start_month else day.year


def fiscal_month_for(day: date, start_month: int = 7) -> int:
    """Zero-based fiscal month of the given date."""
    _check_start_month(start_month)
    return (day.month - start_month) % 12


def period_id(fiscal_year: int, fiscal_month: int) -> str:
    """Build a period id from its parts."""
    if not 0 <= fiscal_month <= 11:
        raise InvalidPeriod(f"fiscal month must be between 0 and 11, got {fiscal_month}")
    return f"{fiscal_year:04d}-{fiscal_month:02d}"


def parse_period_id(value: str) -> tuple[int, int]:
    """Split a period id into (fiscal_year, fiscal_month).

    Raises:
        InvalidPeriod: If the id is not 'YYYY-MM' with a month in 00-11
    """
    match = _PERIOD_RE.match(value or "")
    if not match:
        raise InvalidPeriod(f"Malformed period id '{value}' (expected 'YYYY-MM')", period_id=value)
    fiscal_year, fiscal_month = int(match.group(1)), int(match.group(2))
    if fiscal_month > 11:
        raise InvalidPeriod(f"Fiscal month out of range in period id '{value}'", period_id=value)
    return fiscal_year, fiscal_month


def period_for(day: date, start_month: int = 7) -> str:
    """Period id of the fiscal month containing the given date."""
    return period_id(fiscal_year_for(day, start_month), fiscal_month_for(day, start_month))


def calendar_month(value: str, start_month: int = 7) -> tuple[int, int]:
    """Calendar (year, month) of a period id."""
    _check_start_month(start_month)
    fiscal_year, fiscal_month = parse_period_id(value)
    offset = start_month - 1 + fiscal_month
    month = offset % 12 + 1
    if start_month == 1:
        return fiscal_year, month
    return fiscal_year - 1 + offset // 12, month


def period_start(value: str, start_month: int = 7) -> date:
    """First calendar day of a period; bills fall due on this day by default."""
    year, month = calendar_month(value, start_month)
    return date(year, month, 1)


def period_label(value: str, start_month: int = 7) -> str:
    """Readable label such as 'Jul 2025'."""
    year, month = calendar_month(value, start_month)
    return f"{MONTH_NAMES_SHORT[month - 1]} {year}"


def months_between(start: date, end: date) -> int:
    """Calendar months from start to end, ignoring the day of month (never negative)."""
    months = (end.year - start.year) * 12 + (end.month - start.month)
    return max(0, months)


__all__ = [
    "MONTH_NAMES_SHORT",
    "fiscal_year_for",
    "fiscal_month_for",
    "period_id",
    "parse_period_id",
    "period_for",
    "calendar_month",
    "period_start",
    "period_label",
    "months_between",
]
