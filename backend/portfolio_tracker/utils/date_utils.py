# backend/portfolio_tracker/utils/date_utils.py
"""
Date utility functions for the portfolio tracker.

This module provides shared date manipulation functions used across
multiple services. Centralizing these prevents code duplication and
ensures consistent behavior.

Usage:
    from portfolio_tracker.utils.date_utils import subtract_months, iter_dates

    start = subtract_months(date.today(), 3)
"""

import calendar
from collections.abc import Iterator
from datetime import date, timedelta


def subtract_months(d: date, months: int) -> date:
    """
    Move a date back by a number of calendar months.

    The day is clamped to the last day of the target month, so
    March 31 minus one month is February 28 (or 29).

    Args:
        d: Starting date
        months: Number of months to go back (>= 0)

    Returns:
        The shifted date

    Example:
        >>> subtract_months(date(2024, 3, 31), 1)
        datetime.date(2024, 2, 29)
    """
    total = d.year * 12 + (d.month - 1) - months
    year, month = divmod(total, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(d.day, last_day))


def iter_dates(start_date: date, end_date: date) -> Iterator[date]:
    """
    Yield every calendar day from start_date to end_date (inclusive).

    Yields nothing when start_date is after end_date.
    """
    current = start_date
    while current <= end_date:
        yield current
        current += timedelta(days=1)
