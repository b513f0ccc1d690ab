"""
Date helpers for the ledger, recurring generator and bill reminders.

All dates travel as `YYYY-MM-DD` strings at the edges and as `datetime.date`
inside the services.
"""

import calendar
from datetime import date, datetime, timedelta

from .errors import ValidationError
from .log import get_logger

logger = get_logger(__name__)

DATE_FORMAT = "%Y-%m-%d"

RECURRING_FREQUENCIES = ("daily", "weekly", "monthly", "yearly")
BILL_FREQUENCIES = ("monthly", "quarterly", "yearly")


def parse_date(value, field="date"):
    """Parse a YYYY-MM-DD string (or pass a date through); ValidationError otherwise."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value or not isinstance(value, str):
        raise ValidationError(f"{field} is required (YYYY-MM-DD)")
    try:
        return datetime.strptime(value.strip(), DATE_FORMAT).date()
    except ValueError:
        raise ValidationError(f"invalid {field} '{value}', use YYYY-MM-DD")


def format_date(d):
    return d.strftime(DATE_FORMAT)


def normalize_date(year, month, day):
    """
    Build a date from possibly out-of-range parts.

    Months outside 1..12 carry into the year and days past the month's end
    roll into the following month: (2026, 2, 31) is 2026-03-03.
    """
    month_index = month - 1
    year += month_index // 12
    month = month_index % 12 + 1
    return date(year, month, 1) + timedelta(days=day - 1)


def add_months(d, months):
    """Add `months` calendar months; a day the target month lacks rolls over (Jan 31 + 1 month = Mar 3)."""
    return normalize_date(d.year, d.month + months, d.day)


def month_bounds(year, month):
    """Return (first day, first day of the following month) for a calendar month."""
    start = date(year, month, 1)
    return start, add_months(start, 1)


def next_occurrence(from_date, rule):
    """
    Compute the occurrence after `from_date` for a recurring rule.

    daily +1 day, weekly +7 days, monthly +1 month, yearly +1 year, all with
    month-end roll-over. A monthly rule with `day` set is then pinned to that
    day of the resulting month, rolling over too when the month is shorter.
    An unknown frequency falls back to monthly.
    """
    frequency = rule.frequency
    if frequency == "daily":
        return from_date + timedelta(days=1)
    if frequency == "weekly":
        return from_date + timedelta(weeks=1)
    if frequency == "yearly":
        return add_months(from_date, 12)

    if frequency != "monthly":
        logger.warning("unknown_recurring_frequency", frequency=frequency, fallback="monthly")
        return add_months(from_date, 1)

    following = add_months(from_date, 1)
    if rule.day:
        following = normalize_date(following.year, following.month, rule.day)
    return following


def advance_due_date(due_date, frequency):
    """Move a bill's due date forward by one billing period (unknown: one month)."""
    if frequency == "quarterly":
        return add_months(due_date, 3)
    if frequency == "yearly":
        return add_months(due_date, 12)
    return add_months(due_date, 1)


def first_due_date(due_day, today):
    """The first due date on or after `today` for a bill due on `due_day` each month."""
    last_day = calendar.monthrange(today.year, today.month)[1]
    candidate = today.replace(day=min(due_day, last_day))
    if candidate < today:
        following = add_months(today.replace(day=1), 1)
        last_day = calendar.monthrange(following.year, following.month)[1]
        candidate = following.replace(day=min(due_day, last_day))
    return candidate
