"""Utility functions for the lease calculator.

This module provides helpers for parsing user input into Python data types,
for date arithmetic (adding months, day-count year fractions) and for rounding
money amounts the way the rent tables expect.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, getcontext

from .data_models import DayCount
from .errors import ValidationError

getcontext().prec = 28  # increase decimal precision to avoid rounding errors

_DAY_COUNT_BASIS = {
    DayCount.ACT_360: 360,
    DayCount.ACT_365: 365,
}


def parse_date(value: str) -> date:
    """Parse a ``YYYY-MM-DD`` string into a ``date``.

    A bare ``YYYY-MM`` is accepted as well and maps to the first day of the
    month.

    Raises
    ------
    ValueError
        If the string is not a valid date.
    """
    text = value.strip()
    for fmt in ("%Y-%m-%d", "%Y-%m"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Invalid date string: {value}")


def add_months(dt: date, months: int) -> date:
    """Return a new date a number of months after ``dt``.

    The day of the month is clamped to the last valid day if needed (e.g.,
    adding one month to Jan 31 yields Feb 28 or 29).
    """
    year = dt.year + (dt.month - 1 + months) // 12
    month = (dt.month - 1 + months) % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def day_count_basis(day_count: DayCount) -> int:
    """Return the denominator (days per year) of a day-count convention."""
    return _DAY_COUNT_BASIS[DayCount(day_count)]


def year_fraction(start: date, end: date, day_count: DayCount) -> Decimal:
    """Actual days between ``start`` and ``end`` over the convention's basis."""
    return Decimal((end - start).days) / Decimal(day_count_basis(day_count))


def decimal_from_str(value: str) -> Decimal:
    """Convert a numeric string into a ``Decimal``.

    The function strips any commas and handles both integer and float-like
    strings. It raises ``ValueError`` if conversion fails.
    """
    try:
        cleaned = str(value).replace(",", "").strip()
        result = Decimal(cleaned)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Invalid numeric value: {value}") from exc
    if not result.is_finite():
        raise ValueError(f"Invalid numeric value: {value}")
    return result


def as_decimal(value: object, name: str) -> Decimal:
    """Coerce a numeric input to ``Decimal`` or raise ``ValidationError``.

    Floats go through ``repr`` so ``0.045`` becomes ``Decimal("0.045")``
    rather than its binary expansion. Booleans are rejected.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be numeric, got {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(repr(value))
    elif isinstance(value, str):
        try:
            result = decimal_from_str(value)
        except ValueError as exc:
            raise ValidationError(f"{name} must be numeric, got {value!r}") from exc
    else:
        raise ValidationError(f"{name} must be numeric, got {value!r}")
    if not result.is_finite():
        raise ValidationError(f"{name} must be finite, got {value!r}")
    return result


def round_money(amount: Decimal, quantum: Decimal) -> Decimal:
    """Round half-up to ``quantum`` (``Decimal("0.01")`` for cents)."""
    return amount.quantize(quantum, rounding=ROUND_HALF_UP)
