"""Bracketed root finding for comprehensive (internal) rates.

The comprehensive rate of a cash-flow sequence is the discount rate at which
its net present value is zero. Both the period-indexed and the date-based
variants are solved by bisection over an explicit bracket, which always
converges when the bracket holds a sign change. Failure to bracket a root, or
to narrow it within the iteration cap, raises ``ConvergenceError`` instead of
returning an approximate value.
"""

from __future__ import annotations

import logging
import math
from datetime import date
from typing import Callable, Sequence

from .errors import CalculationError, ConvergenceError, ValidationError

logger = logging.getLogger(__name__)

DAYS_PER_YEAR = 365.0


def npv(rate: float, amounts: Sequence[float]) -> float:
    """Net present value with the k-th amount discounted by ``(1 + rate)^k``."""
    return sum(amount / (1.0 + rate) ** k for k, amount in enumerate(amounts))


def xnpv(rate: float, amounts: Sequence[float], dates: Sequence[date]) -> float:
    """Net present value discounting on actual/365 year fractions from the first date."""
    origin = dates[0]
    return sum(
        amount / (1.0 + rate) ** ((when - origin).days / DAYS_PER_YEAR)
        for amount, when in zip(amounts, dates)
    )


def _bracket_value(rate: float, amounts: Sequence[float], times: Sequence[float]) -> float:
    """Present value rescaled so float powers stay in range.

    For non-negative rates every discount factor is at most one. For negative
    rates the sum is multiplied by (1 + rate)^T, T being the latest time,
    which turns every factor into a power of at most one as well. The scale is
    positive, so the sign, and therefore the root, is unchanged.
    """
    growth = 1.0 + rate
    if rate >= 0:
        return sum(amount * growth ** -t for amount, t in zip(amounts, times))
    horizon = max(times)
    return sum(amount * growth ** (horizon - t) for amount, t in zip(amounts, times))


def _evaluate(func: Callable[[float], float], rate: float) -> float:
    try:
        value = func(rate)
    except (OverflowError, ZeroDivisionError) as exc:
        raise CalculationError(f"Present value is not finite at rate {rate}") from exc
    if not math.isfinite(value):
        raise CalculationError(f"Present value is not finite at rate {rate}")
    return value


def bisect(
    func: Callable[[float], float],
    lower: float,
    upper: float,
    tolerance: float = 1e-8,
    max_iterations: int = 100,
) -> float:
    """Find a root of ``func`` in ``[lower, upper]`` by bisection.

    Raises
    ------
    ConvergenceError
        When ``func`` has the same sign at both ends of the bracket, or the
        bracket is still wider than ``tolerance`` after ``max_iterations``.
    """
    f_lower = _evaluate(func, lower)
    if f_lower == 0:
        return lower
    f_upper = _evaluate(func, upper)
    if f_upper == 0:
        return upper
    if (f_lower > 0) == (f_upper > 0):
        raise ConvergenceError(
            f"No sign change between rates {lower} and {upper}; the cash flows have no rate in this bracket"
        )

    for iteration in range(1, max_iterations + 1):
        mid = (lower + upper) / 2.0
        f_mid = _evaluate(func, mid)
        if f_mid == 0 or (upper - lower) / 2.0 < tolerance:
            logger.debug("Bisection converged to %.10f after %d iterations", mid, iteration)
            return mid
        if (f_mid > 0) == (f_lower > 0):
            lower, f_lower = mid, f_mid
        else:
            upper = mid
    raise ConvergenceError(f"Rate did not converge within {max_iterations} iterations")


def solve_rate(
    amounts: Sequence[float],
    lower: float,
    upper: float,
    tolerance: float = 1e-8,
    max_iterations: int = 100,
) -> float:
    """Periodic internal rate of ``amounts`` (position k is period k)."""
    if len(amounts) < 2:
        raise ValidationError("At least two cash flows are needed to solve a rate")
    times = [float(k) for k in range(len(amounts))]
    return bisect(lambda r: _bracket_value(r, amounts, times), lower, upper, tolerance, max_iterations)


def solve_annual_rate(
    amounts: Sequence[float],
    dates: Sequence[date],
    lower: float,
    upper: float,
    tolerance: float = 1e-8,
    max_iterations: int = 100,
) -> float:
    """Annual internal rate of dated ``amounts`` (XIRR convention)."""
    if len(amounts) != len(dates):
        raise ValidationError("Every cash flow needs a date")
    if len(amounts) < 2:
        raise ValidationError("At least two cash flows are needed to solve a rate")
    if all(when == dates[0] for when in dates):
        raise CalculationError("All cash flows fall on the same date; no annual rate exists")
    times = [(when - dates[0]).days / DAYS_PER_YEAR for when in dates]
    return bisect(lambda r: _bracket_value(r, amounts, times), lower, upper, tolerance, max_iterations)
