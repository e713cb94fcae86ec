"""Core calculation engine for the rent schedule.

This module implements the period schedule calculator: given
``LoanParameters`` it produces one ``PeriodRecord`` per rent payment for the
post-paid and pre-paid equal-installment (annuity) methods, the equal-principal
method and the principal-ratio method. Interest accrues either per period
(rate * interval / 12) or on actual days under a day-count convention, and the
annual rate may be reset part way through the lease.

Amounts are rounded to the configured money places as each period is built.
No period repays more than its opening balance, and the final period's
principal is set to its opening balance so that any rounding residue is
absorbed there and the schedule always ends at exactly zero.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal, getcontext
from typing import Dict, List, Optional, Sequence, Tuple

from .config import DEFAULT_SETTINGS, Settings
from .data_models import (
    BrokerFeeTiming,
    DayCount,
    InterestBasis,
    LoanParameters,
    PeriodRecord,
    RepaymentMethod,
)
from .errors import CalculationError, ValidationError
from .utils import add_months, as_decimal, round_money, year_fraction

getcontext().prec = 28  # increase precision for financial calculations

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")
RATIO_TOLERANCE = Decimal("0.000001")


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _coerce_enum(enum_cls, value, name: str):
    try:
        return enum_cls(value)
    except ValueError as exc:
        choices = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"{name} must be one of: {choices}; got {value!r}") from exc


def _non_negative(value: object, name: str) -> Decimal:
    amount = as_decimal(value, name)
    if amount < 0:
        raise ValidationError(f"{name} must not be negative")
    return amount


def validate_parameters(params: LoanParameters) -> None:
    """Check every ``LoanParameters`` invariant.

    Raises ``ValidationError`` describing the first violation found. Nothing
    is computed before validation succeeds.
    """
    if as_decimal(params.principal, "principal") <= 0:
        raise ValidationError("principal must be positive")
    _non_negative(params.annual_rate, "annual_rate")
    if not _is_int(params.total_periods) or params.total_periods < 1:
        raise ValidationError("total_periods must be an integer of at least 1")
    if not _is_int(params.payment_interval) or params.payment_interval < 1:
        raise ValidationError("payment_interval must be an integer of at least 1 month")
    if not isinstance(params.start_date, date):
        raise ValidationError("start_date must be a date")

    method = _coerce_enum(RepaymentMethod, params.method, "method")
    _coerce_enum(InterestBasis, params.interest_basis, "interest_basis")
    _coerce_enum(DayCount, params.day_count, "day_count")
    _coerce_enum(BrokerFeeTiming, params.broker_fee_timing, "broker_fee_timing")

    _non_negative(params.fee_rate, "fee_rate")
    _non_negative(params.deposit, "deposit")
    _non_negative(params.nominal_price, "nominal_price")
    _non_negative(params.broker_fee_rate, "broker_fee_rate")

    n = params.total_periods
    seen = set()
    for adjustment in params.rate_adjustments or []:
        if not _is_int(adjustment.period) or not 1 <= adjustment.period <= n:
            raise ValidationError(
                f"Rate adjustment period must be between 1 and {n}; got {adjustment.period!r}"
            )
        if adjustment.period in seen:
            raise ValidationError(f"Duplicate rate adjustment for period {adjustment.period}")
        seen.add(adjustment.period)
        _non_negative(adjustment.annual_rate, f"rate adjustment for period {adjustment.period}")

    if params.custom_intervals is not None:
        if len(params.custom_intervals) != n:
            raise ValidationError(
                f"custom_intervals must have {n} entries; got {len(params.custom_intervals)}"
            )
        for months in params.custom_intervals:
            if not _is_int(months) or months < 1:
                raise ValidationError(f"Every custom interval must be at least 1 month; got {months!r}")

    if params.principal_ratios is not None:
        if method is not RepaymentMethod.PRINCIPAL_RATIO:
            raise ValidationError("principal_ratios only apply to the principal-ratio method")
        if len(params.principal_ratios) != n:
            raise ValidationError(
                f"principal_ratios must have {n} entries; got {len(params.principal_ratios)}"
            )
        ratios = [_non_negative(r, "principal ratio") for r in params.principal_ratios]
        if abs(sum(ratios, Decimal("0")) - HUNDRED) > RATIO_TOLERANCE:
            raise ValidationError("principal_ratios must sum to 100")


def default_principal_ratios(total_periods: int) -> List[Decimal]:
    """Even split of 100 % rounded to two places; the last entry takes the rest."""
    share = round_money(HUNDRED / Decimal(total_periods), Decimal("0.01"))
    ratios = [share] * (total_periods - 1)
    ratios.append(HUNDRED - sum(ratios, Decimal("0")))
    return ratios


def _period_intervals(params: LoanParameters) -> List[int]:
    if params.custom_intervals is not None:
        return list(params.custom_intervals)
    return [params.payment_interval] * params.total_periods


def average_payment_interval(params: LoanParameters) -> Decimal:
    """Mean months per period, honouring ``custom_intervals`` when set."""
    intervals = _period_intervals(params)
    return Decimal(sum(intervals)) / Decimal(len(intervals))


def _period_bounds(start: date, intervals: Sequence[int]) -> List[Tuple[date, date]]:
    """Start and end date of each period, always offset from ``start``.

    Offsetting from the disbursement date (rather than chaining from the
    previous period) keeps month-end dates from drifting after February.
    """
    bounds = []
    elapsed = 0
    for months in intervals:
        period_start = add_months(start, elapsed)
        elapsed += months
        bounds.append((period_start, add_months(start, elapsed)))
    return bounds


def _annual_rates(params: LoanParameters) -> List[Decimal]:
    """Annual rate in force for each period after applying rate adjustments."""
    adjustments = {a.period: as_decimal(a.annual_rate, "annual_rate") for a in params.rate_adjustments or []}
    current = as_decimal(params.annual_rate, "annual_rate")
    rates = []
    for period in range(1, params.total_periods + 1):
        current = adjustments.get(period, current)
        rates.append(current)
    return rates


def _period_rate(
    annual_rate: Decimal,
    bounds: Tuple[date, date],
    months: int,
    basis: InterestBasis,
    day_count: DayCount,
) -> Decimal:
    if basis is InterestBasis.DAILY:
        return annual_rate * year_fraction(bounds[0], bounds[1], day_count)
    return annual_rate * Decimal(months) / Decimal(12)


def _level_payment(
    balance: Decimal, rates: Sequence[Decimal], quantum: Decimal, advance: bool = False
) -> Decimal:
    """Return the level installment that amortizes ``balance`` over ``rates``.

    The formula generalizes the annuity payment to per-period rates:

        payment = B / sum_k prod_{j<=k} 1 / (1 + r_j)

    With a constant rate ``r`` over ``n`` periods this is the familiar
    ``B * r / (1 - (1 + r)^-n)``, and with ``r == 0`` it is ``B / n``. For an
    annuity due (``advance``) the first payment is not discounted.
    """
    if not rates:
        raise CalculationError("Cannot amortize over zero periods")
    factor = Decimal("1")
    total = Decimal("0")
    accruals = rates
    if advance:
        total = factor
        accruals = rates[:-1]
    for rate in accruals:
        factor = factor / (Decimal("1") + rate)
        total += factor
    if total == 0:
        raise CalculationError("Annuity discount factors sum to zero")
    return round_money(balance / total, quantum)


def compute_schedule(params: LoanParameters, settings: Optional[Settings] = None) -> List[PeriodRecord]:
    """Compute the rent schedule for a lease.

    Parameters
    ----------
    params: LoanParameters
        Validated before any computation; violations raise ``ValidationError``.
    settings: Settings
        Rounding configuration. Defaults to ``DEFAULT_SETTINGS``.

    Returns
    -------
    List[PeriodRecord]
        One record per period, contiguous from 1. The closing balance of the
        last record is exactly zero.
    """
    settings = settings or DEFAULT_SETTINGS
    validate_parameters(params)

    method = RepaymentMethod(params.method)
    basis = InterestBasis(params.interest_basis)
    day_count = DayCount(params.day_count)
    quantum = settings.money_quantum
    principal_total = as_decimal(params.principal, "principal")
    n = params.total_periods
    advance = method is RepaymentMethod.EQUAL_INSTALLMENT_ADVANCE

    intervals = _period_intervals(params)
    bounds = _period_bounds(params.start_date, intervals)
    annual_rates = _annual_rates(params)
    period_rates = [
        _period_rate(annual_rates[i], bounds[i], intervals[i], basis, day_count) for i in range(n)
    ]

    ratios: Optional[List[Decimal]] = None
    if method is RepaymentMethod.PRINCIPAL_RATIO:
        if params.principal_ratios is not None:
            ratios = [as_decimal(r, "principal ratio") for r in params.principal_ratios]
        else:
            ratios = default_principal_ratios(n)
    even_principal = round_money(principal_total / Decimal(n), quantum)

    schedule: List[PeriodRecord] = []
    balance = principal_total
    installment: Optional[Decimal] = None

    for index in range(n):
        period = index + 1
        start, end = bounds[index]
        opening = balance
        last = period == n

        if method in (RepaymentMethod.EQUAL_INSTALLMENT, RepaymentMethod.EQUAL_INSTALLMENT_ADVANCE):
            if advance:
                # Rent is paid up front, so it carries the interest accrued
                # over the previous period.
                interest = Decimal("0") if index == 0 else round_money(opening * period_rates[index - 1], quantum)
            else:
                interest = round_money(opening * period_rates[index], quantum)
            if installment is None or annual_rates[index] != annual_rates[index - 1]:
                outstanding = opening + interest if advance else opening
                # The rate now in force is held flat over the remaining periods.
                remaining = [
                    _period_rate(annual_rates[index], bounds[j], intervals[j], basis, day_count)
                    for j in range(index, n)
                ]
                installment = _level_payment(outstanding, remaining, quantum, advance=advance)
                logger.debug("Period %d: level installment set to %s", period, installment)
            principal = installment - interest
        else:
            interest = round_money(opening * period_rates[index], quantum)
            if method is RepaymentMethod.EQUAL_PRINCIPAL:
                principal = even_principal
            else:
                principal = round_money(principal_total * ratios[index] / HUNDRED, quantum)

        if last:
            principal = opening
        else:
            principal = min(principal, opening)
        closing = opening - principal
        balance = closing

        schedule.append(
            PeriodRecord(
                period=period,
                start_date=start,
                end_date=end,
                payment_date=start if advance else end,
                opening_balance=opening,
                payment=principal + interest,
                interest=interest,
                principal=principal,
                closing_balance=closing,
                annual_rate=annual_rates[index],
                principal_ratio=ratios[index] if ratios is not None else None,
            )
        )

    logger.debug(
        "Computed %d-period %s schedule for principal %s", n, method.value, principal_total
    )
    return schedule


def summarize_schedule(schedule: Sequence[PeriodRecord]) -> Dict[str, object]:
    """Aggregate metrics for a schedule: totals, dates and the largest payment."""
    if not schedule:
        raise ValidationError("Schedule is empty")
    total_interest = sum((r.interest for r in schedule), Decimal("0"))
    total_principal = sum((r.principal for r in schedule), Decimal("0"))
    total_payment = sum((r.payment for r in schedule), Decimal("0"))
    return {
        "principal": float(schedule[0].opening_balance),
        "total_interest": float(total_interest),
        "total_principal": float(total_principal),
        "total_payment": float(total_payment),
        "periods": len(schedule),
        "first_payment_date": schedule[0].payment_date.isoformat(),
        "last_payment_date": schedule[-1].payment_date.isoformat(),
        "max_payment": float(max(r.payment for r in schedule)),
    }
