"""Cash-flow table and comprehensive rate for a rent schedule.

The cash-flow table is built from the lessor's point of view. Period 0 is the
disbursement (principal paid out, upfront fee and deposit received). Every
later period collects the scheduled rent, and the last period also refunds the
deposit and collects the nominal purchase price. Broker fees are paid out at
the configured timing.

The comprehensive rate is the internal rate of return of the signed net
amounts. The period-indexed rate is annualised by the number of payments per
year. Both it and the date-based XIRR are reported with and without broker
fees.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional, Sequence, Union

from .config import DEFAULT_SETTINGS, Settings
from .data_models import (
    BrokerFeeTiming,
    CashFlowRecord,
    CashFlowTerms,
    ComprehensiveRateSummary,
    LoanParameters,
    PeriodRecord,
)
from .engine import compute_schedule
from .errors import ValidationError
from .solver import solve_annual_rate, solve_rate
from .utils import as_decimal, round_money

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
COMPONENTS = ("disbursement", "repayment", "fee", "deposit", "nominal_price", "broker_fee", "bill_interest")


def _broker_fee_periods(timing: BrokerFeeTiming, total_periods: int) -> List[int]:
    """Cash-flow periods that carry a broker fee installment."""
    if timing is BrokerFeeTiming.AT_DISBURSEMENT:
        return [0]
    if timing is BrokerFeeTiming.FIRST_PERIOD:
        return [1]
    middle = 1 + int((Decimal(total_periods) / 2).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return [1, min(middle, total_periods), total_periods]


def _broker_fees(
    principal: Decimal, terms: CashFlowTerms, total_periods: int, quantum: Decimal
) -> Dict[int, Decimal]:
    total = round_money(principal * as_decimal(terms.broker_fee_rate, "broker_fee_rate"), quantum)
    fees: Dict[int, Decimal] = {}
    if total == 0:
        return fees
    periods = _broker_fee_periods(BrokerFeeTiming(terms.broker_fee_timing), total_periods)
    share = round_money(total / Decimal(len(periods)), quantum)
    for position, period in enumerate(periods):
        amount = share if position < len(periods) - 1 else total - share * (len(periods) - 1)
        fees[period] = fees.get(period, ZERO) - amount
    return fees


def _remark(period: int, values: Dict[str, Decimal]) -> str:
    parts = []
    if values["disbursement"]:
        parts.append("disbursement")
    if values["repayment"]:
        parts.append(f"rent {period}")
    if values["fee"]:
        parts.append("upfront fee")
    if values["deposit"] > 0:
        parts.append("deposit received")
    elif values["deposit"] < 0:
        parts.append("deposit refunded")
    if values["nominal_price"]:
        parts.append("nominal price")
    if values["broker_fee"]:
        parts.append("broker fee")
    if values["bill_interest"]:
        parts.append("bill interest")
    return "/".join(parts)


def build_cash_flow_records(rows: Sequence[Dict[str, object]]) -> List[CashFlowRecord]:
    """Turn component dicts into records with net and cumulative amounts."""
    records: List[CashFlowRecord] = []
    cumulative = ZERO
    for row in rows:
        values = {name: row.get(name, ZERO) for name in COMPONENTS}
        net = sum(values.values(), ZERO)
        cumulative += net
        records.append(
            CashFlowRecord(
                period=row["period"],
                date=row["date"],
                net_amount=net,
                cumulative_balance=cumulative,
                remark=row.get("remark") or _remark(row["period"], values),
                **values,
            )
        )
    return records


def compute_cash_flow(
    schedule: Sequence[PeriodRecord],
    fee_rate: Decimal = ZERO,
    terms: Optional[CashFlowTerms] = None,
    settings: Optional[Settings] = None,
) -> List[CashFlowRecord]:
    """Derive the signed cash-flow table from a rent schedule.

    Parameters
    ----------
    schedule: Sequence[PeriodRecord]
        Output of ``compute_schedule``; must not be empty.
    fee_rate: Decimal
        Upfront fee as a fraction of principal, received at disbursement.
    terms: CashFlowTerms
        Deposit, nominal price and broker fee. Defaults to none of them.

    Returns
    -------
    List[CashFlowRecord]
        ``len(schedule) + 1`` records; period 0 is the disbursement.
    """
    if not schedule:
        raise ValidationError("Cannot build a cash flow from an empty schedule")
    settings = settings or DEFAULT_SETTINGS
    terms = terms or CashFlowTerms()
    quantum = settings.money_quantum
    fee_rate = as_decimal(fee_rate, "fee_rate")
    deposit = as_decimal(terms.deposit, "deposit")
    nominal_price = as_decimal(terms.nominal_price, "nominal_price")
    if fee_rate < 0 or deposit < 0 or nominal_price < 0 or as_decimal(terms.broker_fee_rate, "broker_fee_rate") < 0:
        raise ValidationError("Fee rate, deposit, nominal price and broker fee rate must not be negative")

    principal = schedule[0].opening_balance
    total_periods = len(schedule)
    broker_fees = _broker_fees(principal, terms, total_periods, quantum)

    rows: List[Dict[str, object]] = [
        {
            "period": 0,
            "date": schedule[0].start_date,
            "disbursement": -principal,
            "fee": round_money(principal * fee_rate, quantum),
            "deposit": deposit,
            "broker_fee": broker_fees.get(0, ZERO),
        }
    ]
    for record in schedule:
        row: Dict[str, object] = {
            "period": record.period,
            "date": record.payment_date,
            "repayment": record.principal + record.interest,
            "broker_fee": broker_fees.get(record.period, ZERO),
        }
        if record.period == total_periods:
            row["deposit"] = -deposit
            row["nominal_price"] = nominal_price
        rows.append(row)

    records = build_cash_flow_records(rows)
    logger.debug("Built %d cash-flow records, net total %s", len(records), records[-1].cumulative_balance)
    return records


def compute_cash_flow_for(params: LoanParameters, settings: Optional[Settings] = None) -> List[CashFlowRecord]:
    """Run the schedule and the cash-flow table for ``params`` in one call."""
    schedule = compute_schedule(params, settings)
    terms = CashFlowTerms(
        deposit=params.deposit,
        nominal_price=params.nominal_price,
        broker_fee_rate=params.broker_fee_rate,
        broker_fee_timing=params.broker_fee_timing,
    )
    return compute_cash_flow(schedule, params.fee_rate, terms, settings)


def cash_flow_totals(cash_flow: Sequence[CashFlowRecord]) -> Dict[str, Decimal]:
    """Sum of each component and of the net amount over the whole table."""
    totals = {name: ZERO for name in COMPONENTS + ("net_amount",)}
    for record in cash_flow:
        for name in totals:
            totals[name] += getattr(record, name)
    return totals


def _to_decimal_rate(rate: float) -> Decimal:
    return Decimal(repr(rate)).quantize(Decimal("1E-10"), rounding=ROUND_HALF_UP)


def compute_comprehensive_rate(
    cash_flow: Sequence[CashFlowRecord],
    include_broker: bool = True,
    settings: Optional[Settings] = None,
) -> Decimal:
    """Periodic rate at which the net amounts have zero present value.

    The k-th record is discounted by ``(1 + r)^k``. With ``include_broker``
    false the broker fees are left out, which is the rate the customer sees.
    Raises ``ValidationError`` for an empty table and ``ConvergenceError``
    when no rate in the configured bracket balances the flows.
    """
    if not cash_flow:
        raise ValidationError("Cannot compute a rate for an empty cash flow")
    settings = settings or DEFAULT_SETTINGS
    rate = solve_rate(
        [
            float(record.net_amount if include_broker else record.net_amount_excluding_broker)
            for record in cash_flow
        ],
        settings.solver_lower,
        settings.solver_upper,
        settings.solver_tolerance,
        settings.solver_max_iterations,
    )
    return _to_decimal_rate(rate)


def compute_xirr(
    cash_flow: Sequence[CashFlowRecord],
    include_broker: bool = True,
    settings: Optional[Settings] = None,
) -> Decimal:
    """Annual rate on actual dates (actual/365), optionally ignoring broker fees."""
    if not cash_flow:
        raise ValidationError("Cannot compute a rate for an empty cash flow")
    settings = settings or DEFAULT_SETTINGS
    amounts = [
        float(record.net_amount if include_broker else record.net_amount_excluding_broker)
        for record in cash_flow
    ]
    dates: List[date] = [record.date for record in cash_flow]
    rate = solve_annual_rate(
        amounts,
        dates,
        settings.solver_lower,
        settings.xirr_upper,
        settings.solver_tolerance,
        settings.solver_max_iterations,
    )
    return _to_decimal_rate(rate)


def summarize_comprehensive_rate(
    cash_flow: Sequence[CashFlowRecord],
    payment_interval: Union[int, Decimal],
    settings: Optional[Settings] = None,
) -> ComprehensiveRateSummary:
    """Periodic, annualised and date-based comprehensive rates of a cash flow.

    ``payment_interval`` is the mean number of months per period (see
    ``average_payment_interval`` for schedules with custom intervals).
    ``annual_rate`` is the periodic rate times the payments per year
    (``12 / payment_interval``). The broker fee impact is the XIRR with broker
    fees minus the XIRR without them, so it is negative when the lessor pays a
    broker.
    """
    if isinstance(payment_interval, bool) or not isinstance(payment_interval, (int, Decimal)):
        raise ValidationError("payment_interval must be a number of months")
    if payment_interval <= 0:
        raise ValidationError("payment_interval must be positive")
    periodic = compute_comprehensive_rate(cash_flow, True, settings)
    periods_per_year = Decimal(12) / Decimal(payment_interval)
    xirr = compute_xirr(cash_flow, True, settings)
    if any(record.broker_fee for record in cash_flow):
        periodic_excluding_broker = compute_comprehensive_rate(cash_flow, False, settings)
        xirr_excluding_broker = compute_xirr(cash_flow, False, settings)
    else:
        periodic_excluding_broker = periodic
        xirr_excluding_broker = xirr
    return ComprehensiveRateSummary(
        periodic_rate=periodic,
        periods_per_year=periods_per_year,
        annual_rate=periodic * periods_per_year,
        periodic_rate_excluding_broker=periodic_excluding_broker,
        annual_rate_excluding_broker=periodic_excluding_broker * periods_per_year,
        xirr=xirr,
        xirr_excluding_broker=xirr_excluding_broker,
        broker_fee_impact=xirr - xirr_excluding_broker,
    )
