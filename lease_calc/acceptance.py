"""Bank-acceptance bill variant.

A bank-acceptance bill is a discounted short-term instrument: the holder pays
the face value less a discount fee at issuance and receives the face value at
maturity. The discount fee accrues on the face value for the tenor under a
configurable day-count convention (actual/360 by default, or actual/365).

A lease can also be funded with bills instead of a single wire transfer. Each
bill tranche pays a margin when the bill is issued and the rest of its face
value when it matures, earning interest income on the way.

The resulting cash-flow records use the same ``CashFlowRecord`` shape as the
lease table, so they feed straight into the comprehensive-rate functions.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from .cashflow import build_cash_flow_records, compute_cash_flow_for
from .config import DEFAULT_SETTINGS, Settings
from .data_models import (
    BankAcceptanceParameters,
    BankAcceptanceQuote,
    CashFlowRecord,
    DayCount,
    Disbursement,
    DisbursementKind,
    LoanParameters,
)
from .errors import ValidationError
from .utils import add_months, as_decimal, day_count_basis, round_money

logger = logging.getLogger(__name__)


def _validate(params: BankAcceptanceParameters) -> None:
    if as_decimal(params.face_value, "face_value") <= 0:
        raise ValidationError("face_value must be positive")
    if as_decimal(params.discount_rate, "discount_rate") < 0:
        raise ValidationError("discount_rate must not be negative")
    if as_decimal(params.handling_fee_rate, "handling_fee_rate") < 0:
        raise ValidationError("handling_fee_rate must not be negative")
    if not isinstance(params.tenor_days, int) or isinstance(params.tenor_days, bool) or params.tenor_days < 1:
        raise ValidationError("tenor_days must be an integer of at least 1")
    if not isinstance(params.issue_date, date):
        raise ValidationError("issue_date must be a date")
    try:
        DayCount(params.day_count)
    except ValueError as exc:
        raise ValidationError(f"Unsupported day count: {params.day_count!r}") from exc


def quote_bank_acceptance(
    params: BankAcceptanceParameters, settings: Optional[Settings] = None
) -> BankAcceptanceQuote:
    """Price a bill: discount fee, handling fee, net proceeds and maturity.

    ``effective_rate`` is the simple annual yield on the net proceeds,
    ``fees / net_proceeds * basis / tenor_days``.
    """
    settings = settings or DEFAULT_SETTINGS
    _validate(params)
    quantum = settings.money_quantum
    face = as_decimal(params.face_value, "face_value")
    basis = Decimal(day_count_basis(DayCount(params.day_count)))
    tenor = Decimal(params.tenor_days)

    discount_fee = round_money(face * as_decimal(params.discount_rate, "discount_rate") * tenor / basis, quantum)
    handling_fee = round_money(face * as_decimal(params.handling_fee_rate, "handling_fee_rate"), quantum)
    net_proceeds = face - discount_fee - handling_fee
    if net_proceeds <= 0:
        raise ValidationError("Discount and handling fees consume the whole face value")

    quote = BankAcceptanceQuote(
        discount_fee=discount_fee,
        handling_fee=handling_fee,
        net_proceeds=net_proceeds,
        maturity_date=params.issue_date + timedelta(days=params.tenor_days),
        effective_rate=(discount_fee + handling_fee) / net_proceeds * basis / tenor,
    )
    logger.debug("Quoted bill %s: discount fee %s, net proceeds %s", face, discount_fee, net_proceeds)
    return quote


def compute_bank_acceptance_cash_flow(
    params: BankAcceptanceParameters, settings: Optional[Settings] = None
) -> List[CashFlowRecord]:
    """Two-record cash flow of a discounted bill, from the holder's side.

    Period 0 (issue date) pays out the face value and keeps the fees, so its
    net amount is minus the net proceeds. Period 1 (maturity) collects the
    face value.
    """
    quote = quote_bank_acceptance(params, settings)
    face = as_decimal(params.face_value, "face_value")
    return build_cash_flow_records(
        [
            {
                "period": 0,
                "date": params.issue_date,
                "disbursement": -face,
                "fee": quote.discount_fee + quote.handling_fee,
                "remark": "bill discounted",
            },
            {
                "period": 1,
                "date": quote.maturity_date,
                "repayment": face,
                "remark": "bill matured",
            },
        ]
    )


def _validate_disbursements(params: LoanParameters, disbursements: Sequence[Disbursement]) -> None:
    if not disbursements:
        raise ValidationError("At least one disbursement is required")
    total = Decimal("0")
    for position, item in enumerate(disbursements, start=1):
        label = f"disbursement {position}"
        try:
            kind = DisbursementKind(item.kind)
        except ValueError as exc:
            raise ValidationError(f"{label}: unsupported kind {item.kind!r}") from exc
        if not isinstance(item.date, date):
            raise ValidationError(f"{label}: date must be a date")
        amount = as_decimal(item.amount, f"{label} amount")
        if amount <= 0:
            raise ValidationError(f"{label}: amount must be positive")
        total += amount
        for name in ("handling_fee_rate", "interest_income_rate", "deposit", "broker_fee", "margin"):
            if as_decimal(getattr(item, name), f"{label} {name}") < 0:
                raise ValidationError(f"{label}: {name} must not be negative")
        tail_months = item.tail_months
        if not isinstance(tail_months, int) or isinstance(tail_months, bool):
            raise ValidationError(f"{label}: tail_months must be an integer")
        if kind is DisbursementKind.BILL:
            if as_decimal(item.margin, "margin") > amount:
                raise ValidationError(f"{label}: margin cannot exceed the bill amount")
            if tail_months < 1:
                raise ValidationError(f"{label}: a bill needs at least one month to maturity")
        elif (
            as_decimal(item.margin, "margin")
            or tail_months
            or as_decimal(item.handling_fee_rate, "handling_fee_rate")
            or as_decimal(item.interest_income_rate, "interest_income_rate")
        ):
            raise ValidationError(f"{label}: margin, tail and bill rates only apply to bank-acceptance bills")
    principal = as_decimal(params.principal, "principal")
    if total != principal:
        raise ValidationError(f"Disbursements add up to {total}, not the principal {principal}")


def _tranche_rows(item: Disbursement, quantum: Decimal) -> List[Dict[str, object]]:
    """Cash-flow rows of one tranche: one for a wire, issue and maturity for a bill."""
    amount = as_decimal(item.amount, "amount")
    deposit = as_decimal(item.deposit, "deposit")
    broker_fee = as_decimal(item.broker_fee, "broker_fee")
    extras = []
    if deposit:
        extras.append("deposit received")
    if broker_fee:
        extras.append("broker fee")

    if DisbursementKind(item.kind) is DisbursementKind.WIRE:
        return [
            {
                "date": item.date,
                "disbursement": -amount,
                "deposit": deposit,
                "broker_fee": -broker_fee,
                "remark": "/".join(["wire disbursement"] + extras),
            }
        ]

    margin = as_decimal(item.margin, "margin")
    handling_fee = round_money(amount * as_decimal(item.handling_fee_rate, "handling_fee_rate"), quantum)
    interest = round_money(amount * as_decimal(item.interest_income_rate, "interest_income_rate"), quantum)
    issue_parts = ["bill margin"] + (["handling fee"] if handling_fee else []) + extras
    tail_parts = ["bill tail"] + (["bill interest"] if interest else [])
    return [
        {
            "date": item.date,
            "disbursement": -margin,
            "fee": -handling_fee,
            "deposit": deposit,
            "broker_fee": -broker_fee,
            "remark": "/".join(issue_parts),
        },
        {
            "date": add_months(item.date, item.tail_months),
            "disbursement": -(amount - margin),
            "bill_interest": interest,
            "remark": "/".join(tail_parts),
        },
    ]


def compute_bank_acceptance_lease_cash_flow(
    params: LoanParameters,
    disbursements: Sequence[Disbursement],
    settings: Optional[Settings] = None,
) -> List[CashFlowRecord]:
    """Lease cash flow whose principal is paid out in wire and bill tranches.

    The single period 0 disbursement of the plain table is replaced by one
    row per wire transfer and two rows per bill: the margin (with the
    handling fee) on the issue date and the rest of the face value, with the
    interest income, at maturity. Tranche rows are period 0 and ordered by
    date. The upfront fee, deposit and broker fee of the plain table are
    carried on the first tranche row, and the rents follow unchanged. Tranche
    deposits are refunded with the last rent.

    The amounts must add up to ``params.principal``. Net amounts sum to the
    total interest plus fees, nominal price and bill interest, less broker and
    handling fees.
    """
    settings = settings or DEFAULT_SETTINGS
    standard = compute_cash_flow_for(params, settings)
    _validate_disbursements(params, disbursements)
    quantum = settings.money_quantum

    tranche_rows: List[Dict[str, object]] = []
    for item in disbursements:
        tranche_rows.extend(_tranche_rows(item, quantum))
    tranche_rows.sort(key=lambda row: row["date"])

    opening = standard[0]
    first = tranche_rows[0]
    for name, part in (("fee", "upfront fee"), ("deposit", "deposit received"), ("broker_fee", "broker fee")):
        carried = getattr(opening, name)
        if not carried:
            continue
        first[name] = first.get(name, Decimal("0")) + carried
        if part not in first["remark"].split("/"):
            first["remark"] += "/" + part

    rows: List[Dict[str, object]] = []
    for row in tranche_rows:
        row["period"] = 0
        rows.append(row)
    refund = sum((as_decimal(item.deposit, "deposit") for item in disbursements), Decimal("0"))
    for record in standard[1:]:
        row = {
            "period": record.period,
            "date": record.date,
            "repayment": record.repayment,
            "deposit": record.deposit,
            "nominal_price": record.nominal_price,
            "broker_fee": record.broker_fee,
        }
        if record is standard[-1] and refund:
            row["deposit"] = record.deposit - refund
        rows.append(row)

    records = build_cash_flow_records(rows)
    logger.debug(
        "Built bank-acceptance lease cash flow: %d tranches, %d records", len(disbursements), len(records)
    )
    return records
