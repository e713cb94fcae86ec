"""Data models for the lease calculator.

This module defines the enumerations and dataclasses used by the calculator:
the lease parameters supplied by the caller, the per-period rent records, the
cash-flow records derived from them and the comprehensive-rate summary. The
bank-acceptance bill variant has its own parameter and quote types.

Input types are plain dataclasses so callers can build them incrementally.
Output records are frozen: a calculation run owns the sequence it produced and
downstream consumers only read it.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import List, Optional


class RepaymentMethod(str, Enum):
    """How principal is spread over the periods."""

    EQUAL_INSTALLMENT = "equal-installment"  # post-paid annuity
    EQUAL_INSTALLMENT_ADVANCE = "equal-installment-advance"  # annuity due
    EQUAL_PRINCIPAL = "equal-principal"
    PRINCIPAL_RATIO = "principal-ratio"


class InterestBasis(str, Enum):
    """``periodic`` charges rate * interval / 12, ``daily`` charges actual days."""

    PERIODIC = "periodic"
    DAILY = "daily"


class DayCount(str, Enum):
    ACT_360 = "actual/360"
    ACT_365 = "actual/365"


class BrokerFeeTiming(str, Enum):
    """When the lessor pays the broker."""

    AT_DISBURSEMENT = "at-disbursement"
    FIRST_PERIOD = "first-period"
    THREE_INSTALLMENTS = "three-installments"  # first, middle and last period


@dataclass
class RateAdjustment:
    """A change of the annual rate effective from ``period`` onwards."""

    period: int
    annual_rate: Decimal


@dataclass
class LoanParameters:
    """All inputs of a rent schedule calculation.

    Attributes
    ----------
    principal: Decimal
        Financed amount (lease cost) disbursed on ``start_date``.
    annual_rate: Decimal
        Nominal annual rate as a fraction (``Decimal("0.045")`` is 4.5 %).
    total_periods: int
        Number of rent payments.
    method: RepaymentMethod
        Repayment method.
    payment_interval: int
        Months between two payments.
    start_date: date
        Disbursement date; period dates are offsets from it.
    fee_rate: Decimal
        Upfront fee as a fraction of principal, charged at disbursement.
    interest_basis, day_count:
        Interest accrual convention. ``day_count`` only matters for the daily
        basis.
    deposit, nominal_price:
        Security deposit received at disbursement and refunded with the last
        rent; nominal purchase price collected with the last rent.
    broker_fee_rate, broker_fee_timing:
        Broker fee as a fraction of principal and when it is paid.
    rate_adjustments:
        Rate resets; the latest one at or before a period applies to it.
    principal_ratios:
        Percent of principal repaid each period (principal-ratio method).
        ``None`` spreads principal evenly.
    custom_intervals:
        Per-period month intervals overriding ``payment_interval``.
    """

    principal: Decimal
    annual_rate: Decimal
    total_periods: int
    method: RepaymentMethod
    payment_interval: int
    start_date: date
    fee_rate: Decimal = Decimal("0")
    interest_basis: InterestBasis = InterestBasis.PERIODIC
    day_count: DayCount = DayCount.ACT_360
    deposit: Decimal = Decimal("0")
    nominal_price: Decimal = Decimal("0")
    broker_fee_rate: Decimal = Decimal("0")
    broker_fee_timing: BrokerFeeTiming = BrokerFeeTiming.AT_DISBURSEMENT
    rate_adjustments: List[RateAdjustment] = field(default_factory=list)
    principal_ratios: Optional[List[Decimal]] = None
    custom_intervals: Optional[List[int]] = None


@dataclass(frozen=True)
class PeriodRecord:
    """One row of the rent schedule.

    ``payment_date`` equals ``end_date`` for post-paid methods and
    ``start_date`` for the advance (pre-paid) annuity.
    """

    period: int
    start_date: date
    end_date: date
    payment_date: date
    opening_balance: Decimal
    payment: Decimal
    interest: Decimal
    principal: Decimal
    closing_balance: Decimal
    annual_rate: Decimal
    principal_ratio: Optional[Decimal] = None


@dataclass(frozen=True)
class CashFlowTerms:
    """Cash items that sit outside the rent schedule itself."""

    deposit: Decimal = Decimal("0")
    nominal_price: Decimal = Decimal("0")
    broker_fee_rate: Decimal = Decimal("0")
    broker_fee_timing: BrokerFeeTiming = BrokerFeeTiming.AT_DISBURSEMENT


@dataclass(frozen=True)
class CashFlowRecord:
    """Signed cash flow of one period, from the lessor's point of view.

    Period 0 is the disbursement. Outflows are negative. ``bill_interest`` is
    only used by leases funded with bank-acceptance bills.
    """

    period: int
    date: date
    disbursement: Decimal
    repayment: Decimal
    fee: Decimal
    deposit: Decimal
    nominal_price: Decimal
    broker_fee: Decimal
    net_amount: Decimal
    cumulative_balance: Decimal
    remark: str = ""
    bill_interest: Decimal = Decimal("0")

    @property
    def net_amount_excluding_broker(self) -> Decimal:
        return self.net_amount - self.broker_fee


@dataclass(frozen=True)
class ComprehensiveRateSummary:
    """Blended rates derived from a complete cash-flow sequence."""

    periodic_rate: Decimal
    periods_per_year: Decimal
    annual_rate: Decimal
    periodic_rate_excluding_broker: Decimal
    annual_rate_excluding_broker: Decimal
    xirr: Decimal
    xirr_excluding_broker: Decimal
    broker_fee_impact: Decimal


@dataclass
class BankAcceptanceParameters:
    """A discounted bank-acceptance bill.

    ``discount_rate`` and ``handling_fee_rate`` are fractions; the discount
    fee accrues over ``tenor_days`` under ``day_count``.
    """

    face_value: Decimal
    discount_rate: Decimal
    tenor_days: int
    issue_date: date
    day_count: DayCount = DayCount.ACT_360
    handling_fee_rate: Decimal = Decimal("0")


class DisbursementKind(str, Enum):
    WIRE = "wire"
    BILL = "bank-acceptance"


@dataclass
class Disbursement:
    """One tranche of a lease funded by wire transfer or bank-acceptance bill.

    For a bill the lessor pays ``margin`` on ``date`` and the rest of the
    face value ``tail_months`` later, when the bill matures. The handling fee
    and the interest income are fractions of ``amount``. ``deposit`` is
    received from the customer with the tranche and refunded with the last
    rent; ``broker_fee`` is an absolute amount paid out with the tranche.
    """

    date: date
    amount: Decimal
    kind: DisbursementKind = DisbursementKind.WIRE
    margin: Decimal = Decimal("0")
    tail_months: int = 0
    handling_fee_rate: Decimal = Decimal("0")
    interest_income_rate: Decimal = Decimal("0")
    deposit: Decimal = Decimal("0")
    broker_fee: Decimal = Decimal("0")


@dataclass(frozen=True)
class BankAcceptanceQuote:
    discount_fee: Decimal
    handling_fee: Decimal
    net_proceeds: Decimal
    maturity_date: date
    effective_rate: Decimal
