from datetime import date
from decimal import Decimal

import pytest

from lease_calc.cashflow import (
    build_cash_flow_records,
    cash_flow_totals,
    compute_cash_flow,
    compute_cash_flow_for,
    compute_comprehensive_rate,
    compute_xirr,
    summarize_comprehensive_rate,
)
from lease_calc.data_models import BrokerFeeTiming, CashFlowTerms, LoanParameters, RepaymentMethod
from lease_calc.engine import average_payment_interval, compute_schedule
from lease_calc.errors import ConvergenceError, ValidationError


def make_params(**overrides):
    values = dict(
        principal=Decimal("50000000"),
        annual_rate=Decimal("0.045"),
        total_periods=12,
        method=RepaymentMethod.EQUAL_INSTALLMENT,
        payment_interval=6,
        start_date=date(2024, 1, 1),
    )
    values.update(overrides)
    return LoanParameters(**values)


def test_disbursement_record():
    schedule = compute_schedule(make_params())
    flows = compute_cash_flow(schedule, Decimal("0.01"))
    assert len(flows) == 13
    first = flows[0]
    assert first.period == 0
    assert first.date == date(2024, 1, 1)
    assert first.disbursement == Decimal("-50000000")
    assert first.fee == Decimal("500000.00")
    assert first.net_amount == Decimal("-49500000.00")
    assert first.remark == "disbursement/upfront fee"
    assert flows[1].remark == "rent 1"
    assert flows[1].repayment == schedule[0].payment
    assert flows[1].date == schedule[0].payment_date


def test_net_total_is_interest_plus_fee():
    schedule = compute_schedule(make_params())
    flows = compute_cash_flow(schedule, Decimal("0.01"))
    total_interest = sum(r.interest for r in schedule)
    assert sum(f.net_amount for f in flows) == total_interest + Decimal("500000.00")
    assert flows[-1].cumulative_balance == total_interest + Decimal("500000.00")


def test_net_total_with_deposit_nominal_price_and_broker():
    params = make_params(
        fee_rate=Decimal("0.01"),
        deposit=Decimal("5000000"),
        nominal_price=Decimal("1000"),
        broker_fee_rate=Decimal("0.01"),
    )
    schedule = compute_schedule(params)
    flows = compute_cash_flow_for(params)
    total_interest = sum(r.interest for r in schedule)
    totals = cash_flow_totals(flows)
    assert totals["net_amount"] == total_interest + Decimal("500000.00") + Decimal("1000") - Decimal("500000.00")
    assert totals["deposit"] == 0
    assert flows[0].deposit == Decimal("5000000")
    assert flows[0].broker_fee == Decimal("-500000.00")
    assert flows[-1].deposit == Decimal("-5000000")
    assert flows[-1].nominal_price == Decimal("1000")
    assert flows[-1].remark == "rent 12/deposit refunded/nominal price"
    assert flows[0].remark == "disbursement/upfront fee/deposit received/broker fee"


def test_broker_fee_in_three_installments():
    terms = CashFlowTerms(broker_fee_rate=Decimal("0.01"), broker_fee_timing=BrokerFeeTiming.THREE_INSTALLMENTS)
    flows = compute_cash_flow(compute_schedule(make_params()), terms=terms)
    paying = {f.period: f.broker_fee for f in flows if f.broker_fee}
    assert paying == {
        1: Decimal("-166666.67"),
        7: Decimal("-166666.67"),
        12: Decimal("-166666.66"),
    }
    assert flows[7].remark == "rent 7/broker fee"


def test_broker_fee_three_installments_rounds_middle_period_half_up():
    terms = CashFlowTerms(broker_fee_rate=Decimal("0.03"), broker_fee_timing=BrokerFeeTiming.THREE_INSTALLMENTS)
    flows = compute_cash_flow(compute_schedule(make_params(total_periods=5)), terms=terms)
    assert [f.period for f in flows if f.broker_fee] == [1, 4, 5]


def test_broker_fee_three_installments_single_period():
    terms = CashFlowTerms(broker_fee_rate=Decimal("0.01"), broker_fee_timing=BrokerFeeTiming.THREE_INSTALLMENTS)
    flows = compute_cash_flow(compute_schedule(make_params(total_periods=1)), terms=terms)
    assert flows[1].broker_fee == Decimal("-500000.00")


def test_broker_fee_first_period():
    terms = CashFlowTerms(broker_fee_rate=Decimal("0.002"), broker_fee_timing=BrokerFeeTiming.FIRST_PERIOD)
    flows = compute_cash_flow(compute_schedule(make_params()), terms=terms)
    assert flows[0].broker_fee == 0
    assert flows[1].broker_fee == Decimal("-100000.00")
    assert flows[1].net_amount_excluding_broker == flows[1].repayment


def test_empty_schedule_and_negative_inputs():
    with pytest.raises(ValidationError):
        compute_cash_flow([])
    schedule = compute_schedule(make_params())
    with pytest.raises(ValidationError):
        compute_cash_flow(schedule, Decimal("-0.01"))
    with pytest.raises(ValidationError):
        compute_cash_flow(schedule, terms=CashFlowTerms(deposit=Decimal("-1")))


def test_comprehensive_rate_without_fees_equals_period_rate():
    flows = compute_cash_flow(compute_schedule(make_params()))
    rate = compute_comprehensive_rate(flows)
    assert abs(rate - Decimal("0.0225")) < Decimal("0.000001")


def test_upfront_fee_raises_comprehensive_rate():
    schedule = compute_schedule(make_params())
    plain = compute_comprehensive_rate(compute_cash_flow(schedule))
    with_fee = compute_comprehensive_rate(compute_cash_flow(schedule, Decimal("0.01")))
    assert with_fee > plain


def test_zero_rate_has_zero_comprehensive_rate():
    flows = compute_cash_flow(compute_schedule(make_params(annual_rate=Decimal("0"))))
    assert abs(compute_comprehensive_rate(flows)) < Decimal("0.000001")


def test_rate_summary():
    flows = compute_cash_flow(compute_schedule(make_params()))
    summary = summarize_comprehensive_rate(flows, 6)
    assert summary.periods_per_year == 2
    assert abs(summary.annual_rate - Decimal("0.045")) < Decimal("0.000002")
    assert summary.periodic_rate_excluding_broker == summary.periodic_rate
    assert summary.annual_rate_excluding_broker == summary.annual_rate
    assert Decimal("0.04") < summary.xirr < Decimal("0.05")
    assert summary.xirr_excluding_broker == summary.xirr
    assert summary.broker_fee_impact == 0


def test_broker_fee_lowers_xirr():
    params = make_params(broker_fee_rate=Decimal("0.01"))
    flows = compute_cash_flow_for(params)
    summary = summarize_comprehensive_rate(flows, params.payment_interval)
    assert summary.xirr < summary.xirr_excluding_broker
    assert summary.broker_fee_impact < 0
    assert compute_xirr(flows, include_broker=False) == summary.xirr_excluding_broker


def test_broker_fee_lowers_periodic_rate():
    params = make_params(broker_fee_rate=Decimal("0.01"), broker_fee_timing=BrokerFeeTiming.THREE_INSTALLMENTS)
    flows = compute_cash_flow_for(params)
    summary = summarize_comprehensive_rate(flows, params.payment_interval)
    assert summary.periodic_rate < summary.periodic_rate_excluding_broker
    assert summary.periodic_rate_excluding_broker == compute_comprehensive_rate(flows, include_broker=False)
    assert abs(summary.periodic_rate_excluding_broker - Decimal("0.0225")) < Decimal("0.000001")
    assert summary.annual_rate_excluding_broker == summary.periodic_rate_excluding_broker * 2


def test_rate_summary_with_custom_intervals():
    params = make_params(
        principal=Decimal("1000000"), annual_rate=Decimal("0.06"), total_periods=4, custom_intervals=[3, 3, 3, 3]
    )
    flows = compute_cash_flow_for(params)
    summary = summarize_comprehensive_rate(flows, average_payment_interval(params))
    assert summary.periods_per_year == 4
    assert abs(summary.periodic_rate - Decimal("0.015")) < Decimal("0.000001")
    assert abs(summary.annual_rate - Decimal("0.06")) < Decimal("0.000004")
    assert abs(summary.annual_rate - summary.xirr) < Decimal("0.002")


def test_rate_summary_accepts_fractional_interval():
    flows = compute_cash_flow(compute_schedule(make_params(total_periods=3, custom_intervals=[6, 3, 3])))
    assert summarize_comprehensive_rate(flows, Decimal("4")).periods_per_year == 3


def test_advance_schedule_rates():
    params = make_params(method=RepaymentMethod.EQUAL_INSTALLMENT_ADVANCE)
    flows = compute_cash_flow_for(params)
    assert flows[0].date == flows[1].date
    summary = summarize_comprehensive_rate(flows, params.payment_interval)
    assert abs(summary.xirr) > 0


def test_rate_summary_rejects_bad_interval():
    flows = compute_cash_flow(compute_schedule(make_params()))
    for interval in (0, -3, Decimal("0"), True, "6"):
        with pytest.raises(ValidationError):
            summarize_comprehensive_rate(flows, interval)


def test_one_signed_flows_do_not_converge():
    flows = build_cash_flow_records(
        [
            {"period": 0, "date": date(2024, 1, 1), "repayment": Decimal("100")},
            {"period": 1, "date": date(2024, 7, 1), "repayment": Decimal("100")},
        ]
    )
    with pytest.raises(ConvergenceError):
        compute_comprehensive_rate(flows)
    with pytest.raises(ConvergenceError):
        compute_xirr(flows)


def test_empty_cash_flow_rate():
    with pytest.raises(ValidationError):
        compute_comprehensive_rate([])
