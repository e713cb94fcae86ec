"""Output helpers for the lease calculator.

This module renders rent schedules, cash-flow tables and rate summaries in a
simple tabular text format, and converts records into JSON-serialisable
dictionaries shared by the command-line exports and the web API. We rely only
on built-in printing and string formatting.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from .data_models import BankAcceptanceQuote, CashFlowRecord, ComprehensiveRateSummary, PeriodRecord


def schedule_to_dicts(schedule: Iterable[PeriodRecord]) -> List[Dict[str, Any]]:
    """Convert schedule records into plain dictionaries (floats and ISO dates)."""
    rows = []
    for r in schedule:
        rows.append(
            {
                "period": r.period,
                "start_date": r.start_date.isoformat(),
                "end_date": r.end_date.isoformat(),
                "payment_date": r.payment_date.isoformat(),
                "opening_balance": float(r.opening_balance),
                "payment": float(r.payment),
                "principal": float(r.principal),
                "interest": float(r.interest),
                "closing_balance": float(r.closing_balance),
                "annual_rate": float(r.annual_rate),
                "principal_ratio": float(r.principal_ratio) if r.principal_ratio is not None else None,
            }
        )
    return rows


def cash_flow_to_dicts(cash_flow: Iterable[CashFlowRecord]) -> List[Dict[str, Any]]:
    rows = []
    for r in cash_flow:
        rows.append(
            {
                "period": r.period,
                "date": r.date.isoformat(),
                "net_amount": float(r.net_amount),
                "net_amount_excluding_broker": float(r.net_amount_excluding_broker),
                "disbursement": float(r.disbursement),
                "repayment": float(r.repayment),
                "fee": float(r.fee),
                "deposit": float(r.deposit),
                "nominal_price": float(r.nominal_price),
                "broker_fee": float(r.broker_fee),
                "bill_interest": float(r.bill_interest),
                "cumulative_balance": float(r.cumulative_balance),
                "remark": r.remark,
            }
        )
    return rows


def rate_summary_to_dict(summary: ComprehensiveRateSummary) -> Dict[str, float]:
    return {
        "periodic_rate": float(summary.periodic_rate),
        "periods_per_year": float(summary.periods_per_year),
        "annual_rate": float(summary.annual_rate),
        "periodic_rate_excluding_broker": float(summary.periodic_rate_excluding_broker),
        "annual_rate_excluding_broker": float(summary.annual_rate_excluding_broker),
        "xirr": float(summary.xirr),
        "xirr_excluding_broker": float(summary.xirr_excluding_broker),
        "broker_fee_impact": float(summary.broker_fee_impact),
    }


def quote_to_dict(quote: BankAcceptanceQuote) -> Dict[str, Any]:
    return {
        "discount_fee": float(quote.discount_fee),
        "handling_fee": float(quote.handling_fee),
        "net_proceeds": float(quote.net_proceeds),
        "maturity_date": quote.maturity_date.isoformat(),
        "effective_rate": float(quote.effective_rate),
    }


def print_summary(summary: Dict[str, Any], rates: Optional[ComprehensiveRateSummary] = None) -> None:
    """Print schedule totals and, when given, the comprehensive rates."""
    print("Summary")
    print("-" * 72)
    print(f"Principal          : {summary['principal']:.2f}")
    print(f"Total interest     : {summary['total_interest']:.2f}")
    print(f"Total rent         : {summary['total_payment']:.2f}")
    print(f"Periods            : {summary['periods']}")
    print(f"First payment date : {summary['first_payment_date']}")
    print(f"Last payment date  : {summary['last_payment_date']}")
    print(f"Highest payment    : {summary['max_payment']:.2f}")
    if rates is not None:
        print_rate_summary(rates, header=False)
    print("-" * 72)


def print_rate_summary(rates: ComprehensiveRateSummary, header: bool = True) -> None:
    if header:
        print("Comprehensive rate")
        print("-" * 72)
    print(f"IRR per period     : {rates.periodic_rate * 100:.4f}%")
    print(f"IRR annualised     : {rates.annual_rate * 100:.4f}%")
    print(f"XIRR               : {rates.xirr * 100:.4f}%")
    # Only worth showing when a broker fee moved the rate.
    if rates.broker_fee_impact:
        print(f"IRR excl. broker   : {rates.periodic_rate_excluding_broker * 100:.4f}%")
        print(f"IRR ann. ex broker : {rates.annual_rate_excluding_broker * 100:.4f}%")
        print(f"XIRR excl. broker  : {rates.xirr_excluding_broker * 100:.4f}%")
        print(f"Broker fee impact  : {rates.broker_fee_impact * 100:.4f}%")


def print_schedule(schedule: Iterable[PeriodRecord], show_ratio: bool = False) -> None:
    """Print the rent schedule as a simple table.

    Parameters
    ----------
    schedule: Iterable[PeriodRecord]
        The schedule records to print.
    show_ratio: bool
        Whether to include the ``Ratio%`` column used by the principal-ratio
        method.
    """
    headers = ["Period", "PayDate", "Opening", "Rent", "Principal", "Interest", "Closing", "Rate%"]
    if show_ratio:
        headers.append("Ratio%")
    print("\t".join(headers))
    for r in schedule:
        row = [
            str(r.period),
            r.payment_date.isoformat(),
            f"{r.opening_balance:.2f}",
            f"{r.payment:.2f}",
            f"{r.principal:.2f}",
            f"{r.interest:.2f}",
            f"{r.closing_balance:.2f}",
            f"{r.annual_rate * 100:.4f}",
        ]
        if show_ratio:
            row.append(f"{r.principal_ratio:.2f}" if r.principal_ratio is not None else "")
        print("\t".join(row))


def print_cash_flow(cash_flow: Iterable[CashFlowRecord]) -> None:
    """Print the cash-flow table, one line per period, with remarks last."""
    headers = ["Period", "Date", "Net", "NetExBroker", "Disburse", "Rent", "Fee", "Deposit", "Nominal", "Broker", "BillInt", "Remark"]
    print("\t".join(headers))
    for r in cash_flow:
        print(
            "\t".join(
                [
                    str(r.period),
                    r.date.isoformat(),
                    f"{r.net_amount:.2f}",
                    f"{r.net_amount_excluding_broker:.2f}",
                    f"{r.disbursement:.2f}",
                    f"{r.repayment:.2f}",
                    f"{r.fee:.2f}",
                    f"{r.deposit:.2f}",
                    f"{r.nominal_price:.2f}",
                    f"{r.broker_fee:.2f}",
                    f"{r.bill_interest:.2f}",
                    r.remark,
                ]
            )
        )


def print_quote(quote: BankAcceptanceQuote) -> None:
    print("Bank acceptance bill")
    print("-" * 72)
    print(f"Discount fee       : {quote.discount_fee:.2f}")
    if quote.handling_fee:
        print(f"Handling fee       : {quote.handling_fee:.2f}")
    print(f"Net proceeds       : {quote.net_proceeds:.2f}")
    print(f"Maturity date      : {quote.maturity_date.isoformat()}")
    print(f"Effective rate     : {quote.effective_rate * 100:.4f}%")
    print("-" * 72)
