"""Command-line interface for the lease calculator.

This module uses the ``click`` library to implement a multi-command interface.
Users can compute the rent schedule, the cash-flow table with its
comprehensive rate or a short summary. Bank-acceptance bills can be priced on
their own or used to fund a lease. Results can be printed to the terminal or
exported to JSON/CSV files.
"""

from __future__ import annotations

import csv
import json
import logging
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

import click

from .acceptance import (
    compute_bank_acceptance_cash_flow,
    compute_bank_acceptance_lease_cash_flow,
    quote_bank_acceptance,
)
from .cashflow import compute_cash_flow, summarize_comprehensive_rate
from .config import load_settings
from .data_models import (
    BankAcceptanceParameters,
    BrokerFeeTiming,
    CashFlowTerms,
    DayCount,
    Disbursement,
    DisbursementKind,
    InterestBasis,
    LoanParameters,
    RateAdjustment,
    RepaymentMethod,
)
from .engine import average_payment_interval, compute_schedule, summarize_schedule
from .errors import LeaseCalcError, ValidationError
from .formatter import (
    cash_flow_to_dicts,
    print_cash_flow,
    print_quote,
    print_rate_summary,
    print_schedule,
    print_summary,
    quote_to_dict,
    rate_summary_to_dict,
    schedule_to_dicts,
)
from .utils import decimal_from_str, parse_date

logger = logging.getLogger(__name__)

MAX_ROWS = 120


def parse_amount(value: str) -> Decimal:
    """Parse a numeric string with optional suffixes.

    Accepts plain numbers ("500000") and shorthand with ``k``/``m`` suffixes
    (e.g., "50m" meaning 50_000_000). Returns a Decimal.
    """
    text = str(value).strip().lower().replace(",", "")
    factor = Decimal(1)
    if text.endswith("k"):
        factor = Decimal(1_000)
        text = text[:-1]
    elif text.endswith("m"):
        factor = Decimal(1_000_000)
        text = text[:-1]
    try:
        return decimal_from_str(text) * factor
    except ValueError:
        raise ValidationError(f"Invalid amount: {value}")


def parse_percent(value: str) -> Decimal:
    """Parse a percentage string ("4.5" or "4.5%") into a fraction (0.045)."""
    text = str(value).strip()
    if text.endswith("%"):
        text = text[:-1]
    try:
        return decimal_from_str(text) / Decimal(100)
    except ValueError:
        raise ValidationError(f"Invalid percentage: {value}")


def parse_adjustment_strings(values: Iterable[str]) -> List[RateAdjustment]:
    adjustments: List[RateAdjustment] = []
    for item in values:
        parts = item.split(":")
        if len(parts) != 2:
            raise ValidationError(f"Rate adjustment must be in PERIOD:RATE format; got {item}")
        period_str, rate_str = parts
        try:
            period = int(period_str)
        except ValueError:
            raise ValidationError(f"Rate adjustment period must be an integer; got {period_str}")
        adjustments.append(RateAdjustment(period=period, annual_rate=parse_percent(rate_str)))
    return adjustments


def parse_list(value: Optional[str], cast: Callable[[str], Any], label: str) -> Optional[List[Any]]:
    """Parse a comma separated list such as ``"6,6,3"``; empty input gives ``None``."""
    if not value or not value.strip():
        return None
    items = [p.strip() for p in value.replace("\n", ",").split(",") if p.strip()]
    try:
        return [cast(p) for p in items]
    except ValueError:
        raise ValidationError(f"Invalid {label}: {value}")


def build_params_from_options(
    principal: str,
    rate: str,
    periods: int,
    interval: int,
    method: str,
    start_date: str,
    interest_basis: str = InterestBasis.PERIODIC.value,
    day_count: str = DayCount.ACT_360.value,
    fee_rate: Optional[str] = None,
    deposit: Optional[str] = None,
    nominal_price: Optional[str] = None,
    broker_fee_rate: Optional[str] = None,
    broker_timing: str = BrokerFeeTiming.AT_DISBURSEMENT.value,
    adjustment: Iterable[str] = (),
    ratios: Optional[str] = None,
    intervals: Optional[str] = None,
) -> LoanParameters:
    """Turn raw option strings into ``LoanParameters``.

    Rates are given in percent. Parsing problems raise ``ValidationError``;
    range checks happen later, in ``compute_schedule``.
    """
    try:
        start = parse_date(start_date)
    except ValueError as exc:
        raise ValidationError(str(exc))
    try:
        periods = int(periods)
        interval = int(interval)
    except (TypeError, ValueError):
        raise ValidationError("periods and interval must be integers")
    try:
        method_value = RepaymentMethod(method)
        basis_value = InterestBasis(interest_basis)
        day_count_value = DayCount(day_count)
        timing_value = BrokerFeeTiming(broker_timing)
    except ValueError as exc:
        raise ValidationError(str(exc))
    return LoanParameters(
        principal=parse_amount(principal),
        annual_rate=parse_percent(rate),
        total_periods=periods,
        method=method_value,
        payment_interval=interval,
        start_date=start,
        fee_rate=parse_percent(fee_rate) if fee_rate else Decimal("0"),
        interest_basis=basis_value,
        day_count=day_count_value,
        deposit=parse_amount(deposit) if deposit else Decimal("0"),
        nominal_price=parse_amount(nominal_price) if nominal_price else Decimal("0"),
        broker_fee_rate=parse_percent(broker_fee_rate) if broker_fee_rate else Decimal("0"),
        broker_fee_timing=timing_value,
        rate_adjustments=parse_adjustment_strings(adjustment),
        principal_ratios=parse_list(ratios, decimal_from_str, "principal ratios"),
        custom_intervals=parse_list(intervals, int, "intervals"),
    )


def terms_from_params(params: LoanParameters) -> CashFlowTerms:
    return CashFlowTerms(
        deposit=params.deposit,
        nominal_price=params.nominal_price,
        broker_fee_rate=params.broker_fee_rate,
        broker_fee_timing=params.broker_fee_timing,
    )


DISBURSEMENT_KEYS = ("margin", "months", "handling", "interest", "deposit", "broker")


def build_disbursement(kind: str, when: str, amount: str, **extras: Any) -> Disbursement:
    """Build one funding tranche from raw strings.

    ``extras`` may hold ``margin``, ``deposit`` and ``broker`` amounts,
    ``handling`` and ``interest`` rates in percent, and ``months`` to maturity.
    """
    unknown = sorted(set(extras) - set(DISBURSEMENT_KEYS))
    if unknown:
        raise ValidationError(f"Unknown disbursement fields: {', '.join(unknown)}")
    try:
        kind_value = DisbursementKind(kind)
        when_value = parse_date(when)
    except ValueError as exc:
        raise ValidationError(str(exc))
    months = extras.get("months")
    try:
        tail_months = int(months) if months not in (None, "") else 0
    except (TypeError, ValueError):
        raise ValidationError(f"Months to maturity must be an integer; got {months}")

    def amount_of(key: str) -> Decimal:
        value = extras.get(key)
        return parse_amount(value) if value not in (None, "") else Decimal("0")

    def percent_of(key: str) -> Decimal:
        value = extras.get(key)
        return parse_percent(value) if value not in (None, "") else Decimal("0")

    return Disbursement(
        date=when_value,
        amount=parse_amount(amount),
        kind=kind_value,
        margin=amount_of("margin"),
        tail_months=tail_months,
        handling_fee_rate=percent_of("handling"),
        interest_income_rate=percent_of("interest"),
        deposit=amount_of("deposit"),
        broker_fee=amount_of("broker"),
    )


def parse_disbursement(value: str) -> Disbursement:
    """Parse ``KIND:DATE:AMOUNT[:key=value...]``.

    For example ``bank-acceptance:2024-01-01:30m:margin=9m:months=6:handling=0.05``.
    """
    parts = value.split(":")
    if len(parts) < 3:
        raise ValidationError(f"Disbursement must be in KIND:DATE:AMOUNT format; got {value}")
    kind, when, amount = parts[:3]
    extras: Dict[str, str] = {}
    for part in parts[3:]:
        key, sep, raw = part.partition("=")
        if not sep:
            raise ValidationError(f"Disbursement field must be key=value; got {part}")
        extras[key.strip()] = raw.strip()
    return build_disbursement(kind.strip(), when.strip(), amount.strip(), **extras)


def export_to_json(path: Path, data: Dict[str, Any]) -> None:
    """Export a result document to a JSON file."""
    with path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


def export_to_csv(path: Path, rows: List[Dict[str, Any]]) -> None:
    """Export table rows (dicts sharing the same keys) to a CSV file."""
    if not rows:
        raise ValidationError("Nothing to export")
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=list(rows[0].keys()))
        writer.writeheader()
        writer.writerows(rows)


def _export(output: str, document: Dict[str, Any], rows: List[Dict[str, Any]]) -> None:
    path = Path(output)
    suffix = path.suffix.lower()
    if suffix == ".json":
        export_to_json(path, document)
    elif suffix == ".csv":
        export_to_csv(path, rows)
    else:
        raise click.BadParameter("Unsupported output format; use .json or .csv")
    click.echo(f"Exported to {path}")


def lease_options(func: Callable) -> Callable:
    """Attach the lease parameter options shared by several commands."""
    options = [
        click.option("--principal", "-p", "principal", required=True, help="Lease cost / principal (e.g. 50m)"),
        click.option("--rate", "-r", "rate", required=True, help="Nominal annual rate in percent"),
        click.option("--periods", "-n", "periods", required=True, type=int, help="Total number of rent periods"),
        click.option("--interval", "-i", "interval", default=6, show_default=True, type=int, help="Months between payments"),
        click.option(
            "--method",
            "method",
            type=click.Choice([m.value for m in RepaymentMethod]),
            default=RepaymentMethod.EQUAL_INSTALLMENT.value,
            show_default=True,
            help="Repayment method",
        ),
        click.option("--start-date", "-s", "start_date", required=True, help="Disbursement date (YYYY-MM-DD)"),
        click.option(
            "--interest-basis",
            "interest_basis",
            type=click.Choice([b.value for b in InterestBasis]),
            default=InterestBasis.PERIODIC.value,
            show_default=True,
            help="Charge interest per period or on actual days",
        ),
        click.option(
            "--day-count",
            "day_count",
            type=click.Choice([d.value for d in DayCount]),
            default=DayCount.ACT_360.value,
            show_default=True,
            help="Day-count convention for the daily basis",
        ),
        click.option("--fee-rate", "fee_rate", help="Upfront fee in percent of principal"),
        click.option("--deposit", "deposit", help="Security deposit amount"),
        click.option("--nominal-price", "nominal_price", help="Nominal purchase price collected at the end"),
        click.option("--broker-fee-rate", "broker_fee_rate", help="Broker fee in percent of principal"),
        click.option(
            "--broker-timing",
            "broker_timing",
            type=click.Choice([t.value for t in BrokerFeeTiming]),
            default=BrokerFeeTiming.AT_DISBURSEMENT.value,
            show_default=True,
            help="When the broker fee is paid",
        ),
        click.option("--adjust", "adjustment", multiple=True, help="Rate reset in PERIOD:RATE format, e.g. 5:4.2"),
        click.option("--ratios", "ratios", help="Principal ratios in percent, comma separated"),
        click.option("--intervals", "intervals", help="Per-period month intervals, comma separated"),
        click.option("--output", "output", type=str, help="Output file path (.json or .csv)"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _build(options: Dict[str, Any]) -> LoanParameters:
    options = dict(options)
    options.pop("output", None)
    try:
        return build_params_from_options(**options)
    except ValidationError as exc:
        raise click.BadParameter(str(exc))


def _fail(exc: LeaseCalcError) -> click.ClickException:
    logger.debug("Calculation failed", exc_info=exc)
    if isinstance(exc, ValidationError):
        return click.BadParameter(str(exc))
    return click.ClickException(str(exc))


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log calculation details")
def cli(verbose: bool) -> None:
    """A command-line rent and cash-flow calculator for leases."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@lease_options
def schedule(output: Optional[str], **options: Any) -> None:
    """Compute and print the rent schedule."""
    params = _build(options)
    try:
        settings = load_settings()
        records = compute_schedule(params, settings)
    except LeaseCalcError as exc:
        raise _fail(exc)
    summary_data = summarize_schedule(records)
    if output:
        rows = schedule_to_dicts(records)
        _export(output, {"summary": summary_data, "schedule": rows}, rows)
        return
    print_summary(summary_data)
    if len(records) > MAX_ROWS:
        click.echo(f"Schedule has {len(records)} rows; showing first {MAX_ROWS} rows.")
    print_schedule(records[:MAX_ROWS], show_ratio=params.method is RepaymentMethod.PRINCIPAL_RATIO)


@cli.command()
@lease_options
def cashflow(output: Optional[str], **options: Any) -> None:
    """Compute the cash-flow table and its comprehensive rate."""
    params = _build(options)
    try:
        settings = load_settings()
        records = compute_schedule(params, settings)
        flows = compute_cash_flow(records, params.fee_rate, terms_from_params(params), settings)
        rates = summarize_comprehensive_rate(flows, average_payment_interval(params), settings)
    except LeaseCalcError as exc:
        raise _fail(exc)
    if output:
        rows = cash_flow_to_dicts(flows)
        _export(output, {"rates": rate_summary_to_dict(rates), "cash_flow": rows}, rows)
        return
    print_cash_flow(flows)
    print_rate_summary(rates)


@cli.command()
@lease_options
def summary(output: Optional[str], **options: Any) -> None:
    """Compute and print only the totals and comprehensive rates."""
    params = _build(options)
    try:
        settings = load_settings()
        records = compute_schedule(params, settings)
        flows = compute_cash_flow(records, params.fee_rate, terms_from_params(params), settings)
        rates = summarize_comprehensive_rate(flows, average_payment_interval(params), settings)
    except LeaseCalcError as exc:
        raise _fail(exc)
    summary_data = summarize_schedule(records)
    if output:
        path = Path(output)
        if path.suffix.lower() != ".json":
            raise click.BadParameter("Summary export must use .json extension")
        export_to_json(path, {"summary": summary_data, "rates": rate_summary_to_dict(rates)})
        click.echo(f"Summary exported to {path}")
        return
    print_summary(summary_data, rates)


@cli.command()
@click.option("--face-value", "-f", "face_value", required=True, help="Face value of the bill")
@click.option("--discount-rate", "-r", "discount_rate", required=True, help="Annual discount rate in percent")
@click.option("--tenor-days", "-t", "tenor_days", required=True, type=int, help="Days to maturity")
@click.option("--issue-date", "-s", "issue_date", required=True, help="Issue date (YYYY-MM-DD)")
@click.option(
    "--day-count",
    "day_count",
    type=click.Choice([d.value for d in DayCount]),
    default=DayCount.ACT_360.value,
    show_default=True,
)
@click.option("--handling-fee-rate", "handling_fee_rate", help="Handling fee in percent of face value")
@click.option("--output", "output", type=str, help="Output file path (.json or .csv)")
def acceptance(
    face_value: str,
    discount_rate: str,
    tenor_days: int,
    issue_date: str,
    day_count: str,
    handling_fee_rate: Optional[str],
    output: Optional[str],
) -> None:
    """Price a bank-acceptance bill and print its cash flow."""
    try:
        params = BankAcceptanceParameters(
            face_value=parse_amount(face_value),
            discount_rate=parse_percent(discount_rate),
            tenor_days=tenor_days,
            issue_date=parse_date(issue_date),
            day_count=DayCount(day_count),
            handling_fee_rate=parse_percent(handling_fee_rate) if handling_fee_rate else Decimal("0"),
        )
    except ValueError as exc:
        raise click.BadParameter(str(exc))
    try:
        settings = load_settings()
        quote = quote_bank_acceptance(params, settings)
        flows = compute_bank_acceptance_cash_flow(params, settings)
    except LeaseCalcError as exc:
        raise _fail(exc)
    if output:
        rows = cash_flow_to_dicts(flows)
        _export(output, {"quote": quote_to_dict(quote), "cash_flow": rows}, rows)
        return
    print_quote(quote)
    print_cash_flow(flows)


@cli.command("acceptance-lease")
@lease_options
@click.option(
    "--disbursement",
    "-d",
    "disbursements",
    multiple=True,
    required=True,
    help="Funding tranche as KIND:DATE:AMOUNT[:key=value...], keys: " + ", ".join(DISBURSEMENT_KEYS),
)
def acceptance_lease(output: Optional[str], disbursements: Iterable[str], **options: Any) -> None:
    """Cash flow and rates of a lease funded by wire transfers and bills."""
    params = _build(options)
    try:
        tranches = [parse_disbursement(item) for item in disbursements]
    except ValidationError as exc:
        raise click.BadParameter(str(exc))
    try:
        settings = load_settings()
        flows = compute_bank_acceptance_lease_cash_flow(params, tranches, settings)
        rates = summarize_comprehensive_rate(flows, average_payment_interval(params), settings)
    except LeaseCalcError as exc:
        raise _fail(exc)
    if output:
        rows = cash_flow_to_dicts(flows)
        _export(output, {"rates": rate_summary_to_dict(rates), "cash_flow": rows}, rows)
        return
    print_cash_flow(flows)
    print_rate_summary(rates)


if __name__ == "__main__":
    cli()
