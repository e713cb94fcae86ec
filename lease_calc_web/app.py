"""Flask JSON API for the lease calculator.

Run locally with ``flask --app lease_calc_web.app run``. Every route takes and
returns JSON; rates in request bodies are given in percent, as on the command
line. Saved scenarios are scoped to a per-session user token.
"""

import os
from typing import Any, Dict, Optional
from uuid import uuid4

from flask import Flask, current_app, jsonify, request, session

from lease_calc.acceptance import (
    compute_bank_acceptance_cash_flow,
    compute_bank_acceptance_lease_cash_flow,
    quote_bank_acceptance,
)
from lease_calc.cashflow import compute_cash_flow, summarize_comprehensive_rate
from lease_calc.config import Settings, load_settings
from lease_calc.data_models import BankAcceptanceParameters, DayCount, LoanParameters
from lease_calc.engine import average_payment_interval, compute_schedule, summarize_schedule
from lease_calc.errors import LeaseCalcError, ValidationError
from lease_calc.formatter import cash_flow_to_dicts, quote_to_dict, rate_summary_to_dict, schedule_to_dicts
from lease_calc.main import (
    build_disbursement,
    build_params_from_options,
    parse_amount,
    parse_percent,
    terms_from_params,
)
from lease_calc.utils import parse_date
from lease_calc_web.scenario_store import ScenarioStore, create_store_from_env

REQUIRED_FIELDS = ("principal", "rate", "periods", "start_date")
BILL_FIELDS = ("face_value", "discount_rate", "tenor_days", "issue_date")


def _ensure_user_token() -> str:
    token = session.get("user_token")
    if not token:
        token = uuid4().hex
        session["user_token"] = token
        session.modified = True
    return token


def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _text(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _joined(value: Any) -> Optional[str]:
    """Accept either a list or an already comma separated string."""
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return _text(value)


def _whole_number(value: Any, name: str) -> int:
    """Accept 12, 12.0 or "12"; anything else is a ``ValidationError``."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ValidationError(f"{name} must be a whole number; got {value!r}")


def _disbursements(value: Any) -> list:
    if not isinstance(value, list) or not value:
        raise ValidationError("disbursements must be a non-empty list")
    tranches = []
    for item in value:
        if not isinstance(item, dict):
            raise ValidationError("Each disbursement must be an object")
        missing = [name for name in ("date", "amount") if item.get(name) in (None, "")]
        if missing:
            raise ValidationError(f"Disbursement is missing: {', '.join(missing)}")
        extras = {
            key: str(raw) for key, raw in item.items() if key not in ("kind", "date", "amount") and raw is not None
        }
        tranches.append(
            build_disbursement(str(item.get("kind", "wire")), str(item["date"]), str(item["amount"]), **extras)
        )
    return tranches


def _adjustments(value: Any) -> list:
    if not value:
        return []
    if not isinstance(value, list):
        raise ValidationError("adjustments must be a list")
    items = []
    for item in value:
        if isinstance(item, dict):
            if "period" not in item or "rate" not in item:
                raise ValidationError("Each adjustment needs a period and a rate")
            items.append(f"{item['period']}:{item['rate']}")
        else:
            items.append(str(item))
    return items


def _params_from_json(data: Dict[str, Any]) -> LoanParameters:
    missing = [name for name in REQUIRED_FIELDS if data.get(name) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    return build_params_from_options(
        principal=str(data["principal"]),
        rate=str(data["rate"]),
        periods=_whole_number(data["periods"], "periods"),
        interval=_whole_number(data.get("interval", 6), "interval"),
        method=data.get("method", "equal-installment"),
        start_date=str(data["start_date"]),
        interest_basis=data.get("interest_basis", "periodic"),
        day_count=data.get("day_count", DayCount.ACT_360.value),
        fee_rate=_text(data.get("fee_rate")),
        deposit=_text(data.get("deposit")),
        nominal_price=_text(data.get("nominal_price")),
        broker_fee_rate=_text(data.get("broker_fee_rate")),
        broker_timing=data.get("broker_timing", "at-disbursement"),
        adjustment=_adjustments(data.get("adjustments")),
        ratios=_joined(data.get("ratios")),
        intervals=_joined(data.get("intervals")),
    )


def _run_analysis(params: LoanParameters, settings: Settings) -> Dict[str, Any]:
    schedule = compute_schedule(params, settings)
    cash_flow = compute_cash_flow(schedule, params.fee_rate, terms_from_params(params), settings)
    rates = summarize_comprehensive_rate(cash_flow, average_payment_interval(params), settings)
    return {
        "summary": summarize_schedule(schedule),
        "rates": rate_summary_to_dict(rates),
        "schedule": schedule_to_dicts(schedule),
        "cash_flow": cash_flow_to_dicts(cash_flow),
    }


def _store() -> ScenarioStore:
    return current_app.extensions["scenario_store"]


def _settings() -> Settings:
    return current_app.config["LEASE_SETTINGS"]


def create_app(store: Optional[ScenarioStore] = None, settings: Optional[Settings] = None) -> Flask:
    """Build the Flask app; missing pieces come from the environment."""
    app = Flask(__name__)
    app.secret_key = os.environ.get("FLASK_SECRET_KEY", "dev-secret-key")
    app.config["LEASE_SETTINGS"] = settings or load_settings()
    app.extensions["scenario_store"] = store or create_store_from_env(os.environ.get("LEASE_CALC_DATABASE_URL"))

    @app.errorhandler(LeaseCalcError)
    def handle_calculation_error(exc: LeaseCalcError):
        app.logger.warning("Request to %s failed: %s", request.path, exc)
        return jsonify({"error": str(exc)}), 400

    @app.route("/api/schedule", methods=["POST"])
    def schedule():
        data = _json_body()
        params = _params_from_json(data)
        records = compute_schedule(params, _settings())
        return jsonify({"summary": summarize_schedule(records), "schedule": schedule_to_dicts(records)})

    @app.route("/api/cashflow", methods=["POST"])
    def cashflow():
        result = _run_analysis(_params_from_json(_json_body()), _settings())
        return jsonify({key: result[key] for key in ("summary", "rates", "cash_flow")})

    @app.route("/api/acceptance", methods=["POST"])
    def acceptance():
        data = _json_body()
        missing = [name for name in BILL_FIELDS if data.get(name) in (None, "")]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        try:
            params = BankAcceptanceParameters(
                face_value=parse_amount(str(data["face_value"])),
                discount_rate=parse_percent(str(data["discount_rate"])),
                tenor_days=_whole_number(data["tenor_days"], "tenor_days"),
                issue_date=parse_date(str(data["issue_date"])),
                day_count=DayCount(data.get("day_count", DayCount.ACT_360.value)),
                handling_fee_rate=parse_percent(str(data.get("handling_fee_rate") or 0)),
            )
        except ValidationError:
            raise
        except ValueError as exc:
            raise ValidationError(str(exc))
        quote = quote_bank_acceptance(params, _settings())
        flows = compute_bank_acceptance_cash_flow(params, _settings())
        return jsonify({"quote": quote_to_dict(quote), "cash_flow": cash_flow_to_dicts(flows)})

    @app.route("/api/acceptance-lease", methods=["POST"])
    def acceptance_lease():
        data = _json_body()
        params = _params_from_json(data)
        tranches = _disbursements(data.get("disbursements"))
        flows = compute_bank_acceptance_lease_cash_flow(params, tranches, _settings())
        rates = summarize_comprehensive_rate(flows, average_payment_interval(params), _settings())
        return jsonify({"rates": rate_summary_to_dict(rates), "cash_flow": cash_flow_to_dicts(flows)})

    @app.route("/api/scenarios", methods=["GET"])
    def list_scenarios():
        scenarios = _store().list_for_user(_ensure_user_token(), request.args.get("method"))
        return jsonify({"scenarios": scenarios})

    @app.route("/api/scenarios", methods=["POST"])
    def save_scenario():
        user_token = _ensure_user_token()
        data = _json_body()
        params = _params_from_json(data)
        result = _run_analysis(params, _settings())
        name = str(data.get("name", "")).strip() or "Scenario"
        lease_request = {key: value for key, value in data.items() if key != "name"}
        scenario_id = _store().save(user_token, name, params, lease_request, result)
        return jsonify(_store().get(user_token, scenario_id)), 201

    @app.route("/api/scenarios", methods=["DELETE"])
    def clear_scenarios():
        _store().delete_all(_ensure_user_token())
        return "", 204

    @app.route("/api/scenarios/<scenario_id>", methods=["GET"])
    def get_scenario(scenario_id: str):
        scenario = _store().get(_ensure_user_token(), scenario_id)
        if scenario is None:
            return jsonify({"error": f"Unknown scenario: {scenario_id}"}), 404
        return jsonify(scenario)

    @app.route("/api/scenarios/<scenario_id>", methods=["DELETE"])
    def remove_scenario(scenario_id: str):
        if not _store().delete(_ensure_user_token(), scenario_id):
            return jsonify({"error": f"Unknown scenario: {scenario_id}"}), 404
        return "", 204

    return app
