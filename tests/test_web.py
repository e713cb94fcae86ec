import pytest

from lease_calc.config import DEFAULT_SETTINGS
from lease_calc_web.app import create_app
from lease_calc_web.scenario_store import ScenarioStore

LEASE = {"principal": "50m", "rate": 4.5, "periods": 12, "interval": 6, "start_date": "2024-01-01"}


@pytest.fixture
def app(tmp_path):
    store = ScenarioStore(f"sqlite:///{tmp_path / 'web.sqlite3'}")
    app = create_app(store=store, settings=DEFAULT_SETTINGS)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def test_schedule(client):
    response = client.post("/api/schedule", json=LEASE)
    assert response.status_code == 200
    data = response.get_json()
    assert len(data["schedule"]) == 12
    assert data["schedule"][0]["interest"] == 1125000.0
    assert data["summary"]["last_payment_date"] == "2030-01-01"


def test_schedule_with_adjustments(client):
    body = dict(LEASE, adjustments=[{"period": 7, "rate": 5.5}, "10:6"])
    response = client.post("/api/schedule", json=body)
    assert response.status_code == 200
    schedule = response.get_json()["schedule"]
    assert schedule[6]["annual_rate"] == pytest.approx(0.055)
    assert schedule[9]["annual_rate"] == pytest.approx(0.06)


def test_missing_fields(client):
    response = client.post("/api/schedule", json={"principal": "1m"})
    assert response.status_code == 400
    assert "rate" in response.get_json()["error"]


def test_body_must_be_json(client):
    response = client.post("/api/schedule", data="principal=1", content_type="text/plain")
    assert response.status_code == 400


def test_invalid_values(client):
    response = client.post("/api/schedule", json=dict(LEASE, periods=0))
    assert response.status_code == 400
    assert "total_periods" in response.get_json()["error"]


def test_cashflow(client):
    response = client.post("/api/cashflow", json=dict(LEASE, fee_rate=1, ratios=None))
    assert response.status_code == 200
    data = response.get_json()
    assert len(data["cash_flow"]) == 13
    assert data["cash_flow"][0]["net_amount"] == -49500000.0
    assert data["rates"]["periodic_rate"] > 0.0225


def test_acceptance(client):
    body = {"face_value": "1m", "discount_rate": 3, "tenor_days": 180, "issue_date": "2024-01-01"}
    response = client.post("/api/acceptance", json=body)
    assert response.status_code == 200
    data = response.get_json()
    assert data["quote"]["discount_fee"] == 15000.0
    assert data["quote"]["net_proceeds"] == 985000.0
    assert len(data["cash_flow"]) == 2


def test_acceptance_validation(client):
    body = {"face_value": "1m", "discount_rate": 3, "tenor_days": 180, "issue_date": "2024-13-01"}
    assert client.post("/api/acceptance", json=body).status_code == 400
    assert client.post("/api/acceptance", json={"face_value": "1m"}).status_code == 400


@pytest.mark.parametrize("tenor_days", [[180], {"days": 180}, 180.7, "soon", True])
def test_acceptance_rejects_non_integral_tenor(client, tenor_days):
    body = {"face_value": "1m", "discount_rate": 3, "tenor_days": tenor_days, "issue_date": "2024-01-01"}
    response = client.post("/api/acceptance", json=body)
    assert response.status_code == 400
    assert "tenor_days" in response.get_json()["error"]


def test_acceptance_accepts_whole_number_forms(client):
    for tenor_days in (180, 180.0, "180"):
        body = {"face_value": "1m", "discount_rate": 3, "tenor_days": tenor_days, "issue_date": "2024-01-01"}
        response = client.post("/api/acceptance", json=body)
        assert response.status_code == 200
        assert response.get_json()["quote"]["maturity_date"] == "2024-06-29"


def test_periods_must_be_whole_numbers(client):
    assert client.post("/api/schedule", json=dict(LEASE, periods=[12])).status_code == 400
    assert client.post("/api/schedule", json=dict(LEASE, interval=6.5)).status_code == 400
    assert client.post("/api/schedule", json=dict(LEASE, periods="12")).status_code == 200


def test_cashflow_rates_follow_custom_intervals(client):
    body = dict(LEASE, principal="1m", rate=6, periods=4, intervals=[3, 3, 3, 3])
    rates = client.post("/api/cashflow", json=body).get_json()["rates"]
    assert rates["periods_per_year"] == 4.0
    assert rates["annual_rate"] == pytest.approx(0.06, abs=1e-5)


def test_cashflow_reports_rates_without_broker(client):
    rates = client.post("/api/cashflow", json=dict(LEASE, broker_fee_rate=1)).get_json()["rates"]
    assert rates["periodic_rate_excluding_broker"] > rates["periodic_rate"]
    assert rates["annual_rate_excluding_broker"] == pytest.approx(rates["periodic_rate_excluding_broker"] * 2)


FUNDED = dict(
    LEASE,
    disbursements=[
        {
            "kind": "bank-acceptance",
            "date": "2024-01-01",
            "amount": "30m",
            "margin": "9m",
            "months": 6,
            "handling": 0.05,
            "interest": 1.5,
        },
        {"date": "2024-01-01", "amount": "20m"},
    ],
)


def test_acceptance_lease(client):
    response = client.post("/api/acceptance-lease", json=FUNDED)
    assert response.status_code == 200
    data = response.get_json()
    flows = data["cash_flow"]
    assert len(flows) == 15
    assert [f["remark"] for f in flows[:3]] == ["bill margin/handling fee", "wire disbursement", "bill tail/bill interest"]
    assert flows[0]["fee"] == -15000.0
    assert flows[2]["date"] == "2024-07-01"
    assert flows[2]["bill_interest"] == 450000.0
    assert data["rates"]["xirr"] > 0.045


def test_acceptance_lease_validation(client):
    assert client.post("/api/acceptance-lease", json=LEASE).status_code == 400
    body = dict(LEASE, disbursements=[{"date": "2024-01-01", "amount": "49m"}])
    response = client.post("/api/acceptance-lease", json=body)
    assert response.status_code == 400
    assert "principal" in response.get_json()["error"]
    body = dict(LEASE, disbursements=[{"date": "2024-01-01"}])
    assert client.post("/api/acceptance-lease", json=body).status_code == 400


def test_scenario_lifecycle(client):
    assert client.get("/api/scenarios").get_json() == {"scenarios": []}

    response = client.post("/api/scenarios", json=dict(LEASE, name="Base case"))
    assert response.status_code == 201
    saved = response.get_json()
    assert saved["name"] == "Base case"
    assert saved["method"] == "equal-installment"
    assert saved["principal"] == 50000000.0
    assert saved["total_periods"] == 12
    assert saved["xirr"] == saved["result"]["rates"]["xirr"]
    assert saved["request"]["principal"] == "50m"
    assert "name" not in saved["request"]
    assert len(saved["result"]["cash_flow"]) == 13

    scenarios = client.get("/api/scenarios").get_json()["scenarios"]
    assert [s["id"] for s in scenarios] == [saved["id"]]
    assert "result" not in scenarios[0]
    assert client.get(f"/api/scenarios/{saved['id']}").get_json() == saved

    assert client.delete(f"/api/scenarios/{saved['id']}").status_code == 204
    assert client.delete(f"/api/scenarios/{saved['id']}").status_code == 404
    assert client.get(f"/api/scenarios/{saved['id']}").status_code == 404
    assert client.get("/api/scenarios").get_json() == {"scenarios": []}


def test_scenarios_filtered_by_method(client):
    client.post("/api/scenarios", json=LEASE)
    client.post("/api/scenarios", json=dict(LEASE, method="equal-principal"))
    scenarios = client.get("/api/scenarios?method=equal-principal").get_json()["scenarios"]
    assert [s["method"] for s in scenarios] == ["equal-principal"]
    assert len(client.get("/api/scenarios").get_json()["scenarios"]) == 2


def test_scenarios_are_scoped_to_session(app, client):
    saved = client.post("/api/scenarios", json=LEASE).get_json()
    other = app.test_client()
    assert other.get("/api/scenarios").get_json() == {"scenarios": []}
    assert other.get(f"/api/scenarios/{saved['id']}").status_code == 404
    assert len(client.get("/api/scenarios").get_json()["scenarios"]) == 1
    assert client.delete("/api/scenarios").status_code == 204
    assert client.get("/api/scenarios").get_json() == {"scenarios": []}


def test_invalid_scenario_is_not_saved(client):
    response = client.post("/api/scenarios", json=dict(LEASE, rate=-1))
    assert response.status_code == 400
    assert client.get("/api/scenarios").get_json() == {"scenarios": []}
