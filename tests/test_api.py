import os
from decimal import Decimal

import pytest
from flask_jwt_extended import create_access_token

from payroll_api import create_app
from payroll_api.extensions import db
from payroll_api.models.employee import Employee
from payroll_api.models.master import Company, JobGrade, SalaryBand

D = Decimal


@pytest.fixture(scope="function")
def app():
    os.environ["DATABASE_URL"] = "sqlite:///:memory:"
    app = create_app()
    with app.app_context():
        db.create_all()
        yield app


@pytest.fixture(scope="function")
def client(app):
    return app.test_client()


def _headers(app, roles=("admin",), perms=()):
    with app.app_context():
        tok = create_access_token(identity="42", additional_claims={"roles": list(roles), "perms": list(perms)})
    return {"Authorization": f"Bearer {tok}"}


@pytest.fixture(scope="function")
def seeded(app):
    c = Company(code="ACME", name="Acme Trading")
    db.session.add(c); db.session.commit()
    g = JobGrade(company_id=c.id, grade_code="G3", grade_level=3, grade_name="Officer")
    db.session.add(g); db.session.commit()
    band = SalaryBand(company_id=c.id, grade_id=g.id, minimum_salary=D("8000"),
                      midpoint_salary=D("10000"), maximum_salary=D("12000"))
    db.session.add(band); db.session.commit()
    e = Employee(company_id=c.id, code="E001", first_name="Noura", nationality="Saudi",
                 grade_id=g.id, salary_band_id=band.id)
    db.session.add(e); db.session.commit()
    return {"company_id": c.id, "employee_id": e.id}


def test_health(client):
    r = client.get("/api/v1/health")
    assert r.status_code == 200
    assert r.get_json()["success"] is True


def test_calculate_requires_token(client):
    r = client.post("/api/v1/payroll/calculate", json={"basic_salary": "1000", "nationality": "Saudi"})
    assert r.status_code == 401


def test_calculate_checks_permission(app, client):
    body = {"basic_salary": "1000", "nationality": "Saudi"}
    r = client.post("/api/v1/payroll/calculate", json=body, headers=_headers(app, roles=("employee",)))
    assert r.status_code == 403
    r = client.post("/api/v1/payroll/calculate", json=body,
                    headers=_headers(app, roles=("hr",), perms=("payroll.*",)))
    assert r.status_code == 200


def test_calculate_saudi_sample(app, client):
    body = {"basic_salary": "15000", "housing_allowance": "3000", "transportation_allowance": "1000",
            "other_allowances": "500", "nationality": "Saudi Arabia"}
    r = client.post("/api/v1/payroll/calculate", json=body, headers=_headers(app))
    assert r.status_code == 200
    data = r.get_json()["data"]
    assert data["gross_salary"] == "19500.00"
    assert data["gosi_wage_base"] == "18000.00"
    assert data["gosi_employee"] == "1755.00"
    assert data["gosi_employer"] == "2115.00"
    assert data["net_salary"] == "17745.00"
    assert data["minor_units"]["net_salary"] == 1774500
    assert data["contributor_type"] == "saudi"
    assert data["rates"]["source"] == "statutory_default"


def test_calculate_with_explicit_rates(app, client):
    body = {"basic_salary": "50000", "housing_allowance": "10000", "contributor_type": "non_saudi",
            "rates": {"employee_rate": "0", "employer_rate": "0.02", "wage_ceiling": "45000"}}
    data = client.post("/api/v1/payroll/calculate", json=body, headers=_headers(app)).get_json()["data"]
    assert data["gosi_wage_base"] == "45000.00"
    assert data["gosi_employer"] == "900.00"
    assert data["net_salary"] == "60000.00"


@pytest.mark.parametrize("body,field", [
    ({"basic_salary": "-5", "nationality": "Saudi"}, "basic_salary"),
    ({"basic_salary": "abc", "nationality": "Saudi"}, "basic_salary"),
    ({"basic_salary": "1000"}, "contributor_type"),
    ({"basic_salary": "1000", "is_saudi": "false"}, "is_saudi"),
])
def test_calculate_validation_errors(app, client, body, field):
    r = client.post("/api/v1/payroll/calculate", json=body, headers=_headers(app))
    assert r.status_code == 422
    err = r.get_json()["error"]
    assert err["code"] == "VALIDATION_ERROR"
    assert err["detail"]["field"] == field


def test_configuration_missing_is_422(app, client, seeded):
    app.config["GOSI_FALLBACK_DEFAULTS"] = False
    body = {"basic_salary": "1000", "nationality": "Saudi", "company_id": seeded["company_id"]}
    r = client.post("/api/v1/payroll/calculate", json=body, headers=_headers(app))
    assert r.status_code == 422
    assert r.get_json()["error"]["code"] == "CONFIGURATION_MISSING"


def test_gosi_rate_endpoints(app, client, seeded):
    h = _headers(app)
    cid = seeded["company_id"]
    r = client.post("/api/v1/gosi/rates", headers=h, json={
        "company_id": cid, "contributor_type": "saudi", "employee_rate": "0.0975",
        "employer_rate": "0.1175", "effective_from": "2025-01-01",
    })
    assert r.status_code == 201
    first = r.get_json()["data"]
    assert first["is_active"] is True
    assert first["created_by"] == "42"

    r = client.post("/api/v1/gosi/rates", headers=h, json={
        "company_id": cid, "contributor_type": "saudi", "employee_rate": "0.1",
        "employer_rate": "0.12", "effective_from": "2025-07-01",
    })
    second = r.get_json()["data"]

    rows = client.get(f"/api/v1/gosi/rates?company_id={cid}&active=true", headers=h).get_json()
    assert [x["id"] for x in rows["data"]] == [second["id"]]
    assert rows["meta"]["total"] == 1

    res = client.get(f"/api/v1/gosi/rates/resolve?company_id={cid}&contributor_type=saudi&as_of=2025-03-01",
                     headers=h).get_json()["data"]
    assert res["config_id"] == first["id"]
    assert res["source"] == "historical"
    assert len(res["statutory_breakdown"]) == 3

    r = client.post(f"/api/v1/gosi/rates/{first['id']}/activate", headers=h)
    assert r.status_code == 200
    assert r.get_json()["data"]["is_active"] is True

    assert client.post("/api/v1/gosi/rates/999/activate", headers=h).status_code == 404


def test_gosi_sync_endpoint(app, client, seeded):
    h = _headers(app)
    body = {"company_id": seeded["company_id"], "rates": [
        {"contributor_type": "non_saudi", "employee_rate": "0", "employer_rate": "0.02",
         "max_wage_ceiling": "45000", "effective_from": "2025-07-01"},
    ]}
    first = client.post("/api/v1/gosi/rates/sync", headers=h, json=body).get_json()["data"]
    assert len(first["written"]) == 1
    assert first["written"][0]["source"] == "external_api"
    again = client.post("/api/v1/gosi/rates/sync", headers=h, json=body).get_json()["data"]
    assert again["written"] == []
    assert again["skipped"] == 1


def test_compensation_change_flow(app, client, seeded):
    h = _headers(app)
    eid = seeded["employee_id"]
    r = client.post(f"/api/v1/employees/{eid}/compensation-changes", headers=h, json={
        "basic_salary": "10000", "housing_allowance": "2500", "effective_date": "2025-01-01",
        "change_reason": "hire", "change_type": "initial",
    })
    assert r.status_code == 201
    data = r.get_json()["data"]
    assert D(data["change"]["new_total"]) == D("12500")
    assert data["change"]["delta_pct"] == "0.00"
    assert data["change"]["changed_by"] == "42"
    assert data["warnings"] == []
    assert data["band"]["compa_ratio"] == "100.00"

    # percentage mode keeps allowances and bumps basic
    r = client.post(f"/api/v1/employees/{eid}/compensation-changes", headers=h, json={
        "adjustment_mode": "percentage", "percentage": "25", "effective_date": "2025-07-01",
        "change_type": "promotion",
    })
    assert r.status_code == 201
    data = r.get_json()["data"]
    assert D(data["change"]["new_basic_salary"]) == D("12500")
    assert D(data["change"]["new_allowances"]["housing"]) == D("2500")
    assert data["change"]["adjustment_mode"] == "percentage"
    assert data["applied_percentage"] == "25.00"
    assert data["band"]["status"] == "above"
    assert data["warnings"][0]["code"] == "BAND_VIOLATION"

    hist = client.get(f"/api/v1/employees/{eid}/compensation-changes", headers=h).get_json()["data"]
    assert [c["effective_date"] for c in hist["changes"]] == ["2025-07-01", "2025-01-01"]
    assert hist["version"] == 3

    cur = client.get(f"/api/v1/payroll/employees/{eid}", headers=h).get_json()["data"]
    assert cur["gross_salary"] == "15000.00"
    assert cur["source_change_id"] == hist["changes"][0]["id"]


def test_compensation_change_version_conflict(app, client, seeded):
    h = _headers(app)
    eid = seeded["employee_id"]
    body = {"basic_salary": "9000", "effective_date": "2025-01-01", "expected_version": 1}
    assert client.post(f"/api/v1/employees/{eid}/compensation-changes", headers=h, json=body).status_code == 201
    r = client.post(f"/api/v1/employees/{eid}/compensation-changes", headers=h, json=body)
    assert r.status_code == 409
    assert r.get_json()["error"]["code"] == "CONCURRENCY_CONFLICT"


def test_compensation_change_unknown_employee(app, client):
    r = client.post("/api/v1/employees/999/compensation-changes", headers=_headers(app),
                    json={"basic_salary": "1000", "effective_date": "2025-01-01"})
    assert r.status_code == 404


def test_batch_endpoints(app, client, seeded):
    h = _headers(app)
    cid = seeded["company_id"]
    eid = seeded["employee_id"]
    client.post(f"/api/v1/employees/{eid}/compensation-changes", headers=h, json={
        "basic_salary": "15000", "housing_allowance": "3000", "transportation_allowance": "1000",
        "other_allowances": "500", "effective_date": "2025-01-01",
    })

    r = client.post("/api/v1/payroll/batches", headers=h, json={"company_id": cid, "month": "2025-07"})
    assert r.status_code == 201
    bid = r.get_json()["data"]["id"]
    assert client.post("/api/v1/payroll/batches", headers=h,
                       json={"company_id": cid, "month": "2025-07"}).status_code == 409

    r = client.post(f"/api/v1/payroll/batches/{bid}/run", headers=h, json={})
    assert r.status_code == 200
    data = r.get_json()["data"]
    assert data["status"] == "complete"
    assert data["batch"]["status"] == "calculated"
    assert data["batch"]["totals"]["total_net"] == "17745.00"
    assert data["run_totals"]["total_gosi_employer"] == "2115.00"

    items = client.get(f"/api/v1/payroll/batches/{bid}/items", headers=h).get_json()
    assert items["meta"]["total"] == 1
    assert items["data"][0]["employee_code"] == "E001"
    assert items["data"][0]["gosi_employee"] == "1755.00"

    assert client.post(f"/api/v1/payroll/batches/{bid}/lock", headers=h).status_code == 409
    assert client.post(f"/api/v1/payroll/batches/{bid}/approve", headers=h).status_code == 200
    r = client.post(f"/api/v1/payroll/batches/{bid}/lock", headers=h)
    assert r.get_json()["data"]["status"] == "locked"

    listed = client.get(f"/api/v1/payroll/batches?company_id={cid}", headers=h).get_json()
    assert listed["meta"]["total"] == 1


def test_calculate_is_saudi_false_flag(app, client):
    body = {"basic_salary": "10000", "is_saudi": False}
    data = client.post("/api/v1/payroll/calculate", json=body, headers=_headers(app)).get_json()["data"]
    assert data["contributor_type"] == "non_saudi"
    assert data["gosi_employee"] == "0.00"
    assert data["gosi_employer"] == "200.00"
