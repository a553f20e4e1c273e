import os
from datetime import date
from decimal import Decimal

import pytest

from payroll_api import create_app
from payroll_api.common.errors import ConcurrencyConflict, InvalidState, ValidationError
from payroll_api.extensions import db
from payroll_api.models.employee import Employee
from payroll_api.models.master import Company
from payroll_api.models.payroll.batch import PayrollBatch, PayrollItem
from payroll_api.services.compensation import CompensationComponents
from payroll_api.services import payroll_batch
from payroll_api.services.gosi_rates import create_rate_config
from payroll_api.services.payroll_batch import (
    approve_batch, create_batch, lock_batch, merge_line_item, parse_month, run_batch,
)

D = Decimal


@pytest.fixture(scope="function")
def app():
    os.environ["DATABASE_URL"] = "sqlite:///:memory:"
    app = create_app()
    app.config["PAYROLL_BATCH_CHUNK_SIZE"] = 2
    with app.app_context():
        db.create_all()
        yield app


@pytest.fixture(scope="function")
def company(app):
    c = Company(code="ACME", name="Acme Trading")
    db.session.add(c); db.session.commit()
    return c


def _emp(company, code, basic, housing="0", nationality="Saudi", **kw):
    e = Employee(company_id=company.id, code=code, first_name=code, nationality=nationality,
                 basic_salary=D(basic), housing_allowance=D(housing), **kw)
    db.session.add(e); db.session.commit()
    return e


def _staff(company):
    return [
        _emp(company, "E1", "15000", "3000", transportation_allowance=D("1000"), other_allowances=D("500")),
        _emp(company, "E2", "15000", "3000", nationality="Egyptian",
             transportation_allowance=D("1000"), other_allowances=D("500")),
        _emp(company, "E3", "50000", "10000"),
        _emp(company, "E4", "8000", "2000", nationality="Indian"),
        _emp(company, "E5", "9000", status="terminated"),
        _emp(company, "E6", "9000", hire_date=date(2025, 8, 15)),
    ]


def test_parse_month():
    assert parse_month("2025-02") == (date(2025, 2, 1), date(2025, 2, 28))
    with pytest.raises(ValidationError):
        parse_month("2025-13")
    with pytest.raises(ValidationError):
        parse_month("July")


def test_run_batch_totals(company):
    _staff(company)
    b = create_batch(company.id, "2025-07", actor="7")
    res = run_batch(company.id, b.id, actor="7")

    assert res.status == "complete"
    assert len(res.lines) == 4                      # terminated and not-yet-hired skipped
    t = res.totals
    assert t.employee_count == 4
    assert t.total_gross == D("19500") * 2 + D("60000") + D("10000")
    assert t.total_gosi_employee == D("1755") + D("45000") * D("0.0975")
    assert t.total_gosi_employer == D("2115") + D("360") + D("45000") * D("0.1175") + D("200")
    assert t.total_net == t.total_gross - t.total_gosi_employee

    batch = db.session.get(PayrollBatch, b.id)
    assert batch.status == "calculated"
    assert batch.total_employees == 4
    assert batch.total_gross == t.total_gross
    assert batch.total_net == t.total_net
    assert PayrollItem.query.filter_by(batch_id=b.id).count() == 4


def test_rerun_is_idempotent(company):
    _staff(company)
    b = create_batch(company.id, "2025-07")
    first = run_batch(company.id, b.id)
    second = run_batch(company.id, b.id)
    assert first.totals == second.totals
    assert PayrollItem.query.filter_by(batch_id=b.id).count() == 4
    batch = db.session.get(PayrollBatch, b.id)
    assert batch.total_gross == first.totals.total_gross


def test_rates_resolved_at_period_end(company):
    _emp(company, "E1", "10000")
    create_rate_config(company.id, "saudi", "0.1", "0.12", None, date(2025, 7, 31))
    b = create_batch(company.id, "2025-07")
    res = run_batch(company.id, b.id)
    assert res.lines[0].result.rates.source == "config"
    assert res.lines[0].result.gosi_employee == D("1000")


def test_merge_keeps_stored_values_for_empty_incoming():
    stored = CompensationComponents.from_mapping({
        "basic_salary": "10000", "housing_allowance": "2500", "food_allowance": "300",
        "iban": "SA0380000000608010167519", "bank_name": "Al Rajhi",
    })
    incoming = CompensationComponents.from_mapping({"basic_salary": "11000", "housing_allowance": "0"})
    merged = merge_line_item(stored, incoming)
    assert merged.basic_salary == D("11000")
    assert merged.housing_allowance == D("2500")
    assert merged.food_allowance == D("300")
    assert merged.iban == "SA0380000000608010167519"
    assert merge_line_item(None, incoming) is incoming


def test_existing_item_is_merged_and_recomputed(company):
    e = _emp(company, "E1", "10000", "2500")
    b = create_batch(company.id, "2025-07")
    db.session.add(PayrollItem(batch_id=b.id, employee_id=e.id, company_id=company.id,
                               basic_salary=D("1"), food_allowance=D("400"), bank_name="SNB",
                               gross_salary=D("1"), net_salary=D("1")))
    db.session.commit()

    run_batch(company.id, b.id)
    items = PayrollItem.query.filter_by(batch_id=b.id).all()
    assert len(items) == 1
    it = items[0]
    assert it.basic_salary == D("10000")       # incoming non-zero wins
    assert it.food_allowance == D("400")       # stored kept, incoming was 0
    assert it.bank_name == "SNB"
    assert it.gross_salary == D("12900")       # recomputed from merged components
    assert it.gosi_wage_base == D("12500")
    assert it.contributor_type == "saudi"


def test_partial_failure_is_reported_not_raised(app, company):
    _emp(company, "E1", "10000")
    _emp(company, "E2", "10000", contributor_type="gcc")     # unknown classification
    _emp(company, "E3", "8000", nationality="Indian")
    b = create_batch(company.id, "2025-07")

    res = run_batch(company.id, b.id)
    assert res.status == "partial"
    assert len(res.successes) == 2
    assert [f.error_code for f in res.failures] == ["VALIDATION_ERROR"]
    assert bool(res.failure) is True
    assert res.totals.employee_count == 2

    batch = db.session.get(PayrollBatch, b.id)
    assert batch.status == "calculated"
    assert batch.total_employees == 2
    assert len(batch.failures) == 1


def test_missing_configuration_fails_each_employee(app, company):
    app.config["GOSI_FALLBACK_DEFAULTS"] = False
    _emp(company, "E1", "10000")
    create_rate_config(company.id, "non_saudi", "0", "0.02", None, date(2025, 1, 1))
    _emp(company, "E2", "8000", nationality="Indian")
    b = create_batch(company.id, "2025-07")
    res = run_batch(company.id, b.id)
    assert [x.employee_id for x in res.successes] == [PayrollItem.query.one().employee_id]
    assert res.failures[0].error_code == "CONFIGURATION_MISSING"


def test_checkpoint_and_resume(company):
    staff = _staff(company)
    b = create_batch(company.id, "2025-07")

    part = run_batch(company.id, b.id, max_employees=3)
    assert part.status == "in_progress"
    assert len(part.lines) == 3
    batch = db.session.get(PayrollBatch, b.id)
    assert batch.status == "in_progress"
    assert batch.checkpoint_employee_id == staff[2].id

    rest = run_batch(company.id, b.id)
    assert rest.status == "complete"
    assert [x.employee_id for x in rest.lines] == [staff[3].id]

    full = run_batch(company.id, b.id)
    batch = db.session.get(PayrollBatch, b.id)
    assert batch.status == "calculated"
    assert batch.total_employees == 4
    assert batch.total_gross == full.totals.total_gross
    assert batch.checkpoint_employee_id is None


def test_lifecycle(company):
    _emp(company, "E1", "10000")
    b = create_batch(company.id, "2025-07")
    with pytest.raises(InvalidState):
        approve_batch(b.id)
    run_batch(company.id, b.id)
    approve_batch(b.id, actor="7")
    with pytest.raises(InvalidState):
        run_batch(company.id, b.id)
    lock_batch(b.id, actor="7")
    assert db.session.get(PayrollBatch, b.id).status == "locked"
    with pytest.raises(InvalidState):
        create_batch(company.id, "2025-07")


def test_item_written_by_another_run_is_a_conflict(company, monkeypatch):
    e = _emp(company, "E1", "10000")
    b = create_batch(company.id, "2025-07")
    db.session.add(PayrollItem(batch_id=b.id, employee_id=e.id, company_id=company.id))
    db.session.commit()

    # the other runner's item lands after this run read the existing items
    real = payroll_batch._build_jobs
    monkeypatch.setattr(payroll_batch, "_build_jobs", lambda batch, emps: (real(batch, emps)[0], {}))
    with pytest.raises(ConcurrencyConflict):
        run_batch(company.id, b.id)
    assert PayrollItem.query.filter_by(batch_id=b.id).count() == 1
