# payroll_api/blueprints/payroll_calc.py
from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint

from payroll_api.common.auth import requires_perms
from payroll_api.common.errors import NotFound, ValidationError
from payroll_api.common.http import ok, json_body, d, dec_str
from payroll_api.models.payroll.employee_payroll import EmployeePayroll
from payroll_api.services.compensation import MONEY_FIELDS, CompensationComponents, money
from payroll_api.services.gosi_rates import RateSet, classify_contributor, resolve_gosi_rates
from payroll_api.services.payroll_calculator import RESULT_FIELDS, calculate_payroll

bp = Blueprint("payroll_calc", __name__, url_prefix="/api/v1/payroll")


def _row_payroll(p: EmployeePayroll) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "employee_id": p.employee_id,
        "company_id": p.company_id,
        "contributor_type": p.contributor_type,
        "effective_date": p.effective_date.isoformat() if p.effective_date else None,
        "source_change_id": p.source_change_id,
        "updated_at": p.updated_at.isoformat() if p.updated_at else None,
        "components": {f: dec_str(getattr(p, f)) for f in MONEY_FIELDS},
        "rates": {
            "employee_rate": dec_str(p.employee_rate),
            "employer_rate": dec_str(p.employer_rate),
            "wage_ceiling": dec_str(p.wage_ceiling),
        },
    }
    for f in RESULT_FIELDS:
        v = getattr(p, f)
        out[f] = str(money(v)) if v is not None else None
    out["exact"] = {f: dec_str(getattr(p, f)) for f in RESULT_FIELDS}
    return out


@bp.post("/calculate")
@requires_perms("payroll.calc.read")
def calculate():
    """
    Body: compensation components plus one of contributor_type / nationality /
    is_saudi. Optional company_id and as_of pick configured rates; an explicit
    "rates" object ({employee_rate, employer_rate, wage_ceiling}) skips lookup.
    """
    j = json_body()
    components = CompensationComponents.from_mapping(j)

    if not any(j.get(k) not in (None, "") for k in ("contributor_type", "nationality", "is_saudi")):
        raise ValidationError("contributor_type or nationality is required", "contributor_type")
    ct = classify_contributor(j.get("nationality"), j.get("is_saudi"), j.get("contributor_type"))

    as_of = None
    if j.get("as_of"):
        as_of = d(j.get("as_of"))
        if as_of is None:
            raise ValidationError("as_of must be YYYY-MM-DD", "as_of")

    explicit = j.get("rates")
    if explicit is not None:
        if not isinstance(explicit, dict):
            raise ValidationError("rates must be an object", "rates")
        rates = RateSet(explicit.get("employee_rate"), explicit.get("employer_rate"),
                        explicit.get("wage_ceiling"), contributor_type=ct)
    else:
        company_id = j.get("company_id")
        try:
            company_id = int(company_id) if company_id not in (None, "") else None
        except (TypeError, ValueError):
            raise ValidationError("company_id must be integer", "company_id") from None
        rates = resolve_gosi_rates(company_id, ct, as_of)

    result = calculate_payroll(components, rates)
    data = result.to_dict(exact=True)
    data["components"] = components.to_dict()
    return ok(data)


@bp.get("/employees/<int:employee_id>")
@requires_perms("payroll.calc.read")
def employee_payroll(employee_id: int):
    p = EmployeePayroll.query.filter_by(employee_id=employee_id).first()
    if p is None:
        raise NotFound(f"no current payroll for employee {employee_id}")
    return ok(_row_payroll(p))
