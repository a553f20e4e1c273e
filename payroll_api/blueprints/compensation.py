# payroll_api/blueprints/compensation.py
from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, request

from payroll_api.common.auth import requires_perms, current_actor
from payroll_api.common.errors import NotFound, ValidationError
from payroll_api.common.http import ok, json_body, d, dec_str
from payroll_api.extensions import db
from payroll_api.models.employee import Employee
from payroll_api.models.payroll.compensation_change import CompensationChangeRecord
from payroll_api.models.payroll.employee_payroll import EmployeePayroll
from payroll_api.services.compensation import MONEY_FIELDS, ROUTING_FIELDS, components_of, money, to_number
from payroll_api.services.compensation_ledger import (
    amount_to_percentage, apply_amount, apply_percentage, compensation_history,
    propose_compensation_change,
)

bp = Blueprint("compensation", __name__, url_prefix="/api/v1/employees")


def _row_change(r: CompensationChangeRecord) -> Dict[str, Any]:
    return {
        "id": r.id,
        "employee_id": r.employee_id,
        "company_id": r.company_id,
        "old_basic_salary": dec_str(r.old_basic_salary),
        "new_basic_salary": dec_str(r.new_basic_salary),
        "old_allowances": r.old_allowances or {},
        "new_allowances": r.new_allowances or {},
        "old_total": dec_str(r.old_total),
        "new_total": dec_str(r.new_total),
        "delta_amount": dec_str(r.delta_amount),
        "delta_pct": str(money(r.delta_pct)) if r.delta_pct is not None else None,
        "effective_date": r.effective_date.isoformat() if r.effective_date else None,
        "change_reason": r.change_reason,
        "change_type": r.change_type,
        "adjustment_mode": r.adjustment_mode,
        "band_status": r.band_status,
        "changed_by": r.changed_by,
        "created_at": r.created_at.isoformat() if r.created_at else None,
    }


def _employee_or_404(employee_id: int) -> Employee:
    emp = db.session.get(Employee, employee_id)
    if emp is None:
        raise NotFound(f"employee {employee_id} not found")
    return emp


def _new_components(emp: Employee, j: Dict[str, Any]):
    """
    Build the proposed package from the request.

      {"adjustment_mode": "percentage", "percentage": 5}  basic * 1.05
      {"adjustment_mode": "amount", "amount": 750}        basic + 750
      otherwise: any of basic_salary / *_allowance(s) / iban / bank_name;
      fields left out keep their current value.
    """
    current = components_of(emp)
    mode = (j.get("adjustment_mode") or "manual").strip().lower()
    if mode == "percentage":
        if j.get("percentage") in (None, ""):
            raise ValidationError("percentage is required", "percentage")
        basic = money(apply_percentage(current.basic_salary, to_number(j.get("percentage"), "percentage")))
        return current.with_changes(basic_salary=basic), mode
    if mode == "amount":
        if j.get("amount") in (None, ""):
            raise ValidationError("amount is required", "amount")
        basic = money(apply_amount(current.basic_salary, to_number(j.get("amount"), "amount")))
        return current.with_changes(basic_salary=basic), mode
    if mode != "manual":
        raise ValidationError("adjustment_mode must be percentage, amount or manual", "adjustment_mode")
    changes = {k: j[k] for k in MONEY_FIELDS + ROUTING_FIELDS if k in j}
    if not changes:
        raise ValidationError("no compensation fields supplied")
    return current.with_changes(**changes), mode


@bp.post("/<int:employee_id>/compensation-changes")
@requires_perms("payroll.compensation.write")
def propose_change(employee_id: int):
    j = json_body()
    emp = _employee_or_404(employee_id)

    eff = d(j.get("effective_date"))
    if eff is None:
        raise ValidationError("effective_date is required (YYYY-MM-DD)", "effective_date")

    expected = j.get("expected_version")
    if expected not in (None, ""):
        try:
            expected = int(expected)
        except (TypeError, ValueError):
            raise ValidationError("expected_version must be integer", "expected_version") from None
    else:
        # the package below is derived from this read, so pin it
        expected = emp.version

    new, mode = _new_components(emp, j)
    outcome = propose_compensation_change(
        employee_id, new, eff, j.get("change_reason") or j.get("reason"), current_actor(),
        expected_version=expected,
        change_type=(j.get("change_type") or "other"),
        adjustment_mode=mode,
    )
    data = {
        "change": _row_change(outcome.record),
        "payroll": outcome.result.to_dict(exact=True),
        "band": outcome.band.to_dict(),
        "warnings": outcome.warnings,
    }
    if mode != "manual":
        data["applied_percentage"] = str(money(amount_to_percentage(
            outcome.record.old_basic_salary,
            outcome.record.new_basic_salary - outcome.record.old_basic_salary,
        )))
    return ok(data, 201)


@bp.get("/<int:employee_id>/compensation-changes")
@requires_perms("payroll.compensation.read")
def list_changes(employee_id: int):
    emp = _employee_or_404(employee_id)
    try:
        limit = int(request.args.get("limit")) if request.args.get("limit") else None
    except ValueError:
        raise ValidationError("limit must be integer", "limit") from None
    rows = compensation_history(employee_id, limit=limit)
    current = EmployeePayroll.query.filter_by(employee_id=employee_id).first()
    return ok({
        "employee_id": emp.id,
        "version": emp.version,
        "current": components_of(emp).to_dict(),
        "current_payroll_change_id": current.source_change_id if current else None,
        "changes": [_row_change(r) for r in rows],
    })
