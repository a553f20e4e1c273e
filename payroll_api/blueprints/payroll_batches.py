# payroll_api/blueprints/payroll_batches.py
from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, request

from payroll_api.common.auth import requires_perms, current_actor
from payroll_api.common.errors import NotFound, ValidationError
from payroll_api.common.http import ok, fail, json_body, int_arg, dec_str
from payroll_api.common.paging import paginate
from payroll_api.extensions import db
from payroll_api.models.payroll.batch import PayrollBatch, PayrollItem
from payroll_api.services.compensation import MONEY_FIELDS, money
from payroll_api.services.payroll_batch import (
    BatchTotals, approve_batch, create_batch, lock_batch, run_batch,
)
from payroll_api.services.payroll_calculator import RESULT_FIELDS

bp = Blueprint("payroll_batches", __name__, url_prefix="/api/v1/payroll/batches")


def _iso(x):
    return x.isoformat() if x else None


def _row_batch(b: PayrollBatch) -> Dict[str, Any]:
    return {
        "id": b.id,
        "company_id": b.company_id,
        "month": b.month,
        "period_start": _iso(b.period_start),
        "period_end": _iso(b.period_end),
        "status": b.status,
        "totals": BatchTotals(
            b.total_employees or 0, b.total_gross or 0, b.total_gosi_employee or 0,
            b.total_gosi_employer or 0, b.total_net or 0,
        ).to_dict(),
        "checkpoint_employee_id": b.checkpoint_employee_id,
        "failures": b.failures or [],
        "notes": b.notes,
        "created_by": b.created_by,
        "created_at": _iso(b.created_at),
        "calculated_at": _iso(b.calculated_at),
        "approved_at": _iso(b.approved_at),
        "locked_at": _iso(b.locked_at),
    }


def _row_item(x: PayrollItem) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "id": x.id,
        "batch_id": x.batch_id,
        "employee_id": x.employee_id,
        "employee_code": x.employee.code if x.employee else None,
        "employee_name": x.employee.full_name if x.employee else None,
        "contributor_type": x.contributor_type,
        "components": {f: dec_str(getattr(x, f)) for f in MONEY_FIELDS},
        "iban": x.iban,
        "bank_name": x.bank_name,
        "notes": x.notes,
    }
    for f in RESULT_FIELDS:
        v = getattr(x, f)
        out[f] = str(money(v)) if v is not None else None
    return out


def _batch_or_404(batch_id: int) -> PayrollBatch:
    b = db.session.get(PayrollBatch, batch_id)
    if b is None:
        raise NotFound(f"payroll batch {batch_id} not found")
    return b


@bp.post("")
@requires_perms("payroll.batch.write")
def create():
    j = json_body()
    try:
        company_id = int(j.get("company_id"))
    except (TypeError, ValueError):
        raise ValidationError("company_id is required", "company_id") from None
    if not j.get("month"):
        raise ValidationError("month is required (YYYY-MM)", "month")
    b = create_batch(company_id, j.get("month"), actor=current_actor(),
                     notes=(j.get("notes") or "").strip() or None)
    return ok(_row_batch(b), 201)


@bp.get("")
@requires_perms("payroll.batch.read")
def list_batches():
    try:
        company_id = int_arg("company_id")
    except ValueError:
        return fail("company_id must be integer", 422)
    q = PayrollBatch.query
    if company_id:
        q = q.filter(PayrollBatch.company_id == company_id)
    status = (request.args.get("status") or "").strip()
    if status:
        q = q.filter(PayrollBatch.status == status)
    rows, meta = paginate(q.order_by(PayrollBatch.month.desc(), PayrollBatch.id.desc()))
    return ok([_row_batch(b) for b in rows], **meta)


@bp.get("/<int:batch_id>")
@requires_perms("payroll.batch.read")
def get_batch(batch_id: int):
    return ok(_row_batch(_batch_or_404(batch_id)))


@bp.post("/<int:batch_id>/run")
@requires_perms("payroll.batch.write")
def run(batch_id: int):
    j = json_body()
    b = _batch_or_404(batch_id)
    max_employees = j.get("max_employees")
    if max_employees not in (None, ""):
        try:
            max_employees = int(max_employees)
        except (TypeError, ValueError):
            raise ValidationError("max_employees must be integer", "max_employees") from None
    else:
        max_employees = None

    res = run_batch(b.company_id, b.id, actor=current_actor(), max_employees=max_employees)
    return ok({
        "batch": _row_batch(res.batch),
        "status": res.status,
        "run_totals": res.totals.to_dict(),
        "processed": len(res.lines),
        "failures": [x.failure_dict() for x in res.failures],
        "partial_failure": res.failure.to_dict() if res.failure else None,
    })


@bp.get("/<int:batch_id>/items")
@requires_perms("payroll.batch.read")
def list_items(batch_id: int):
    b = _batch_or_404(batch_id)
    q = PayrollItem.query.filter(PayrollItem.batch_id == b.id)
    try:
        emp_id = int_arg("employee_id")
    except ValueError:
        return fail("employee_id must be integer", 422)
    if emp_id:
        q = q.filter(PayrollItem.employee_id == emp_id)
    rows, meta = paginate(q.order_by(PayrollItem.employee_id.asc()))
    return ok([_row_item(x) for x in rows], **meta)


@bp.post("/<int:batch_id>/approve")
@requires_perms("payroll.batch.write")
def approve(batch_id: int):
    return ok(_row_batch(approve_batch(batch_id, actor=current_actor())))


@bp.post("/<int:batch_id>/lock")
@requires_perms("payroll.batch.write")
def lock(batch_id: int):
    return ok(_row_batch(lock_batch(batch_id, actor=current_actor())))
