# payroll_api/blueprints/gosi_rates.py
from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, request, current_app

from payroll_api.common.auth import requires_perms, current_actor
from payroll_api.common.errors import ValidationError
from payroll_api.common.http import ok, fail, json_body, d, int_arg
from payroll_api.common.paging import paginate
from payroll_api.models.payroll.gosi_rate import GosiRateConfig
from payroll_api.services.gosi_rates import (
    ContributorType, activate_rate_config, apply_external_rates, create_rate_config,
    resolve_gosi_rates, statutory_breakdown,
)

bp = Blueprint("gosi_rates", __name__, url_prefix="/api/v1/gosi/rates")


def _row(r: GosiRateConfig) -> Dict[str, Any]:
    return {
        "id": r.id,
        "company_id": r.company_id,
        "contributor_type": r.contributor_type,
        "employee_rate": str(r.employee_rate),
        "employer_rate": str(r.employer_rate),
        "max_wage_ceiling": str(r.max_wage_ceiling),
        "effective_from": r.effective_from.isoformat() if r.effective_from else None,
        "is_active": bool(r.is_active),
        "source": r.source,
        "created_by": r.created_by,
        "created_at": r.created_at.isoformat() if r.created_at else None,
        "deactivated_at": r.deactivated_at.isoformat() if r.deactivated_at else None,
    }


def _bool_arg(name):
    raw = (request.args.get(name) or "").strip().lower()
    if raw in ("1", "true", "yes"):
        return True
    if raw in ("0", "false", "no"):
        return False
    return None


@bp.get("")
@requires_perms("payroll.gosi.read")
def list_rates():
    try:
        company_id = int_arg("company_id")
    except ValueError:
        return fail("company_id must be integer", 422)
    q = GosiRateConfig.query
    if company_id:
        q = q.filter(GosiRateConfig.company_id == company_id)
    ct = request.args.get("contributor_type")
    if ct:
        q = q.filter(GosiRateConfig.contributor_type == ContributorType.parse(ct).value)
    active = _bool_arg("active")
    if active is not None:
        q = q.filter(GosiRateConfig.is_active.is_(active))
    q = q.order_by(GosiRateConfig.company_id.asc(), GosiRateConfig.contributor_type.asc(),
                   GosiRateConfig.effective_from.desc(), GosiRateConfig.id.desc())
    rows, meta = paginate(q)
    return ok([_row(r) for r in rows], **meta)


@bp.post("")
@requires_perms("payroll.gosi.write")
def create_rate():
    j = json_body()
    eff = None
    if j.get("effective_from"):
        eff = d(j.get("effective_from"))
        if eff is None:
            raise ValidationError("effective_from must be YYYY-MM-DD", "effective_from")
    try:
        company_id = int(j.get("company_id"))
    except (TypeError, ValueError):
        raise ValidationError("company_id is required", "company_id") from None
    row = create_rate_config(
        company_id,
        j.get("contributor_type"),
        j.get("employee_rate"),
        j.get("employer_rate"),
        j.get("max_wage_ceiling"),
        eff,
        activate=j.get("activate", True) is not False,
        actor=current_actor(),
    )
    return ok(_row(row), 201)


@bp.post("/<int:config_id>/activate")
@requires_perms("payroll.gosi.write")
def activate_rate(config_id: int):
    row = activate_rate_config(config_id)
    current_app.logger.info("GOSI rate %s activated by %s", row.id, current_actor())
    return ok(_row(row))


@bp.get("/resolve")
@requires_perms("payroll.gosi.read")
def resolve():
    try:
        company_id = int_arg("company_id")
    except ValueError:
        return fail("company_id must be integer", 422)
    ct = request.args.get("contributor_type")
    if not ct:
        raise ValidationError("contributor_type is required", "contributor_type")
    as_of = None
    if request.args.get("as_of"):
        as_of = d(request.args.get("as_of"))
        if as_of is None:
            raise ValidationError("as_of must be YYYY-MM-DD", "as_of")
    rates = resolve_gosi_rates(company_id, ct, as_of)
    data = rates.to_dict()
    data["statutory_breakdown"] = statutory_breakdown(rates.contributor_type)
    return ok(data)


@bp.post("/sync")
@requires_perms("payroll.gosi.write")
def sync_rates():
    """Inbound payload from the external GOSI rate sync: {company_id, rates: [...]}."""
    j = json_body()
    try:
        company_id = int(j.get("company_id"))
    except (TypeError, ValueError):
        raise ValidationError("company_id is required", "company_id") from None
    rows = j.get("rates")
    if not isinstance(rows, list) or not rows:
        raise ValidationError("rates must be a non-empty list", "rates")
    written = apply_external_rates(company_id, rows, actor=current_actor())
    return ok({"written": [_row(r) for r in written], "skipped": len(rows) - len(written)})
