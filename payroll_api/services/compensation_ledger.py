"""
Compensation change ledger.

propose_compensation_change() is the only writer of an employee's
compensation fields. Every call appends one CompensationChangeRecord and
replaces the employee's EmployeePayroll row in the same transaction; a
failure in either leaves neither behind.

Per-employee writes are serialised by locking the employee row and by the
Employee.version column (optimistic check). A stale writer gets
ConcurrencyConflict instead of overwriting.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import lazyload
from sqlalchemy.orm.exc import StaleDataError

from payroll_api.common.errors import BandViolation, ConcurrencyConflict, NotFound, ValidationError
from payroll_api.extensions import db
from payroll_api.models.employee import Employee
from payroll_api.models.master import SalaryBand
from payroll_api.models.payroll.compensation_change import CompensationChangeRecord
from payroll_api.models.payroll.employee_payroll import EmployeePayroll
from payroll_api.services.compensation import (
    CENT, MONEY_FIELDS, ZERO, CompensationComponents, components_of, gross_of, money,
    to_decimal, to_number,
)
from payroll_api.services.gosi_rates import contributor_type_of, resolve_gosi_rates
from payroll_api.services.payroll_calculator import PayrollResult, calculate_payroll, result_columns

log = logging.getLogger(__name__)

HUNDRED = Decimal("100")
PCT_SCALE = Decimal("0.000001")

CHANGE_TYPES = ("merit", "promotion", "market_adjustment", "cost_of_living",
                "equity", "retention", "initial", "other")
ADJUSTMENT_MODES = ("percentage", "amount", "manual")


# ---------- arithmetic helpers ----------

def change_delta(old_total: Decimal, new_total: Decimal):
    """(delta, delta_pct). delta_pct is 0 when there was no previous pay."""
    delta = new_total - old_total
    if old_total == 0:
        return delta, ZERO
    return delta, delta / old_total * HUNDRED


def apply_percentage(current_basic, percentage) -> Decimal:
    current = to_decimal(current_basic, "current_basic")
    pct = to_number(percentage, "percentage")
    return current * (1 + pct / HUNDRED)


def apply_amount(current_basic, amount) -> Decimal:
    current = to_decimal(current_basic, "current_basic")
    return current + to_number(amount, "amount")


def amount_to_percentage(current_basic, amount) -> Decimal:
    current = to_decimal(current_basic, "current_basic")
    if current == 0:
        return ZERO
    return to_number(amount, "amount") / current * HUNDRED


def percentage_to_amount(current_basic, percentage) -> Decimal:
    return apply_percentage(current_basic, percentage) - to_decimal(current_basic, "current_basic")


def compa_ratio(basic_salary: Decimal, midpoint: Decimal) -> Decimal:
    if midpoint is None or midpoint <= 0:
        return ZERO
    return basic_salary / midpoint * HUNDRED


def range_penetration(basic_salary: Decimal, minimum: Decimal, maximum: Decimal) -> Decimal:
    if maximum is None or minimum is None or maximum <= minimum:
        return ZERO
    return (basic_salary - minimum) / (maximum - minimum) * HUNDRED


# ---------- band check ----------

@dataclass(frozen=True)
class BandCheck:
    status: str                      # within | below | above | no_band
    band_id: Optional[int] = None
    minimum: Optional[Decimal] = None
    midpoint: Optional[Decimal] = None
    maximum: Optional[Decimal] = None
    compa_ratio: Optional[Decimal] = None
    range_penetration: Optional[Decimal] = None
    warning: Optional[BandViolation] = None

    def to_dict(self) -> Dict[str, Any]:
        def s(x):
            return str(money(x)) if x is not None else None
        return {
            "status": self.status,
            "band_id": self.band_id,
            "minimum_salary": s(self.minimum),
            "midpoint_salary": s(self.midpoint),
            "maximum_salary": s(self.maximum),
            "compa_ratio": s(self.compa_ratio),
            "range_penetration": s(self.range_penetration),
        }


def check_band(basic_salary: Decimal, band: Optional[SalaryBand]) -> BandCheck:
    """Compare a basic salary to its band. Out of range is a warning, never an error."""
    if band is None or not band.is_active:
        return BandCheck(status="no_band")
    lo = Decimal(band.minimum_salary)
    mid = Decimal(band.midpoint_salary)
    hi = Decimal(band.maximum_salary)
    status, warning = "within", None
    if basic_salary < lo:
        status = "below"
    elif basic_salary > hi:
        status = "above"
    if status != "within":
        warning = BandViolation(basic_salary, lo, hi, status)
    return BandCheck(
        status=status,
        band_id=band.id,
        minimum=lo,
        midpoint=mid,
        maximum=hi,
        compa_ratio=compa_ratio(basic_salary, mid),
        range_penetration=range_penetration(basic_salary, lo, hi),
        warning=warning,
    )


# ---------- ledger ----------

@dataclass
class ChangeOutcome:
    record: CompensationChangeRecord
    payroll: EmployeePayroll
    result: PayrollResult
    band: BandCheck
    delta_pct: Decimal
    warnings: List[Dict[str, Any]] = field(default_factory=list)


def _check_scale(components: CompensationComponents) -> None:
    for name in MONEY_FIELDS:
        v = getattr(components, name)
        if v != v.quantize(CENT):
            raise ValidationError(f"{name} must have at most 2 decimal places", name)


def _lock_employee(employee_id: int) -> Employee:
    emp = (
        db.session.query(Employee)
        .options(lazyload("*"))
        .filter(Employee.id == employee_id)
        .with_for_update(of=Employee)
        .populate_existing()
        .one_or_none()
    )
    if emp is None:
        raise NotFound(f"employee {employee_id} not found")
    return emp


def _upsert_current_payroll(emp: Employee, components: CompensationComponents, result: PayrollResult,
                            effective_date: date, change_id: Optional[int]) -> EmployeePayroll:
    row = (
        EmployeePayroll.query
        .filter(EmployeePayroll.employee_id == emp.id)
        .with_for_update(of=EmployeePayroll)
        .first()
    )
    if row is None:
        row = EmployeePayroll(employee_id=emp.id, company_id=emp.company_id)
        db.session.add(row)
    row.company_id = emp.company_id
    for name in MONEY_FIELDS:
        setattr(row, name, getattr(components, name))
    for name, value in result_columns(result).items():
        setattr(row, name, value)
    row.effective_date = effective_date
    row.source_change_id = change_id
    return row


def propose_compensation_change(employee_id: int, new_components, effective_date: date,
                                reason: Optional[str], actor: Optional[str], *,
                                expected_version: Optional[int] = None,
                                change_type: str = "other",
                                adjustment_mode: Optional[str] = None) -> ChangeOutcome:
    if not isinstance(new_components, CompensationComponents):
        new_components = CompensationComponents.from_mapping(new_components)
    if not isinstance(effective_date, date):
        raise ValidationError("effective_date is required (YYYY-MM-DD)", "effective_date")
    if change_type not in CHANGE_TYPES:
        raise ValidationError(f"change_type must be one of: {', '.join(CHANGE_TYPES)}", "change_type")
    if adjustment_mode is not None and adjustment_mode not in ADJUSTMENT_MODES:
        raise ValidationError(f"adjustment_mode must be one of: {', '.join(ADJUSTMENT_MODES)}", "adjustment_mode")
    _check_scale(new_components)

    try:
        emp = _lock_employee(employee_id)
        if expected_version is not None and int(expected_version) != emp.version:
            raise ConcurrencyConflict(
                f"employee {employee_id} compensation changed since version {expected_version}",
                payload={"expected_version": int(expected_version), "current_version": emp.version},
            )

        old = components_of(emp)
        old_total = gross_of(old)
        new_total = gross_of(new_components)
        delta, delta_pct = change_delta(old_total, new_total)
        band = check_band(new_components.basic_salary, db.session.get(SalaryBand, emp.salary_band_id)
                          if emp.salary_band_id else None)

        record = CompensationChangeRecord(
            employee_id=emp.id,
            company_id=emp.company_id,
            old_basic_salary=old.basic_salary,
            new_basic_salary=new_components.basic_salary,
            old_allowances=old.allowance_snapshot(),
            new_allowances=new_components.allowance_snapshot(),
            old_total=old_total,
            new_total=new_total,
            delta_amount=delta,
            delta_pct=delta_pct.quantize(PCT_SCALE),
            effective_date=effective_date,
            change_reason=(reason or "").strip() or None,
            change_type=change_type,
            adjustment_mode=adjustment_mode,
            band_status=band.status,
            changed_by=actor,
        )
        db.session.add(record)
        db.session.flush()

        # the current-payroll row never carries superseded rates, even for backdated changes
        rates = resolve_gosi_rates(emp.company_id, contributor_type_of(emp), max(effective_date, date.today()))
        result = calculate_payroll(new_components, rates)
        payroll = _upsert_current_payroll(emp, new_components, result, effective_date, record.id)

        for name in MONEY_FIELDS:
            setattr(emp, name, getattr(new_components, name))
        if new_components.iban is not None:
            emp.iban = new_components.iban
        if new_components.bank_name is not None:
            emp.bank_name = new_components.bank_name
        emp.salary_effective_date = effective_date
        emp.last_salary_review_date = date.today()

        db.session.flush()
        db.session.commit()
    except (StaleDataError, IntegrityError) as e:
        db.session.rollback()
        log.warning("compensation change for employee %s lost a concurrent write: %s", employee_id, e)
        raise ConcurrencyConflict(f"employee {employee_id} compensation was modified concurrently") from e
    except Exception:
        db.session.rollback()
        raise

    warnings = []
    if band.warning is not None:
        warnings.append(band.warning.to_dict())
        log.warning("employee %s: %s (change %s saved)", employee_id, band.warning.message, record.id)
    log.info("compensation change %s for employee %s: %s -> %s (%s%%) by %s",
             record.id, employee_id, old_total, new_total, money(delta_pct), actor)
    return ChangeOutcome(record=record, payroll=payroll, result=result, band=band,
                         delta_pct=delta_pct, warnings=warnings)


def compensation_history(employee_id: int, limit: Optional[int] = None) -> List[CompensationChangeRecord]:
    q = (
        CompensationChangeRecord.query
        .filter(CompensationChangeRecord.employee_id == employee_id)
        .order_by(CompensationChangeRecord.effective_date.desc(),
                  CompensationChangeRecord.created_at.desc(),
                  CompensationChangeRecord.id.desc())
    )
    if limit:
        q = q.limit(limit)
    return q.all()


def current_change(employee_id: int) -> Optional[CompensationChangeRecord]:
    rows = compensation_history(employee_id, limit=1)
    return rows[0] if rows else None


def new_components_of(record: CompensationChangeRecord) -> CompensationComponents:
    return CompensationComponents.from_snapshot(record.new_basic_salary, record.new_allowances)


def old_components_of(record: CompensationChangeRecord) -> CompensationComponents:
    return CompensationComponents.from_snapshot(record.old_basic_salary, record.old_allowances)
