"""
Batch payroll: run the calculator over every active employee of a company
for one month and keep one PayrollItem per (batch, employee).

Workers only ever see plain snapshots (components, stored item components,
resolved rates); all ORM reads and writes stay on the calling thread.
"""
from __future__ import annotations

import calendar
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import lazyload

from payroll_api.common.errors import (
    ConcurrencyConflict, InvalidState, NotFound, PartialBatchFailure, PayrollError, ValidationError,
)
from payroll_api.extensions import db
from payroll_api.models.employee import Employee
from payroll_api.models.master import Company
from payroll_api.models.payroll.batch import PayrollBatch, PayrollItem
from payroll_api.services.compensation import (
    MONEY_FIELDS, ROUTING_FIELDS, ZERO, CompensationComponents, components_of, money,
)
from payroll_api.services.gosi_rates import ContributorType, RateSet, contributor_type_of, resolve_gosi_rates
from payroll_api.services.payroll_calculator import RESULT_FIELDS, PayrollResult, calculate_payroll

log = logging.getLogger(__name__)

RUNNABLE = ("draft", "in_progress", "calculated")


# ---------- value types ----------

@dataclass(frozen=True)
class LineOutcome:
    """One employee's result in a run: either ok with a result, or an error."""
    employee_id: int
    ok: bool
    components: Optional[CompensationComponents] = None
    result: Optional[PayrollResult] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def success(cls, employee_id, components, result):
        return cls(employee_id, True, components=components, result=result)

    @classmethod
    def failure(cls, employee_id, code, message):
        return cls(employee_id, False, error_code=code, error_message=message)

    def failure_dict(self) -> Dict[str, Any]:
        return {"employee_id": self.employee_id, "code": self.error_code, "message": self.error_message}

    def to_dict(self) -> Dict[str, Any]:
        if not self.ok:
            return {"ok": False, **self.failure_dict()}
        return {"ok": True, "employee_id": self.employee_id, **self.result.to_dict()}


@dataclass(frozen=True)
class BatchTotals:
    employee_count: int = 0
    total_gross: Decimal = ZERO
    total_gosi_employee: Decimal = ZERO
    total_gosi_employer: Decimal = ZERO
    total_net: Decimal = ZERO

    @classmethod
    def of(cls, rows) -> "BatchTotals":
        """Sum anything carrying the result fields (PayrollResult or PayrollItem)."""
        n, gross, emp, er, net = 0, ZERO, ZERO, ZERO, ZERO
        for r in rows:
            n += 1
            gross += Decimal(r.gross_salary or 0)
            emp += Decimal(r.gosi_employee or 0)
            er += Decimal(r.gosi_employer or 0)
            net += Decimal(r.net_salary or 0)
        return cls(n, gross, emp, er, net)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "employee_count": self.employee_count,
            "total_gross": str(money(self.total_gross)),
            "total_gosi_employee": str(money(self.total_gosi_employee)),
            "total_gosi_employer": str(money(self.total_gosi_employer)),
            "total_net": str(money(self.total_net)),
        }


@dataclass
class BatchResult:
    batch: PayrollBatch
    lines: List[LineOutcome]
    totals: BatchTotals
    status: str                       # complete | partial | in_progress
    failure: PartialBatchFailure = field(default_factory=lambda: PartialBatchFailure([]))

    @property
    def successes(self) -> List[LineOutcome]:
        return [x for x in self.lines if x.ok]

    @property
    def failures(self) -> List[LineOutcome]:
        return [x for x in self.lines if not x.ok]


@dataclass(frozen=True)
class _Job:
    employee_id: int
    components: Optional[CompensationComponents]
    stored: Optional[CompensationComponents]
    rates: Any                        # RateSet or the PayrollError raised resolving it
    error: Optional[PayrollError] = None


# ---------- merge ----------

def merge_line_item(stored: Optional[CompensationComponents],
                    incoming: CompensationComponents) -> CompensationComponents:
    """
    Field-level merge for an existing line item.

    Money and routing fields: a non-zero / non-empty incoming value wins,
    otherwise the stored value is kept. Identifiers (batch, employee, company,
    contributor type) and the computed figures are not merged; the caller
    overwrites the former and recomputes the latter from the merged result.
    """
    if stored is None:
        return incoming
    kw: Dict[str, Any] = {}
    for name in MONEY_FIELDS:
        new = getattr(incoming, name)
        kw[name] = new if new != ZERO else getattr(stored, name)
    for name in ROUTING_FIELDS:
        kw[name] = getattr(incoming, name) or getattr(stored, name)
    return CompensationComponents(**kw)


def _item_components(item: PayrollItem) -> CompensationComponents:
    kw = {f: getattr(item, f) or ZERO for f in MONEY_FIELDS}
    for f in ROUTING_FIELDS:
        kw[f] = getattr(item, f)
    return CompensationComponents(**kw)


def _calculate_line(job: _Job) -> LineOutcome:
    if job.error is not None:
        return LineOutcome.failure(job.employee_id, job.error.code, job.error.message)
    if not isinstance(job.rates, RateSet):
        return LineOutcome.failure(job.employee_id, job.rates.code, job.rates.message)
    try:
        merged = merge_line_item(job.stored, job.components)
        return LineOutcome.success(job.employee_id, merged, calculate_payroll(merged, job.rates))
    except PayrollError as e:
        return LineOutcome.failure(job.employee_id, e.code, e.message)
    except Exception as e:  # one employee never aborts the batch
        log.exception("payroll calculation failed for employee %s", job.employee_id)
        return LineOutcome.failure(job.employee_id, "CALCULATION_ERROR", str(e))


# ---------- batch lifecycle ----------

def parse_month(month: str) -> Tuple[date, date]:
    try:
        y, m = (int(x) for x in str(month).split("-"))
        start = date(y, m, 1)
    except (TypeError, ValueError):
        raise ValidationError("month must be YYYY-MM", "month") from None
    return start, date(y, m, calendar.monthrange(y, m)[1])


def create_batch(company_id: int, month: str, actor: Optional[str] = None,
                 notes: Optional[str] = None) -> PayrollBatch:
    if not company_id:
        raise ValidationError("company_id is required", "company_id")
    start, end = parse_month(month)
    if db.session.get(Company, int(company_id)) is None:
        raise NotFound(f"company {company_id} not found")
    month = f"{start.year:04d}-{start.month:02d}"
    if PayrollBatch.query.filter_by(company_id=int(company_id), month=month).first():
        raise InvalidState(f"payroll batch for {month} already exists")

    b = PayrollBatch(company_id=int(company_id), month=month, period_start=start, period_end=end,
                     status="draft", failures=[], notes=notes, created_by=actor)
    db.session.add(b)
    try:
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        raise ConcurrencyConflict(f"payroll batch for {month} was created concurrently") from e
    log.info("payroll batch %s created for company=%s month=%s", b.id, b.company_id, month)
    return b


def _get_batch(batch_id: int, lock: bool = False) -> PayrollBatch:
    q = db.session.query(PayrollBatch).options(lazyload("*")).filter(PayrollBatch.id == batch_id)
    if lock:
        q = q.with_for_update(of=PayrollBatch)
    b = q.one_or_none()
    if b is None:
        raise NotFound(f"payroll batch {batch_id} not found")
    return b


def _ensure_status(b: PayrollBatch, allowed) -> None:
    if b.status not in allowed:
        raise InvalidState(
            f"batch in status '{b.status}' cannot perform this action (allowed: {', '.join(allowed)})"
        )


def approve_batch(batch_id: int, actor: Optional[str] = None) -> PayrollBatch:
    b = _get_batch(batch_id, lock=True)
    _ensure_status(b, ("calculated",))
    b.status = "approved"
    b.approved_at = datetime.utcnow()
    db.session.commit()
    log.info("payroll batch %s approved by %s", b.id, actor)
    return b


def lock_batch(batch_id: int, actor: Optional[str] = None) -> PayrollBatch:
    b = _get_batch(batch_id, lock=True)
    _ensure_status(b, ("approved",))
    b.status = "locked"
    b.locked_at = datetime.utcnow()
    db.session.commit()
    log.info("payroll batch %s locked by %s", b.id, actor)
    return b


# ---------- run ----------

def _eligible_criteria(b: PayrollBatch):
    return (
        Employee.company_id == b.company_id,
        Employee.status == "active",
        or_(Employee.hire_date.is_(None), Employee.hire_date <= b.period_end),
    )


def _eligible(b: PayrollBatch):
    return db.session.query(Employee).options(lazyload("*")).filter(*_eligible_criteria(b))


def _resolve_all(company_id: int, types, as_of: date) -> Dict[ContributorType, Any]:
    out: Dict[ContributorType, Any] = {}
    for ct in types:
        try:
            out[ct] = resolve_gosi_rates(company_id, ct, as_of)
        except PayrollError as e:
            log.warning("GOSI rates for company=%s type=%s unavailable: %s", company_id, ct.value, e.message)
            out[ct] = e
    return out


def _build_jobs(b: PayrollBatch, employees: List[Employee]) -> Tuple[List[_Job], Dict[int, PayrollItem]]:
    ids = [e.id for e in employees]
    existing = {
        i.employee_id: i
        for i in PayrollItem.query.filter(PayrollItem.batch_id == b.id,
                                          PayrollItem.employee_id.in_(ids)).all()
    } if ids else {}

    types: Dict[int, ContributorType] = {}
    errors: Dict[int, PayrollError] = {}
    for e in employees:
        try:
            types[e.id] = contributor_type_of(e)
        except PayrollError as err:
            errors[e.id] = err
    rates = _resolve_all(b.company_id, set(types.values()), b.period_end)

    jobs: List[_Job] = []
    for e in employees:
        if e.id in errors:
            jobs.append(_Job(e.id, None, None, None, error=errors[e.id]))
            continue
        try:
            comps = components_of(e)
            item = existing.get(e.id)
            stored = _item_components(item) if item is not None else None
        except PayrollError as err:
            jobs.append(_Job(e.id, None, None, None, error=err))
            continue
        jobs.append(_Job(e.id, comps, stored, rates[types[e.id]]))
    return jobs, existing


def _write_line(b: PayrollBatch, item: Optional[PayrollItem], line: LineOutcome) -> PayrollItem:
    if item is None:
        item = PayrollItem(batch_id=b.id, employee_id=line.employee_id)
        db.session.add(item)
    # identifiers always overwritten
    item.batch_id = b.id
    item.employee_id = line.employee_id
    item.company_id = b.company_id
    item.contributor_type = line.result.contributor_type.value
    for name in MONEY_FIELDS + ROUTING_FIELDS:
        setattr(item, name, getattr(line.components, name))
    for name in RESULT_FIELDS:
        setattr(item, name, getattr(line.result, name))
    return item


def _calculate_chunk(jobs: List[_Job], workers: int) -> List[LineOutcome]:
    if workers <= 1 or len(jobs) <= 1:
        return [_calculate_line(j) for j in jobs]
    with ThreadPoolExecutor(max_workers=min(workers, len(jobs))) as pool:
        return list(pool.map(_calculate_line, jobs))


def _finish(b: PayrollBatch) -> None:
    """Recompute the stored totals from the items of eligible, non-failed employees."""
    eligible = {eid for (eid,) in db.session.query(Employee.id).filter(*_eligible_criteria(b)).all()}
    failed = {f.get("employee_id") for f in (b.failures or [])}
    items = PayrollItem.query.filter(PayrollItem.batch_id == b.id).all()
    t = BatchTotals.of(i for i in items if i.employee_id in eligible and i.employee_id not in failed)
    b.total_employees = t.employee_count
    b.total_gross = t.total_gross
    b.total_gosi_employee = t.total_gosi_employee
    b.total_gosi_employer = t.total_gosi_employer
    b.total_net = t.total_net
    b.status = "calculated"
    b.calculated_at = datetime.utcnow()
    b.checkpoint_employee_id = None


def run_batch(company_id: int, period_id: int, *, actor: Optional[str] = None,
              max_employees: Optional[int] = None) -> BatchResult:
    """
    Calculate (or recalculate) batch `period_id` of `company_id`.

    A draft or calculated batch starts a fresh pass; an in_progress batch
    resumes after its checkpoint. With max_employees the run stops after that
    many employees and leaves the batch in_progress when more remain.
    """
    if max_employees is not None and int(max_employees) < 1:
        raise ValidationError("max_employees must be >= 1", "max_employees")
    workers = int(current_app.config.get("PAYROLL_BATCH_WORKERS", 4) or 1)
    chunk_size = max(int(current_app.config.get("PAYROLL_BATCH_CHUNK_SIZE", 50) or 1), 1)

    b = _get_batch(period_id, lock=True)
    if company_id is not None and b.company_id != int(company_id):
        raise NotFound(f"payroll batch {period_id} not found for company {company_id}")
    _ensure_status(b, RUNNABLE)

    if b.status != "in_progress":
        b.checkpoint_employee_id = None
        b.failures = []
    b.status = "in_progress"
    db.session.commit()

    q = _eligible(b)
    if b.checkpoint_employee_id:
        q = q.filter(Employee.id > b.checkpoint_employee_id)
    q = q.order_by(Employee.id.asc())
    if max_employees is not None:
        employees = q.limit(int(max_employees) + 1).all()
        more = len(employees) > int(max_employees)
        employees = employees[:int(max_employees)]
    else:
        employees, more = q.all(), False

    lines: List[LineOutcome] = []
    failures = list(b.failures or [])
    try:
        for start in range(0, len(employees), chunk_size):
            chunk = employees[start:start + chunk_size]
            jobs, existing = _build_jobs(b, chunk)
            outcomes = _calculate_chunk(jobs, workers)
            for line in outcomes:
                if line.ok:
                    _write_line(b, existing.get(line.employee_id), line)
                else:
                    log.warning("batch %s: employee %s failed (%s): %s",
                                b.id, line.employee_id, line.error_code, line.error_message)
                    failures.append(line.failure_dict())
            lines.extend(outcomes)
            b.failures = list(failures)
            b.checkpoint_employee_id = chunk[-1].id
            db.session.commit()
            log.info("batch %s checkpoint at employee %s (%d processed)", b.id, b.checkpoint_employee_id, len(lines))

        if not more:
            _finish(b)
        db.session.commit()
    except IntegrityError as e:
        # another runner wrote the same (batch, employee) item first
        db.session.rollback()
        log.warning("batch %s: concurrent run detected: %s", period_id, e)
        raise ConcurrencyConflict(f"payroll batch {period_id} is being calculated concurrently") from e
    except Exception:
        db.session.rollback()
        raise

    totals = BatchTotals.of(x.result for x in lines if x.ok)
    failure = PartialBatchFailure(x.failure_dict() for x in lines if not x.ok)
    if more:
        status = "in_progress"
    else:
        status = "partial" if b.failures else "complete"
    log.info("batch %s run by %s: %d ok, %d failed, status=%s",
             b.id, actor, totals.employee_count, len(failure.failures), status)
    return BatchResult(batch=b, lines=lines, totals=totals, status=status, failure=failure)
