"""
GOSI rate resolution and rate-table administration.

resolve_gosi_rates() picks, for a company and contributor type, the active
rate row with the latest effective_from on or before the requested date.
When none applies it falls back to retained (superseded) rows and finally to
the statutory defaults, unless those fallbacks are switched off in config.

Value shapes:
  RateSet(employee_rate=0.0975, employer_rate=0.1175, wage_ceiling=45000, ...)
  external sync row: {"contributor_type": "saudi", "employee_rate": "0.0975",
                      "employer_rate": "0.1175", "max_wage_ceiling": "45000",
                      "effective_from": "2025-07-01"}
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError

from payroll_api.common.errors import ConcurrencyConflict, ConfigurationMissing, NotFound, ValidationError
from payroll_api.extensions import db
from payroll_api.models.payroll.gosi_rate import GosiRateConfig
from payroll_api.services.compensation import ZERO, to_decimal

log = logging.getLogger(__name__)

ONE = Decimal("1")
DEFAULT_WAGE_CEILING = Decimal("45000")


class ContributorType(str, Enum):
    SAUDI = "saudi"
    NON_SAUDI = "non_saudi"
    SAUDI_PR_ELIGIBLE = "saudi_pr_eligible"

    @classmethod
    def parse(cls, value) -> "ContributorType":
        if isinstance(value, cls):
            return value
        raw = (str(value).strip().lower() if value is not None else "")
        for member in cls:
            if member.value == raw:
                return member
        raise ValidationError(
            f"contributor_type must be one of: {', '.join(m.value for m in cls)}",
            "contributor_type",
        )


# Official contribution split per branch (employee, employer).
STATUTORY_BREAKDOWN = {
    ContributorType.SAUDI: (
        ("annuity_pension", Decimal("0.09"), Decimal("0.09")),
        ("unemployment", Decimal("0.0075"), Decimal("0.0075")),
        ("occupational_hazards", ZERO, Decimal("0.02")),
    ),
    ContributorType.NON_SAUDI: (
        ("occupational_hazards", ZERO, Decimal("0.02")),
    ),
}


def _rate(value: Any, field: str) -> Decimal:
    r = to_decimal(value, field, required=True)
    if r > ONE:
        raise ValidationError(f"{field} must be between 0 and 1", field)
    return r


def _ceiling(value: Any, field: str = "wage_ceiling") -> Decimal:
    c = to_decimal(value, field, required=True)
    if c <= 0:
        raise ValidationError(f"{field} must be > 0", field)
    return c


@dataclass(frozen=True)
class RateSet:
    employee_rate: Decimal
    employer_rate: Decimal
    wage_ceiling: Decimal
    contributor_type: ContributorType = ContributorType.SAUDI
    source: str = "explicit"      # config | historical | statutory_default | explicit
    config_id: Optional[int] = None
    effective_from: Optional[date] = None

    def __post_init__(self):
        object.__setattr__(self, "employee_rate", _rate(self.employee_rate, "employee_rate"))
        object.__setattr__(self, "employer_rate", _rate(self.employer_rate, "employer_rate"))
        object.__setattr__(self, "wage_ceiling", _ceiling(self.wage_ceiling))
        object.__setattr__(self, "contributor_type", ContributorType.parse(self.contributor_type))

    @classmethod
    def from_row(cls, row: GosiRateConfig, source: str = "config") -> "RateSet":
        return cls(
            employee_rate=row.employee_rate,
            employer_rate=row.employer_rate,
            wage_ceiling=row.max_wage_ceiling,
            contributor_type=row.contributor_type,
            source=source,
            config_id=row.id,
            effective_from=row.effective_from,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contributor_type": self.contributor_type.value,
            "employee_rate": str(self.employee_rate),
            "employer_rate": str(self.employer_rate),
            "wage_ceiling": str(self.wage_ceiling),
            "source": self.source,
            "config_id": self.config_id,
            "effective_from": self.effective_from.isoformat() if self.effective_from else None,
        }


def _cfg(key: str, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default


# ---------- classification ----------

def classify_contributor(nationality: Optional[str] = None,
                         is_saudi: Optional[bool] = None,
                         explicit: Optional[str] = None) -> ContributorType:
    """
    Explicit classification wins. Otherwise "Saudi" means the nationality
    text contains "saudi" (case-insensitive), or the is_saudi flag is set.
    is_saudi must be a real boolean (or None); "false" strings are rejected.
    """
    if is_saudi is not None and not isinstance(is_saudi, bool):
        raise ValidationError("is_saudi must be boolean", "is_saudi")
    if explicit:
        return ContributorType.parse(explicit)
    if nationality and "saudi" in str(nationality).lower():
        return ContributorType.SAUDI
    if is_saudi:
        return ContributorType.SAUDI
    return ContributorType.NON_SAUDI


def contributor_type_of(employee) -> ContributorType:
    return classify_contributor(
        getattr(employee, "nationality", None),
        getattr(employee, "is_saudi", None),
        getattr(employee, "contributor_type", None),
    )


# ---------- statutory defaults ----------

def statutory_breakdown(contributor_type) -> List[Dict[str, str]]:
    ct = ContributorType.parse(contributor_type)
    if ct is ContributorType.SAUDI_PR_ELIGIBLE:
        ct = ContributorType.NON_SAUDI
    return [
        {"branch": branch, "employee_rate": str(emp), "employer_rate": str(er)}
        for branch, emp, er in STATUTORY_BREAKDOWN[ct]
    ]


def statutory_defaults(contributor_type, wage_ceiling=None) -> RateSet:
    ct = ContributorType.parse(contributor_type)
    if ct is ContributorType.SAUDI_PR_ELIGIBLE:
        ct = ContributorType.NON_SAUDI
    parts = STATUTORY_BREAKDOWN[ct]
    return RateSet(
        employee_rate=sum((p[1] for p in parts), ZERO),
        employer_rate=sum((p[2] for p in parts), ZERO),
        wage_ceiling=wage_ceiling if wage_ceiling is not None else _cfg("GOSI_DEFAULT_WAGE_CEILING", DEFAULT_WAGE_CEILING),
        contributor_type=ct,
        source="statutory_default",
    )


# ---------- resolution ----------

def _latest_row(company_id: int, ct: ContributorType, as_of: date, active: bool) -> Optional[GosiRateConfig]:
    return (
        GosiRateConfig.query
        .filter(GosiRateConfig.company_id == company_id)
        .filter(GosiRateConfig.contributor_type == ct.value)
        .filter(GosiRateConfig.is_active.is_(active))
        .filter(GosiRateConfig.effective_from <= as_of)
        .order_by(GosiRateConfig.effective_from.desc(), GosiRateConfig.id.desc())
        .first()
    )


def resolve_gosi_rates(company_id: Optional[int], contributor_type, as_of: Optional[date] = None, *,
                       use_defaults: Optional[bool] = None,
                       use_history: Optional[bool] = None) -> RateSet:
    """
    Resolve the employee/employer rates and wage ceiling that apply on `as_of`.

    Order: active row → retained row (GOSI_HISTORICAL_RATES) → for
    saudi_pr_eligible, the non-Saudi resolution → statutory defaults
    (GOSI_FALLBACK_DEFAULTS). ConfigurationMissing when nothing applies.
    """
    ct = ContributorType.parse(contributor_type)
    as_of = as_of or date.today()
    if use_defaults is None:
        use_defaults = bool(_cfg("GOSI_FALLBACK_DEFAULTS", True))
    if use_history is None:
        use_history = bool(_cfg("GOSI_HISTORICAL_RATES", True))

    if company_id is not None:
        row = _latest_row(company_id, ct, as_of, active=True)
        if row is not None:
            return RateSet.from_row(row)
        if use_history:
            row = _latest_row(company_id, ct, as_of, active=False)
            if row is not None:
                log.info("GOSI rates for company=%s type=%s on %s taken from retained row %s",
                         company_id, ct.value, as_of, row.id)
                return RateSet.from_row(row, source="historical")

    if ct is ContributorType.SAUDI_PR_ELIGIBLE:
        return resolve_gosi_rates(company_id, ContributorType.NON_SAUDI, as_of,
                                  use_defaults=use_defaults, use_history=use_history)

    if not use_defaults:
        raise ConfigurationMissing(
            f"no GOSI rate configured for company {company_id} ({ct.value}) on {as_of.isoformat()}",
            payload={"company_id": company_id, "contributor_type": ct.value, "as_of": as_of.isoformat()},
        )
    log.info("GOSI rates for company=%s type=%s on %s fall back to statutory defaults",
             company_id, ct.value, as_of)
    return statutory_defaults(ct)


# ---------- administration ----------

def _activate(row: GosiRateConfig) -> None:
    """Deactivate the current active row for the same key, then activate `row`."""
    current = (
        GosiRateConfig.query
        .filter(GosiRateConfig.company_id == row.company_id)
        .filter(GosiRateConfig.contributor_type == row.contributor_type)
        .filter(GosiRateConfig.is_active.is_(True))
        .filter(GosiRateConfig.id != row.id)
        .with_for_update(of=GosiRateConfig)
        .all()
    )
    now = datetime.utcnow()
    for other in current:
        other.is_active = False
        other.deactivated_at = now
    # the unique index must see the old row go inactive first
    db.session.flush()
    row.is_active = True
    row.deactivated_at = None
    db.session.flush()


def _newer_active(row: GosiRateConfig) -> Optional[GosiRateConfig]:
    """The active row for the same key with a later effective_from than `row`, if any."""
    return (
        GosiRateConfig.query
        .filter(GosiRateConfig.company_id == row.company_id)
        .filter(GosiRateConfig.contributor_type == row.contributor_type)
        .filter(GosiRateConfig.is_active.is_(True))
        .filter(GosiRateConfig.id != row.id)
        .filter(GosiRateConfig.effective_from > row.effective_from)
        .first()
    )


def _commit_or_conflict(what: str) -> None:
    try:
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        log.warning("GOSI rate %s lost a race: %s", what, e)
        raise ConcurrencyConflict(f"another active GOSI rate was written concurrently ({what})") from e


def create_rate_config(company_id: int, contributor_type, employee_rate, employer_rate,
                       max_wage_ceiling=None, effective_from: Optional[date] = None, *,
                       activate: bool = True, source: str = "manual",
                       actor: Optional[str] = None, commit: bool = True) -> GosiRateConfig:
    """
    Insert a rate version. With activate=True it becomes the active row
    unless the active row is effective later; then it is kept as a retained
    (inactive) version for the earlier period.
    """
    if company_id is None:
        raise ValidationError("company_id is required", "company_id")
    if source not in ("manual", "external_api"):
        raise ValidationError("source must be manual or external_api", "source")
    ct = ContributorType.parse(contributor_type)
    row = GosiRateConfig(
        company_id=int(company_id),
        contributor_type=ct.value,
        employee_rate=_rate(employee_rate, "employee_rate"),
        employer_rate=_rate(employer_rate, "employer_rate"),
        max_wage_ceiling=_ceiling(
            max_wage_ceiling if max_wage_ceiling not in (None, "") else _cfg("GOSI_DEFAULT_WAGE_CEILING", DEFAULT_WAGE_CEILING),
            "max_wage_ceiling",
        ),
        effective_from=effective_from or date.today(),
        is_active=False,
        source=source,
        created_by=actor,
    )
    try:
        db.session.add(row)
        db.session.flush()
        if activate:
            newer = _newer_active(row)
            if newer is None:
                _activate(row)
            else:
                log.info("GOSI rate %s (from %s) retained inactive: active row %s is effective from %s",
                         row.id, row.effective_from, newer.id, newer.effective_from)
    except IntegrityError as e:
        db.session.rollback()
        raise ConcurrencyConflict("another active GOSI rate was written concurrently") from e
    if commit:
        _commit_or_conflict("create")
    log.info("GOSI rate %s created for company=%s type=%s (%s, active=%s)",
             row.id, row.company_id, row.contributor_type, source, row.is_active)
    return row


def activate_rate_config(config_id: int) -> GosiRateConfig:
    """Explicit operator activation; may roll back to an earlier version on purpose."""
    row = db.session.get(GosiRateConfig, config_id)
    if row is None:
        raise NotFound(f"GOSI rate config {config_id} not found")
    if not row.is_active:
        try:
            _activate(row)
        except IntegrityError as e:
            db.session.rollback()
            raise ConcurrencyConflict("another active GOSI rate was written concurrently") from e
        _commit_or_conflict("activate")
        log.info("GOSI rate %s activated for company=%s type=%s", row.id, row.company_id, row.contributor_type)
    return row


def _known_version(company_id: int, ct: ContributorType, employee_rate: Decimal, employer_rate: Decimal,
                   ceiling: Decimal, effective_from: date) -> Optional[GosiRateConfig]:
    """Any stored row (active or retained) equal on rates, ceiling and effective_from."""
    rows = (
        GosiRateConfig.query
        .filter_by(company_id=company_id, contributor_type=ct.value, effective_from=effective_from)
        .all()
    )
    for row in rows:
        if (Decimal(row.employee_rate) == employee_rate
                and Decimal(row.employer_rate) == employer_rate
                and Decimal(row.max_wage_ceiling) == ceiling):
            return row
    return None


def apply_external_rates(company_id: int, rows: Iterable[Mapping[str, Any]],
                         actor: Optional[str] = None) -> List[GosiRateConfig]:
    """
    Write rates pushed by the external GOSI sync as source=external_api rows.

    All rows apply in one transaction. A row identical to any stored version
    is skipped, so replaying a sync payload (in any order) is a no-op. A row
    older than the active version is stored as a retained version only.
    """
    written: List[GosiRateConfig] = []
    try:
        for i, raw in enumerate(rows):
            if not isinstance(raw, Mapping):
                raise ValidationError(f"rates[{i}] must be an object")
            ct = ContributorType.parse(raw.get("contributor_type"))
            emp = _rate(raw.get("employee_rate"), "employee_rate")
            er = _rate(raw.get("employer_rate"), "employer_rate")
            ceiling = _ceiling(raw.get("max_wage_ceiling") or _cfg("GOSI_DEFAULT_WAGE_CEILING", DEFAULT_WAGE_CEILING),
                               "max_wage_ceiling")
            eff = raw.get("effective_from")
            if isinstance(eff, str):
                try:
                    eff = date.fromisoformat(eff)
                except ValueError:
                    raise ValidationError(f"rates[{i}].effective_from must be YYYY-MM-DD", "effective_from") from None
            eff = eff or date.today()

            if _known_version(company_id, ct, emp, er, ceiling, eff) is not None:
                continue
            written.append(create_rate_config(
                company_id, ct, emp, er, ceiling, eff,
                activate=True, source="external_api", actor=actor, commit=False,
            ))
    except Exception:
        db.session.rollback()
        raise
    _commit_or_conflict("sync")
    log.info("GOSI external sync for company=%s wrote %d row(s)", company_id, len(written))
    return written


def seed_statutory_defaults(company_id: int, effective_from: Optional[date] = None,
                            actor: Optional[str] = None) -> List[GosiRateConfig]:
    """Insert active manual rows equal to the statutory defaults (skips existing keys)."""
    out: List[GosiRateConfig] = []
    for ct in (ContributorType.SAUDI, ContributorType.NON_SAUDI):
        exists = GosiRateConfig.query.filter_by(company_id=company_id, contributor_type=ct.value,
                                                is_active=True).first()
        if exists:
            continue
        rs = statutory_defaults(ct)
        out.append(create_rate_config(company_id, ct, rs.employee_rate, rs.employer_rate, rs.wage_ceiling,
                                      effective_from, actor=actor, commit=False))
    _commit_or_conflict("seed")
    return out
