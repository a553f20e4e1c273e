"""
Compensation components: the pay package a payroll calculation starts from.

All money is Decimal. Missing allowances default to zero; negative or
non-numeric values raise ValidationError. Rounding to halalas happens only
through money() / to_minor_units() at presentation time.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Mapping, Optional

from payroll_api.common.errors import ValidationError

ZERO = Decimal("0")
CENT = Decimal("0.01")

ALLOWANCE_FIELDS = (
    "housing_allowance",
    "transportation_allowance",
    "food_allowance",
    "mobile_allowance",
    "other_allowances",
)
MONEY_FIELDS = ("basic_salary",) + ALLOWANCE_FIELDS
ROUTING_FIELDS = ("iban", "bank_name")

# short keys used in the salary history JSON snapshots
SNAPSHOT_KEYS = {
    "housing_allowance": "housing",
    "transportation_allowance": "transportation",
    "food_allowance": "food",
    "mobile_allowance": "mobile",
    "other_allowances": "other",
}
# older snapshots wrote "transport"
_SNAPSHOT_ALIASES = {"transport": "transportation_allowance"}


def to_decimal(value: Any, field: str, *, required: bool = False) -> Decimal:
    """Parse a non-negative money value; None/"" is 0 unless required."""
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required", field)
        return ZERO
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be numeric", field)
    if isinstance(value, Decimal):
        out = value
    else:
        try:
            out = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError(f"{field} must be numeric", field) from None
    if not out.is_finite():
        raise ValidationError(f"{field} must be a finite number", field)
    if out < 0:
        raise ValidationError(f"{field} must be >= 0", field)
    return out


def to_number(value: Any, field: str) -> Decimal:
    """Parse a signed, finite number (percentages, adjustment amounts)."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be numeric", field)
    if isinstance(value, Decimal):
        out = value
    else:
        try:
            out = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError(f"{field} must be numeric", field) from None
    if not out.is_finite():
        raise ValidationError(f"{field} must be a finite number", field)
    return out


def money(x: Decimal) -> Decimal:
    """Round to 2 dp for display. Never feed the result back into a calculation."""
    return Decimal(x).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(x: Decimal) -> int:
    """Halalas (1/100 SAR) as an integer."""
    return int(money(x) * 100)


@dataclass(frozen=True)
class CompensationComponents:
    basic_salary: Decimal
    housing_allowance: Decimal = ZERO
    transportation_allowance: Decimal = ZERO
    food_allowance: Decimal = ZERO
    mobile_allowance: Decimal = ZERO
    other_allowances: Decimal = ZERO
    iban: Optional[str] = None
    bank_name: Optional[str] = None

    def __post_init__(self):
        for name in MONEY_FIELDS:
            parsed = to_decimal(getattr(self, name), name, required=(name == "basic_salary"))
            object.__setattr__(self, name, parsed)
        for name in ROUTING_FIELDS:
            v = getattr(self, name)
            object.__setattr__(self, name, (str(v).strip() or None) if v is not None else None)

    @classmethod
    def zero(cls) -> "CompensationComponents":
        return cls(basic_salary=ZERO)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "CompensationComponents":
        if not isinstance(data, Mapping):
            raise ValidationError("compensation components must be an object")
        kw = {k: data.get(k) for k in MONEY_FIELDS + ROUTING_FIELDS}
        return cls(**kw)

    @classmethod
    def from_snapshot(cls, basic_salary: Any, allowances: Optional[Mapping[str, Any]],
                      **routing) -> "CompensationComponents":
        """Rebuild from a ledger snapshot ({"housing": "3000", ...})."""
        kw: Dict[str, Any] = {"basic_salary": basic_salary}
        for key, value in (allowances or {}).items():
            field = _SNAPSHOT_ALIASES.get(key)
            if field is None:
                field = next((f for f, short in SNAPSHOT_KEYS.items() if short == key), None)
            if field is None and key in ALLOWANCE_FIELDS:
                field = key
            if field is not None:
                kw[field] = value
        kw.update({k: v for k, v in routing.items() if k in ROUTING_FIELDS})
        return cls(**kw)

    @property
    def allowances_total(self) -> Decimal:
        return sum((getattr(self, f) for f in ALLOWANCE_FIELDS), ZERO)

    @property
    def gross(self) -> Decimal:
        return self.basic_salary + self.allowances_total

    def allowance_snapshot(self) -> Dict[str, str]:
        return {short: str(getattr(self, field)) for field, short in SNAPSHOT_KEYS.items()}

    def with_changes(self, **kw) -> "CompensationComponents":
        return replace(self, **kw)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {f: str(getattr(self, f)) for f in MONEY_FIELDS}
        out["iban"] = self.iban
        out["bank_name"] = self.bank_name
        return out


def gross_of(components) -> Decimal:
    """Basic salary plus every allowance; missing allowances count as zero."""
    if not isinstance(components, CompensationComponents):
        components = CompensationComponents.from_mapping(components)
    return components.gross


def components_of(employee) -> CompensationComponents:
    """Current components held on an Employee row (zero-filled when absent)."""
    if employee is None:
        return CompensationComponents.zero()
    kw = {f: getattr(employee, f, None) or ZERO for f in MONEY_FIELDS}
    for f in ROUTING_FIELDS:
        kw[f] = getattr(employee, f, None)
    return CompensationComponents(**kw)
