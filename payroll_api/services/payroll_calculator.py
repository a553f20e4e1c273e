"""
Payroll calculator: compensation components + resolved GOSI rates → pay.

Order of operations is statutory and must not change:

    gross      = basic + housing + transportation + food + mobile + other
    gosi_base  = basic + housing
    gosi_wage  = min(gosi_base, wage_ceiling)
    gosi_emp   = gosi_wage * employee_rate
    gosi_er    = gosi_wage * employer_rate
    net        = gross - gosi_emp

The employer share is reported but never deducted from the employee.
No rounding happens here; see money() for presentation.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict

from payroll_api.common.errors import ValidationError
from payroll_api.services.compensation import CompensationComponents, money, to_decimal, to_minor_units
from payroll_api.services.gosi_rates import RateSet

ONE = Decimal("1")

RESULT_FIELDS = ("gross_salary", "gosi_wage_base", "gosi_employee", "gosi_employer", "net_salary")


@dataclass(frozen=True)
class PayrollResult:
    gross_salary: Decimal
    gosi_wage_base: Decimal
    gosi_employee: Decimal
    gosi_employer: Decimal
    net_salary: Decimal
    rates: RateSet

    @property
    def contributor_type(self):
        return self.rates.contributor_type

    def to_dict(self, exact: bool = False) -> Dict[str, Any]:
        out: Dict[str, Any] = {f: str(money(getattr(self, f))) for f in RESULT_FIELDS}
        out["minor_units"] = {f: to_minor_units(getattr(self, f)) for f in RESULT_FIELDS}
        if exact:
            out["exact"] = {f: str(getattr(self, f)) for f in RESULT_FIELDS}
        out["rates"] = self.rates.to_dict()
        out["contributor_type"] = self.rates.contributor_type.value
        return out


def _check_rates(rates) -> None:
    for name in ("employee_rate", "employer_rate"):
        r = to_decimal(getattr(rates, name, None), name, required=True)
        if r > ONE:
            raise ValidationError(f"{name} must be between 0 and 1", name)
    ceiling = to_decimal(getattr(rates, "wage_ceiling", None), "wage_ceiling", required=True)
    if ceiling <= 0:
        raise ValidationError("wage_ceiling must be > 0", "wage_ceiling")


def calculate_payroll(components: CompensationComponents, rates: RateSet) -> PayrollResult:
    if not isinstance(components, CompensationComponents):
        components = CompensationComponents.from_mapping(components)
    if not isinstance(rates, RateSet):
        _check_rates(rates)
        rates = RateSet(rates.employee_rate, rates.employer_rate, rates.wage_ceiling,
                        getattr(rates, "contributor_type", "saudi"))

    c = components
    gross = (c.basic_salary + c.housing_allowance + c.transportation_allowance
             + c.food_allowance + c.mobile_allowance + c.other_allowances)
    gosi_base = c.basic_salary + c.housing_allowance
    gosi_wage = min(gosi_base, rates.wage_ceiling)
    gosi_employee = gosi_wage * rates.employee_rate
    gosi_employer = gosi_wage * rates.employer_rate
    net = gross - gosi_employee

    return PayrollResult(
        gross_salary=gross,
        gosi_wage_base=gosi_wage,
        gosi_employee=gosi_employee,
        gosi_employer=gosi_employer,
        net_salary=net,
        rates=rates,
    )


def result_columns(result: PayrollResult) -> Dict[str, Any]:
    """Column values for the stored payroll rows (EmployeePayroll, PayrollItem)."""
    out: Dict[str, Any] = {f: getattr(result, f) for f in RESULT_FIELDS}
    out["contributor_type"] = result.rates.contributor_type.value
    out["employee_rate"] = result.rates.employee_rate
    out["employer_rate"] = result.rates.employer_rate
    out["wage_ceiling"] = result.rates.wage_ceiling
    return out
