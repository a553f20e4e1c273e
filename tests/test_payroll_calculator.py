from decimal import Decimal

import pytest

from payroll_api.common.errors import ValidationError
from payroll_api.services.compensation import CompensationComponents, gross_of, money, to_minor_units
from payroll_api.services.gosi_rates import RateSet, statutory_defaults
from payroll_api.services.payroll_calculator import calculate_payroll

D = Decimal

SAUDI = RateSet(D("0.0975"), D("0.1175"), D("45000"), "saudi")
NON_SAUDI = RateSet(D("0"), D("0.02"), D("45000"), "non_saudi")


def _comp(**kw):
    base = {"basic_salary": "15000", "housing_allowance": "3000",
            "transportation_allowance": "1000", "other_allowances": "500"}
    base.update(kw)
    return CompensationComponents.from_mapping(base)


def test_saudi_employee_sample():
    r = calculate_payroll(_comp(), SAUDI)
    assert r.gross_salary == D("19500")
    assert r.gosi_wage_base == D("18000")
    assert r.gosi_employee == D("1755")
    assert r.gosi_employer == D("2115")
    assert r.net_salary == D("17745")


def test_non_saudi_employee_same_salary():
    r = calculate_payroll(_comp(), NON_SAUDI)
    assert r.gosi_employee == 0
    assert r.gosi_employer == D("360")
    assert r.net_salary == D("19500")


def test_statutory_defaults_match_configured_sample():
    r = calculate_payroll(_comp(), statutory_defaults("saudi", wage_ceiling=D("45000")))
    assert r.gosi_employee == D("1755")
    assert r.gosi_employer == D("2115")


@pytest.mark.parametrize("rates", [SAUDI, NON_SAUDI])
def test_wage_ceiling_caps_gosi_base(rates):
    c = CompensationComponents.from_mapping({"basic_salary": "50000", "housing_allowance": "10000"})
    r = calculate_payroll(c, rates)
    assert r.gosi_wage_base == D("45000")
    assert r.gosi_employee == D("45000") * rates.employee_rate
    assert r.gosi_employer == D("45000") * rates.employer_rate


def test_only_basic_and_housing_are_contributory():
    c = CompensationComponents.from_mapping({
        "basic_salary": "10000", "housing_allowance": "2500",
        "transportation_allowance": "800", "food_allowance": "400",
        "mobile_allowance": "200", "other_allowances": "1100",
    })
    r = calculate_payroll(c, SAUDI)
    assert r.gross_salary == D("15000")
    assert r.gosi_wage_base == D("12500")
    assert r.net_salary == D("15000") - D("12500") * D("0.0975")


@pytest.mark.parametrize("basic,housing,rate", [
    ("0", "0", "0.0975"),
    ("1", "0", "1"),
    ("3000.55", "750.10", "0.0975"),
    ("99999.99", "40000", "0.5"),
])
def test_net_never_exceeds_gross(basic, housing, rate):
    c = CompensationComponents.from_mapping({"basic_salary": basic, "housing_allowance": housing})
    r = calculate_payroll(c, RateSet(D(rate), D("0"), D("45000")))
    assert r.net_salary <= r.gross_salary
    assert r.net_salary >= 0


def test_calculation_is_idempotent():
    c = _comp(food_allowance="333.33")
    a = calculate_payroll(c, SAUDI)
    b = calculate_payroll(c, SAUDI)
    assert a == b
    assert a.to_dict(exact=True) == b.to_dict(exact=True)


def test_no_rounding_until_presentation():
    c = CompensationComponents.from_mapping({"basic_salary": "1234.57"})
    r = calculate_payroll(c, SAUDI)
    assert r.gosi_employee == D("1234.57") * D("0.0975")   # 120.370575
    out = r.to_dict(exact=True)
    assert out["gosi_employee"] == "120.37"
    assert out["exact"]["gosi_employee"] == "120.370575"
    assert out["minor_units"]["gosi_employee"] == 12037


def test_money_rounds_half_up():
    assert money(D("0.005")) == D("0.01")
    assert money(D("2.675")) == D("2.68")
    assert to_minor_units(D("17745")) == 1774500


def test_missing_allowances_default_to_zero():
    assert gross_of({"basic_salary": "5000"}) == D("5000")
    assert gross_of({"basic_salary": "5000", "housing_allowance": None, "food_allowance": ""}) == D("5000")


@pytest.mark.parametrize("payload,field", [
    ({"basic_salary": "-1"}, "basic_salary"),
    ({"basic_salary": "abc"}, "basic_salary"),
    ({"basic_salary": None}, "basic_salary"),
    ({"basic_salary": "100", "housing_allowance": "-5"}, "housing_allowance"),
    ({"basic_salary": "NaN"}, "basic_salary"),
    ({"basic_salary": True}, "basic_salary"),
])
def test_invalid_components_raise(payload, field):
    with pytest.raises(ValidationError) as exc:
        gross_of(payload)
    assert exc.value.field == field


@pytest.mark.parametrize("emp,er,ceiling", [
    ("1.5", "0", "45000"),
    ("0.1", "-0.1", "45000"),
    ("0.1", "0.1", "0"),
])
def test_invalid_rates_raise(emp, er, ceiling):
    with pytest.raises(ValidationError):
        RateSet(emp, er, ceiling)


def test_accepts_rates_like_object():
    class Rates:
        employee_rate = "0.0975"
        employer_rate = "0.1175"
        wage_ceiling = "45000"

    r = calculate_payroll(_comp(), Rates())
    assert r.gosi_employee == D("1755")
