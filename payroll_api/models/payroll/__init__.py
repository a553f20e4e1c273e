# payroll_api/models/payroll/__init__.py
# Import order matters: change records before the payroll projection that
# references them.
from payroll_api.extensions import db  # noqa

from .gosi_rate import GosiRateConfig
from .compensation_change import CompensationChangeRecord
from .employee_payroll import EmployeePayroll
from .batch import PayrollBatch, PayrollItem

__all__ = [
    "GosiRateConfig", "CompensationChangeRecord", "EmployeePayroll",
    "PayrollBatch", "PayrollItem",
]
