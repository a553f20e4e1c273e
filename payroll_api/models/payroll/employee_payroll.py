from datetime import datetime
from payroll_api.extensions import db


class EmployeePayroll(db.Model):
    """
    Current payroll projection: exactly one row per employee.

    Replaced (not appended) whenever compensation changes; the history lives
    in compensation_changes. Amounts are stored unrounded.
    """

    __tablename__ = "employee_payroll"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, unique=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    contributor_type = db.Column(db.String(20), nullable=False)

    basic_salary = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    housing_allowance = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    transportation_allowance = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    food_allowance = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    mobile_allowance = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    other_allowances = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    gross_salary = db.Column(db.Numeric(18, 6), nullable=False, default=0)
    gosi_wage_base = db.Column(db.Numeric(18, 6), nullable=False, default=0)
    gosi_employee = db.Column(db.Numeric(18, 6), nullable=False, default=0)
    gosi_employer = db.Column(db.Numeric(18, 6), nullable=False, default=0)
    net_salary = db.Column(db.Numeric(18, 6), nullable=False, default=0)

    employee_rate = db.Column(db.Numeric(6, 4))
    employer_rate = db.Column(db.Numeric(6, 4))
    wage_ceiling = db.Column(db.Numeric(12, 2))

    effective_date = db.Column(db.Date, nullable=False)
    source_change_id = db.Column(db.Integer, db.ForeignKey("compensation_changes.id", ondelete="SET NULL"))
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    employee = db.relationship("Employee", lazy="joined")
