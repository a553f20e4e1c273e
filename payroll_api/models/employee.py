from datetime import datetime
from payroll_api.extensions import db


class Employee(db.Model):
    __tablename__ = "employees"

    id = db.Column(db.Integer, primary_key=True)
    # business
    company_id     = db.Column(db.Integer, db.ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False)
    department_id  = db.Column(db.Integer, db.ForeignKey("departments.id", ondelete="RESTRICT"), nullable=True)
    manager_id     = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="SET NULL"), nullable=True)
    grade_id       = db.Column(db.Integer, db.ForeignKey("job_grades.id", ondelete="SET NULL"), nullable=True)
    salary_band_id = db.Column(db.Integer, db.ForeignKey("salary_bands.id", ondelete="SET NULL"), nullable=True)

    code       = db.Column(db.String(32), nullable=False)    # unique per company
    first_name = db.Column(db.String(80), nullable=False)
    last_name  = db.Column(db.String(80), nullable=True)

    # GOSI classification inputs
    nationality      = db.Column(db.String(80), nullable=True)
    is_saudi         = db.Column(db.Boolean, nullable=True)
    contributor_type = db.Column(db.String(20), nullable=True)   # explicit override: saudi/non_saudi/saudi_pr_eligible

    # compensation (written only through the compensation ledger)
    basic_salary             = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    housing_allowance        = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    transportation_allowance = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    food_allowance           = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    mobile_allowance         = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    other_allowances         = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    iban      = db.Column(db.String(34), nullable=True)
    bank_name = db.Column(db.String(120), nullable=True)
    salary_effective_date   = db.Column(db.Date, nullable=True)
    last_salary_review_date = db.Column(db.Date, nullable=True)

    hire_date = db.Column(db.Date, nullable=True)
    status = db.Column(db.String(16), default="active", nullable=False)  # active/inactive/terminated

    # optimistic concurrency for compensation writes
    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("company_id", "code", name="uq_employee_company_code"),
        db.Index("ix_emp_company_id", "company_id"),
        db.Index("ix_emp_dept_id", "department_id"),
        db.Index("ix_emp_manager_id", "manager_id"),
    )
    __mapper_args__ = {"version_id_col": version}

    company     = db.relationship("Company", lazy="joined")
    department  = db.relationship("Department", lazy="joined")
    grade       = db.relationship("JobGrade", lazy="joined")
    salary_band = db.relationship("SalaryBand", lazy="joined")
    manager     = db.relationship("Employee", remote_side=[id], lazy="select")

    @property
    def full_name(self):
        return " ".join(x for x in (self.first_name, self.last_name) if x)
