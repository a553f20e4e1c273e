from datetime import datetime
from payroll_api.extensions import db


class PayrollBatch(db.Model):
    __tablename__ = "payroll_batches"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False)
    month = db.Column(db.String(7), nullable=False)  # YYYY-MM
    period_start = db.Column(db.Date, nullable=False)
    period_end = db.Column(db.Date, nullable=False)
    status = db.Column(
        db.Enum("draft", "in_progress", "calculated", "approved", "locked", name="payroll_batch_status_enum"),
        nullable=False, default="draft",
    )

    total_employees = db.Column(db.Integer, nullable=False, default=0)
    total_gross = db.Column(db.Numeric(18, 6), nullable=False, default=0)
    total_gosi_employee = db.Column(db.Numeric(18, 6), nullable=False, default=0)
    total_gosi_employer = db.Column(db.Numeric(18, 6), nullable=False, default=0)
    total_net = db.Column(db.Numeric(18, 6), nullable=False, default=0)

    # resumption: last employee id fully written in the current pass
    checkpoint_employee_id = db.Column(db.Integer)
    failures = db.Column(db.JSON)  # [{employee_id, code, message}]

    notes = db.Column(db.Text)
    created_by = db.Column(db.String(64))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    calculated_at = db.Column(db.DateTime)
    approved_at = db.Column(db.DateTime)
    locked_at = db.Column(db.DateTime)

    __table_args__ = (
        db.UniqueConstraint("company_id", "month", name="uq_payroll_batch_company_month"),
    )

    company = db.relationship("Company", lazy="joined")


class PayrollItem(db.Model):
    __tablename__ = "payroll_items"

    id = db.Column(db.Integer, primary_key=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("payroll_batches.id", ondelete="CASCADE"), nullable=False, index=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id"), nullable=False, index=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False)
    contributor_type = db.Column(db.String(20))

    basic_salary = db.Column(db.Numeric(12, 2), default=0)
    housing_allowance = db.Column(db.Numeric(12, 2), default=0)
    transportation_allowance = db.Column(db.Numeric(12, 2), default=0)
    food_allowance = db.Column(db.Numeric(12, 2), default=0)
    mobile_allowance = db.Column(db.Numeric(12, 2), default=0)
    other_allowances = db.Column(db.Numeric(12, 2), default=0)
    iban = db.Column(db.String(34))
    bank_name = db.Column(db.String(120))

    gross_salary = db.Column(db.Numeric(18, 6), default=0)
    gosi_wage_base = db.Column(db.Numeric(18, 6), default=0)
    gosi_employee = db.Column(db.Numeric(18, 6), default=0)
    gosi_employer = db.Column(db.Numeric(18, 6), default=0)
    net_salary = db.Column(db.Numeric(18, 6), default=0)

    notes = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("batch_id", "employee_id", name="uq_payroll_item_batch_employee"),
    )

    batch = db.relationship("PayrollBatch", backref=db.backref("items", lazy="dynamic"))
    employee = db.relationship("Employee", lazy="joined")
