from datetime import datetime
from sqlalchemy import event

from payroll_api.extensions import db


class CompensationChangeRecord(db.Model):
    """Append-only salary history. Rows are never updated or deleted."""

    __tablename__ = "compensation_changes"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="RESTRICT"), nullable=False, index=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False)

    old_basic_salary = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    new_basic_salary = db.Column(db.Numeric(12, 2), nullable=False)
    old_allowances = db.Column(db.JSON, nullable=False, default=dict)
    new_allowances = db.Column(db.JSON, nullable=False, default=dict)

    old_total = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    new_total = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    delta_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    delta_pct = db.Column(db.Numeric(12, 6), nullable=False, default=0)

    effective_date = db.Column(db.Date, nullable=False)
    change_reason = db.Column(db.Text)
    change_type = db.Column(
        db.Enum("merit", "promotion", "market_adjustment", "cost_of_living",
                "equity", "retention", "initial", "other", name="compensation_change_type_enum"),
        nullable=False, default="other",
    )
    adjustment_mode = db.Column(db.String(20))   # percentage | amount | manual
    band_status = db.Column(db.String(20))       # within | below | above | no_band
    changed_by = db.Column(db.String(64))
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.Index("ix_comp_change_current", "employee_id", "effective_date", "created_at"),
    )

    employee = db.relationship("Employee", lazy="joined")


@event.listens_for(CompensationChangeRecord, "before_update")
def _refuse_update(mapper, connection, target):
    raise RuntimeError(f"compensation change {target.id} is immutable")


@event.listens_for(CompensationChangeRecord, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise RuntimeError(f"compensation change {target.id} cannot be deleted")
