from datetime import datetime, date
from payroll_api.extensions import db


class GosiRateConfig(db.Model):
    """
    One GOSI rate version per (company, contributor_type, effective_from).

    Rows are retained when superseded (is_active=False) so past periods can
    be recomputed. At most one active row per (company, contributor_type);
    the partial unique index below enforces it in the database.
    """

    __tablename__ = "gosi_rate_configs"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    contributor_type = db.Column(
        db.Enum("saudi", "non_saudi", "saudi_pr_eligible", name="gosi_contributor_type"),
        nullable=False,
    )

    employee_rate = db.Column(db.Numeric(6, 4), nullable=False, default=0)
    employer_rate = db.Column(db.Numeric(6, 4), nullable=False, default=0)
    max_wage_ceiling = db.Column(db.Numeric(12, 2), nullable=False, default=45000)

    effective_from = db.Column(db.Date, nullable=False, default=date.today)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    source = db.Column(db.Enum("manual", "external_api", name="gosi_rate_source"), nullable=False, default="manual")

    created_by = db.Column(db.String(64))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    deactivated_at = db.Column(db.DateTime)

    __table_args__ = (
        db.CheckConstraint("employee_rate >= 0 AND employee_rate <= 1", name="ck_gosi_employee_rate"),
        db.CheckConstraint("employer_rate >= 0 AND employer_rate <= 1", name="ck_gosi_employer_rate"),
        db.CheckConstraint("max_wage_ceiling > 0", name="ck_gosi_ceiling_positive"),
        db.Index(
            "uq_gosi_rate_one_active",
            "company_id", "contributor_type",
            unique=True,
            postgresql_where=db.text("is_active"),
            sqlite_where=db.text("is_active"),
        ),
        db.Index("ix_gosi_rate_resolve", "company_id", "contributor_type", "effective_from"),
    )

    company = db.relationship("Company", lazy="joined")
