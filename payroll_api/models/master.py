from datetime import datetime

from sqlalchemy.sql import func

from payroll_api.extensions import db


class Company(db.Model):
    __tablename__ = "companies"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False)
    name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    deleted_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def soft_delete(self):
        self.is_active = False
        self.deleted_at = func.now()


# Department, per company
class Department(db.Model):
    __tablename__ = "departments"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(
        db.Integer,
        db.ForeignKey("companies.id", ondelete="RESTRICT"),
        nullable=False,
    )
    name = db.Column(db.String(120), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("company_id", "name", name="uq_department_company_name"),
    )

    company = db.relationship(
        "Company", backref=db.backref("departments", lazy="dynamic")
    )


# Job grade per company, ordered by level
class JobGrade(db.Model):
    __tablename__ = "job_grades"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(
        db.Integer,
        db.ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )
    grade_code = db.Column(db.String(30), nullable=False)
    grade_level = db.Column(db.Integer, nullable=False, default=1)
    grade_name = db.Column(db.String(120), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("company_id", "grade_code", name="uq_job_grade_company_code"),
    )


class SalaryBand(db.Model):
    """
    Advisory min / midpoint / max range for a grade.

    Bands never block a salary; out-of-range values are reported as warnings.
    """

    __tablename__ = "salary_bands"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(
        db.Integer,
        db.ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
    )
    grade_id = db.Column(
        db.Integer,
        db.ForeignKey("job_grades.id", ondelete="CASCADE"),
        nullable=False,
    )
    nationality_type = db.Column(
        db.Enum("saudi", "non_saudi", "all", name="band_nationality_enum"),
        nullable=False,
        default="all",
    )
    minimum_salary = db.Column(db.Numeric(12, 2), nullable=False)
    midpoint_salary = db.Column(db.Numeric(12, 2), nullable=False)
    maximum_salary = db.Column(db.Numeric(12, 2), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.CheckConstraint("minimum_salary <= maximum_salary", name="ck_band_min_le_max"),
        db.Index("ix_salary_band_grade", "grade_id"),
    )

    grade = db.relationship("JobGrade", lazy="joined")
