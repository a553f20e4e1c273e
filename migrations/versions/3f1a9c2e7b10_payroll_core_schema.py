"""payroll core schema (companies, employees, GOSI rates, compensation ledger, batches)

Revision ID: 3f1a9c2e7b10
Revises:
Create Date: 2025-07-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1a9c2e7b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _money(name, **kw):
    return sa.Column(name, sa.Numeric(12, 2), nullable=False, server_default='0', **kw)


def _exact(name):
    return sa.Column(name, sa.Numeric(18, 6), nullable=False, server_default='0')


def upgrade() -> None:
    op.create_table(
        'companies',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=50), nullable=False, unique=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        'departments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('company_id', 'name', name='uq_department_company_name'),
    )

    op.create_table(
        'job_grades',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('grade_code', sa.String(length=30), nullable=False),
        sa.Column('grade_level', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('grade_name', sa.String(length=120), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('company_id', 'grade_code', name='uq_job_grade_company_code'),
    )

    op.create_table(
        'salary_bands',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('grade_id', sa.Integer(), sa.ForeignKey('job_grades.id', ondelete='CASCADE'), nullable=False),
        sa.Column('nationality_type', sa.Enum('saudi', 'non_saudi', 'all', name='band_nationality_enum'),
                  nullable=False, server_default='all'),
        sa.Column('minimum_salary', sa.Numeric(12, 2), nullable=False),
        sa.Column('midpoint_salary', sa.Numeric(12, 2), nullable=False),
        sa.Column('maximum_salary', sa.Numeric(12, 2), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('minimum_salary <= maximum_salary', name='ck_band_min_le_max'),
    )
    op.create_index('ix_salary_band_grade', 'salary_bands', ['grade_id'])

    op.create_table(
        'employees',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('department_id', sa.Integer(), sa.ForeignKey('departments.id', ondelete='RESTRICT'), nullable=True),
        sa.Column('manager_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='SET NULL'), nullable=True),
        sa.Column('grade_id', sa.Integer(), sa.ForeignKey('job_grades.id', ondelete='SET NULL'), nullable=True),
        sa.Column('salary_band_id', sa.Integer(), sa.ForeignKey('salary_bands.id', ondelete='SET NULL'), nullable=True),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('first_name', sa.String(length=80), nullable=False),
        sa.Column('last_name', sa.String(length=80), nullable=True),
        sa.Column('nationality', sa.String(length=80), nullable=True),
        sa.Column('is_saudi', sa.Boolean(), nullable=True),
        sa.Column('contributor_type', sa.String(length=20), nullable=True),
        _money('basic_salary'),
        _money('housing_allowance'),
        _money('transportation_allowance'),
        _money('food_allowance'),
        _money('mobile_allowance'),
        _money('other_allowances'),
        sa.Column('iban', sa.String(length=34), nullable=True),
        sa.Column('bank_name', sa.String(length=120), nullable=True),
        sa.Column('salary_effective_date', sa.Date(), nullable=True),
        sa.Column('last_salary_review_date', sa.Date(), nullable=True),
        sa.Column('hire_date', sa.Date(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('company_id', 'code', name='uq_employee_company_code'),
    )
    op.create_index('ix_emp_company_id', 'employees', ['company_id'])
    op.create_index('ix_emp_dept_id', 'employees', ['department_id'])
    op.create_index('ix_emp_manager_id', 'employees', ['manager_id'])

    op.create_table(
        'gosi_rate_configs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('contributor_type', sa.Enum('saudi', 'non_saudi', 'saudi_pr_eligible', name='gosi_contributor_type'),
                  nullable=False),
        sa.Column('employee_rate', sa.Numeric(6, 4), nullable=False, server_default='0'),
        sa.Column('employer_rate', sa.Numeric(6, 4), nullable=False, server_default='0'),
        sa.Column('max_wage_ceiling', sa.Numeric(12, 2), nullable=False, server_default='45000'),
        sa.Column('effective_from', sa.Date(), nullable=False, server_default=sa.func.current_date()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('source', sa.Enum('manual', 'external_api', name='gosi_rate_source'),
                  nullable=False, server_default='manual'),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('deactivated_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('employee_rate >= 0 AND employee_rate <= 1', name='ck_gosi_employee_rate'),
        sa.CheckConstraint('employer_rate >= 0 AND employer_rate <= 1', name='ck_gosi_employer_rate'),
        sa.CheckConstraint('max_wage_ceiling > 0', name='ck_gosi_ceiling_positive'),
    )
    # at most one active row per (company, contributor_type)
    op.create_index(
        'uq_gosi_rate_one_active', 'gosi_rate_configs', ['company_id', 'contributor_type'],
        unique=True,
        postgresql_where=sa.text('is_active'),
        sqlite_where=sa.text('is_active'),
    )
    op.create_index('ix_gosi_rate_resolve', 'gosi_rate_configs', ['company_id', 'contributor_type', 'effective_from'])

    op.create_table(
        'compensation_changes',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('old_basic_salary', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('new_basic_salary', sa.Numeric(12, 2), nullable=False),
        sa.Column('old_allowances', sa.JSON(), nullable=False),
        sa.Column('new_allowances', sa.JSON(), nullable=False),
        sa.Column('old_total', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('new_total', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('delta_amount', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('delta_pct', sa.Numeric(12, 6), nullable=False, server_default='0'),
        sa.Column('effective_date', sa.Date(), nullable=False),
        sa.Column('change_reason', sa.Text(), nullable=True),
        sa.Column('change_type', sa.Enum('merit', 'promotion', 'market_adjustment', 'cost_of_living',
                                         'equity', 'retention', 'initial', 'other',
                                         name='compensation_change_type_enum'),
                  nullable=False, server_default='other'),
        sa.Column('adjustment_mode', sa.String(length=20), nullable=True),
        sa.Column('band_status', sa.String(length=20), nullable=True),
        sa.Column('changed_by', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_compensation_changes_employee_id', 'compensation_changes', ['employee_id'])
    op.create_index('ix_comp_change_current', 'compensation_changes', ['employee_id', 'effective_date', 'created_at'])

    op.create_table(
        'employee_payroll',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='CASCADE'),
                  nullable=False, unique=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('contributor_type', sa.String(length=20), nullable=False),
        _money('basic_salary'),
        _money('housing_allowance'),
        _money('transportation_allowance'),
        _money('food_allowance'),
        _money('mobile_allowance'),
        _money('other_allowances'),
        _exact('gross_salary'),
        _exact('gosi_wage_base'),
        _exact('gosi_employee'),
        _exact('gosi_employer'),
        _exact('net_salary'),
        sa.Column('employee_rate', sa.Numeric(6, 4), nullable=True),
        sa.Column('employer_rate', sa.Numeric(6, 4), nullable=True),
        sa.Column('wage_ceiling', sa.Numeric(12, 2), nullable=True),
        sa.Column('effective_date', sa.Date(), nullable=False),
        sa.Column('source_change_id', sa.Integer(),
                  sa.ForeignKey('compensation_changes.id', ondelete='SET NULL'), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_employee_payroll_company_id', 'employee_payroll', ['company_id'])

    op.create_table(
        'payroll_batches',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('month', sa.String(length=7), nullable=False),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False),
        sa.Column('status', sa.Enum('draft', 'in_progress', 'calculated', 'approved', 'locked',
                                    name='payroll_batch_status_enum'),
                  nullable=False, server_default='draft'),
        sa.Column('total_employees', sa.Integer(), nullable=False, server_default='0'),
        _exact('total_gross'),
        _exact('total_gosi_employee'),
        _exact('total_gosi_employer'),
        _exact('total_net'),
        sa.Column('checkpoint_employee_id', sa.Integer(), nullable=True),
        sa.Column('failures', sa.JSON(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.Column('calculated_at', sa.DateTime(), nullable=True),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        sa.Column('locked_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('company_id', 'month', name='uq_payroll_batch_company_month'),
    )

    op.create_table(
        'payroll_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('batch_id', sa.Integer(), sa.ForeignKey('payroll_batches.id', ondelete='CASCADE'), nullable=False),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id'), nullable=False),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('contributor_type', sa.String(length=20), nullable=True),
        sa.Column('basic_salary', sa.Numeric(12, 2), nullable=True),
        sa.Column('housing_allowance', sa.Numeric(12, 2), nullable=True),
        sa.Column('transportation_allowance', sa.Numeric(12, 2), nullable=True),
        sa.Column('food_allowance', sa.Numeric(12, 2), nullable=True),
        sa.Column('mobile_allowance', sa.Numeric(12, 2), nullable=True),
        sa.Column('other_allowances', sa.Numeric(12, 2), nullable=True),
        sa.Column('iban', sa.String(length=34), nullable=True),
        sa.Column('bank_name', sa.String(length=120), nullable=True),
        sa.Column('gross_salary', sa.Numeric(18, 6), nullable=True),
        sa.Column('gosi_wage_base', sa.Numeric(18, 6), nullable=True),
        sa.Column('gosi_employee', sa.Numeric(18, 6), nullable=True),
        sa.Column('gosi_employer', sa.Numeric(18, 6), nullable=True),
        sa.Column('net_salary', sa.Numeric(18, 6), nullable=True),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('batch_id', 'employee_id', name='uq_payroll_item_batch_employee'),
    )
    op.create_index('ix_payroll_items_batch_id', 'payroll_items', ['batch_id'])
    op.create_index('ix_payroll_items_employee_id', 'payroll_items', ['employee_id'])


def downgrade() -> None:
    op.drop_index('ix_payroll_items_employee_id', table_name='payroll_items')
    op.drop_index('ix_payroll_items_batch_id', table_name='payroll_items')
    op.drop_table('payroll_items')
    op.drop_table('payroll_batches')
    op.drop_index('ix_employee_payroll_company_id', table_name='employee_payroll')
    op.drop_table('employee_payroll')
    op.drop_index('ix_comp_change_current', table_name='compensation_changes')
    op.drop_index('ix_compensation_changes_employee_id', table_name='compensation_changes')
    op.drop_table('compensation_changes')
    op.drop_index('ix_gosi_rate_resolve', table_name='gosi_rate_configs')
    op.drop_index('uq_gosi_rate_one_active', table_name='gosi_rate_configs')
    op.drop_table('gosi_rate_configs')
    op.drop_index('ix_emp_manager_id', table_name='employees')
    op.drop_index('ix_emp_dept_id', table_name='employees')
    op.drop_index('ix_emp_company_id', table_name='employees')
    op.drop_table('employees')
    op.drop_index('ix_salary_band_grade', table_name='salary_bands')
    op.drop_table('salary_bands')
    op.drop_table('job_grades')
    op.drop_table('departments')
    op.drop_table('companies')

    # enum types (Postgres)
    for name in ('payroll_batch_status_enum', 'compensation_change_type_enum', 'gosi_rate_source',
                 'gosi_contributor_type', 'band_nationality_enum'):
        try:
            sa.Enum(name=name).drop(op.get_bind(), checkfirst=True)
        except Exception:
            pass
