"""Catalog tables read by the engine: employees, payroll runs, movements.

These rows are maintained by master-data CRUD elsewhere; the engine only
reads them to build compensation snapshots and eligibility candidates.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Date, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from personal_actions.models.base import Base, TimestampMixin


class Employee(Base, TimestampMixin):
    """Employee compensation record."""

    __tablename__ = "employee"

    employee_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    base_salary: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    salary_currency: Mapped[str] = mapped_column(String(3), nullable=False, default="CRC")
    pay_period_id: Mapped[int] = mapped_column(Integer, nullable=False)
    is_hourly_schedule: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    termination_date: Mapped[date | None] = mapped_column(Date)

    __table_args__ = (
        CheckConstraint("base_salary >= 0", name="employee_base_salary_check"),
    )


class PayrollRun(Base, TimestampMixin):
    """One instance of a payroll period a line can be scheduled against."""

    __tablename__ = "payroll_run"

    payroll_run_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    pay_period_id: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    payment_end_date: Mapped[date | None] = mapped_column(Date)
    # 1 open, 2 in process, 3 verified, 4 applied, 5 posted, 6 notified, 0 inactive
    status: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_inactive: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    requires_recalculation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        CheckConstraint("period_end >= period_start", name="payroll_run_dates_check"),
    )


class Movement(Base, TimestampMixin):
    """Movement template describing how a line amount is computed."""

    __tablename__ = "movement"

    movement_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    personal_action_type_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    is_fixed_amount: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    fixed_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    percentage: Mapped[Decimal] = mapped_column(Numeric(7, 4), nullable=False, default=Decimal("0"))
    is_inactive: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
