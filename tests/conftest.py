"""Pytest fixtures for personal action engine tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from personal_actions.models import Base, Employee, Movement, PayrollRun
from personal_actions.services.action_service import ActionService
from personal_actions.services.capabilities import (
    SENSITIVE_SALARY_CAPABILITY,
    StaticCapabilityEvaluator,
)

# Use in-memory SQLite for tests (with async support)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TODAY = date(2026, 3, 10)
COMPANY_ID = 1
OTHER_COMPANY_ID = 2

# Personal-action-type ids as configured by default
ABSENCE_TYPE_ID = 20
OVERTIME_TYPE_ID = 11
DISCOUNT_TYPE_ID = 6

# Actors
HR_ADMIN = 1
EDITOR = 2
APPROVER = 3
OUTSIDER = 4


def all_capabilities(prefix: str) -> list[str]:
    return [f"{prefix}:{cap}" for cap in ("view", "create", "edit", "approve", "cancel")]


@pytest.fixture
def capabilities() -> StaticCapabilityEvaluator:
    """Grants used across tests.

    HR_ADMIN holds everything, EDITOR may only create and edit absences,
    APPROVER may only approve absences.
    """
    evaluator = StaticCapabilityEvaluator()
    evaluator.grant(
        HR_ADMIN,
        *all_capabilities("hr-action-absences"),
        *all_capabilities("hr-action-overtime"),
        *all_capabilities("hr-action-discounts"),
        *all_capabilities("hr_action"),
        SENSITIVE_SALARY_CAPABILITY,
    )
    evaluator.grant(EDITOR, "hr-action-absences:create", "hr-action-absences:edit")
    evaluator.grant(APPROVER, "hr-action-absences:approve")
    return evaluator


@pytest_asyncio.fixture
async def engine():
    """Create test database engine."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@dataclass
class SeededCatalog:
    employee_id: int
    hourly_employee_id: int
    usd_employee_id: int
    open_run_id: int
    in_process_run_id: int
    applied_run_id: int
    usd_run_id: int
    weekly_run_id: int
    fixed_movement_id: int
    percentage_movement_id: int
    unconfigured_movement_id: int
    inactive_movement_id: int
    overtime_movement_id: int
    discount_movement_id: int
    other_company_movement_id: int


async def seed_catalog(session: AsyncSession) -> SeededCatalog:
    """Insert a small catalog of employees, payroll runs and movements."""
    employee = Employee(
        company_id=COMPANY_ID,
        full_name="Ana Mora",
        base_salary=Decimal("600000"),
        salary_currency="CRC",
        pay_period_id=10,
        is_hourly_schedule=False,
    )
    hourly = Employee(
        company_id=COMPANY_ID,
        full_name="Luis Vega",
        base_salary=Decimal("2500"),
        salary_currency="CRC",
        pay_period_id=8,
        is_hourly_schedule=True,
    )
    usd_employee = Employee(
        company_id=COMPANY_ID,
        full_name="Sam Reyes",
        base_salary=Decimal("3000"),
        salary_currency="USD",
        pay_period_id=10,
    )
    session.add_all([employee, hourly, usd_employee])

    open_run = PayrollRun(
        company_id=COMPANY_ID,
        name="March 2026",
        pay_period_id=10,
        currency="CRC",
        period_start=date(2026, 3, 1),
        period_end=date(2026, 3, 31),
        payment_end_date=date(2026, 4, 5),
        status=1,
    )
    in_process_run = PayrollRun(
        company_id=COMPANY_ID,
        name="April 2026",
        pay_period_id=10,
        currency="CRC",
        period_start=date(2026, 4, 1),
        period_end=date(2026, 4, 30),
        payment_end_date=date(2026, 5, 5),
        status=2,
    )
    applied_run = PayrollRun(
        company_id=COMPANY_ID,
        name="February 2026",
        pay_period_id=10,
        currency="CRC",
        period_start=date(2026, 2, 1),
        period_end=date(2026, 2, 28),
        payment_end_date=date(2026, 3, 5),
        status=4,
    )
    usd_run = PayrollRun(
        company_id=COMPANY_ID,
        name="March 2026 USD",
        pay_period_id=10,
        currency="USD",
        period_start=date(2026, 3, 1),
        period_end=date(2026, 3, 31),
        payment_end_date=date(2026, 4, 5),
        status=1,
    )
    weekly_run = PayrollRun(
        company_id=COMPANY_ID,
        name="Week 11",
        pay_period_id=8,
        currency="CRC",
        period_start=date(2026, 3, 9),
        period_end=date(2026, 3, 15),
        payment_end_date=date(2026, 3, 20),
        status=1,
    )
    session.add_all([open_run, in_process_run, applied_run, usd_run, weekly_run])

    fixed = Movement(
        company_id=COMPANY_ID,
        name="Absence fixed deduction",
        personal_action_type_id=ABSENCE_TYPE_ID,
        is_fixed_amount=True,
        fixed_amount=Decimal("1500"),
        percentage=Decimal("10"),
    )
    percentage = Movement(
        company_id=COMPANY_ID,
        name="Absence half day",
        personal_action_type_id=ABSENCE_TYPE_ID,
        percentage=Decimal("50"),
    )
    unconfigured = Movement(
        company_id=COMPANY_ID,
        name="Absence manual amount",
        personal_action_type_id=ABSENCE_TYPE_ID,
    )
    inactive = Movement(
        company_id=COMPANY_ID,
        name="Absence legacy",
        personal_action_type_id=ABSENCE_TYPE_ID,
        is_fixed_amount=True,
        fixed_amount=Decimal("1000"),
        is_inactive=True,
    )
    overtime = Movement(
        company_id=COMPANY_ID,
        name="Overtime time and a half",
        personal_action_type_id=OVERTIME_TYPE_ID,
        percentage=Decimal("150"),
    )
    discount = Movement(
        company_id=COMPANY_ID,
        name="Uniform discount",
        personal_action_type_id=DISCOUNT_TYPE_ID,
        is_fixed_amount=True,
        fixed_amount=Decimal("5000"),
    )
    other_company = Movement(
        company_id=OTHER_COMPANY_ID,
        name="Absence other company",
        personal_action_type_id=ABSENCE_TYPE_ID,
        is_fixed_amount=True,
        fixed_amount=Decimal("700"),
    )
    session.add_all([fixed, percentage, unconfigured, inactive, overtime, discount, other_company])
    await session.flush()

    return SeededCatalog(
        employee_id=employee.employee_id,
        hourly_employee_id=hourly.employee_id,
        usd_employee_id=usd_employee.employee_id,
        open_run_id=open_run.payroll_run_id,
        in_process_run_id=in_process_run.payroll_run_id,
        applied_run_id=applied_run.payroll_run_id,
        usd_run_id=usd_run.payroll_run_id,
        weekly_run_id=weekly_run.payroll_run_id,
        fixed_movement_id=fixed.movement_id,
        percentage_movement_id=percentage.movement_id,
        unconfigured_movement_id=unconfigured.movement_id,
        inactive_movement_id=inactive.movement_id,
        overtime_movement_id=overtime.movement_id,
        discount_movement_id=discount.movement_id,
        other_company_movement_id=other_company.movement_id,
    )


@pytest_asyncio.fixture
async def catalog(session: AsyncSession) -> SeededCatalog:
    return await seed_catalog(session)


@pytest_asyncio.fixture
async def service(session: AsyncSession, capabilities, catalog) -> ActionService:
    return ActionService(session, capabilities, today=lambda: TODAY)
