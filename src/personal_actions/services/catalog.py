"""Read access to catalog rows as calculator and eligibility snapshots."""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from personal_actions.calculators.types import (
    CompensationSnapshot,
    MovementTemplate,
    PayrollRunEntry,
)
from personal_actions.exceptions import NotFoundError
from personal_actions.models import Employee, Movement, PayrollRun


def to_compensation(employee: Employee) -> CompensationSnapshot:
    return CompensationSnapshot(
        employee_id=employee.employee_id,
        company_id=employee.company_id,
        base_salary=employee.base_salary,
        salary_currency=(employee.salary_currency or "").upper(),
        pay_period_id=employee.pay_period_id,
        is_hourly_schedule=employee.is_hourly_schedule,
        is_active=employee.is_active,
        termination_date=employee.termination_date,
    )


def to_payroll_run_entry(run: PayrollRun) -> PayrollRunEntry:
    return PayrollRunEntry(
        payroll_run_id=run.payroll_run_id,
        company_id=run.company_id,
        status=run.status,
        pay_period_id=run.pay_period_id,
        currency=(run.currency or "").upper(),
        period_end=run.period_end,
        period_start=run.period_start,
        payment_end_date=run.payment_end_date,
        is_inactive=run.is_inactive,
        name=run.name,
    )


def to_movement_template(movement: Movement) -> MovementTemplate:
    return MovementTemplate(
        movement_id=movement.movement_id,
        company_id=movement.company_id,
        personal_action_type_id=movement.personal_action_type_id,
        is_fixed_amount=movement.is_fixed_amount,
        fixed_amount=movement.fixed_amount,
        percentage=movement.percentage,
        is_inactive=movement.is_inactive,
        name=movement.name,
    )


class CatalogRepository:
    """Loads catalog snapshots for one request."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_employee(self, employee_id: int) -> CompensationSnapshot:
        employee = await self.session.get(Employee, employee_id)
        if employee is None:
            raise NotFoundError("Employee", employee_id)
        return to_compensation(employee)

    async def list_payroll_runs(
        self,
        company_id: int,
        include_ids: Iterable[int] = (),
    ) -> list[PayrollRunEntry]:
        """Runs of a company plus any explicitly referenced run."""
        include_ids = set(include_ids)
        condition = PayrollRun.company_id == company_id
        if include_ids:
            condition = condition | PayrollRun.payroll_run_id.in_(include_ids)
        result = await self.session.execute(
            select(PayrollRun).where(condition).order_by(PayrollRun.period_end, PayrollRun.payroll_run_id)
        )
        return [to_payroll_run_entry(run) for run in result.scalars()]

    async def get_payroll_runs(self, payroll_run_ids: Iterable[int]) -> dict[int, PayrollRunEntry]:
        ids = set(payroll_run_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(PayrollRun).where(PayrollRun.payroll_run_id.in_(ids))
        )
        return {run.payroll_run_id: to_payroll_run_entry(run) for run in result.scalars()}

    async def get_payroll_run(self, payroll_run_id: int) -> PayrollRunEntry:
        run = await self.session.get(PayrollRun, payroll_run_id)
        if run is None:
            raise NotFoundError("Payroll run", payroll_run_id)
        return to_payroll_run_entry(run)

    async def list_movements(
        self,
        company_id: int,
        personal_action_type_id: int | None,
        include_ids: Iterable[int] = (),
    ) -> list[MovementTemplate]:
        """Movements of a company and action type plus any referenced one."""
        include_ids = set(include_ids)
        if personal_action_type_id is None and not include_ids:
            return []
        condition = (Movement.company_id == company_id) & (
            Movement.personal_action_type_id == personal_action_type_id
        )
        if include_ids:
            condition = condition | Movement.movement_id.in_(include_ids)
        result = await self.session.execute(
            select(Movement).where(condition).order_by(Movement.name, Movement.movement_id)
        )
        return [to_movement_template(m) for m in result.scalars()]

    async def get_movements(self, movement_ids: Iterable[int]) -> dict[int, MovementTemplate]:
        ids = set(movement_ids)
        if not ids:
            return {}
        result = await self.session.execute(select(Movement).where(Movement.movement_id.in_(ids)))
        return {m.movement_id: to_movement_template(m) for m in result.scalars()}

    async def flag_recalculation(self, payroll_run_ids: Iterable[int], statuses: Iterable[int]) -> int:
        """Mark runs already being processed so they pick up an approved change."""
        ids = set(payroll_run_ids)
        if not ids:
            return 0
        result = await self.session.execute(
            select(PayrollRun).where(
                PayrollRun.payroll_run_id.in_(ids),
                PayrollRun.status.in_(list(statuses)),
                PayrollRun.requires_recalculation.is_(False),
            )
        )
        runs = list(result.scalars())
        for run in runs:
            run.requires_recalculation = True
        return len(runs)
