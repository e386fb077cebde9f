"""Type definitions for line calculation and eligibility."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum


class CalculationPath(str, Enum):
    """Which branch of the calculator produced an amount."""

    FIXED = "FIXED"
    HOURLY_PERCENTAGE = "HOURLY_PERCENTAGE"
    DAILY_PERCENTAGE = "DAILY_PERCENTAGE"
    NOT_CONFIGURED = "NOT_CONFIGURED"
    NO_MOVEMENT = "NO_MOVEMENT"


@dataclass(frozen=True)
class CompensationSnapshot:
    """Employee compensation as seen by the calculator."""

    employee_id: int
    company_id: int
    base_salary: Decimal
    salary_currency: str
    pay_period_id: int
    is_hourly_schedule: bool = False
    is_active: bool = True
    termination_date: date | None = None


@dataclass(frozen=True)
class PayrollRunEntry:
    """Payroll run catalog entry."""

    payroll_run_id: int
    company_id: int
    status: int
    pay_period_id: int
    currency: str
    period_end: date
    period_start: date | None = None
    payment_end_date: date | None = None
    is_inactive: bool = False
    name: str = ""


@dataclass(frozen=True)
class MovementTemplate:
    """Movement catalog entry describing how a line amount is computed."""

    movement_id: int
    company_id: int
    personal_action_type_id: int
    is_fixed_amount: bool = False
    fixed_amount: Decimal = Decimal("0")
    percentage: Decimal = Decimal("0")
    is_inactive: bool = False
    name: str = ""


@dataclass(frozen=True)
class LineInput:
    """Per-line inputs the calculator needs."""

    quantity: Decimal
    shift_hours: int | None = None
    # Submitted amount, only used when the movement has no calculation config
    amount: Decimal | None = None


@dataclass(frozen=True)
class LineAmount:
    """Computed amount plus the human-readable formula that produced it."""

    amount: Decimal
    formula: str
    path: CalculationPath

    @property
    def is_configured(self) -> bool:
        return self.path not in (CalculationPath.NOT_CONFIGURED, CalculationPath.NO_MOVEMENT)
