"""Pay-period normalization tables.

Pay periods are identified by numeric ids. Ids 8 and 11 double as per-hour
contracts when the employee works an hourly schedule: such contracts have no
period salary and no period hours, and the salary field already holds the
hourly rate.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from personal_actions.calculators.types import CompensationSnapshot

HOURLY_PERIOD_IDS = frozenset({8, 11})

# {pay_period_id: (multiplier, divisor)}
PERIOD_SALARY_FACTORS: dict[int, tuple[int, int]] = {
    8: (1, 4),
    9: (1, 2),
    10: (1, 1),
    11: (1, 2),
    12: (1, 30),
    13: (3, 1),
    14: (6, 1),
    15: (12, 1),
}

PERIOD_HOURS: dict[int, int] = {
    8: 48,
    9: 96,
    10: 192,
    11: 96,
    12: 10,
    13: 576,
    14: 1152,
    15: 2304,
}

DEFAULT_PERIOD_HOURS = 192
DAYS_PER_MONTH = Decimal("30")
HOURS_PER_DAY = Decimal("8")
MINOR_UNIT = Decimal("0.01")


def is_per_hour_contract(pay_period_id: int | None, is_hourly_schedule: bool) -> bool:
    """Check if the salary field holds an hourly rate rather than a monthly salary."""
    return bool(is_hourly_schedule) and pay_period_id in HOURLY_PERIOD_IDS


def period_salary(
    base_salary: Decimal,
    pay_period_id: int | None,
    is_hourly_schedule: bool = False,
) -> Decimal:
    """Salary earned in one period of the given frequency."""
    if is_per_hour_contract(pay_period_id, is_hourly_schedule):
        return Decimal("0")
    multiplier, divisor = PERIOD_SALARY_FACTORS.get(pay_period_id or 0, (1, 1))
    value = Decimal(base_salary) * multiplier / divisor
    return value.quantize(MINOR_UNIT, rounding=ROUND_HALF_UP)


def period_hours(pay_period_id: int | None, is_hourly_schedule: bool = False) -> int:
    """Total working hours in one period of the given frequency."""
    if is_per_hour_contract(pay_period_id, is_hourly_schedule):
        return 0
    return PERIOD_HOURS.get(pay_period_id or 0, DEFAULT_PERIOD_HOURS)


def hour_value(
    base_salary: Decimal,
    pay_period_id: int | None,
    is_hourly_schedule: bool = False,
) -> Decimal:
    """Value of one ordinary working hour."""
    if is_per_hour_contract(pay_period_id, is_hourly_schedule):
        return Decimal(base_salary).quantize(MINOR_UNIT, rounding=ROUND_HALF_UP)
    value = Decimal(base_salary) / DAYS_PER_MONTH / HOURS_PER_DAY
    return value.quantize(MINOR_UNIT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PeriodCompensation:
    """Salary figures normalized to the employee's pay period."""

    period_salary: Decimal
    period_hours: int
    hour_value: Decimal


def summarize(snapshot: CompensationSnapshot) -> PeriodCompensation:
    """Normalize an employee's compensation to their pay period."""
    return PeriodCompensation(
        period_salary=period_salary(
            snapshot.base_salary, snapshot.pay_period_id, snapshot.is_hourly_schedule
        ),
        period_hours=period_hours(snapshot.pay_period_id, snapshot.is_hourly_schedule),
        hour_value=hour_value(
            snapshot.base_salary, snapshot.pay_period_id, snapshot.is_hourly_schedule
        ),
    )
