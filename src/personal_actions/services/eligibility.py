"""Eligibility of payroll runs and movement templates for action lines.

The resolver is a pure filter over catalog snapshots. It never drops a
payroll run or movement the user already selected: such entries stay in the
result, flagged, so the caller can ask the user to pick another one.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date
from enum import Enum, IntEnum

from personal_actions.calculators.types import (
    CompensationSnapshot,
    MovementTemplate,
    PayrollRunEntry,
)
from personal_actions.services.action_types import ActionType


class PayrollRunStatus(IntEnum):
    """Payroll calendar status values."""

    INACTIVE = 0
    OPEN = 1
    IN_PROCESS = 2
    VERIFIED = 3
    APPLIED = 4
    POSTED = 5
    NOTIFIED = 6


OPEN_PAYROLL_STATUSES = frozenset({PayrollRunStatus.OPEN, PayrollRunStatus.IN_PROCESS})


class Ineligibility(str, Enum):
    """Why a payroll run cannot take a new line."""

    COMPANY_MISMATCH = "COMPANY_MISMATCH"
    PAY_PERIOD_MISMATCH = "PAY_PERIOD_MISMATCH"
    CURRENCY_MISMATCH = "CURRENCY_MISMATCH"
    INACTIVE = "INACTIVE"
    NOT_OPEN = "NOT_OPEN"
    PAYMENT_WINDOW_CLOSED = "PAYMENT_WINDOW_CLOSED"

    @property
    def is_conflict(self) -> bool:
        """The run exists and matches but is no longer open for lines."""
        return self in _CONFLICT_REASONS


_CONFLICT_REASONS = frozenset(
    {Ineligibility.INACTIVE, Ineligibility.NOT_OPEN, Ineligibility.PAYMENT_WINDOW_CLOSED}
)


def payroll_run_ineligibility(
    run: PayrollRunEntry,
    company_id: int,
    employee: CompensationSnapshot,
    as_of: date,
) -> tuple[Ineligibility, ...]:
    """All reasons a payroll run cannot take a line for this employee."""
    reasons: list[Ineligibility] = []
    if run.company_id != company_id:
        reasons.append(Ineligibility.COMPANY_MISMATCH)
    if run.pay_period_id != employee.pay_period_id:
        reasons.append(Ineligibility.PAY_PERIOD_MISMATCH)
    if (run.currency or "").strip().upper() != (employee.salary_currency or "").strip().upper():
        reasons.append(Ineligibility.CURRENCY_MISMATCH)
    if run.is_inactive:
        reasons.append(Ineligibility.INACTIVE)
    if run.status not in OPEN_PAYROLL_STATUSES:
        reasons.append(Ineligibility.NOT_OPEN)
    if run.payment_end_date is not None and run.payment_end_date < as_of:
        reasons.append(Ineligibility.PAYMENT_WINDOW_CLOSED)
    return tuple(reasons)


@dataclass(frozen=True)
class PayrollRunOption:
    """A payroll run offered for selection."""

    run: PayrollRunEntry
    reasons: tuple[Ineligibility, ...] = ()
    previously_selected: bool = False

    @property
    def eligible(self) -> bool:
        return not self.reasons

    @property
    def flagged(self) -> bool:
        """Selected earlier but no longer eligible."""
        return self.previously_selected and not self.eligible


@dataclass(frozen=True)
class MovementOption:
    """A movement template offered for selection."""

    movement: MovementTemplate
    previously_selected: bool = False

    @property
    def selectable(self) -> bool:
        return not self.movement.is_inactive

    @property
    def flagged(self) -> bool:
        """Selected earlier but since deactivated; shown disabled."""
        return self.previously_selected and not self.selectable


@dataclass(frozen=True)
class EligibilityResult:
    """Filtered options plus explicit "no eligible options" signals."""

    payroll_runs: tuple[PayrollRunOption, ...]
    movements: tuple[MovementOption, ...]
    personal_action_type_id: int | None = None

    @property
    def eligible_payroll_runs(self) -> list[PayrollRunEntry]:
        return [o.run for o in self.payroll_runs if o.eligible]

    @property
    def eligible_movements(self) -> list[MovementTemplate]:
        return [o.movement for o in self.movements if o.selectable]

    @property
    def no_eligible_payroll_runs(self) -> bool:
        return not self.eligible_payroll_runs

    @property
    def no_eligible_movements(self) -> bool:
        return not self.eligible_movements

    @property
    def has_eligible_options(self) -> bool:
        return not (self.no_eligible_payroll_runs or self.no_eligible_movements)

    def payroll_run_option(self, payroll_run_id: int) -> PayrollRunOption | None:
        for option in self.payroll_runs:
            if option.run.payroll_run_id == payroll_run_id:
                return option
        return None

    def movement_option(self, movement_id: int) -> MovementOption | None:
        for option in self.movements:
            if option.movement.movement_id == movement_id:
                return option
        return None


class EligibilityResolver:
    """Filters payroll runs and movement templates a line may reference."""

    def __init__(self, action_type_ids: Mapping[str, int]):
        self.action_type_ids = dict(action_type_ids)

    def personal_action_type_id(self, action_type: ActionType | str) -> int | None:
        """Configured catalog id for an action type; generic actions have none."""
        return self.action_type_ids.get(ActionType(action_type).value)

    def resolve(
        self,
        *,
        action_type: ActionType | str,
        company_id: int,
        employee: CompensationSnapshot,
        payroll_runs: Iterable[PayrollRunEntry],
        movements: Iterable[MovementTemplate],
        as_of: date,
        selected_payroll_run_ids: Iterable[int] = (),
        selected_movement_ids: Iterable[int] = (),
    ) -> EligibilityResult:
        """Resolve the options for one (employee, company, action type)."""
        type_id = self.personal_action_type_id(action_type)
        selected_runs = set(selected_payroll_run_ids)
        selected_movements = set(selected_movement_ids)

        run_options = []
        for run in payroll_runs:
            reasons = payroll_run_ineligibility(run, company_id, employee, as_of)
            was_selected = run.payroll_run_id in selected_runs
            if reasons and not was_selected:
                continue
            run_options.append(PayrollRunOption(run, reasons, was_selected))
        run_options.sort(
            key=lambda o: (o.run.period_end, o.run.period_start or o.run.period_end, o.run.payroll_run_id)
        )

        movement_options = []
        for movement in movements:
            if type_id is None or movement.personal_action_type_id != type_id:
                continue
            if movement.company_id != company_id:
                continue
            was_selected = movement.movement_id in selected_movements
            if movement.is_inactive and not was_selected:
                continue
            movement_options.append(MovementOption(movement, was_selected))
        movement_options.sort(
            key=lambda o: (o.movement.is_inactive, o.movement.name.lower(), o.movement.movement_id)
        )

        return EligibilityResult(tuple(run_options), tuple(movement_options), type_id)
