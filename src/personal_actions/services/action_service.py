"""Personal action service - orchestrates lines, lifecycle and audit."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import uuid4

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from personal_actions.calculators.line_calculator import (
    LineCalculator,
    format_number,
    mask_formula,
)
from personal_actions.calculators.pay_periods import PeriodCompensation, summarize
from personal_actions.calculators.types import (
    CalculationPath,
    CompensationSnapshot,
    LineInput,
    PayrollRunEntry,
)
from personal_actions.config import Settings, get_settings
from personal_actions.exceptions import (
    ConflictError,
    ForbiddenError,
    LineError,
    NotFoundError,
    StaleStateError,
    ValidationError,
)
from personal_actions.models import ActionHeader, ActionLine, AuditEntry
from personal_actions.models.base import utc_now
from personal_actions.services.action_types import ActionType, get_config
from personal_actions.services.audit_recorder import (
    AuditEvent,
    AuditRecorder,
    diff_codes,
    field_changes,
    line_signature,
)
from personal_actions.services.capabilities import SENSITIVE_SALARY_CAPABILITY
from personal_actions.services.catalog import CatalogRepository
from personal_actions.services.eligibility import (
    EligibilityResolver,
    EligibilityResult,
    PayrollRunStatus,
    payroll_run_ineligibility,
)
from personal_actions.services.notifications import (
    DatabaseNotificationDispatcher,
    NotificationDispatcher,
)
from personal_actions.services.state_machine import (
    ActionStateMachine,
    ActionStatus,
    Capability,
    CapabilityEvaluator,
    TransitionName,
    TransitionRule,
    capability_code,
    status_label,
)

logger = logging.getLogger(__name__)

DEFAULT_INVALIDATION_REASON = "Invalidated manually by HR"
DEFAULT_EXPIRY_REASON = "Payroll payment window closed"
QUANTITY_UNIT = Decimal("0.0001")
MAX_QUANTITY = Decimal("100000000")


class InvalidationReasonCode(str, Enum):
    MANUAL_INVALIDATION = "MANUAL_INVALIDATION"
    TERMINATION_EFFECTIVE = "TERMINATION_EFFECTIVE"
    COMPANY_MISMATCH = "COMPANY_MISMATCH"
    CURRENCY_MISMATCH = "CURRENCY_MISMATCH"


class InvalidatedBy(str, Enum):
    USER = "USER"
    SYSTEM = "SYSTEM"


class Origin(str, Enum):
    RRHH = "RRHH"
    IMPORT = "IMPORT"
    TIMEWISE = "TIMEWISE"


@dataclass(frozen=True)
class LineSubmission:
    """One line as submitted by a caller, before validation."""

    payroll_run_id: int | None
    movement_id: int | None
    quantity: Decimal | None
    is_compensated: bool | None = None
    effective_date: date | None = None
    amount: Decimal | None = None
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ActionSubmission:
    """Header fields plus the full line set of a create or update."""

    company_id: int
    employee_id: int
    lines: list[LineSubmission]
    description: str | None = None
    currency: str | None = None
    origin: Origin = Origin.RRHH
    split_by_payroll_run: bool = False


@dataclass(frozen=True)
class CalculatedLine:
    """A validated line with its server-side amount and formula."""

    line_order: int
    payroll_run_id: int
    movement_id: int
    quantity: Decimal
    amount: Decimal
    is_compensated: bool
    formula: str
    effective_date: date
    payload: dict[str, Any]
    path: CalculationPath

    def renumbered(self, line_order: int) -> CalculatedLine:
        return CalculatedLine(
            line_order=line_order,
            payroll_run_id=self.payroll_run_id,
            movement_id=self.movement_id,
            quantity=self.quantity,
            amount=self.amount,
            is_compensated=self.is_compensated,
            formula=self.formula,
            effective_date=self.effective_date,
            payload=self.payload,
            path=self.path,
        )

    def masked(self) -> CalculatedLine:
        return replace(self, formula=mask_formula(self.formula))

    def to_model(self, action_id: int) -> ActionLine:
        return ActionLine(
            action_id=action_id,
            payroll_run_id=self.payroll_run_id,
            movement_id=self.movement_id,
            quantity=self.quantity,
            amount=self.amount,
            is_compensated=self.is_compensated,
            formula=self.formula,
            line_order=self.line_order,
            effective_date=self.effective_date,
            payload=dict(self.payload),
        )


@dataclass(frozen=True)
class ActionDetail:
    """A header with its ordered lines."""

    header: ActionHeader
    lines: list[ActionLine]

    @property
    def status_label(self) -> str:
        return status_label(self.header.status)

    @property
    def compensation_summary(self) -> str | None:
        """ALL, NONE or MIXED depending on which lines are compensated."""
        if not self.lines:
            return None
        flags = {bool(line.is_compensated) for line in self.lines}
        if flags == {True}:
            return "ALL"
        if flags == {False}:
            return "NONE"
        return "MIXED"


@dataclass(frozen=True)
class AuditTrailEntry:
    audit_id: int
    action_id: int
    event: str
    description: str
    actor_user_id: int | None
    created_at: datetime
    changes: list[dict[str, str]]
    line_diff: dict[str, list] | None


@dataclass(frozen=True)
class EligibilityContext:
    """Eligibility options plus the employee figures a form displays."""

    employee: CompensationSnapshot
    compensation: PeriodCompensation
    result: EligibilityResult


def header_snapshot(header: ActionHeader, lines: Iterable[Any], **overrides: Any) -> dict[str, Any]:
    """JSON-safe view of the audited header fields."""
    lines = list(lines)
    snapshot: dict[str, Any] = {
        "company_id": header.company_id,
        "employee_id": header.employee_id,
        "action_type": header.action_type,
        "status": header.status,
        "status_label": status_label(header.status),
        "description": header.description,
        "effective_date": header.effective_date,
        "start_date": header.start_date,
        "end_date": header.end_date,
        "aggregate_amount": header.aggregate_amount,
        "currency": header.currency,
        "line_count": len(lines),
        "payroll_run_id": header.payroll_run_id,
        "approved_by": header.approved_by,
        "rejection_reason": header.rejection_reason,
        "invalidated_reason": header.invalidated_reason,
        "invalidated_reason_code": header.invalidated_reason_code,
        "expired_reason": header.expired_reason,
        "cancel_reason": header.cancel_reason,
    }
    snapshot.update(overrides)
    for key in ("effective_date", "start_date", "end_date"):
        value = snapshot[key]
        snapshot[key] = value.isoformat() if value is not None else None
    if snapshot["aggregate_amount"] is not None:
        snapshot["aggregate_amount"] = format_number(snapshot["aggregate_amount"])
    return snapshot


def summarize_lines(lines: list[CalculatedLine]) -> dict[str, Any]:
    """Header fields derived from a line set."""
    dates = [line.effective_date for line in lines if line.effective_date is not None]
    return {
        "aggregate_amount": sum((line.amount for line in lines), Decimal("0")),
        "effective_date": lines[0].effective_date if lines else None,
        "start_date": min(dates) if dates else None,
        "end_date": max(dates) if dates else None,
    }


class ActionService:
    """Service for personal action lifecycle and line management.

    Operations:
    - create_action / update_action: validate, calculate and persist lines
    - advance / invalidate: the lined approval flow
    - approve / reject / cancel: the generic approval flow
    - expire / associate_to_payroll: edges shared by both flows
    - get_action_detail / list_actions / list_audit_trail: reads

    Every mutation goes through the AuditRecorder before it returns. The
    caller owns the transaction and commits or rolls back as a whole.
    """

    def __init__(
        self,
        session: AsyncSession,
        capabilities: CapabilityEvaluator,
        dispatcher: NotificationDispatcher | None = None,
        settings: Settings | None = None,
        calculator: LineCalculator | None = None,
        today: Callable[[], date] = date.today,
    ):
        self.session = session
        self.capabilities = capabilities
        self.settings = settings or get_settings()
        self.catalog = CatalogRepository(session)
        self.calculator = calculator or LineCalculator(self.settings.money_max_digits)
        self.eligibility = EligibilityResolver(self.settings.action_type_ids)
        self.audit = AuditRecorder(session, dispatcher or DatabaseNotificationDispatcher(session))
        self.today = today

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_action(self, action_id: int) -> ActionHeader:
        header = await self.session.get(ActionHeader, action_id)
        if header is None:
            raise NotFoundError("Personal action", action_id)
        return header

    async def get_lines(self, action_id: int) -> list[ActionLine]:
        result = await self.session.execute(
            select(ActionLine)
            .where(ActionLine.action_id == action_id)
            .order_by(ActionLine.line_order)
        )
        return list(result.scalars())

    async def get_action_detail(self, action_id: int) -> ActionDetail:
        header = await self.get_action(action_id)
        return ActionDetail(header, await self.get_lines(action_id))

    async def list_actions(
        self,
        company_id: int | None = None,
        employee_id: int | None = None,
        status: int | None = None,
        action_type: ActionType | str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[ActionHeader], int]:
        """List headers, most recent first, with the unpaginated total."""
        query = select(ActionHeader)
        if company_id is not None:
            query = query.where(ActionHeader.company_id == company_id)
        if employee_id is not None:
            query = query.where(ActionHeader.employee_id == employee_id)
        if status is not None:
            query = query.where(ActionHeader.status == status)
        if action_type is not None:
            query = query.where(ActionHeader.action_type == ActionType(action_type).value)

        count_result = await self.session.execute(
            select(func.count()).select_from(query.subquery())
        )
        total = count_result.scalar() or 0

        page = max(page, 1)
        result = await self.session.execute(
            query.order_by(ActionHeader.action_id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars()), total

    def clamp_audit_limit(self, limit: int | None) -> int:
        if limit is None:
            return self.settings.audit_trail_default_limit
        return max(1, min(int(limit), self.settings.audit_trail_max_limit))

    async def list_audit_trail(
        self,
        action_id: int,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[AuditTrailEntry]:
        """Audit entries of one action, most recent first."""
        await self.get_action(action_id)
        result = await self.session.execute(
            select(AuditEntry)
            .where(AuditEntry.action_id == action_id)
            .order_by(AuditEntry.created_at.desc(), AuditEntry.audit_id.desc())
            .offset(max(offset, 0))
            .limit(self.clamp_audit_limit(limit))
        )
        return [
            AuditTrailEntry(
                audit_id=entry.audit_id,
                action_id=entry.action_id,
                event=entry.event,
                description=entry.description,
                actor_user_id=entry.actor_user_id,
                created_at=entry.created_at,
                changes=[c.to_dict() for c in field_changes(entry.before, entry.after)],
                line_diff=entry.line_diff,
            )
            for entry in result.scalars()
        ]

    async def resolve_eligibility(
        self,
        action_type: ActionType | str,
        company_id: int,
        employee_id: int,
        selected_payroll_run_ids: Iterable[int] = (),
        selected_movement_ids: Iterable[int] = (),
        action_id: int | None = None,
    ) -> EligibilityContext:
        """Payroll runs and movements a line of this action may reference."""
        action_type = ActionType(action_type)
        employee = await self.catalog.get_employee(employee_id)
        run_ids = set(selected_payroll_run_ids)
        movement_ids = set(selected_movement_ids)
        if action_id is not None:
            for line in await self.get_lines(action_id):
                run_ids.add(line.payroll_run_id)
                movement_ids.add(line.movement_id)

        type_id = self.eligibility.personal_action_type_id(action_type)
        result = self.eligibility.resolve(
            action_type=action_type,
            company_id=company_id,
            employee=employee,
            payroll_runs=await self.catalog.list_payroll_runs(company_id, run_ids),
            movements=await self.catalog.list_movements(company_id, type_id, movement_ids),
            as_of=self.today(),
            selected_payroll_run_ids=run_ids,
            selected_movement_ids=movement_ids,
        )
        return EligibilityContext(employee, summarize(employee), result)

    async def preview_lines(
        self,
        action_type: ActionType | str,
        company_id: int,
        employee_id: int,
        lines: list[LineSubmission],
        actor_id: int | None,
    ) -> list[CalculatedLine]:
        """Validate and calculate lines without persisting anything."""
        action_type = ActionType(action_type)
        self._ensure_lined(action_type)
        employee = await self._load_employee(employee_id, company_id)
        calculated = await self._calculate_lines(action_type, company_id, employee, lines)
        if self.can_view_salary(actor_id):
            return calculated
        return [line.masked() for line in calculated]

    def can_view_salary(self, actor_id: int | None) -> bool:
        return self.capabilities.has_capability(actor_id, SENSITIVE_SALARY_CAPABILITY)

    # ------------------------------------------------------------------
    # Create / update
    # ------------------------------------------------------------------

    async def create_action(
        self,
        action_type: ActionType | str,
        submission: ActionSubmission,
        actor_id: int | None,
    ) -> list[ActionHeader]:
        """Create one header, or one per payroll run when splitting.

        All headers created by one submission share a group id.
        """
        action_type = ActionType(action_type)
        self._ensure_lined(action_type)
        self._authorize(action_type, Capability.CREATE, actor_id)
        config = get_config(action_type)

        employee = await self._load_employee(submission.employee_id, submission.company_id)
        currency = self._header_currency(employee, submission.currency)
        calculated = await self._calculate_lines(
            action_type, submission.company_id, employee, submission.lines
        )

        if submission.split_by_payroll_run:
            grouped: dict[int, list[CalculatedLine]] = {}
            for line in calculated:
                grouped.setdefault(line.payroll_run_id, []).append(line)
            line_sets = [
                [line.renumbered(i) for i, line in enumerate(lines, start=1)]
                for lines in grouped.values()
            ]
        else:
            line_sets = [calculated]

        group_id = self._new_group_id(action_type)

        headers = []
        for lines in line_sets:
            header = ActionHeader(
                company_id=submission.company_id,
                employee_id=submission.employee_id,
                action_type=action_type.value,
                status=ActionStatus.DRAFT.value,
                group_id=group_id,
                origin=Origin(submission.origin).value,
                description=submission.description,
                currency=currency,
                created_by=actor_id,
                modified_by=actor_id,
                version_lock=0,
                **summarize_lines(lines),
            )
            self.session.add(header)
            await self.session.flush()

            for line in lines:
                self.session.add(line.to_model(header.action_id))
            await self.session.flush()

            await self.audit.record(
                action_id=header.action_id,
                action_type=header.action_type,
                event=AuditEvent.CREATED,
                summary=f"{config.label} created for employee #{header.employee_id}",
                actor_user_id=actor_id,
                before=None,
                after=header_snapshot(header, lines),
                line_diff=diff_codes([], [line_signature(line) for line in lines]),
                recipients=(header.created_by, actor_id),
            )
            headers.append(header)

        logger.info(
            "Created %d %s action(s) in group %s for employee %s",
            len(headers),
            action_type.value,
            group_id,
            submission.employee_id,
        )
        return headers

    async def create_generic_action(
        self,
        company_id: int,
        employee_id: int,
        actor_id: int | None,
        description: str | None = None,
        amount: Decimal | int | str | None = None,
        effective_date: date | None = None,
        currency: str | None = None,
        origin: Origin = Origin.RRHH,
    ) -> ActionHeader:
        """Create a generic action; it has no lines and an explicit amount."""
        action_type = ActionType.GENERIC
        self._authorize(action_type, Capability.CREATE, actor_id)
        employee = await self._load_employee(employee_id, company_id)

        header = ActionHeader(
            company_id=company_id,
            employee_id=employee_id,
            action_type=action_type.value,
            status=ActionStatus.DRAFT.value,
            group_id=self._new_group_id(action_type),
            origin=Origin(origin).value,
            description=description,
            effective_date=effective_date,
            start_date=effective_date,
            end_date=effective_date,
            aggregate_amount=Decimal(self.calculator.normalize_amount(amount)),
            currency=self._header_currency(employee, currency),
            created_by=actor_id,
            modified_by=actor_id,
            version_lock=0,
        )
        self.session.add(header)
        await self.session.flush()

        await self.audit.record(
            action_id=header.action_id,
            action_type=header.action_type,
            event=AuditEvent.CREATED,
            summary=f"{get_config(action_type).label} created for employee #{employee_id}",
            actor_user_id=actor_id,
            before=None,
            after=header_snapshot(header, []),
            recipients=(header.created_by, actor_id),
        )
        logger.info("Created generic action %s for employee %s", header.action_id, employee_id)
        return header

    async def update_action(
        self,
        action_id: int,
        submission: ActionSubmission,
        actor_id: int | None,
        expected_status: int | None = None,
    ) -> ActionHeader:
        """Replace the header fields and the whole line set.

        Resubmitting what is already persisted writes nothing and records no
        audit entry.
        """
        header = await self.get_action(action_id)
        action_type = ActionType(header.action_type)
        self._ensure_lined(action_type)
        self._check_expected_status(header, expected_status)
        ActionStateMachine.ensure_editable(header.status)
        self._authorize(action_type, Capability.EDIT, actor_id)

        errors = []
        if submission.company_id != header.company_id:
            errors.append(LineError(None, "company_id", "cannot be changed on an existing action"))
        if submission.employee_id != header.employee_id:
            errors.append(LineError(None, "employee_id", "cannot be changed on an existing action"))
        if errors:
            raise ValidationError(errors)

        employee = await self._load_employee(header.employee_id, header.company_id)
        existing = await self.get_lines(action_id)
        calculated = await self._calculate_lines(
            action_type,
            header.company_id,
            employee,
            submission.lines,
            persisted_movement_ids={line.movement_id for line in existing},
        )

        derived = summarize_lines(calculated)
        before = header_snapshot(header, existing)
        after = header_snapshot(
            header, calculated, description=submission.description, **derived
        )
        line_diff = diff_codes(
            [line_signature(line) for line in existing],
            [line_signature(line) for line in calculated],
        )
        if line_diff.is_empty and not field_changes(before, after):
            logger.info("Update of personal action %s changed nothing", action_id)
            return header

        await self._conditional_update(
            header, actor_id, description=submission.description, **derived
        )
        for line in existing:
            await self.session.delete(line)
        await self.session.flush()
        for line in calculated:
            self.session.add(line.to_model(action_id))
        await self.session.flush()

        await self.audit.record(
            action_id=action_id,
            action_type=header.action_type,
            event=AuditEvent.UPDATED,
            summary=f"{get_config(action_type).label} #{action_id} updated",
            actor_user_id=actor_id,
            before=before,
            after=after,
            line_diff=line_diff,
            recipients=(header.created_by, actor_id),
        )
        logger.info("Replaced %d line(s) of personal action %s", len(calculated), action_id)
        return header

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def advance(
        self,
        action_id: int,
        actor_id: int | None,
        expected_status: int | None = None,
    ) -> ActionHeader:
        """Move a lined action one step along 1 → 2 → 3 → 4."""
        return await self._transition(action_id, TransitionName.ADVANCE, actor_id, expected_status)

    async def invalidate(
        self,
        action_id: int,
        actor_id: int | None,
        reason: str | None = None,
        expected_status: int | None = None,
    ) -> ActionHeader:
        """Invalidate a pending lined action; a blank reason gets a default text."""
        text = (reason or "").strip() or DEFAULT_INVALIDATION_REASON
        return await self._transition(
            action_id,
            TransitionName.INVALIDATE,
            actor_id,
            expected_status,
            invalidated_at=utc_now(),
            invalidated_reason=text,
            invalidated_reason_code=InvalidationReasonCode.MANUAL_INVALIDATION.value,
            invalidated_by_type=InvalidatedBy.USER.value,
            invalidated_by_user_id=actor_id,
            invalidated_meta={"user_id": actor_id},
        )

    async def approve(
        self,
        action_id: int,
        actor_id: int | None,
        expected_status: int | None = None,
    ) -> ActionHeader:
        """Approve a pending generic action."""
        return await self._transition(action_id, TransitionName.APPROVE, actor_id, expected_status)

    async def reject(
        self,
        action_id: int,
        actor_id: int | None,
        reason: str | None,
        expected_status: int | None = None,
    ) -> ActionHeader:
        """Reject a pending generic action; a reason is mandatory."""
        text = (reason or "").strip()
        if not text:
            raise ValidationError.single("reason", "a rejection reason is required")
        return await self._transition(
            action_id,
            TransitionName.REJECT,
            actor_id,
            expected_status,
            rejection_reason=text,
        )

    async def cancel(
        self,
        action_id: int,
        actor_id: int | None,
        reason: str | None = None,
        expected_status: int | None = None,
    ) -> ActionHeader:
        """Cancel a pending generic action."""
        return await self._transition(
            action_id,
            TransitionName.CANCEL,
            actor_id,
            expected_status,
            cancelled_at=utc_now(),
            cancel_reason=(reason or "").strip() or None,
        )

    async def expire(
        self,
        action_id: int,
        actor_id: int | None,
        reason: str | None = None,
        expected_status: int | None = None,
    ) -> ActionHeader:
        """Expire a pending action of either flow."""
        return await self._transition(
            action_id,
            TransitionName.EXPIRE,
            actor_id,
            expected_status,
            expired_at=utc_now(),
            expired_reason=(reason or "").strip() or DEFAULT_EXPIRY_REASON,
        )

    async def associate_to_payroll(
        self,
        action_id: int,
        payroll_run_id: int,
        actor_id: int | None,
        expected_status: int | None = None,
    ) -> ActionHeader:
        """Mark an approved action as consumed by a payroll run (4 → 5)."""
        header = await self.get_action(action_id)
        run = await self.catalog.get_payroll_run(payroll_run_id)
        if run.company_id != header.company_id:
            raise ValidationError.single(
                "payroll_run_id",
                f"payroll run {payroll_run_id} belongs to another company",
            )
        return await self._transition(
            action_id,
            TransitionName.CONSUME,
            actor_id,
            expected_status,
            payroll_run_id=payroll_run_id,
        )

    # ------------------------------------------------------------------
    # System sweeps
    # ------------------------------------------------------------------

    async def invalidate_for_employee_change(self, employee_id: int) -> list[int]:
        """Invalidate pending lined actions that no longer fit the employee.

        Used after termination, a company transfer or a salary currency
        change. Returns the ids of the invalidated actions.
        """
        employee = await self.catalog.get_employee(employee_id)
        result = await self.session.execute(
            select(ActionHeader)
            .where(
                ActionHeader.employee_id == employee_id,
                ActionHeader.status.in_([s.value for s in ActionStateMachine.PENDING_STATUSES]),
                ActionHeader.action_type != ActionType.GENERIC.value,
            )
            .order_by(ActionHeader.action_id)
        )
        invalidated = []
        for header in list(result.scalars()):
            code, reason = self._employee_mismatch(header, employee)
            if code is None:
                continue
            await self._transition(
                header.action_id,
                TransitionName.INVALIDATE,
                None,
                header.status,
                system=True,
                invalidated_at=utc_now(),
                invalidated_reason=reason,
                invalidated_reason_code=code.value,
                invalidated_by_type=InvalidatedBy.SYSTEM.value,
                invalidated_by_user_id=None,
                invalidated_meta={"employee_id": employee_id},
            )
            invalidated.append(header.action_id)
        return invalidated

    async def expire_stale_actions(self, company_id: int | None = None) -> list[int]:
        """Expire pending lined actions whose every payroll run has closed."""
        query = select(ActionHeader).where(
            ActionHeader.status.in_([s.value for s in ActionStateMachine.PENDING_STATUSES]),
            ActionHeader.action_type != ActionType.GENERIC.value,
        )
        if company_id is not None:
            query = query.where(ActionHeader.company_id == company_id)
        result = await self.session.execute(query.order_by(ActionHeader.action_id))

        as_of = self.today()
        expired = []
        for header in list(result.scalars()):
            lines = await self.get_lines(header.action_id)
            runs = await self.catalog.get_payroll_runs(line.payroll_run_id for line in lines)
            if not runs or not all(self._window_closed(run, as_of) for run in runs.values()):
                continue
            await self._transition(
                header.action_id,
                TransitionName.EXPIRE,
                None,
                header.status,
                system=True,
                expired_at=utc_now(),
                expired_reason=DEFAULT_EXPIRY_REASON,
            )
            expired.append(header.action_id)
        return expired

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _transition(
        self,
        action_id: int,
        name: TransitionName,
        actor_id: int | None,
        expected_status: int | None,
        system: bool = False,
        **values: Any,
    ) -> ActionHeader:
        header = await self.get_action(action_id)
        from_status = header.status
        try:
            self._check_expected_status(header, expected_status)
            rule = ActionStateMachine.resolve(name, header.action_type, from_status)
            if not system:
                ActionStateMachine.authorize(rule, header.action_type, actor_id, self.capabilities)
        except (ConflictError, ForbiddenError) as exc:
            logger.warning(
                "Rejected %s of personal action %s in status %s: %s",
                name.value,
                action_id,
                from_status,
                exc,
            )
            raise

        lines = await self.get_lines(action_id)
        before = header_snapshot(header, lines)
        if rule.to_status is ActionStatus.APPROVED:
            values.setdefault("approved_by", actor_id)
            values.setdefault("approved_at", utc_now())

        await self._conditional_update(header, actor_id, status=rule.to_status.value, **values)
        await self._after_transition(rule, header, lines)

        to_status = rule.to_status.value
        await self.audit.record(
            action_id=action_id,
            action_type=header.action_type,
            event=AuditEvent.STATUS_CHANGED,
            summary=(
                f"Status changed {from_status}→{to_status} "
                f"({status_label(from_status)} → {status_label(to_status)})"
            ),
            actor_user_id=actor_id,
            before=before,
            after=header_snapshot(header, lines),
            recipients=(header.created_by, actor_id),
        )
        logger.info(
            "Personal action %s moved %s→%s by %s",
            action_id,
            from_status,
            to_status,
            "system" if system else f"user {actor_id}",
        )
        return header

    async def _after_transition(
        self,
        rule: TransitionRule,
        header: ActionHeader,
        lines: list[ActionLine],
    ) -> None:
        if rule.to_status is ActionStatus.APPROVED:
            flagged = await self.catalog.flag_recalculation(
                {line.payroll_run_id for line in lines},
                [PayrollRunStatus.IN_PROCESS.value],
            )
            if flagged:
                logger.info(
                    "Flagged %d payroll run(s) for recalculation after approving action %s",
                    flagged,
                    header.action_id,
                )

    async def _conditional_update(
        self,
        header: ActionHeader,
        actor_id: int | None,
        **values: Any,
    ) -> None:
        """Write header changes only if status and version are still the ones read."""
        stmt = (
            update(ActionHeader)
            .where(
                ActionHeader.action_id == header.action_id,
                ActionHeader.status == header.status,
                ActionHeader.version_lock == header.version_lock,
            )
            .values(version_lock=header.version_lock + 1, modified_by=actor_id, **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            logger.warning("Stale write to personal action %s", header.action_id)
            raise StaleStateError(header.action_id, header.status)
        await self.session.refresh(header)

    def _check_expected_status(self, header: ActionHeader, expected_status: int | None) -> None:
        if expected_status is not None and header.status != expected_status:
            raise StaleStateError(header.action_id, expected_status)

    def _authorize(self, action_type: ActionType, capability: Capability, actor_id: int | None) -> None:
        code = capability_code(action_type, capability)
        if not self.capabilities.has_capability(actor_id, code):
            logger.warning("Actor %s lacks %s", actor_id, code)
            raise ForbiddenError(code)

    @staticmethod
    def _ensure_lined(action_type: ActionType) -> None:
        if not action_type.is_lined:
            raise ValidationError.single("action_type", "generic actions have no lines")

    def _new_group_id(self, action_type: ActionType) -> str:
        return f"{get_config(action_type).group_prefix}-{uuid4().hex[:12].upper()}"

    async def _load_employee(self, employee_id: int, company_id: int) -> CompensationSnapshot:
        employee = await self.catalog.get_employee(employee_id)
        errors = []
        if employee.company_id != company_id:
            errors.append(
                LineError(None, "employee_id", f"employee {employee_id} does not belong to company {company_id}")
            )
        if not employee.is_active:
            errors.append(LineError(None, "employee_id", f"employee {employee_id} is inactive"))
        if errors:
            raise ValidationError(errors)
        return employee

    @staticmethod
    def _quantity_error(quantity: Decimal | int | str | None) -> str | None:
        """Quantities must fit the line column exactly: Numeric(12, 4)."""
        if quantity is None:
            return "must be greater than 0"
        value = Decimal(str(quantity))
        if not value.is_finite() or value <= 0:
            return "must be greater than 0"
        if value >= MAX_QUANTITY:
            return f"must be less than {MAX_QUANTITY}"
        if value != value.quantize(QUANTITY_UNIT):
            return "must have at most 4 decimal places"
        return None

    def _header_currency(self, employee: CompensationSnapshot, requested: str | None) -> str:
        """Headers always carry the employee's salary currency."""
        currency = (employee.salary_currency or self.settings.default_currency).upper()
        if requested and requested.strip().upper() != currency:
            raise ValidationError.single(
                "currency", f"must match the employee salary currency {currency}"
            )
        return currency

    @staticmethod
    def _window_closed(run: PayrollRunEntry, as_of: date) -> bool:
        if run.status not in (PayrollRunStatus.OPEN, PayrollRunStatus.IN_PROCESS):
            return True
        return run.payment_end_date is not None and run.payment_end_date < as_of

    @staticmethod
    def _employee_mismatch(
        header: ActionHeader,
        employee: CompensationSnapshot,
    ) -> tuple[InvalidationReasonCode | None, str | None]:
        if employee.termination_date is not None and (
            header.effective_date is None or employee.termination_date <= header.effective_date
        ):
            return (
                InvalidationReasonCode.TERMINATION_EFFECTIVE,
                f"Employee terminated effective {employee.termination_date.isoformat()}",
            )
        if employee.company_id != header.company_id:
            return (
                InvalidationReasonCode.COMPANY_MISMATCH,
                f"Employee moved to company {employee.company_id}",
            )
        if (employee.salary_currency or "").upper() != (header.currency or "").upper():
            return (
                InvalidationReasonCode.CURRENCY_MISMATCH,
                f"Employee salary currency changed to {employee.salary_currency}",
            )
        return None, None

    async def _calculate_lines(
        self,
        action_type: ActionType,
        company_id: int,
        employee: CompensationSnapshot,
        submissions: list[LineSubmission],
        persisted_movement_ids: Iterable[int] = (),
    ) -> list[CalculatedLine]:
        """Validate a submitted line set and compute every line's amount."""
        config = get_config(action_type)
        errors: list[LineError] = []
        payloads: list[dict[str, Any]] = []

        if not submissions:
            errors.append(LineError(None, "lines", "at least one line is required"))
        for index, line in enumerate(submissions):
            quantity_error = self._quantity_error(line.quantity)
            if quantity_error:
                errors.append(LineError(index, "quantity", quantity_error))
            if line.movement_id is None:
                errors.append(LineError(index, "movement_id", "no movement selected"))
            if line.payroll_run_id is None:
                errors.append(LineError(index, "payroll_run_id", "no payroll run selected"))
            if line.amount is not None and Decimal(line.amount) < 0:
                errors.append(LineError(index, "amount", "must be greater than or equal to 0"))
            payload, payload_errors = config.parse_payload(dict(line.payload or {}), index)
            errors.extend(payload_errors)
            payloads.append(payload)
        if errors:
            raise ValidationError(errors)

        runs = await self.catalog.get_payroll_runs(line.payroll_run_id for line in submissions)
        movements = await self.catalog.get_movements(line.movement_id for line in submissions)
        for line in submissions:
            if line.payroll_run_id not in runs:
                raise NotFoundError("Payroll run", line.payroll_run_id)
            if line.movement_id not in movements:
                raise NotFoundError("Movement", line.movement_id)

        as_of = self.today()
        type_id = self.eligibility.personal_action_type_id(action_type)
        persisted_movement_ids = set(persisted_movement_ids)
        for index, line in enumerate(submissions):
            run = runs[line.payroll_run_id]
            reasons = payroll_run_ineligibility(run, company_id, employee, as_of)
            closed = [r.value for r in reasons if r.is_conflict]
            if closed:
                raise ConflictError(
                    f"line {index + 1}: payroll run {run.payroll_run_id} is no longer open "
                    f"({', '.join(closed)})",
                    code="PAYROLL_RUN_CLOSED",
                )
            for reason in reasons:
                errors.append(
                    LineError(index, "payroll_run_id", f"payroll run {run.payroll_run_id}: {reason.value}")
                )

            movement = movements[line.movement_id]
            if movement.personal_action_type_id != type_id:
                errors.append(
                    LineError(
                        index,
                        "movement_id",
                        f"movement {movement.movement_id} is not a {action_type.value} movement",
                    )
                )
            if movement.company_id != company_id:
                errors.append(
                    LineError(index, "movement_id", f"movement {movement.movement_id} belongs to another company")
                )
            if movement.is_inactive and movement.movement_id not in persisted_movement_ids:
                errors.append(
                    LineError(index, "movement_id", f"movement {movement.movement_id} is inactive")
                )
        if errors:
            raise ValidationError(errors)

        calculated = []
        for index, (line, payload) in enumerate(zip(submissions, payloads)):
            run = runs[line.payroll_run_id]
            quantity = Decimal(str(line.quantity)).quantize(QUANTITY_UNIT)
            result = self.calculator.calculate(
                movements[line.movement_id],
                LineInput(
                    quantity=quantity,
                    shift_hours=config.shift_hours(payload),
                    amount=line.amount,
                ),
                employee,
            )
            calculated.append(
                CalculatedLine(
                    line_order=index + 1,
                    payroll_run_id=run.payroll_run_id,
                    movement_id=line.movement_id,
                    quantity=quantity,
                    amount=result.amount,
                    is_compensated=(
                        config.default_compensated
                        if line.is_compensated is None
                        else bool(line.is_compensated)
                    ),
                    formula=result.formula,
                    effective_date=line.effective_date or run.period_end,
                    payload=payload,
                    path=result.path,
                )
            )
        return calculated
