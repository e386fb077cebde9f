"""Tests for the personal action service."""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from personal_actions.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    StaleStateError,
    ValidationError,
)
from personal_actions.models import (
    ActionHeader,
    ActionLine,
    AuditEntry,
    Employee,
    Notification,
    NotificationRecipient,
    PayrollRun,
)
from personal_actions.services.action_service import (
    DEFAULT_INVALIDATION_REASON,
    ActionService,
    ActionSubmission,
    LineSubmission,
)
from personal_actions.services.action_types import ActionType
from personal_actions.services.state_machine import ActionStatus
from tests.conftest import APPROVER, COMPANY_ID, EDITOR, HR_ADMIN, OUTSIDER

pytestmark = pytest.mark.asyncio


async def count(session, model) -> int:
    result = await session.execute(select(func.count()).select_from(model))
    return result.scalar()


def absence_line(run_id: int, movement_id: int, quantity: str = "3", **kwargs) -> LineSubmission:
    return LineSubmission(
        payroll_run_id=run_id,
        movement_id=movement_id,
        quantity=Decimal(quantity),
        payload=kwargs.pop("payload", {"absence_kind": "JUSTIFIED"}),
        **kwargs,
    )


def submission(catalog, *lines: LineSubmission, **kwargs) -> ActionSubmission:
    return ActionSubmission(
        company_id=kwargs.pop("company_id", COMPANY_ID),
        employee_id=kwargs.pop("employee_id", catalog.employee_id),
        lines=list(lines) or [absence_line(catalog.open_run_id, catalog.fixed_movement_id)],
        **kwargs,
    )


async def create_absence(service, catalog, actor=HR_ADMIN, **kwargs) -> ActionHeader:
    headers = await service.create_action(ActionType.ABSENCE, submission(catalog, **kwargs), actor)
    return headers[0]


async def advance_to(service, header, status: ActionStatus) -> ActionHeader:
    while header.status < status:
        header = await service.advance(header.action_id, HR_ADMIN)
    return header


class TestCreateAction:
    """Test creating lined actions."""

    async def test_create_calculates_lines(self, service, catalog, session):
        header = await create_absence(service, catalog, description="Medical appointment")

        assert header.status == ActionStatus.DRAFT
        assert header.aggregate_amount == Decimal("4500")
        assert header.currency == "CRC"
        assert header.effective_date == date(2026, 3, 31)
        assert header.group_id.startswith("ABS-")
        assert len(header.group_id) == len("ABS-") + 12

        lines = await service.get_lines(header.action_id)
        assert len(lines) == 1
        assert lines[0].amount == Decimal("4500")
        assert lines[0].formula == "Fixed: 1500 × 3"
        assert lines[0].line_order == 1
        assert lines[0].is_compensated is True
        assert lines[0].payload == {"absence_kind": "JUSTIFIED"}

    async def test_create_records_audit_and_notification(self, service, catalog, session):
        header = await create_absence(service, catalog)

        trail = await service.list_audit_trail(header.action_id)
        assert len(trail) == 1
        assert trail[0].event == "CREATED"
        assert "Absence created for employee" in trail[0].description
        assert trail[0].line_diff["removed"] == []
        assert len(trail[0].line_diff["added"]) == 1

        assert await count(session, Notification) == 1
        # Creator and actor are the same user
        assert await count(session, NotificationRecipient) == 1

    async def test_percentage_line_with_daily_rate(self, service, catalog):
        line = absence_line(catalog.open_run_id, catalog.percentage_movement_id, quantity="2")
        headers = await service.create_action(ActionType.ABSENCE, submission(catalog, line), HR_ADMIN)
        lines = await service.get_lines(headers[0].action_id)
        assert lines[0].amount == Decimal("2500")
        assert lines[0].formula == "(600000/30)/8 × 50% × 2"

    async def test_formula_persisted_unmasked_for_any_creator(self, service, catalog):
        line = absence_line(catalog.open_run_id, catalog.percentage_movement_id, quantity="2")
        headers = await service.create_action(ActionType.ABSENCE, submission(catalog, line), EDITOR)
        lines = await service.get_lines(headers[0].action_id)
        assert lines[0].formula == "(600000/30)/8 × 50% × 2"
        assert lines[0].amount == Decimal("2500")

    async def test_preview_masks_salary_without_sensitive_capability(self, service, catalog):
        line = absence_line(catalog.open_run_id, catalog.percentage_movement_id, quantity="2")

        masked = await service.preview_lines(
            ActionType.ABSENCE, COMPANY_ID, catalog.employee_id, [line], EDITOR
        )
        full = await service.preview_lines(
            ActionType.ABSENCE, COMPANY_ID, catalog.employee_id, [line], HR_ADMIN
        )

        assert masked[0].formula == "(***/30)/8 × 50% × 2"
        assert full[0].formula == "(600000/30)/8 × 50% × 2"
        assert masked[0].amount == full[0].amount == Decimal("2500")

    @pytest.mark.parametrize("quantity", ["0.00001", "1.00005", "100000000", "-1"])
    async def test_quantity_outside_line_precision_rejected(self, service, catalog, session, quantity):
        line = absence_line(catalog.open_run_id, catalog.fixed_movement_id, quantity=quantity)
        with pytest.raises(ValidationError) as exc_info:
            await service.create_action(ActionType.ABSENCE, submission(catalog, line), HR_ADMIN)

        error = exc_info.value.errors[0]
        assert (error.index, error.field) == (0, "quantity")
        assert await count(session, ActionHeader) == 0
        assert await count(session, AuditEntry) == 0

    async def test_four_decimal_quantity_kept_exactly(self, service, catalog):
        line = absence_line(catalog.open_run_id, catalog.fixed_movement_id, quantity="1.2345")
        headers = await service.create_action(ActionType.ABSENCE, submission(catalog, line), HR_ADMIN)
        lines = await service.get_lines(headers[0].action_id)
        assert lines[0].quantity == Decimal("1.2345")
        assert lines[0].formula == "Fixed: 1500 × 1.2345"
        assert lines[0].amount == Decimal("1852")

    async def test_submitted_currency_must_match_employee(self, service, catalog, session):
        with pytest.raises(ValidationError) as exc_info:
            await create_absence(service, catalog, currency="USD")
        assert exc_info.value.errors[0].field == "currency"
        assert "CRC" in exc_info.value.errors[0].message
        assert await count(session, ActionHeader) == 0

    async def test_matching_currency_is_normalised(self, service, catalog):
        header = await create_absence(service, catalog, currency=" crc ")
        assert header.currency == "CRC"

    async def test_overtime_shift_hours(self, service, catalog):
        line = LineSubmission(
            payroll_run_id=catalog.open_run_id,
            movement_id=catalog.overtime_movement_id,
            quantity=Decimal("2"),
            payload={"shift_type": "6"},
        )
        headers = await service.create_action(ActionType.OVERTIME, submission(catalog, line), HR_ADMIN)
        lines = await service.get_lines(headers[0].action_id)
        assert lines[0].amount == Decimal("10000")
        assert lines[0].formula == "(600000/30)/6 × 150% × 2"
        assert headers[0].group_id.startswith("OVT-")

    async def test_discount_defaults_to_not_compensated(self, service, catalog):
        line = LineSubmission(
            payroll_run_id=catalog.open_run_id,
            movement_id=catalog.discount_movement_id,
            quantity=Decimal("1"),
        )
        headers = await service.create_action(ActionType.DISCOUNT, submission(catalog, line), HR_ADMIN)
        detail = await service.get_action_detail(headers[0].action_id)
        assert detail.lines[0].is_compensated is False
        assert detail.lines[0].amount == Decimal("5000")
        assert detail.compensation_summary == "NONE"

    async def test_unconfigured_movement_keeps_submitted_amount(self, service, catalog):
        line = absence_line(catalog.open_run_id, catalog.unconfigured_movement_id, amount=Decimal("7500"))
        headers = await service.create_action(ActionType.ABSENCE, submission(catalog, line), HR_ADMIN)
        lines = await service.get_lines(headers[0].action_id)
        assert lines[0].amount == Decimal("7500")
        assert lines[0].formula == "No calculation configuration"

    async def test_split_by_payroll_run_shares_group(self, service, catalog):
        sub = submission(
            catalog,
            absence_line(catalog.open_run_id, catalog.fixed_movement_id, quantity="1"),
            absence_line(catalog.in_process_run_id, catalog.fixed_movement_id, quantity="2"),
            absence_line(catalog.open_run_id, catalog.percentage_movement_id, quantity="2"),
            split_by_payroll_run=True,
        )
        headers = await service.create_action(ActionType.ABSENCE, sub, HR_ADMIN)

        assert len(headers) == 2
        assert headers[0].group_id == headers[1].group_id
        first = await service.get_lines(headers[0].action_id)
        second = await service.get_lines(headers[1].action_id)
        assert [line.line_order for line in first] == [1, 2]
        assert [line.line_order for line in second] == [1]
        assert headers[0].aggregate_amount == Decimal("4000")
        assert headers[1].aggregate_amount == Decimal("3000")

    async def test_forbidden_without_create_capability(self, service, catalog, session):
        with pytest.raises(ForbiddenError) as exc_info:
            await create_absence(service, catalog, actor=OUTSIDER)
        assert exc_info.value.capability == "hr-action-absences:create"
        assert await count(session, ActionHeader) == 0

    async def test_per_line_validation_persists_nothing(self, service, catalog, session):
        sub = submission(
            catalog,
            absence_line(catalog.open_run_id, catalog.fixed_movement_id),
            LineSubmission(
                payroll_run_id=None,
                movement_id=None,
                quantity=Decimal("0"),
                payload={"absence_kind": "SOMETIMES"},
            ),
        )
        with pytest.raises(ValidationError) as exc_info:
            await service.create_action(ActionType.ABSENCE, sub, HR_ADMIN)

        fields = {(e.index, e.field) for e in exc_info.value.errors}
        assert fields == {
            (1, "quantity"),
            (1, "movement_id"),
            (1, "payroll_run_id"),
            (1, "absence_kind"),
        }
        assert await count(session, ActionHeader) == 0
        assert await count(session, ActionLine) == 0
        assert await count(session, AuditEntry) == 0

    async def test_empty_line_set_rejected(self, service, catalog):
        sub = ActionSubmission(company_id=COMPANY_ID, employee_id=catalog.employee_id, lines=[])
        with pytest.raises(ValidationError):
            await service.create_action(ActionType.ABSENCE, sub, HR_ADMIN)

    async def test_closed_payroll_run_is_conflict(self, service, catalog, session):
        line = absence_line(catalog.applied_run_id, catalog.fixed_movement_id)
        with pytest.raises(ConflictError) as exc_info:
            await service.create_action(ActionType.ABSENCE, submission(catalog, line), HR_ADMIN)
        assert exc_info.value.code == "PAYROLL_RUN_CLOSED"
        assert await count(session, ActionHeader) == 0

    async def test_currency_mismatch_is_validation_error(self, service, catalog):
        line = absence_line(catalog.usd_run_id, catalog.fixed_movement_id)
        with pytest.raises(ValidationError) as exc_info:
            await service.create_action(ActionType.ABSENCE, submission(catalog, line), HR_ADMIN)
        assert "CURRENCY_MISMATCH" in exc_info.value.message

    async def test_unknown_movement_is_not_found(self, service, catalog):
        line = absence_line(catalog.open_run_id, 9999)
        with pytest.raises(NotFoundError):
            await service.create_action(ActionType.ABSENCE, submission(catalog, line), HR_ADMIN)

    async def test_movement_of_other_type_rejected(self, service, catalog):
        line = absence_line(catalog.open_run_id, catalog.overtime_movement_id)
        with pytest.raises(ValidationError) as exc_info:
            await service.create_action(ActionType.ABSENCE, submission(catalog, line), HR_ADMIN)
        assert exc_info.value.errors[0].field == "movement_id"

    async def test_inactive_movement_rejected_for_new_lines(self, service, catalog):
        line = absence_line(catalog.open_run_id, catalog.inactive_movement_id)
        with pytest.raises(ValidationError):
            await service.create_action(ActionType.ABSENCE, submission(catalog, line), HR_ADMIN)

    async def test_employee_of_other_company_rejected(self, service, catalog):
        with pytest.raises(ValidationError):
            await create_absence(service, catalog, company_id=2)

    async def test_generic_type_has_no_lines(self, service, catalog):
        with pytest.raises(ValidationError):
            await service.create_action(ActionType.GENERIC, submission(catalog), HR_ADMIN)


class TestUpdateAction:
    """Test replacing the line set of an action."""

    async def test_identical_resubmission_writes_nothing(self, service, catalog, session):
        header = await create_absence(service, catalog, description="Doctor")
        version = header.version_lock
        audits = await count(session, AuditEntry)
        notifications = await count(session, Notification)

        await service.update_action(
            header.action_id, submission(catalog, description="Doctor"), HR_ADMIN
        )

        assert header.version_lock == version
        assert await count(session, AuditEntry) == audits
        assert await count(session, Notification) == notifications

    async def test_fractional_resubmission_writes_nothing(self, service, catalog, session):
        line = absence_line(catalog.open_run_id, catalog.percentage_movement_id, quantity="1.0005")
        header = (
            await service.create_action(ActionType.ABSENCE, submission(catalog, line), HR_ADMIN)
        )[0]
        audits = await count(session, AuditEntry)
        notifications = await count(session, Notification)

        await service.update_action(header.action_id, submission(catalog, line), HR_ADMIN)

        assert header.version_lock == 0
        assert await count(session, AuditEntry) == audits
        assert await count(session, Notification) == notifications

    async def test_changed_lines_are_replaced_and_audited(self, service, catalog, session):
        header = await create_absence(service, catalog)
        new_lines = submission(
            catalog,
            absence_line(catalog.open_run_id, catalog.fixed_movement_id, quantity="1"),
            absence_line(catalog.open_run_id, catalog.percentage_movement_id, quantity="2"),
        )

        updated = await service.update_action(header.action_id, new_lines, EDITOR)

        assert updated.aggregate_amount == Decimal("4000")
        assert updated.version_lock == 1
        assert updated.modified_by == EDITOR
        lines = await service.get_lines(header.action_id)
        assert [line.amount for line in lines] == [Decimal("1500"), Decimal("2500")]

        trail = await service.list_audit_trail(header.action_id)
        assert trail[0].event == "UPDATED"
        assert len(trail[0].line_diff["added"]) == 2
        assert len(trail[0].line_diff["removed"]) == 1
        assert "aggregate_amount" in {c["field"] for c in trail[0].changes}
        # Creator and editor are both notified
        latest = (
            await session.execute(select(Notification).order_by(Notification.notification_id.desc()))
        ).scalars().first()
        recipients = (
            await session.execute(
                select(NotificationRecipient.user_id).where(
                    NotificationRecipient.notification_id == latest.notification_id
                )
            )
        ).scalars().all()
        assert sorted(recipients) == [HR_ADMIN, EDITOR]

    async def test_stale_expected_status(self, service, catalog):
        header = await create_absence(service, catalog)
        with pytest.raises(StaleStateError):
            await service.update_action(header.action_id, submission(catalog), HR_ADMIN, expected_status=2)

    async def test_terminal_action_not_editable(self, service, catalog):
        header = await create_absence(service, catalog)
        await service.invalidate(header.action_id, HR_ADMIN)
        with pytest.raises(ConflictError):
            await service.update_action(header.action_id, submission(catalog), HR_ADMIN)

    async def test_employee_cannot_change(self, service, catalog):
        header = await create_absence(service, catalog)
        with pytest.raises(ValidationError) as exc_info:
            await service.update_action(
                header.action_id,
                submission(catalog, employee_id=catalog.hourly_employee_id),
                HR_ADMIN,
            )
        assert exc_info.value.errors[0].field == "employee_id"

    async def test_approver_cannot_edit(self, service, catalog):
        header = await create_absence(service, catalog)
        with pytest.raises(ForbiddenError):
            await service.update_action(header.action_id, submission(catalog), APPROVER)


class TestLinedFlow:
    """Test advance and invalidate."""

    async def test_advance_records_status_change(self, service, catalog):
        header = await create_absence(service, catalog)
        header = await service.advance(header.action_id, EDITOR)
        assert header.status == ActionStatus.PENDING_SUPERVISOR

        header = await service.advance(header.action_id, APPROVER)
        assert header.status == ActionStatus.PENDING_HR

        trail = await service.list_audit_trail(header.action_id)
        assert trail[0].event == "STATUS_CHANGED"
        assert "2→3" in trail[0].description
        assert trail[0].line_diff is None
        assert {"field": "status", "before": "2", "after": "3"} in trail[0].changes

    async def test_editor_cannot_approve(self, service, catalog):
        header = await create_absence(service, catalog)
        await service.advance(header.action_id, EDITOR)
        with pytest.raises(ForbiddenError):
            await service.advance(header.action_id, EDITOR)

    async def test_approval_sets_approver(self, service, catalog):
        header = await create_absence(service, catalog)
        header = await advance_to(service, header, ActionStatus.APPROVED)
        assert header.status == ActionStatus.APPROVED
        assert header.approved_by == HR_ADMIN
        assert header.approved_at is not None

    async def test_approved_cannot_advance(self, service, catalog):
        header = await create_absence(service, catalog)
        header = await advance_to(service, header, ActionStatus.APPROVED)
        with pytest.raises(InvalidTransitionError):
            await service.advance(header.action_id, HR_ADMIN)

    async def test_invalidate_with_default_reason(self, service, catalog):
        header = await create_absence(service, catalog)
        header = await service.invalidate(header.action_id, HR_ADMIN, reason="  ")
        assert header.status == ActionStatus.INVALIDATED
        assert header.invalidated_reason == DEFAULT_INVALIDATION_REASON
        assert header.invalidated_reason_code == "MANUAL_INVALIDATION"
        assert header.invalidated_by_type == "USER"
        assert header.invalidated_by_user_id == HR_ADMIN

    async def test_invalidate_twice_is_conflict(self, service, catalog, session):
        header = await create_absence(service, catalog)
        await service.invalidate(header.action_id, HR_ADMIN, reason="Duplicate")
        audits = await count(session, AuditEntry)

        with pytest.raises(ConflictError):
            await service.invalidate(header.action_id, HR_ADMIN)
        assert await count(session, AuditEntry) == audits

    async def test_consumed_cannot_be_invalidated(self, service, catalog):
        header = await create_absence(service, catalog)
        header = await advance_to(service, header, ActionStatus.APPROVED)
        header = await service.associate_to_payroll(header.action_id, catalog.open_run_id, HR_ADMIN)
        assert header.status == ActionStatus.CONSUMED
        assert header.payroll_run_id == catalog.open_run_id

        with pytest.raises(ConflictError):
            await service.invalidate(header.action_id, HR_ADMIN)

    async def test_invalidate_requires_cancel_capability(self, service, catalog):
        header = await create_absence(service, catalog)
        with pytest.raises(ForbiddenError):
            await service.invalidate(header.action_id, APPROVER)

    async def test_approve_is_generic_only(self, service, catalog):
        header = await create_absence(service, catalog)
        with pytest.raises(InvalidTransitionError):
            await service.approve(header.action_id, HR_ADMIN)

    async def test_approval_flags_in_process_runs(self, service, catalog, session):
        line = absence_line(catalog.in_process_run_id, catalog.fixed_movement_id)
        headers = await service.create_action(ActionType.ABSENCE, submission(catalog, line), HR_ADMIN)
        await advance_to(service, headers[0], ActionStatus.APPROVED)

        run = await session.get(PayrollRun, catalog.in_process_run_id)
        assert run.requires_recalculation is True
        open_run = await session.get(PayrollRun, catalog.open_run_id)
        assert open_run.requires_recalculation is False


class TestGenericFlow:
    """Test approve, reject and cancel on generic actions."""

    async def test_create_generic(self, service, catalog):
        header = await service.create_generic_action(
            COMPANY_ID, catalog.employee_id, HR_ADMIN, description="Salary review", amount="₡25,000"
        )
        assert header.action_type == "generic"
        assert header.aggregate_amount == Decimal("25000")
        assert header.group_id.startswith("ACT-")
        assert header.status == ActionStatus.DRAFT

    async def test_approve(self, service, catalog):
        header = await service.create_generic_action(COMPANY_ID, catalog.employee_id, HR_ADMIN)
        header = await service.approve(header.action_id, HR_ADMIN)
        assert header.status == ActionStatus.APPROVED
        assert header.approved_by == HR_ADMIN

    async def test_reject_requires_reason(self, service, catalog, session):
        header = await service.create_generic_action(COMPANY_ID, catalog.employee_id, HR_ADMIN)
        with pytest.raises(ValidationError):
            await service.reject(header.action_id, HR_ADMIN, reason=" ")
        assert header.status == ActionStatus.DRAFT

        header = await service.reject(header.action_id, HR_ADMIN, reason="Not applicable")
        assert header.status == ActionStatus.REJECTED
        assert header.rejection_reason == "Not applicable"

    async def test_cancel_then_approve_is_conflict(self, service, catalog):
        header = await service.create_generic_action(COMPANY_ID, catalog.employee_id, HR_ADMIN)
        header = await service.cancel(header.action_id, HR_ADMIN, reason="Entered twice")
        assert header.status == ActionStatus.CANCELLED
        assert header.cancel_reason == "Entered twice"
        with pytest.raises(ConflictError):
            await service.approve(header.action_id, HR_ADMIN)

    async def test_advance_is_lined_only(self, service, catalog):
        header = await service.create_generic_action(COMPANY_ID, catalog.employee_id, HR_ADMIN)
        with pytest.raises(InvalidTransitionError):
            await service.advance(header.action_id, HR_ADMIN)

    async def test_expire(self, service, catalog):
        header = await service.create_generic_action(COMPANY_ID, catalog.employee_id, HR_ADMIN)
        header = await service.expire(header.action_id, HR_ADMIN)
        assert header.status == ActionStatus.EXPIRED
        assert header.expired_reason

    async def test_consume_from_other_company_rejected(self, service, catalog, session):
        other_run = PayrollRun(
            company_id=2,
            name="Other",
            pay_period_id=10,
            currency="CRC",
            period_start=date(2026, 3, 1),
            period_end=date(2026, 3, 31),
            status=1,
        )
        session.add(other_run)
        await session.flush()
        header = await service.create_generic_action(COMPANY_ID, catalog.employee_id, HR_ADMIN)
        header = await service.approve(header.action_id, HR_ADMIN)
        with pytest.raises(ValidationError):
            await service.associate_to_payroll(header.action_id, other_run.payroll_run_id, HR_ADMIN)


class TestReads:
    """Test list and audit trail reads."""

    async def test_audit_trail_most_recent_first(self, service, catalog):
        header = await create_absence(service, catalog)
        await service.advance(header.action_id, HR_ADMIN)
        await service.advance(header.action_id, HR_ADMIN)

        trail = await service.list_audit_trail(header.action_id)
        assert [entry.event for entry in trail] == ["STATUS_CHANGED", "STATUS_CHANGED", "CREATED"]
        assert "2→3" in trail[0].description

        limited = await service.list_audit_trail(header.action_id, limit=1, offset=1)
        assert len(limited) == 1
        assert "1→2" in limited[0].description

    async def test_audit_limit_clamped(self, service):
        assert service.clamp_audit_limit(None) == 200
        assert service.clamp_audit_limit(0) == 1
        assert service.clamp_audit_limit(10_000) == 500

    async def test_audit_trail_unknown_action(self, service):
        with pytest.raises(NotFoundError):
            await service.list_audit_trail(12345)

    async def test_list_actions_filters(self, service, catalog):
        first = await create_absence(service, catalog)
        await create_absence(service, catalog)
        await service.invalidate(first.action_id, HR_ADMIN)

        items, total = await service.list_actions(company_id=COMPANY_ID)
        assert total == 2
        assert items[0].action_id > items[1].action_id

        items, total = await service.list_actions(status=ActionStatus.INVALIDATED)
        assert total == 1
        assert items[0].action_id == first.action_id

    async def test_eligibility_keeps_selected_runs(self, service, catalog):
        header = await create_absence(service, catalog)
        context = await service.resolve_eligibility(
            ActionType.ABSENCE, COMPANY_ID, catalog.employee_id, action_id=header.action_id
        )
        eligible_runs = [run.payroll_run_id for run in context.result.eligible_payroll_runs]
        assert eligible_runs == [catalog.open_run_id, catalog.in_process_run_id]
        movement_ids = [m.movement_id for m in context.result.eligible_movements]
        assert catalog.inactive_movement_id not in movement_ids
        assert catalog.overtime_movement_id not in movement_ids
        assert context.compensation.hour_value == Decimal("2500.00")

    async def test_preview_persists_nothing(self, service, catalog, session):
        lines = await service.preview_lines(
            ActionType.ABSENCE,
            COMPANY_ID,
            catalog.employee_id,
            [absence_line(catalog.open_run_id, catalog.fixed_movement_id)],
            HR_ADMIN,
        )
        assert lines[0].amount == Decimal("4500")
        assert await count(session, ActionHeader) == 0


class TestSystemSweeps:
    """Test invalidation and expiry run by the system."""

    async def test_termination_invalidates_pending_actions(self, service, catalog, session):
        header = await create_absence(service, catalog)
        employee = await session.get(Employee, catalog.employee_id)
        employee.termination_date = date(2026, 3, 15)
        await session.flush()

        invalidated = await service.invalidate_for_employee_change(catalog.employee_id)

        assert invalidated == [header.action_id]
        assert header.status == ActionStatus.INVALIDATED
        assert header.invalidated_reason_code == "TERMINATION_EFFECTIVE"
        assert header.invalidated_by_type == "SYSTEM"
        assert header.invalidated_by_user_id is None

    async def test_unchanged_employee_keeps_actions(self, service, catalog):
        await create_absence(service, catalog)
        assert await service.invalidate_for_employee_change(catalog.employee_id) == []

    async def test_matching_header_currency_keeps_actions(self, service, catalog):
        header = await create_absence(service, catalog, currency="CRC")
        assert await service.invalidate_for_employee_change(catalog.employee_id) == []
        assert header.status == ActionStatus.DRAFT

    async def test_salary_currency_change_invalidates(self, service, catalog, session):
        header = await create_absence(service, catalog)
        employee = await session.get(Employee, catalog.employee_id)
        employee.salary_currency = "USD"
        await session.flush()

        assert await service.invalidate_for_employee_change(catalog.employee_id) == [header.action_id]
        assert header.status == ActionStatus.INVALIDATED

    async def test_expire_when_payment_window_closed(self, service, capabilities, catalog, session):
        stale = await create_absence(service, catalog)
        line = absence_line(catalog.in_process_run_id, catalog.fixed_movement_id)
        fresh = (
            await service.create_action(ActionType.ABSENCE, submission(catalog, line), HR_ADMIN)
        )[0]

        later = ActionService(session, capabilities, today=lambda: date(2026, 4, 10))
        expired = await later.expire_stale_actions(COMPANY_ID)

        assert expired == [stale.action_id]
        assert stale.status == ActionStatus.EXPIRED
        assert fresh.status == ActionStatus.DRAFT
