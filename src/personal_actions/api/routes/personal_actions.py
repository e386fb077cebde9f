"""Personal action API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Query, status

from personal_actions.api.dependencies import ActorId, Capabilities, DbSession, Service
from personal_actions.api.schemas import (
    ActionCreate,
    ActionCreatedResponse,
    ActionDetailResponse,
    ActionListResponse,
    ActionResponse,
    ActionUpdate,
    AssociatePayrollRequest,
    AuditTrailEntryResponse,
    AuditTrailResponse,
    CalculatedLineResponse,
    CalculationPreviewRequest,
    CalculationPreviewResponse,
    EligibilityResponse,
    ErrorResponse,
    GenericActionCreate,
    LineItemResponse,
    MovementOptionResponse,
    PayrollRunOptionResponse,
    ReasonRequest,
    TransitionRequest,
)
from personal_actions.calculators import mask_formula
from personal_actions.services.action_service import ActionDetail
from personal_actions.services.action_types import ActionType
from personal_actions.services.capabilities import SENSITIVE_SALARY_CAPABILITY

router = APIRouter(prefix="/personal-actions", tags=["personal-actions"])

ERROR_RESPONSES = {
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}


def _detail_response(detail: ActionDetail, sensitive: bool) -> ActionDetailResponse:
    header = ActionResponse.model_validate(detail.header).model_dump()
    lines = [LineItemResponse.model_validate(line) for line in detail.lines]
    if not sensitive:
        lines = [line.model_copy(update={"formula": mask_formula(line.formula)}) for line in lines]
    return ActionDetailResponse(
        **header,
        lines=lines,
        compensation_summary=detail.compensation_summary,
    )


# ============================================================================
# Reads
# ============================================================================


@router.get("", response_model=ActionListResponse)
async def list_personal_actions(
    service: Service,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 20,
    company_id: int | None = None,
    employee_id: int | None = None,
    status_filter: Annotated[int | None, Query(alias="status", ge=1, le=9)] = None,
    action_type: ActionType | None = None,
) -> ActionListResponse:
    """List personal actions with optional filters."""
    items, total = await service.list_actions(
        company_id=company_id,
        employee_id=employee_id,
        status=status_filter,
        action_type=action_type,
        page=page,
        page_size=page_size,
    )
    return ActionListResponse(
        items=[ActionResponse.model_validate(h) for h in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{action_id}", response_model=ActionDetailResponse, responses=ERROR_RESPONSES)
async def get_personal_action(
    action_id: int, service: Service, actor_id: ActorId
) -> ActionDetailResponse:
    """Get a personal action with its computed lines."""
    detail = await service.get_action_detail(action_id)
    return _detail_response(detail, service.can_view_salary(actor_id))


@router.get(
    "/{action_id}/audit-trail",
    response_model=AuditTrailResponse,
    responses=ERROR_RESPONSES,
)
async def get_audit_trail(
    action_id: int,
    service: Service,
    limit: Annotated[int | None, Query(ge=1)] = None,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> AuditTrailResponse:
    """Audit trail of an action, most recent first."""
    entries = await service.list_audit_trail(action_id, limit=limit, offset=offset)
    return AuditTrailResponse(
        items=[AuditTrailEntryResponse.model_validate(e) for e in entries],
        limit=service.clamp_audit_limit(limit),
        offset=offset,
    )


@router.get(
    "/types/{action_type}/eligibility",
    response_model=EligibilityResponse,
    responses=ERROR_RESPONSES,
)
async def get_eligibility(
    action_type: ActionType,
    service: Service,
    capabilities: Capabilities,
    actor_id: ActorId,
    company_id: int,
    employee_id: int,
    action_id: int | None = None,
    selected_payroll_run_ids: Annotated[list[int] | None, Query()] = None,
    selected_movement_ids: Annotated[list[int] | None, Query()] = None,
) -> EligibilityResponse:
    """Payroll runs and movements a line of this type may reference."""
    context = await service.resolve_eligibility(
        action_type,
        company_id,
        employee_id,
        selected_payroll_run_ids=selected_payroll_run_ids or (),
        selected_movement_ids=selected_movement_ids or (),
        action_id=action_id,
    )
    sensitive = capabilities.has_capability(actor_id, SENSITIVE_SALARY_CAPABILITY)
    result = context.result
    return EligibilityResponse(
        employee_id=context.employee.employee_id,
        personal_action_type_id=result.personal_action_type_id,
        pay_period_id=context.employee.pay_period_id,
        period_salary=context.compensation.period_salary if sensitive else None,
        period_hours=context.compensation.period_hours,
        hour_value=context.compensation.hour_value if sensitive else None,
        payroll_runs=[
            PayrollRunOptionResponse(
                payroll_run_id=o.run.payroll_run_id,
                name=o.run.name,
                status=o.run.status,
                currency=o.run.currency,
                period_start=o.run.period_start,
                period_end=o.run.period_end,
                payment_end_date=o.run.payment_end_date,
                eligible=o.eligible,
                previously_selected=o.previously_selected,
                flagged=o.flagged,
                reasons=[r.value for r in o.reasons],
            )
            for o in result.payroll_runs
        ],
        movements=[
            MovementOptionResponse(
                movement_id=o.movement.movement_id,
                name=o.movement.name,
                is_fixed_amount=o.movement.is_fixed_amount,
                fixed_amount=o.movement.fixed_amount,
                percentage=o.movement.percentage,
                is_inactive=o.movement.is_inactive,
                selectable=o.selectable,
                previously_selected=o.previously_selected,
                flagged=o.flagged,
            )
            for o in result.movements
        ],
        no_eligible_payroll_runs=result.no_eligible_payroll_runs,
        no_eligible_movements=result.no_eligible_movements,
    )


@router.post(
    "/types/{action_type}/calculate",
    response_model=CalculationPreviewResponse,
    responses=ERROR_RESPONSES,
)
async def preview_calculation(
    action_type: ActionType,
    payload: CalculationPreviewRequest,
    service: Service,
    actor_id: ActorId,
) -> CalculationPreviewResponse:
    """Calculate line amounts without saving them."""
    lines = await service.preview_lines(
        action_type,
        payload.company_id,
        payload.employee_id,
        [line.to_submission() for line in payload.lines],
        actor_id,
    )
    return CalculationPreviewResponse(
        lines=[
            CalculatedLineResponse(
                line_order=line.line_order,
                payroll_run_id=line.payroll_run_id,
                movement_id=line.movement_id,
                quantity=line.quantity,
                amount=line.amount,
                is_compensated=line.is_compensated,
                formula=line.formula,
                effective_date=line.effective_date,
                payload=line.payload,
                path=line.path.value,
            )
            for line in lines
        ],
        total=sum((line.amount for line in lines), 0),
    )


# ============================================================================
# Create / update
# ============================================================================


@router.post(
    "/types/{action_type}",
    response_model=ActionCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def create_personal_action(
    action_type: ActionType,
    payload: ActionCreate,
    db: DbSession,
    service: Service,
    actor_id: ActorId,
) -> ActionCreatedResponse:
    """Create a lined action in Draft, fanning out per payroll run on request."""
    headers = await service.create_action(action_type, payload.to_submission(), actor_id)
    await db.commit()
    return ActionCreatedResponse(
        group_id=headers[0].group_id if headers else None,
        items=[ActionResponse.model_validate(h) for h in headers],
    )


@router.post(
    "",
    response_model=ActionResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def create_generic_action(
    payload: GenericActionCreate,
    db: DbSession,
    service: Service,
    actor_id: ActorId,
) -> ActionResponse:
    """Create a generic action in Draft."""
    header = await service.create_generic_action(
        payload.company_id,
        payload.employee_id,
        actor_id,
        description=payload.description,
        amount=payload.amount,
        effective_date=payload.effective_date,
        currency=payload.currency,
    )
    await db.commit()
    return ActionResponse.model_validate(header)


@router.put(
    "/{action_id}/lines",
    response_model=ActionDetailResponse,
    responses=ERROR_RESPONSES,
)
async def update_personal_action(
    action_id: int,
    payload: ActionUpdate,
    db: DbSession,
    service: Service,
    actor_id: ActorId,
) -> ActionDetailResponse:
    """Replace the fields and the whole line set of a pending action."""
    await service.update_action(
        action_id,
        payload.to_submission(),
        actor_id,
        expected_status=payload.expected_status,
    )
    await db.commit()
    detail = await service.get_action_detail(action_id)
    return _detail_response(detail, service.can_view_salary(actor_id))


# ============================================================================
# Transitions
# ============================================================================


@router.post("/{action_id}/advance", response_model=ActionResponse, responses=ERROR_RESPONSES)
async def advance_personal_action(
    action_id: int,
    db: DbSession,
    service: Service,
    actor_id: ActorId,
    payload: TransitionRequest | None = None,
) -> ActionResponse:
    """Advance a lined action one approval step."""
    payload = payload or TransitionRequest()
    header = await service.advance(action_id, actor_id, payload.expected_status)
    await db.commit()
    return ActionResponse.model_validate(header)


@router.post("/{action_id}/invalidate", response_model=ActionResponse, responses=ERROR_RESPONSES)
async def invalidate_personal_action(
    action_id: int,
    db: DbSession,
    service: Service,
    actor_id: ActorId,
    payload: ReasonRequest | None = None,
) -> ActionResponse:
    """Invalidate a pending lined action."""
    payload = payload or ReasonRequest()
    header = await service.invalidate(action_id, actor_id, payload.reason, payload.expected_status)
    await db.commit()
    return ActionResponse.model_validate(header)


@router.post("/{action_id}/approve", response_model=ActionResponse, responses=ERROR_RESPONSES)
async def approve_personal_action(
    action_id: int,
    db: DbSession,
    service: Service,
    actor_id: ActorId,
    payload: TransitionRequest | None = None,
) -> ActionResponse:
    """Approve a pending generic action."""
    payload = payload or TransitionRequest()
    header = await service.approve(action_id, actor_id, payload.expected_status)
    await db.commit()
    return ActionResponse.model_validate(header)


@router.post("/{action_id}/reject", response_model=ActionResponse, responses=ERROR_RESPONSES)
async def reject_personal_action(
    action_id: int,
    payload: ReasonRequest,
    db: DbSession,
    service: Service,
    actor_id: ActorId,
) -> ActionResponse:
    """Reject a pending generic action with a reason."""
    header = await service.reject(action_id, actor_id, payload.reason, payload.expected_status)
    await db.commit()
    return ActionResponse.model_validate(header)


@router.post("/{action_id}/cancel", response_model=ActionResponse, responses=ERROR_RESPONSES)
async def cancel_personal_action(
    action_id: int,
    db: DbSession,
    service: Service,
    actor_id: ActorId,
    payload: ReasonRequest | None = None,
) -> ActionResponse:
    """Cancel a pending generic action."""
    payload = payload or ReasonRequest()
    header = await service.cancel(action_id, actor_id, payload.reason, payload.expected_status)
    await db.commit()
    return ActionResponse.model_validate(header)


@router.post("/{action_id}/expire", response_model=ActionResponse, responses=ERROR_RESPONSES)
async def expire_personal_action(
    action_id: int,
    db: DbSession,
    service: Service,
    actor_id: ActorId,
    payload: ReasonRequest | None = None,
) -> ActionResponse:
    """Expire a pending action."""
    payload = payload or ReasonRequest()
    header = await service.expire(action_id, actor_id, payload.reason, payload.expected_status)
    await db.commit()
    return ActionResponse.model_validate(header)


@router.post(
    "/{action_id}/associate-to-payroll",
    response_model=ActionResponse,
    responses=ERROR_RESPONSES,
)
async def associate_to_payroll(
    action_id: int,
    payload: AssociatePayrollRequest,
    db: DbSession,
    service: Service,
    actor_id: ActorId,
) -> ActionResponse:
    """Mark an approved action as consumed by a payroll run."""
    header = await service.associate_to_payroll(
        action_id, payload.payroll_run_id, actor_id, payload.expected_status
    )
    await db.commit()
    return ActionResponse.model_validate(header)
