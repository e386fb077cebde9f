"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field

from personal_actions.services.action_service import (
    ActionSubmission,
    LineSubmission,
    Origin,
)
from personal_actions.services.state_machine import status_label


# ============================================================================
# Requests
# ============================================================================


class LineItemIn(BaseModel):
    """One submitted line; validation happens in the service."""

    payroll_run_id: int | None = None
    movement_id: int | None = None
    quantity: Decimal | None = None
    is_compensated: bool | None = None
    effective_date: date | None = None
    amount: Decimal | None = None
    payload: dict[str, Any] = Field(default_factory=dict)

    def to_submission(self) -> LineSubmission:
        return LineSubmission(
            payroll_run_id=self.payroll_run_id,
            movement_id=self.movement_id,
            quantity=self.quantity,
            is_compensated=self.is_compensated,
            effective_date=self.effective_date,
            amount=self.amount,
            payload=dict(self.payload),
        )


class ActionCreate(BaseModel):
    """Schema for creating a lined personal action."""

    company_id: int
    employee_id: int
    description: str | None = None
    currency: str | None = None
    origin: Origin = Origin.RRHH
    split_by_payroll_run: bool = False
    lines: list[LineItemIn] = Field(default_factory=list)

    def to_submission(self) -> ActionSubmission:
        return ActionSubmission(
            company_id=self.company_id,
            employee_id=self.employee_id,
            lines=[line.to_submission() for line in self.lines],
            description=self.description,
            currency=self.currency,
            origin=self.origin,
            split_by_payroll_run=self.split_by_payroll_run,
        )


class ActionUpdate(BaseModel):
    """Schema for replacing a lined action's fields and line set."""

    company_id: int
    employee_id: int
    description: str | None = None
    expected_status: int | None = None
    lines: list[LineItemIn] = Field(default_factory=list)

    def to_submission(self) -> ActionSubmission:
        return ActionSubmission(
            company_id=self.company_id,
            employee_id=self.employee_id,
            lines=[line.to_submission() for line in self.lines],
            description=self.description,
        )


class GenericActionCreate(BaseModel):
    """Schema for creating a generic (line-less) action."""

    company_id: int
    employee_id: int
    description: str | None = None
    amount: Decimal | None = None
    effective_date: date | None = None
    currency: str | None = None


class TransitionRequest(BaseModel):
    """Optional optimistic precondition on the current status."""

    expected_status: int | None = None


class ReasonRequest(TransitionRequest):
    reason: str | None = None


class AssociatePayrollRequest(TransitionRequest):
    payroll_run_id: int


class CalculationPreviewRequest(BaseModel):
    company_id: int
    employee_id: int
    lines: list[LineItemIn] = Field(default_factory=list)


# ============================================================================
# Responses
# ============================================================================


class LineItemResponse(BaseModel):
    """Schema for a persisted line."""

    model_config = ConfigDict(from_attributes=True)

    line_id: int
    action_id: int
    payroll_run_id: int
    movement_id: int
    quantity: Decimal
    amount: Decimal
    is_compensated: bool
    formula: str
    line_order: int
    effective_date: date | None = None
    payload: dict[str, Any] = Field(default_factory=dict)


class ActionResponse(BaseModel):
    """Schema for a personal action header."""

    model_config = ConfigDict(from_attributes=True)

    action_id: int
    company_id: int
    employee_id: int
    action_type: str
    status: int
    group_id: str | None = None
    origin: str
    description: str | None = None
    effective_date: date | None = None
    start_date: date | None = None
    end_date: date | None = None
    aggregate_amount: Decimal
    currency: str
    payroll_run_id: int | None = None
    approved_by: int | None = None
    approved_at: datetime | None = None
    rejection_reason: str | None = None
    invalidated_at: datetime | None = None
    invalidated_reason: str | None = None
    invalidated_reason_code: str | None = None
    invalidated_by_type: str | None = None
    invalidated_by_user_id: int | None = None
    expired_at: datetime | None = None
    expired_reason: str | None = None
    cancelled_at: datetime | None = None
    cancel_reason: str | None = None
    created_by: int | None = None
    modified_by: int | None = None
    version_lock: int
    created_at: datetime
    updated_at: datetime

    @computed_field
    @property
    def status_label(self) -> str:
        return status_label(self.status)


class ActionDetailResponse(ActionResponse):
    """Header plus ordered lines."""

    lines: list[LineItemResponse] = Field(default_factory=list)
    compensation_summary: str | None = None


class ActionCreatedResponse(BaseModel):
    group_id: str | None
    items: list[ActionResponse]


class ActionListResponse(BaseModel):
    """Schema for listing personal actions."""

    items: list[ActionResponse]
    total: int
    page: int
    page_size: int


class FieldChangeResponse(BaseModel):
    field: str
    before: str
    after: str


class AuditTrailEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    audit_id: int
    action_id: int
    event: str
    description: str
    actor_user_id: int | None = None
    created_at: datetime
    changes: list[FieldChangeResponse]
    line_diff: dict[str, list] | None = None


class AuditTrailResponse(BaseModel):
    items: list[AuditTrailEntryResponse]
    limit: int
    offset: int


class PayrollRunOptionResponse(BaseModel):
    payroll_run_id: int
    name: str
    status: int
    currency: str
    period_start: date | None = None
    period_end: date
    payment_end_date: date | None = None
    eligible: bool
    previously_selected: bool
    flagged: bool
    reasons: list[str]


class MovementOptionResponse(BaseModel):
    movement_id: int
    name: str
    is_fixed_amount: bool
    fixed_amount: Decimal
    percentage: Decimal
    is_inactive: bool
    selectable: bool
    previously_selected: bool
    flagged: bool


class EligibilityResponse(BaseModel):
    employee_id: int
    personal_action_type_id: int | None
    pay_period_id: int
    period_salary: Decimal | None = None
    period_hours: int
    hour_value: Decimal | None = None
    payroll_runs: list[PayrollRunOptionResponse]
    movements: list[MovementOptionResponse]
    no_eligible_payroll_runs: bool
    no_eligible_movements: bool


class CalculatedLineResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    line_order: int
    payroll_run_id: int
    movement_id: int
    quantity: Decimal
    amount: Decimal
    is_compensated: bool
    formula: str
    effective_date: date
    payload: dict[str, Any]
    path: str


class CalculationPreviewResponse(BaseModel):
    lines: list[CalculatedLineResponse]
    total: Decimal


class ErrorResponse(BaseModel):
    """Error body returned for every domain error."""

    detail: str
    code: str
    errors: list[dict[str, Any]] | None = None
