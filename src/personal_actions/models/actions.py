"""Personal action header and line models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from personal_actions.models.base import Base, TimestampMixin, UpdatedAtMixin


class ActionHeader(Base, TimestampMixin, UpdatedAtMixin):
    """Top-level personal action tracking the approval status."""

    __tablename__ = "personal_action"

    action_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    employee_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    action_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    group_id: Mapped[str | None] = mapped_column(String(64), index=True)
    origin: Mapped[str] = mapped_column(String(20), nullable=False, default="RRHH")
    description: Mapped[str | None] = mapped_column(Text)

    effective_date: Mapped[date | None] = mapped_column(Date)
    start_date: Mapped[date | None] = mapped_column(Date)
    end_date: Mapped[date | None] = mapped_column(Date)
    aggregate_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="CRC")
    payroll_run_id: Mapped[int | None] = mapped_column(Integer)

    approved_by: Mapped[int | None] = mapped_column(Integer)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    rejection_reason: Mapped[str | None] = mapped_column(Text)

    invalidated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    invalidated_reason: Mapped[str | None] = mapped_column(Text)
    invalidated_reason_code: Mapped[str | None] = mapped_column(String(40))
    invalidated_by_type: Mapped[str | None] = mapped_column(String(10))
    invalidated_by_user_id: Mapped[int | None] = mapped_column(Integer)
    invalidated_meta: Mapped[dict[str, Any] | None] = mapped_column(JSON)

    expired_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    expired_reason: Mapped[str | None] = mapped_column(Text)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancel_reason: Mapped[str | None] = mapped_column(Text)

    created_by: Mapped[int | None] = mapped_column(Integer)
    modified_by: Mapped[int | None] = mapped_column(Integer)
    version_lock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("status BETWEEN 1 AND 9", name="personal_action_status_check"),
        CheckConstraint("aggregate_amount >= 0", name="personal_action_amount_check"),
        CheckConstraint(
            "origin IN ('RRHH', 'IMPORT', 'TIMEWISE')",
            name="personal_action_origin_check",
        ),
    )


class ActionLine(Base, TimestampMixin):
    """One payroll-period monetary adjustment belonging to a header."""

    __tablename__ = "personal_action_line"

    line_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    action_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("personal_action.action_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    payroll_run_id: Mapped[int] = mapped_column(Integer, nullable=False)
    movement_id: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    is_compensated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    formula: Mapped[str] = mapped_column(Text, nullable=False)
    line_order: Mapped[int] = mapped_column(Integer, nullable=False)
    effective_date: Mapped[date | None] = mapped_column(Date)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    __table_args__ = (
        UniqueConstraint("action_id", "line_order", name="personal_action_line_order_unique"),
        CheckConstraint("quantity > 0", name="personal_action_line_quantity_check"),
        CheckConstraint("amount >= 0", name="personal_action_line_amount_check"),
    )
