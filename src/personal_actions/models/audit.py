"""Audit trail and notification models."""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from personal_actions.models.base import Base, TimestampMixin


class AuditEntry(Base, TimestampMixin):
    """Human-readable change log row for a personal action."""

    __tablename__ = "personal_action_audit"

    audit_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    action_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    action_type: Mapped[str] = mapped_column(String(20), nullable=False)
    event: Mapped[str] = mapped_column(String(30), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    before: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    after: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    line_diff: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    actor_user_id: Mapped[int | None] = mapped_column(Integer)


class Notification(Base, TimestampMixin):
    """A notification fanned out to one or more recipients."""

    __tablename__ = "notification"

    notification_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    notification_type: Mapped[str] = mapped_column(String(60), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    scope: Mapped[str] = mapped_column(String(10), nullable=False)
    payload: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    created_by: Mapped[int | None] = mapped_column(Integer)

    __table_args__ = (
        CheckConstraint("scope IN ('USER', 'ROLE', 'GLOBAL')", name="notification_scope_check"),
    )

    # Relationships
    recipients: Mapped[list[NotificationRecipient]] = relationship(
        back_populates="notification",
        cascade="all, delete-orphan",
    )


class NotificationRecipient(Base):
    """Delivery row for one recipient of a notification."""

    __tablename__ = "notification_recipient"

    recipient_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    notification_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("notification.notification_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[int | None] = mapped_column(Integer)
    role_id: Mapped[int | None] = mapped_column(Integer)
    is_read: Mapped[bool] = mapped_column(default=False, nullable=False)

    notification: Mapped[Notification] = relationship(back_populates="recipients")
