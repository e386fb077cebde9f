"""ORM models."""

from personal_actions.models.actions import ActionHeader, ActionLine
from personal_actions.models.audit import AuditEntry, Notification, NotificationRecipient
from personal_actions.models.base import Base, TimestampMixin, UpdatedAtMixin
from personal_actions.models.catalog import Employee, Movement, PayrollRun

__all__ = [
    "ActionHeader",
    "ActionLine",
    "AuditEntry",
    "Base",
    "Employee",
    "Movement",
    "Notification",
    "NotificationRecipient",
    "PayrollRun",
    "TimestampMixin",
    "UpdatedAtMixin",
]
