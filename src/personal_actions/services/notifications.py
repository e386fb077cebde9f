"""Notification dispatch."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from personal_actions.models import Notification, NotificationRecipient

logger = logging.getLogger(__name__)


class NotificationScope(str, Enum):
    USER = "USER"
    ROLE = "ROLE"
    GLOBAL = "GLOBAL"


@dataclass(frozen=True)
class NotificationRequest:
    """What to notify and to whom."""

    notification_type: str
    title: str
    message: str
    scope: NotificationScope = NotificationScope.USER
    recipients: tuple[int, ...] = ()
    payload: dict[str, Any] = field(default_factory=dict)
    created_by: int | None = None

    def unique_recipients(self) -> list[int]:
        """Recipients without duplicates or blanks, first occurrence wins."""
        seen: list[int] = []
        for recipient in self.recipients:
            if recipient is not None and recipient not in seen:
                seen.append(recipient)
        return seen


class NotificationDispatcher(Protocol):
    async def dispatch(self, request: NotificationRequest) -> int: ...


class DatabaseNotificationDispatcher:
    """Stores notifications in the same transaction as the change they describe.

    Delivery to users (push, e-mail, websockets) reads these rows and is
    handled elsewhere.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def dispatch(self, request: NotificationRequest) -> int:
        """Persist a notification and return how many recipients it reached."""
        recipients = request.unique_recipients()
        scope = NotificationScope(request.scope)
        if scope is not NotificationScope.GLOBAL and not recipients:
            logger.debug("Skipping %s notification with no recipients", request.notification_type)
            return 0

        notification = Notification(
            notification_type=request.notification_type,
            title=request.title,
            message=request.message,
            scope=scope.value,
            payload=request.payload or None,
            created_by=request.created_by,
        )
        for recipient in recipients:
            if scope is NotificationScope.ROLE:
                notification.recipients.append(NotificationRecipient(role_id=recipient))
            else:
                notification.recipients.append(NotificationRecipient(user_id=recipient))
        self.session.add(notification)
        await self.session.flush()

        logger.debug(
            "Dispatched %s notification %s to %d recipient(s)",
            request.notification_type,
            notification.notification_id,
            len(recipients),
        )
        return len(recipients)
