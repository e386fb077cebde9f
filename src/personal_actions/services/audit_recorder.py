"""Audit diffs, change descriptions and the recorder that persists them."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from personal_actions.calculators.line_calculator import format_number
from personal_actions.models import AuditEntry
from personal_actions.services.notifications import (
    NotificationDispatcher,
    NotificationRequest,
    NotificationScope,
)

logger = logging.getLogger(__name__)

EMPTY_VALUE = "--"
NOTIFICATION_TYPE = "PERSONAL_ACTION_CHANGED"


@dataclass(frozen=True)
class SetDiff:
    """Items added to and removed from a collection, deterministically sorted."""

    added: tuple = ()
    removed: tuple = ()

    @property
    def is_empty(self) -> bool:
        return not self.added and not self.removed

    def to_dict(self) -> dict[str, list]:
        return {"added": list(self.added), "removed": list(self.removed)}


def diff_ids(previous: Iterable[int], next_: Iterable[int]) -> SetDiff:
    """Diff two collections of numeric ids; results sorted ascending."""
    before = {int(v) for v in previous if v is not None}
    after = {int(v) for v in next_ if v is not None}
    return SetDiff(tuple(sorted(after - before)), tuple(sorted(before - after)))


def normalize_code(value: Any) -> str:
    return str(value).strip().lower() if value is not None else ""


def diff_codes(previous: Iterable[str], next_: Iterable[str]) -> SetDiff:
    """Diff two collections of codes; trimmed, lowercased, sorted lexically."""
    before = {c for c in (normalize_code(v) for v in previous) if c}
    after = {c for c in (normalize_code(v) for v in next_) if c}
    return SetDiff(tuple(sorted(after - before)), tuple(sorted(before - after)))


def quote_list(items: Iterable[Any]) -> str:
    """Render ``"a", "b" and "c"``; an empty list reads ``no items``."""
    quoted = [f'"{item}"' for item in items]
    if not quoted:
        return "no items"
    if len(quoted) == 1:
        return quoted[0]
    return f"{', '.join(quoted[:-1])} and {quoted[-1]}"


def describe_diff(diff: SetDiff, noun: str = "items") -> str:
    """Natural-language description of a diff, empty for an empty diff."""
    clauses = []
    if diff.added:
        clauses.append(f"added {noun} {quote_list(diff.added)}")
    if diff.removed:
        clauses.append(f"removed {noun} {quote_list(diff.removed)}")
    return "; ".join(clauses)


def render_value(value: Any) -> str:
    if value is None or value == "":
        return EMPTY_VALUE
    if isinstance(value, bool):
        return "yes" if value else "no"
    return str(value)


@dataclass(frozen=True)
class FieldChange:
    field: str
    before: Any
    after: Any

    def to_dict(self) -> dict[str, str]:
        return {
            "field": self.field,
            "before": render_value(self.before),
            "after": render_value(self.after),
        }


def field_changes(
    before: Mapping[str, Any] | None,
    after: Mapping[str, Any] | None,
) -> list[FieldChange]:
    """Fields whose value differs between two snapshots, in snapshot order."""
    before = before or {}
    after = after or {}
    keys = list(before)
    keys.extend(k for k in after if k not in before)
    return [
        FieldChange(key, before.get(key), after.get(key))
        for key in keys
        if before.get(key) != after.get(key)
    ]


def line_signature(line: Any) -> str:
    """Normalized identity of a line for set diffs.

    Two lines with the same position, references, quantity, amount, flag and
    payload produce the same signature regardless of how numbers are scaled.
    """
    parts = [
        f"#{line.line_order}",
        f"payroll {line.payroll_run_id}",
        f"movement {line.movement_id}",
        f"qty {format_number(line.quantity)}",
        f"amount {format_number(line.amount)}",
        f"compensated {'yes' if line.is_compensated else 'no'}",
    ]
    if line.effective_date is not None:
        parts.append(f"effective {line.effective_date.isoformat()}")
    for key in sorted(line.payload or {}):
        value = line.payload[key]
        if value is not None:
            parts.append(f"{key} {value}")
    return " / ".join(parts).lower()


class AuditEvent(str, Enum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    STATUS_CHANGED = "STATUS_CHANGED"


class AuditRecorder:
    """Turns before/after states into audit rows and notifications.

    Nothing is written and nobody is notified when neither the header
    fields nor the line set changed.
    """

    def __init__(self, session: AsyncSession, dispatcher: NotificationDispatcher):
        self.session = session
        self.dispatcher = dispatcher

    @staticmethod
    def describe(
        summary: str,
        event: AuditEvent,
        changes: list[FieldChange],
        line_diff: SetDiff,
    ) -> str:
        parts = [summary]
        if not line_diff.is_empty:
            parts.append(describe_diff(line_diff, "lines"))
        if event is AuditEvent.UPDATED and changes:
            parts.append(f"changed {quote_list(c.field for c in changes)}")
        return "; ".join(parts)

    async def record(
        self,
        *,
        action_id: int,
        action_type: str,
        event: AuditEvent,
        summary: str,
        actor_user_id: int | None,
        before: Mapping[str, Any] | None,
        after: Mapping[str, Any] | None,
        line_diff: SetDiff | None = None,
        recipients: Iterable[int | None] = (),
    ) -> AuditEntry | None:
        """Persist an audit entry and notify, or do nothing for an empty diff."""
        line_diff = line_diff or SetDiff()
        changes = field_changes(before, after)
        if not changes and line_diff.is_empty:
            logger.debug("No changes for personal action %s, audit skipped", action_id)
            return None

        description = self.describe(summary, event, changes, line_diff)
        entry = AuditEntry(
            action_id=action_id,
            action_type=action_type,
            event=event.value,
            description=description,
            before=dict(before) if before is not None else None,
            after=dict(after) if after is not None else None,
            line_diff=line_diff.to_dict() if not line_diff.is_empty else None,
            actor_user_id=actor_user_id,
        )
        self.session.add(entry)
        await self.session.flush()

        await self.dispatcher.dispatch(
            NotificationRequest(
                notification_type=NOTIFICATION_TYPE,
                title=f"Personal action #{action_id}",
                message=description,
                scope=NotificationScope.USER,
                recipients=tuple(r for r in recipients if r is not None),
                payload={"action_id": action_id, "event": event.value},
                created_by=actor_user_id,
            )
        )
        return entry
