"""Personal action state machine with capability-guarded transitions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Protocol

from personal_actions.exceptions import ForbiddenError, InvalidTransitionError
from personal_actions.services.action_types import ActionType, get_config


class ActionStatus(IntEnum):
    """Personal action status values."""

    DRAFT = 1
    PENDING_SUPERVISOR = 2
    PENDING_HR = 3
    APPROVED = 4
    CONSUMED = 5
    CANCELLED = 6
    INVALIDATED = 7
    EXPIRED = 8
    REJECTED = 9

    @property
    def label(self) -> str:
        return STATUS_LABELS[self]


STATUS_LABELS: dict[ActionStatus, str] = {
    ActionStatus.DRAFT: "Draft",
    ActionStatus.PENDING_SUPERVISOR: "Pending supervisor",
    ActionStatus.PENDING_HR: "Pending HR",
    ActionStatus.APPROVED: "Approved",
    ActionStatus.CONSUMED: "Consumed",
    ActionStatus.CANCELLED: "Cancelled",
    ActionStatus.INVALIDATED: "Invalidated",
    ActionStatus.EXPIRED: "Expired",
    ActionStatus.REJECTED: "Rejected",
}


def status_label(status: int) -> str:
    """Label for a raw status value, tolerating unknown codes."""
    try:
        return ActionStatus(status).label
    except ValueError:
        return f"Status {status}"


class Capability(str, Enum):
    """Capabilities an actor may hold for an action type."""

    VIEW = "view"
    CREATE = "create"
    EDIT = "edit"
    APPROVE = "approve"
    CANCEL = "cancel"


class TransitionName(str, Enum):
    ADVANCE = "advance"
    INVALIDATE = "invalidate"
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"
    EXPIRE = "expire"
    CONSUME = "consume"


class Flow(str, Enum):
    """Which approval flow a transition belongs to."""

    LINED = "lined"
    GENERIC = "generic"
    ANY = "any"


@dataclass(frozen=True)
class TransitionRule:
    """One edge of the transition table."""

    name: TransitionName
    from_statuses: frozenset[ActionStatus]
    to_status: ActionStatus
    capability: Capability
    flow: Flow = Flow.ANY

    def applies_to(self, action_type: ActionType) -> bool:
        if self.flow is Flow.ANY:
            return True
        if self.flow is Flow.LINED:
            return action_type.is_lined
        return not action_type.is_lined


class CapabilityEvaluator(Protocol):
    """Yes/no capability decision supplied by the caller's permission layer."""

    def has_capability(self, actor_id: int | None, capability_code: str) -> bool: ...


def capability_code(action_type: ActionType | str, capability: Capability) -> str:
    """Fully qualified capability code, e.g. ``hr-action-absences:edit``."""
    return f"{get_config(action_type).capability_prefix}:{capability.value}"


_PENDING = frozenset(
    {ActionStatus.DRAFT, ActionStatus.PENDING_SUPERVISOR, ActionStatus.PENDING_HR}
)


class ActionStateMachine:
    """State machine for personal action status transitions.

    Lined actions advance 1 → 2 → 3 → 4 and may be invalidated while
    pending. Generic actions are approved, rejected or cancelled directly
    from any pending status. Both flows may be expired while pending, and an
    approved action is consumed (4 → 5) when a payroll run picks it up.
    Statuses 5-9 are terminal.
    """

    PENDING_STATUSES = _PENDING

    # Statuses where the header and its lines may be replaced
    EDITABLE_STATUSES = _PENDING

    TERMINAL_STATUSES = frozenset(
        {
            ActionStatus.CONSUMED,
            ActionStatus.CANCELLED,
            ActionStatus.INVALIDATED,
            ActionStatus.EXPIRED,
            ActionStatus.REJECTED,
        }
    )

    TRANSITIONS: tuple[TransitionRule, ...] = (
        TransitionRule(
            TransitionName.ADVANCE,
            frozenset({ActionStatus.DRAFT}),
            ActionStatus.PENDING_SUPERVISOR,
            Capability.EDIT,
            Flow.LINED,
        ),
        TransitionRule(
            TransitionName.ADVANCE,
            frozenset({ActionStatus.PENDING_SUPERVISOR}),
            ActionStatus.PENDING_HR,
            Capability.APPROVE,
            Flow.LINED,
        ),
        TransitionRule(
            TransitionName.ADVANCE,
            frozenset({ActionStatus.PENDING_HR}),
            ActionStatus.APPROVED,
            Capability.APPROVE,
            Flow.LINED,
        ),
        TransitionRule(
            TransitionName.INVALIDATE,
            _PENDING,
            ActionStatus.INVALIDATED,
            Capability.CANCEL,
            Flow.LINED,
        ),
        TransitionRule(
            TransitionName.APPROVE,
            _PENDING,
            ActionStatus.APPROVED,
            Capability.APPROVE,
            Flow.GENERIC,
        ),
        TransitionRule(
            TransitionName.REJECT,
            _PENDING,
            ActionStatus.REJECTED,
            Capability.APPROVE,
            Flow.GENERIC,
        ),
        TransitionRule(
            TransitionName.CANCEL,
            _PENDING,
            ActionStatus.CANCELLED,
            Capability.CANCEL,
            Flow.GENERIC,
        ),
        TransitionRule(
            TransitionName.EXPIRE,
            _PENDING,
            ActionStatus.EXPIRED,
            Capability.CANCEL,
        ),
        TransitionRule(
            TransitionName.CONSUME,
            frozenset({ActionStatus.APPROVED}),
            ActionStatus.CONSUMED,
            Capability.APPROVE,
        ),
    )

    @classmethod
    def is_terminal(cls, status: int) -> bool:
        """Check if no further transition is permitted from this status."""
        return status in cls.TERMINAL_STATUSES

    @classmethod
    def can_edit(cls, status: int) -> bool:
        """Check if the header and its line set may be replaced."""
        return status in cls.EDITABLE_STATUSES

    @classmethod
    def ensure_editable(cls, status: int) -> None:
        """Raise if the header is not in an editable status."""
        if not cls.can_edit(status):
            raise InvalidTransitionError(
                status,
                None,
                f"{status_label(status)} actions cannot be edited",
            )

    @classmethod
    def can_transition(cls, from_status: int, to_status: int) -> bool:
        """Check if any rule leads from one status to the other."""
        return any(
            rule.to_status == to_status and from_status in rule.from_statuses
            for rule in cls.TRANSITIONS
        )

    @classmethod
    def get_next_statuses(cls, current_status: int) -> list[ActionStatus]:
        """Get list of valid next statuses from current status."""
        seen: list[ActionStatus] = []
        for rule in cls.TRANSITIONS:
            if current_status in rule.from_statuses and rule.to_status not in seen:
                seen.append(rule.to_status)
        return seen

    @classmethod
    def find_rule(
        cls,
        name: TransitionName,
        action_type: ActionType,
        current_status: int,
    ) -> TransitionRule | None:
        """The rule named ``name`` that leaves ``current_status``, if any."""
        for rule in cls.TRANSITIONS:
            if (
                rule.name is name
                and current_status in rule.from_statuses
                and rule.applies_to(action_type)
            ):
                return rule
        return None

    @classmethod
    def resolve(
        cls,
        name: TransitionName,
        action_type: ActionType | str,
        current_status: int,
    ) -> TransitionRule:
        """Find the edge for a transition request or raise a conflict."""
        action_type = ActionType(action_type)
        if not any(r.name is name and r.applies_to(action_type) for r in cls.TRANSITIONS):
            raise InvalidTransitionError(
                current_status,
                None,
                f"'{name.value}' is not available for {action_type.value} actions",
            )
        rule = cls.find_rule(name, action_type, current_status)
        if rule is None:
            if cls.is_terminal(current_status):
                reason = f"{status_label(current_status)} is a terminal status"
            else:
                reason = f"'{name.value}' is not allowed from {status_label(current_status)}"
            raise InvalidTransitionError(current_status, None, reason)
        return rule

    @classmethod
    def authorize(
        cls,
        rule: TransitionRule,
        action_type: ActionType | str,
        actor_id: int | None,
        evaluator: CapabilityEvaluator,
    ) -> None:
        """Raise ForbiddenError unless the actor holds the rule's capability."""
        code = capability_code(action_type, rule.capability)
        if not evaluator.has_capability(actor_id, code):
            raise ForbiddenError(
                code,
                f"'{rule.name.value}' to {rule.to_status.label} requires capability '{code}'",
            )

    @classmethod
    def validate(
        cls,
        name: TransitionName,
        action_type: ActionType | str,
        current_status: int,
        actor_id: int | None,
        evaluator: CapabilityEvaluator,
    ) -> TransitionRule:
        """Resolve the edge, then check the capability once for it."""
        rule = cls.resolve(name, action_type, current_status)
        cls.authorize(rule, action_type, actor_id, evaluator)
        return rule
