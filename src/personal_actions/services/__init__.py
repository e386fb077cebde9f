"""Domain services."""

from personal_actions.services.action_service import (
    ActionDetail,
    ActionService,
    ActionSubmission,
    CalculatedLine,
    LineSubmission,
)
from personal_actions.services.action_types import ActionType
from personal_actions.services.audit_recorder import AuditRecorder, diff_codes, diff_ids
from personal_actions.services.capabilities import GrantedCapabilities, StaticCapabilityEvaluator
from personal_actions.services.eligibility import EligibilityResolver, EligibilityResult
from personal_actions.services.state_machine import ActionStateMachine, ActionStatus, Capability

__all__ = [
    "ActionDetail",
    "ActionService",
    "ActionStateMachine",
    "ActionStatus",
    "ActionSubmission",
    "ActionType",
    "AuditRecorder",
    "CalculatedLine",
    "Capability",
    "EligibilityResolver",
    "EligibilityResult",
    "GrantedCapabilities",
    "LineSubmission",
    "StaticCapabilityEvaluator",
    "diff_codes",
    "diff_ids",
]
