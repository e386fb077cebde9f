"""Domain exceptions raised by the personal action engine.

Every error carries a stable machine-readable ``code`` so the API layer can
map it to a status code without inspecting messages.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class PersonalActionError(Exception):
    """Base class for all engine errors."""

    code = "PERSONAL_ACTION_ERROR"

    def __init__(self, message: str, code: str | None = None):
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(message)


@dataclass(frozen=True)
class LineError:
    """A single rejected field, optionally tied to a line by position."""

    index: int | None
    field: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"line": self.index, "field": self.field, "message": self.message}


class ValidationError(PersonalActionError):
    """Submission rejected before any persistence."""

    code = "VALIDATION_ERROR"

    def __init__(self, errors: list[LineError], message: str | None = None):
        self.errors = list(errors)
        if message is None:
            message = "; ".join(_format_line_error(e) for e in self.errors) or "Invalid submission"
        super().__init__(message)

    @classmethod
    def single(cls, field: str, message: str, index: int | None = None) -> ValidationError:
        return cls([LineError(index, field, message)])


def _format_line_error(error: LineError) -> str:
    if error.index is None:
        return f"{error.field}: {error.message}"
    return f"line {error.index + 1} {error.field}: {error.message}"


class ForbiddenError(PersonalActionError):
    """The actor does not hold the capability required for the operation."""

    code = "FORBIDDEN"

    def __init__(self, capability: str, message: str | None = None):
        self.capability = capability
        super().__init__(message or f"Missing capability '{capability}'")


class ConflictError(PersonalActionError):
    """The operation does not fit the current persisted state."""

    code = "CONFLICT"


class InvalidTransitionError(ConflictError):
    """Raised when an invalid state transition is attempted."""

    code = "INVALID_TRANSITION"

    def __init__(self, from_status: int, to_status: int | None, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        target = "?" if to_status is None else str(to_status)
        msg = f"Invalid transition from {from_status} to {target}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class StaleStateError(ConflictError):
    """The header changed between read and write."""

    code = "STALE_STATE"

    def __init__(self, action_id: int, expected_status: int | None = None):
        self.action_id = action_id
        self.expected_status = expected_status
        msg = f"Personal action {action_id} was modified concurrently"
        if expected_status is not None:
            msg += f" (expected status {expected_status})"
        super().__init__(msg)


class NotFoundError(PersonalActionError):
    """Unknown header, line, movement, payroll run or employee reference."""

    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")
