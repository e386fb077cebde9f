"""Action types and their type-specific line payloads.

Every line shares the same base fields; the per-type extras live in a
payload keyed by the header's action type. Parsing a payload returns a
plain dict of JSON-safe values, so the stored form and the form used for
audit signatures are the same.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable

from personal_actions.exceptions import LineError


class ActionType(str, Enum):
    """Variant tag of a personal action."""

    ABSENCE = "absence"
    LICENSE = "license"
    DISABILITY = "disability"
    BONUS = "bonus"
    OVERTIME = "overtime"
    RETENTION = "retention"
    DISCOUNT = "discount"
    GENERIC = "generic"

    @property
    def is_lined(self) -> bool:
        return self is not ActionType.GENERIC


class AbsenceKind(str, Enum):
    JUSTIFIED = "JUSTIFIED"
    UNJUSTIFIED = "UNJUSTIFIED"


class LicenseKind(str, Enum):
    MATERNITY = "maternity"
    PATERNITY = "paternity"
    ADOPTION = "adoption"
    BEREAVEMENT = "bereavement"
    MARRIAGE = "marriage"
    STUDIES = "studies"
    BREASTFEEDING = "breastfeeding"
    FAMILY_CARE = "family_care"
    PAID_LEAVE = "paid_leave"
    UNPAID_LEAVE = "unpaid_leave"
    COURT_SUMMONS = "court_summons"
    VOTING = "voting"
    BLOOD_DONATION = "blood_donation"
    UNION_LEAVE = "union_leave"
    COMPANY_SPECIAL_LEAVE = "company_special_leave"


class Institution(str, Enum):
    CCSS = "CCSS"
    INS = "INS"


DISABILITY_KINDS: dict[Institution, frozenset[str]] = {
    Institution.CCSS: frozenset(
        {
            "illness",
            "maternity_prenatal",
            "maternity_postnatal",
            "terminal_patient_care",
            "minor_care",
            "other",
        }
    ),
    Institution.INS: frozenset(
        {
            "work_accident",
            "commuting_accident",
            "occupational_disease",
            "traffic_accident",
            "permanent_partial",
            "permanent_total",
            "temporary",
            "other",
        }
    ),
}


class BonusKind(str, Enum):
    ORDINARY_SALARY = "ordinary_salary"
    HABITUAL_EXTRAORDINARY = "habitual_extraordinary"
    OCCASIONAL_EXTRAORDINARY = "occasional_extraordinary"
    NON_SALARY_REIMBURSEMENT = "non_salary_reimbursement"


class ShiftType(str, Enum):
    """Overtime shift length in hours."""

    SIX = "6"
    SEVEN = "7"
    EIGHT = "8"

    @property
    def hours(self) -> int:
        return int(self.value)


PayloadParser = Callable[[dict[str, Any], int], tuple[dict[str, Any], list[LineError]]]


def _enum_field(
    raw: dict[str, Any],
    name: str,
    enum_cls: type[Enum],
    index: int,
    errors: list[LineError],
    *,
    required: bool = True,
) -> str | None:
    value = raw.get(name)
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            errors.append(LineError(index, name, "is required"))
        return None
    text = str(value).strip()
    try:
        return enum_cls(text).value
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        errors.append(LineError(index, name, f"must be one of: {allowed}"))
        return None


def _date_field(raw: dict[str, Any], name: str, index: int, errors: list[LineError]) -> str | None:
    value = raw.get(name)
    if value in (None, ""):
        return None
    if isinstance(value, date):
        return value.isoformat()
    try:
        return date.fromisoformat(str(value)).isoformat()
    except ValueError:
        errors.append(LineError(index, name, "must be an ISO date"))
        return None


def _amount_field(raw: dict[str, Any], name: str, index: int, errors: list[LineError]) -> str | None:
    value = raw.get(name)
    if value in (None, ""):
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        errors.append(LineError(index, name, "must be a number"))
        return None
    if amount < 0:
        errors.append(LineError(index, name, "must be greater than or equal to 0"))
        return None
    return format(amount.normalize(), "f")


def _parse_absence(raw: dict[str, Any], index: int) -> tuple[dict[str, Any], list[LineError]]:
    errors: list[LineError] = []
    kind = _enum_field(raw, "absence_kind", AbsenceKind, index, errors)
    return {"absence_kind": kind}, errors


def _parse_license(raw: dict[str, Any], index: int) -> tuple[dict[str, Any], list[LineError]]:
    errors: list[LineError] = []
    kind = _enum_field(raw, "license_kind", LicenseKind, index, errors)
    return {"license_kind": kind}, errors


def _parse_disability(raw: dict[str, Any], index: int) -> tuple[dict[str, Any], list[LineError]]:
    errors: list[LineError] = []
    institution = _enum_field(raw, "institution", Institution, index, errors)
    kind = str(raw.get("disability_kind") or "").strip().lower() or None
    if kind is None:
        errors.append(LineError(index, "disability_kind", "is required"))
    elif institution is not None and kind not in DISABILITY_KINDS[Institution(institution)]:
        errors.append(
            LineError(index, "disability_kind", f"'{kind}' is not valid for {institution}")
        )
    payload: dict[str, Any] = {"institution": institution, "disability_kind": kind}
    for name in ("insurer_amount", "employer_amount", "subsidy_amount"):
        value = _amount_field(raw, name, index, errors)
        if value is not None:
            payload[name] = value
    return payload, errors


def _parse_bonus(raw: dict[str, Any], index: int) -> tuple[dict[str, Any], list[LineError]]:
    errors: list[LineError] = []
    kind = _enum_field(raw, "bonus_kind", BonusKind, index, errors)
    return {"bonus_kind": kind}, errors


def _parse_overtime(raw: dict[str, Any], index: int) -> tuple[dict[str, Any], list[LineError]]:
    errors: list[LineError] = []
    shift = _enum_field(raw, "shift_type", ShiftType, index, errors)
    start = _date_field(raw, "start_date", index, errors)
    end = _date_field(raw, "end_date", index, errors)
    if start and end and end < start:
        errors.append(LineError(index, "end_date", "must not be before start_date"))
    payload: dict[str, Any] = {"shift_type": shift}
    if start:
        payload["start_date"] = start
    if end:
        payload["end_date"] = end
    return payload, errors


def _parse_empty(raw: dict[str, Any], index: int) -> tuple[dict[str, Any], list[LineError]]:
    return {}, []


@dataclass(frozen=True)
class ActionTypeConfig:
    """Static per-type behaviour."""

    action_type: ActionType
    label: str
    capability_prefix: str
    group_prefix: str
    parse_payload: PayloadParser
    default_compensated: bool = True

    def shift_hours(self, payload: dict[str, Any]) -> int | None:
        """Shift length a line payload contributes to the calculator."""
        shift = payload.get("shift_type")
        return ShiftType(shift).hours if shift else None


ACTION_TYPES: dict[ActionType, ActionTypeConfig] = {
    ActionType.ABSENCE: ActionTypeConfig(
        ActionType.ABSENCE, "Absence", "hr-action-absences", "ABS", _parse_absence
    ),
    ActionType.LICENSE: ActionTypeConfig(
        ActionType.LICENSE, "License", "hr-action-licenses", "LIC", _parse_license
    ),
    ActionType.DISABILITY: ActionTypeConfig(
        ActionType.DISABILITY, "Disability", "hr-action-disabilities", "DIS", _parse_disability
    ),
    ActionType.BONUS: ActionTypeConfig(
        ActionType.BONUS, "Bonus", "hr-action-bonuses", "BON", _parse_bonus
    ),
    ActionType.OVERTIME: ActionTypeConfig(
        ActionType.OVERTIME, "Overtime", "hr-action-overtime", "OVT", _parse_overtime
    ),
    ActionType.RETENTION: ActionTypeConfig(
        ActionType.RETENTION,
        "Retention",
        "hr-action-retentions",
        "RET",
        _parse_empty,
        default_compensated=False,
    ),
    ActionType.DISCOUNT: ActionTypeConfig(
        ActionType.DISCOUNT,
        "Discount",
        "hr-action-discounts",
        "DSC",
        _parse_empty,
        default_compensated=False,
    ),
    ActionType.GENERIC: ActionTypeConfig(
        ActionType.GENERIC, "Personal action", "hr_action", "ACT", _parse_empty
    ),
}


def get_config(action_type: ActionType | str) -> ActionTypeConfig:
    """Look up the static configuration of an action type."""
    return ACTION_TYPES[ActionType(action_type)]
