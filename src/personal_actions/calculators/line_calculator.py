"""Per-line monetary calculator."""

from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal

from personal_actions.calculators.pay_periods import DAYS_PER_MONTH, is_per_hour_contract
from personal_actions.calculators.types import (
    CalculationPath,
    CompensationSnapshot,
    LineAmount,
    LineInput,
    MovementTemplate,
)

_NON_DIGITS = re.compile(r"\D")
_LEADING_SALARY = re.compile(r"^(\(?)\d+(?:\.\d+)?(?=/30\)| × )")


def format_number(value: Decimal | int) -> str:
    """Render a number without trailing zeros or exponent notation."""
    if isinstance(value, int):
        return str(value)
    normalized = Decimal(value).normalize()
    return format(normalized, "f")


def mask_formula(formula: str, mask: str = "***") -> str:
    """Hide the salary a percentage formula starts with."""
    return _LEADING_SALARY.sub(lambda match: match.group(1) + mask, formula, count=1)


class LineCalculator:
    """Computes a line amount and the formula that explains it.

    Paths:
    - fixed: movement.fixed_amount x quantity
    - percentage on a per-hour contract: salary x pct% x quantity
    - percentage otherwise: (salary / 30) / shift hours x pct% x quantity
    - no configuration: 0, or the submitted amount when one is given

    Every amount is rounded half-up to the minor unit, then to a whole
    currency unit, then normalized to at most ``max_digits`` digits.
    """

    MINOR_UNIT = Decimal("0.01")
    WHOLE_UNIT = Decimal("1")
    DEFAULT_SHIFT_HOURS = 8

    NO_MOVEMENT_FORMULA = "Select a movement to calculate"
    NOT_CONFIGURED_FORMULA = "No calculation configuration"

    def __init__(self, max_digits: int = 10):
        if max_digits < 1:
            raise ValueError("max_digits must be positive")
        self.max_digits = max_digits

    @staticmethod
    def round_half_up(amount: Decimal, unit: Decimal = MINOR_UNIT) -> Decimal:
        """Round amount to the given unit, halves away from zero."""
        return Decimal(amount).quantize(unit, rounding=ROUND_HALF_UP)

    def round_amount(self, amount: Decimal) -> Decimal:
        """Round to the minor unit, then to a whole unit, then bound the digits."""
        cents = self.round_half_up(amount, self.MINOR_UNIT)
        whole = self.round_half_up(cents, self.WHOLE_UNIT)
        return Decimal(self.normalize_amount(whole))

    def normalize_amount(self, value: int | str | Decimal | float | None) -> int:
        """Coerce a monetary value to a bounded non-negative integer.

        Numbers are first rounded half-up to a whole unit. The textual form is
        then stripped of every non-digit character and truncated to
        ``max_digits`` digits; an empty result is 0.
        """
        if value is None:
            return 0
        if isinstance(value, bool):
            raise TypeError("amount must not be a boolean")
        if isinstance(value, (Decimal, float)):
            value = int(self.round_half_up(Decimal(str(value)), self.WHOLE_UNIT))
        digits = _NON_DIGITS.sub("", str(value))[: self.max_digits]
        return int(digits) if digits else 0

    def calculate(
        self,
        movement: MovementTemplate | None,
        line: LineInput,
        compensation: CompensationSnapshot,
    ) -> LineAmount:
        """Compute the amount and formula for one line."""
        quantity = Decimal(line.quantity)
        qty_text = format_number(quantity)

        if movement is None:
            return LineAmount(Decimal("0"), self.NO_MOVEMENT_FORMULA, CalculationPath.NO_MOVEMENT)

        fixed_amount = Decimal(movement.fixed_amount or 0)
        if movement.is_fixed_amount and fixed_amount > 0:
            amount = self.round_amount(fixed_amount * quantity)
            formula = f"Fixed: {format_number(fixed_amount)} × {qty_text}"
            return LineAmount(amount, formula, CalculationPath.FIXED)

        percentage = Decimal(movement.percentage or 0)
        if percentage > 0:
            base = Decimal(compensation.base_salary or 0)
            base_text = format_number(base)
            pct_text = format_number(percentage)
            if is_per_hour_contract(compensation.pay_period_id, compensation.is_hourly_schedule):
                raw = base * percentage / 100 * quantity
                formula = f"{base_text} × {pct_text}% × {qty_text}"
                path = CalculationPath.HOURLY_PERCENTAGE
            else:
                hours = line.shift_hours or self.DEFAULT_SHIFT_HOURS
                hourly_rate = base / DAYS_PER_MONTH / hours
                raw = hourly_rate * percentage / 100 * quantity
                formula = f"({base_text}/30)/{hours} × {pct_text}% × {qty_text}"
                path = CalculationPath.DAILY_PERCENTAGE
            return LineAmount(self.round_amount(raw), formula, path)

        submitted = Decimal(self.normalize_amount(line.amount)) if line.amount is not None else Decimal("0")
        return LineAmount(submitted, self.NOT_CONFIGURED_FORMULA, CalculationPath.NOT_CONFIGURED)
