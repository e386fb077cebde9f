"""Pure line calculation."""

from personal_actions.calculators.line_calculator import (
    LineCalculator,
    format_number,
    mask_formula,
)
from personal_actions.calculators.pay_periods import PeriodCompensation, summarize
from personal_actions.calculators.types import (
    CalculationPath,
    CompensationSnapshot,
    LineAmount,
    LineInput,
    MovementTemplate,
    PayrollRunEntry,
)

__all__ = [
    "CalculationPath",
    "CompensationSnapshot",
    "LineAmount",
    "LineCalculator",
    "LineInput",
    "MovementTemplate",
    "PayrollRunEntry",
    "PeriodCompensation",
    "format_number",
    "mask_formula",
    "summarize",
]
