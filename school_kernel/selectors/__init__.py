"""Read-only selectors returning DTOs."""

from school_kernel.selectors.academic_selector import AcademicSelector
from school_kernel.selectors.base import BaseSelector
from school_kernel.selectors.ledger_selector import (
    FeeChargeRow,
    LedgerSelector,
    StudentContext,
)

__all__ = [
    "AcademicSelector",
    "BaseSelector",
    "FeeChargeRow",
    "LedgerSelector",
    "StudentContext",
]
