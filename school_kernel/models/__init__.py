"""ORM models for the school ledger and promotion engine."""

from school_kernel.models.academic import AcademicYear, Term
from school_kernel.models.fees import FeeStructure, Payment, Receipt
from school_kernel.models.promotion import (
    Alumni,
    PromotionCriteria,
    PromotionLog,
    PromotionLogOutcome,
)
from school_kernel.models.school import ClassProgression, Grade, School, SchoolClass
from school_kernel.models.student import Student, StudentStatus

__all__ = [
    "AcademicYear",
    "Alumni",
    "ClassProgression",
    "FeeStructure",
    "Grade",
    "Payment",
    "PromotionCriteria",
    "PromotionLog",
    "PromotionLogOutcome",
    "Receipt",
    "School",
    "SchoolClass",
    "Student",
    "StudentStatus",
    "Term",
]
