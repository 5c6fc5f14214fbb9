"""
Frozen DTOs returned by the ledger and promotion services.

Services return these, never ORM rows, so callers cannot mutate persisted
state by accident and results are safe to log or serialize.  All monetary
fields are ``Decimal``.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from school_kernel.domain.values import ZERO
from school_kernel.exceptions import ValidationError


# =============================================================================
# Academic calendar
# =============================================================================


@dataclass(frozen=True)
class AcademicYearInfo:
    id: UUID
    school_id: UUID
    name: str
    start_date: date
    end_date: date
    is_current: bool


@dataclass(frozen=True)
class TermInfo:
    id: UUID
    academic_year_id: UUID
    name: str
    start_date: date
    end_date: date
    is_current: bool


@dataclass(frozen=True)
class YearRollResult:
    """Outcome of advancing a school to its next academic year."""

    school_id: UUID
    previous_year: str | None
    current_year: AcademicYearInfo
    current_term: TermInfo | None
    created_year: bool


# =============================================================================
# Balances and payments
# =============================================================================


@dataclass(frozen=True)
class PaymentRecord:
    payment_id: UUID
    student_id: UUID
    amount: Decimal
    payment_date: datetime
    payment_method: str
    received_by: str
    receipt_number: str
    reference_number: str
    description: str
    academic_year: str
    term: str
    is_carry_forward: bool = False
    source_payment_id: UUID | None = None


@dataclass(frozen=True)
class StudentBalance:
    """Charges vs. payments for one student in one term.

    ``balance`` is clamped at zero; an overpaid term reports 0 here and the
    excess shows up as carry-forward on the receipt.
    """

    student_id: UUID
    academic_year: str
    term: str
    total_required: Decimal
    total_paid: Decimal
    balance: Decimal
    fee_breakdown: dict[str, Decimal] = field(default_factory=dict)
    payment_history: tuple[PaymentRecord, ...] = ()
    last_updated: datetime | None = None

    @property
    def credit(self) -> Decimal:
        excess = self.total_paid - self.total_required
        return excess if excess > ZERO else ZERO


@dataclass(frozen=True)
class StudentBalanceRow:
    """One line of the school-wide balance report."""

    student_id: UUID
    name: str
    admission_number: str
    grade_name: str
    class_name: str
    total_required: Decimal
    total_paid: Decimal
    balance: Decimal
    fee_configured: bool = True
    last_payment: PaymentRecord | None = None


@dataclass(frozen=True)
class SchoolBalanceSummary:
    total_students: int
    total_fees_required: Decimal
    total_fees_collected: Decimal
    total_outstanding: Decimal
    students_with_outstanding: int
    unconfigured_student_ids: tuple[UUID, ...] = ()


@dataclass(frozen=True)
class SchoolBalances:
    school_id: UUID
    academic_year: str
    term: str
    students: tuple[StudentBalanceRow, ...]
    summary: SchoolBalanceSummary


@dataclass(frozen=True)
class CarryForwardAllocation:
    """Part of an overpayment applied to a later term's obligation."""

    academic_year: str
    term: str
    amount: Decimal
    payment_id: UUID


@dataclass(frozen=True)
class ReceiptInfo:
    receipt_id: UUID
    payment_id: UUID
    student_id: UUID
    receipt_number: str
    amount: Decimal
    payment_date: datetime
    payment_method: str
    reference_number: str
    term_outstanding_before: Decimal
    term_outstanding_after: Decimal
    year_outstanding_before: Decimal
    year_outstanding_after: Decimal
    carried_forward: Decimal = ZERO
    unapplied_credit: Decimal = ZERO


@dataclass(frozen=True)
class PaymentResult:
    payment: PaymentRecord
    receipt: ReceiptInfo
    updated_balance: StudentBalance
    carry_forward: tuple[CarryForwardAllocation, ...] = ()


# =============================================================================
# Eligibility
# =============================================================================


@dataclass(frozen=True)
class CriteriaThresholds:
    """Promotion gates.  Values are inclusive bounds."""

    min_grade: Decimal
    max_fee_balance: Decimal
    max_disciplinary_cases: int

    def __post_init__(self):
        if self.min_grade < 0 or self.min_grade > 100:
            raise ValidationError("min_grade", "must be between 0 and 100", self.min_grade)
        if self.max_fee_balance < 0:
            raise ValidationError("max_fee_balance", "cannot be negative", self.max_fee_balance)
        if self.max_disciplinary_cases < 0:
            raise ValidationError(
                "max_disciplinary_cases", "cannot be negative", self.max_disciplinary_cases
            )

    def as_dict(self) -> dict[str, str | int]:
        return {
            "min_grade": str(self.min_grade),
            "max_fee_balance": str(self.max_fee_balance),
            "max_disciplinary_cases": self.max_disciplinary_cases,
        }


@dataclass(frozen=True)
class PromotionCriteriaInfo:
    id: UUID
    school_id: UUID
    name: str
    description: str | None
    promotion_type: str
    thresholds: CriteriaThresholds
    is_active: bool


@dataclass(frozen=True)
class ProgressionRuleInfo:
    id: UUID
    school_id: UUID
    from_class: str
    to_class: str
    order: int
    is_active: bool


@dataclass(frozen=True)
class StudentMetrics:
    """Inputs the evaluator checks against the thresholds."""

    average_grade: Decimal
    fee_balance: Decimal
    disciplinary_cases: int


@dataclass(frozen=True)
class FailedCriterion:
    criterion: str  # "min_grade" | "max_fee_balance" | "max_disciplinary_cases"
    actual: Decimal | int
    threshold: Decimal | int
    message: str


@dataclass(frozen=True)
class EligibilityDecision:
    is_eligible: bool
    reasons: tuple[FailedCriterion, ...] = ()


@dataclass(frozen=True)
class StudentEligibility:
    student_id: UUID
    student_name: str
    admission_number: str
    current_class: str | None
    current_grade: str | None
    metrics: StudentMetrics | None
    is_eligible: bool
    reasons: tuple[FailedCriterion, ...] = ()
    note: str | None = None

    @property
    def reason(self) -> str:
        """Human-readable summary of why the student is not eligible."""
        parts = [r.message for r in self.reasons]
        if self.note:
            parts.insert(0, self.note)
        return ", ".join(parts)


# =============================================================================
# Promotion
# =============================================================================


class PromotionStatus(str, Enum):
    PROMOTED = "promoted"
    GRADUATED = "graduated"
    EXCLUDED = "excluded"
    FAILED = "failed"


@dataclass(frozen=True)
class PromotionOutcome:
    student_id: UUID | str
    status: PromotionStatus
    from_class: str | None = None
    to_class: str | None = None
    from_year: str | None = None
    to_year: str | None = None
    reason: str | None = None
    error_code: str | None = None
    log_id: UUID | None = None
    alumni_id: UUID | None = None

    @property
    def advanced(self) -> bool:
        """True for both class promotion and graduation."""
        return self.status in (PromotionStatus.PROMOTED, PromotionStatus.GRADUATED)


@dataclass(frozen=True)
class PromotionLogInfo:
    id: UUID
    seq: int
    batch_id: UUID | None
    student_id: UUID
    from_class: str
    to_class: str
    from_year: str
    to_year: str
    promoted_by: str
    promotion_type: str
    outcome: str
    reason: str | None
    criteria_results: dict = field(default_factory=dict)


@dataclass(frozen=True)
class BatchItemError:
    student_id: str
    error_code: str
    message: str


@dataclass(frozen=True)
class BatchPromotionResult:
    batch_id: UUID
    promoted_count: int
    graduated_count: int
    excluded_count: int
    results: tuple[PromotionOutcome, ...]
    errors: tuple[BatchItemError, ...] = ()
    logs: tuple[PromotionLogInfo, ...] = ()

    @property
    def total(self) -> int:
        return len(self.results)


@dataclass(frozen=True)
class StudentPromotionResult:
    eligibility: StudentEligibility | None
    outcome: PromotionOutcome


@dataclass(frozen=True)
class BulkPromotionReport:
    """Result of the eligibility-gated bulk promotion."""

    batch_id: UUID
    promoted_count: int
    excluded_count: int
    results: tuple[StudentPromotionResult, ...]
