"""
Typed exception hierarchy for the school fee ledger and promotion engine.

Every error carries a machine-readable ``code`` class attribute and keeps
its context as attributes, so callers catch by type and read structured
data instead of parsing messages:

    try:
        balance_service.record_payment(command)
    except DuplicatePaymentReferenceError as e:
        return {"error": e.code, "reference": e.reference_number}
    except PaymentRecordingError as e:
        retry_later(e.student_id, e.amount, e.reference_number)

Hierarchy:

    SchoolKernelError (base)
    |
    +-- ValidationError                  bad input at the boundary
    |
    +-- NotFoundError
    |   +-- SchoolNotFoundError
    |   +-- StudentNotFoundError
    |   +-- ClassNotFoundError
    |   +-- FeeStructureNotFoundError
    |   +-- AcademicYearNotFoundError
    |   +-- TermNotFoundError
    |   +-- CriteriaNotFoundError
    |
    +-- ConfigurationError
    |   +-- NoActiveCriteriaError
    |   +-- NoProgressionRuleError
    |   +-- ProgressionTargetMissingError
    |   +-- FeeStructureNotConfiguredError
    |   +-- NoCurrentAcademicYearError
    |
    +-- ConflictError
    |   +-- DuplicateAlumniError
    |   +-- DuplicateActiveCriteriaError
    |   +-- DuplicatePaymentReferenceError
    |   +-- DuplicateProgressionRuleError
    |
    +-- StateError
    |   +-- LastActiveCriteriaError
    |   +-- StudentNotActiveError
    |
    +-- PaymentRecordingError            fatal, partial payment write
    |
    +-- ImmutabilityViolationError

Batch operations (bulk promotion) catch ``SchoolKernelError`` per item and
record it in the batch result.  Store-level failures (SQLAlchemy
``OperationalError`` / ``DBAPIError``) are NOT kernel errors and abort the
whole batch.
"""

from decimal import Decimal


class SchoolKernelError(Exception):
    """Base exception for all ledger and promotion errors."""

    code: str = "SCHOOL_KERNEL_ERROR"


# Validation


class ValidationError(SchoolKernelError):
    """Input rejected at the boundary (non-positive amount, missing id...)."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str, value: object = None):
        self.field = field
        self.reason = reason
        self.value = value
        super().__init__(f"Invalid {field}: {reason}")


# Not found


class NotFoundError(SchoolKernelError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class SchoolNotFoundError(NotFoundError):
    code: str = "SCHOOL_NOT_FOUND"

    def __init__(self, school_ref: str):
        self.school_ref = school_ref
        super().__init__(f"School not found: {school_ref}")


class StudentNotFoundError(NotFoundError):
    code: str = "STUDENT_NOT_FOUND"

    def __init__(self, student_id: str):
        self.student_id = student_id
        super().__init__(f"Student not found: {student_id}")


class ClassNotFoundError(NotFoundError):
    code: str = "CLASS_NOT_FOUND"

    def __init__(self, class_ref: str):
        self.class_ref = class_ref
        super().__init__(f"Class not found: {class_ref}")


class FeeStructureNotFoundError(NotFoundError):
    """No fee structure for a student's grade in the requested term."""

    code: str = "FEE_STRUCTURE_NOT_FOUND"

    def __init__(self, grade_id: str, academic_year: str, term: str):
        self.grade_id = grade_id
        self.academic_year = academic_year
        self.term = term
        super().__init__(
            f"No fee structure for grade {grade_id} in {term} {academic_year}"
        )


class AcademicYearNotFoundError(NotFoundError):
    code: str = "ACADEMIC_YEAR_NOT_FOUND"

    def __init__(self, school_id: str, academic_year: str):
        self.school_id = school_id
        self.academic_year = academic_year
        super().__init__(
            f"Academic year {academic_year} not found for school {school_id}"
        )


class TermNotFoundError(NotFoundError):
    code: str = "TERM_NOT_FOUND"

    def __init__(self, academic_year: str, term: str):
        self.academic_year = academic_year
        self.term = term
        super().__init__(f"Term {term} not found in academic year {academic_year}")


class CriteriaNotFoundError(NotFoundError):
    code: str = "CRITERIA_NOT_FOUND"

    def __init__(self, criteria_id: str):
        self.criteria_id = criteria_id
        super().__init__(f"Promotion criteria not found: {criteria_id}")


# Configuration


class ConfigurationError(SchoolKernelError):
    """School setup is incomplete or inconsistent."""

    code: str = "CONFIGURATION_ERROR"


class NoActiveCriteriaError(ConfigurationError):
    code: str = "NO_ACTIVE_CRITERIA"

    def __init__(self, school_id: str, promotion_type: str):
        self.school_id = school_id
        self.promotion_type = promotion_type
        super().__init__(
            f"No active {promotion_type} promotion criteria for school {school_id}"
        )


class NoProgressionRuleError(ConfigurationError):
    code: str = "NO_PROGRESSION_RULE"

    def __init__(self, school_id: str, from_class: str):
        self.school_id = school_id
        self.from_class = from_class
        super().__init__(f"No next class configured for {from_class}")


class ProgressionTargetMissingError(ConfigurationError):
    """A progression rule names a class that does not exist."""

    code: str = "PROGRESSION_TARGET_MISSING"

    def __init__(self, from_class: str, to_class: str):
        self.from_class = from_class
        self.to_class = to_class
        super().__init__(
            f"Progression rule {from_class} -> {to_class} points to a missing class"
        )


class FeeStructureNotConfiguredError(ConfigurationError):
    """Payment target has no fee structure to apply the money against."""

    code: str = "FEE_STRUCTURE_NOT_CONFIGURED"

    def __init__(self, student_id: str, academic_year: str, term: str):
        self.student_id = student_id
        self.academic_year = academic_year
        self.term = term
        super().__init__(
            f"No fee structure configured for student {student_id} "
            f"in {term} {academic_year}"
        )


class NoCurrentAcademicYearError(ConfigurationError):
    code: str = "NO_CURRENT_ACADEMIC_YEAR"

    def __init__(self, school_id: str):
        self.school_id = school_id
        super().__init__(f"No current academic year for school {school_id}")


# Conflict


class ConflictError(SchoolKernelError):
    """Uniqueness rule would be violated."""

    code: str = "CONFLICT"


class DuplicateAlumniError(ConflictError):
    code: str = "DUPLICATE_ALUMNI"

    def __init__(self, student_id: str, graduation_year: str):
        self.student_id = student_id
        self.graduation_year = graduation_year
        super().__init__(
            f"Student {student_id} already recorded as alumni for {graduation_year}"
        )


class DuplicateActiveCriteriaError(ConflictError):
    code: str = "DUPLICATE_ACTIVE_CRITERIA"

    def __init__(self, school_id: str, promotion_type: str, count: int):
        self.school_id = school_id
        self.promotion_type = promotion_type
        self.count = count
        super().__init__(
            f"{count} active {promotion_type} criteria found for school {school_id}"
        )


class DuplicatePaymentReferenceError(ConflictError):
    code: str = "DUPLICATE_PAYMENT_REFERENCE"

    def __init__(self, reference_number: str, existing_payment_id: str | None = None):
        self.reference_number = reference_number
        self.existing_payment_id = existing_payment_id
        super().__init__(f"Payment reference already recorded: {reference_number}")


class DuplicateProgressionRuleError(ConflictError):
    code: str = "DUPLICATE_PROGRESSION_RULE"

    def __init__(self, school_id: str, from_class: str):
        self.school_id = school_id
        self.from_class = from_class
        super().__init__(f"More than one active progression rule for {from_class}")


class DuplicateBatchStudentError(ConflictError):
    """The same student listed twice in one promotion batch."""

    code: str = "DUPLICATE_BATCH_STUDENT"

    def __init__(self, student_id: str):
        self.student_id = student_id
        super().__init__(f"Student listed more than once in the batch: {student_id}")


# State


class StateError(SchoolKernelError):
    """Operation not allowed in the entity's current state."""

    code: str = "STATE_ERROR"


class LastActiveCriteriaError(StateError):
    code: str = "LAST_ACTIVE_CRITERIA"

    def __init__(self, criteria_id: str):
        self.criteria_id = criteria_id
        super().__init__(
            "Cannot remove the only active criteria for its promotion type. "
            "Activate another criteria first."
        )


class StudentNotActiveError(StateError):
    code: str = "STUDENT_NOT_ACTIVE"

    def __init__(self, student_id: str, status: str):
        self.student_id = student_id
        self.status = status
        super().__init__(f"Student {student_id} is not active (status={status})")


# Payment recording


class PaymentRecordingError(SchoolKernelError):
    """
    Payment and receipt could not be written as one unit.

    Fatal: nothing from the unit was persisted.  Carries enough context for
    the caller to retry without double-charging (the reference number is the
    idempotency key).
    """

    code: str = "PAYMENT_RECORDING_FAILED"

    def __init__(
        self,
        student_id: str,
        amount: Decimal,
        academic_year: str,
        term: str,
        reference_number: str,
        reason: str,
    ):
        self.student_id = student_id
        self.amount = amount
        self.academic_year = academic_year
        self.term = term
        self.reference_number = reference_number
        self.reason = reason
        super().__init__(
            f"Payment of {amount} for student {student_id} ({term} {academic_year}, "
            f"ref {reference_number}) was not recorded: {reason}"
        )


# Immutability


class ImmutabilityViolationError(SchoolKernelError):
    """Attempt to modify or delete an immutable financial or audit record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"{entity_type} {entity_id} is immutable: {reason}")
