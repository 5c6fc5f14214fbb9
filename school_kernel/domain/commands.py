"""
Boundary commands -- typed requests accepted by the services.

Raw input (form fields, JSON bodies, CSV rows) is turned into one of these
at the edge.  Construction validates; a command that exists is well formed,
so services never re-check shapes.

    command = RecordPaymentCommand.from_dict(request_json)
    result = balance_service.record_payment(command)
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Self
from uuid import UUID

from school_kernel.domain.values import ZERO, TermName, to_amount
from school_kernel.exceptions import ValidationError

DEFAULT_PROMOTION_TYPE = "bulk"
DEFAULT_PAYMENT_METHOD = "cash"
CARRY_FORWARD_METHOD = "CARRY_FORWARD"


def coerce_uuid(value: Any, field_name: str) -> UUID:
    if isinstance(value, UUID):
        return value
    if value is None or not str(value).strip():
        raise ValidationError(field_name, "is required", value)
    try:
        return UUID(str(value).strip())
    except ValueError:
        raise ValidationError(field_name, "not a valid id", value) from None


_TRUE_WORDS = frozenset({"true", "1", "yes", "on"})
_FALSE_WORDS = frozenset({"false", "0", "no", "off"})


def coerce_flag(value: Any, field_name: str) -> bool:
    """Booleans as they arrive from JSON and form posts (``"false"`` is False)."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    raise ValidationError(field_name, "must be true or false", value)


def _required_text(value: Any, field_name: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(field_name, "is required", value)
    return str(value).strip()


@dataclass(frozen=True)
class RecordPaymentCommand:
    """A fee payment against one student's term obligation."""

    student_id: UUID
    amount: Decimal
    academic_year: str
    term: TermName
    received_by: str
    payment_method: str = DEFAULT_PAYMENT_METHOD
    reference_number: str | None = None
    description: str | None = None
    payment_date: datetime | None = None

    def __post_init__(self):
        object.__setattr__(self, "student_id", coerce_uuid(self.student_id, "student_id"))
        amount = to_amount(self.amount)
        if amount <= ZERO:
            raise ValidationError("amount", "must be greater than zero", self.amount)
        object.__setattr__(self, "amount", amount)
        object.__setattr__(
            self, "academic_year", _required_text(self.academic_year, "academic_year")
        )
        object.__setattr__(self, "term", TermName.parse(self.term))
        object.__setattr__(self, "received_by", _required_text(self.received_by, "received_by"))
        object.__setattr__(
            self, "payment_method", _required_text(self.payment_method, "payment_method")
        )
        if self.payment_method.upper() == CARRY_FORWARD_METHOD:
            raise ValidationError(
                "payment_method", "is reserved for internal allocations", self.payment_method
            )
        if self.reference_number is not None:
            ref = self.reference_number.strip()
            object.__setattr__(self, "reference_number", ref or None)
        if isinstance(self.payment_date, str):
            try:
                object.__setattr__(
                    self, "payment_date", datetime.fromisoformat(self.payment_date)
                )
            except ValueError:
                raise ValidationError(
                    "payment_date", "not an ISO-8601 timestamp", self.payment_date
                ) from None
        if self.payment_date is not None and self.payment_date.tzinfo is None:
            raise ValidationError("payment_date", "must be timezone-aware", self.payment_date)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Build from a loosely-typed mapping (camelCase or snake_case keys)."""
        def pick(*keys: str, default: Any = None) -> Any:
            for key in keys:
                if key in data and data[key] is not None:
                    return data[key]
            return default

        return cls(
            student_id=pick("student_id", "studentId"),
            amount=pick("amount"),
            academic_year=pick("academic_year", "academicYear"),
            term=pick("term"),
            received_by=pick("received_by", "receivedBy"),
            payment_method=pick("payment_method", "paymentMethod", default=DEFAULT_PAYMENT_METHOD),
            reference_number=pick("reference_number", "referenceNumber"),
            description=pick("description"),
            payment_date=pick("payment_date", "paymentDate"),
        )


@dataclass(frozen=True)
class PromotionCriteriaCommand:
    """Create or update a school's promotion criteria."""

    school_id: UUID
    name: str
    min_grade: Decimal
    max_fee_balance: Decimal
    max_disciplinary_cases: int
    description: str | None = None
    promotion_type: str = DEFAULT_PROMOTION_TYPE
    is_active: bool = True

    def __post_init__(self):
        object.__setattr__(self, "school_id", coerce_uuid(self.school_id, "school_id"))
        object.__setattr__(self, "name", _required_text(self.name, "name"))
        min_grade = to_amount(self.min_grade, "min_grade")
        if min_grade < ZERO or min_grade > Decimal("100"):
            raise ValidationError("min_grade", "must be between 0 and 100", self.min_grade)
        object.__setattr__(self, "min_grade", min_grade)
        max_fee_balance = to_amount(self.max_fee_balance, "max_fee_balance")
        if max_fee_balance < ZERO:
            raise ValidationError("max_fee_balance", "cannot be negative", self.max_fee_balance)
        object.__setattr__(self, "max_fee_balance", max_fee_balance)
        if isinstance(self.max_disciplinary_cases, bool):
            raise ValidationError(
                "max_disciplinary_cases", "must be an integer", self.max_disciplinary_cases
            )
        try:
            cases = int(self.max_disciplinary_cases)
        except (TypeError, ValueError):
            raise ValidationError(
                "max_disciplinary_cases", "must be an integer", self.max_disciplinary_cases
            ) from None
        if cases < 0:
            raise ValidationError(
                "max_disciplinary_cases", "cannot be negative", self.max_disciplinary_cases
            )
        object.__setattr__(self, "max_disciplinary_cases", cases)
        object.__setattr__(
            self, "promotion_type", _required_text(self.promotion_type, "promotion_type")
        )
        object.__setattr__(self, "is_active", coerce_flag(self.is_active, "is_active"))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        def pick(*keys: str, default: Any = None) -> Any:
            for key in keys:
                if key in data and data[key] is not None:
                    return data[key]
            return default

        return cls(
            school_id=pick("school_id", "schoolId"),
            name=pick("name"),
            min_grade=pick("min_grade", "minGrade", default="50"),
            max_fee_balance=pick("max_fee_balance", "maxFeeBalance", default="0"),
            max_disciplinary_cases=pick("max_disciplinary_cases", "maxDisciplinaryCases", default=0),
            description=pick("description"),
            promotion_type=pick("promotion_type", "promotionType", default=DEFAULT_PROMOTION_TYPE),
            is_active=pick("is_active", "isActive", default=True),
        )


@dataclass(frozen=True)
class FeeStructureCommand:
    """Define the fee obligation for a grade in one term."""

    school_id: UUID
    grade_id: UUID
    academic_year: str
    term: TermName
    breakdown: dict[str, Decimal] = field(default_factory=dict)
    total_amount: Decimal | None = None
    charge_date: datetime | None = None

    def __post_init__(self):
        object.__setattr__(self, "school_id", coerce_uuid(self.school_id, "school_id"))
        object.__setattr__(self, "grade_id", coerce_uuid(self.grade_id, "grade_id"))
        object.__setattr__(
            self, "academic_year", _required_text(self.academic_year, "academic_year")
        )
        object.__setattr__(self, "term", TermName.parse(self.term))
        breakdown = {}
        for item, amount in dict(self.breakdown).items():
            value = to_amount(amount, f"breakdown.{item}")
            if value < ZERO:
                raise ValidationError(f"breakdown.{item}", "cannot be negative", amount)
            breakdown[_required_text(item, "breakdown item")] = value
        object.__setattr__(self, "breakdown", breakdown)
        if self.total_amount is None:
            if not breakdown:
                raise ValidationError("total_amount", "is required without a breakdown")
            total = sum(breakdown.values(), ZERO)
        else:
            total = to_amount(self.total_amount, "total_amount")
            if breakdown and sum(breakdown.values(), ZERO) != total:
                raise ValidationError(
                    "total_amount", "does not match the breakdown sum", self.total_amount
                )
        if total <= ZERO:
            raise ValidationError("total_amount", "must be greater than zero", total)
        object.__setattr__(self, "total_amount", total)
        if self.charge_date is not None and self.charge_date.tzinfo is None:
            raise ValidationError("charge_date", "must be timezone-aware", self.charge_date)


@dataclass(frozen=True)
class ProgressionRuleCommand:
    """Students in ``from_class`` move to ``to_class`` (a class name or "Alumni")."""

    from_class: str
    to_class: str
    order: int = 0

    def __post_init__(self):
        from_class = _required_text(self.from_class, "from_class")
        to_class = _required_text(self.to_class, "to_class")
        if from_class == to_class:
            raise ValidationError("to_class", "must differ from from_class", self.to_class)
        if isinstance(self.order, bool):
            raise ValidationError("order", "must be an integer", self.order)
        try:
            order = int(self.order)
        except (TypeError, ValueError):
            raise ValidationError("order", "must be an integer", self.order) from None
        object.__setattr__(self, "from_class", from_class)
        object.__setattr__(self, "to_class", to_class)
        object.__setattr__(self, "order", order)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        return cls(
            from_class=data.get("from_class", data.get("fromClass")),
            to_class=data.get("to_class", data.get("toClass")),
            order=data.get("order", 0),
        )
