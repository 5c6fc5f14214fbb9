"""
Value helpers for the school ledger: amounts and term names.

Pure, zero I/O.  Amounts are ``Decimal`` end to end; floats are refused
rather than silently converted, because ``Decimal(0.1)`` drifts.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum

from school_kernel.exceptions import ValidationError

ZERO = Decimal("0")
CENT = Decimal("0.01")


def to_amount(value: Decimal | int | str, field: str = "amount") -> Decimal:
    """Coerce to a Decimal rounded to cents.

    Raises:
        ValidationError: value is a float, not numeric, or not finite.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(field, "must be Decimal, int or str, not float", value)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(field, "not a number", value) from None
    if not amount.is_finite():
        raise ValidationError(field, "must be finite", value)
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def clamp_zero(amount: Decimal) -> Decimal:
    return amount if amount > ZERO else ZERO


class TermName(str, Enum):
    """The three school terms of an academic year, in order."""

    FIRST = "Term 1"
    SECOND = "Term 2"
    THIRD = "Term 3"

    @property
    def order(self) -> int:
        return TERM_ORDER[self.value]

    @classmethod
    def parse(cls, raw: "str | TermName") -> "TermName":
        """Accept ``FIRST``/``SECOND``/``THIRD``, ``Term 1``..``Term 3`` or ``1``..``3``.

        Raises:
            ValidationError: unrecognised term.
        """
        if isinstance(raw, TermName):
            return raw
        if raw is None:
            raise ValidationError("term", "is required", raw)
        text = str(raw).strip()
        key = text.upper()
        if key in cls.__members__:
            return cls[key]
        for member in cls:
            if member.value.upper() == key or str(member.order) == key:
                return member
        raise ValidationError("term", "must be one of FIRST, SECOND, THIRD", raw)


# Fixed within-year ordering used when comparing against a join term.
TERM_ORDER: dict[str, int] = {"Term 1": 1, "Term 2": 2, "Term 3": 3}


def term_order(term_name: str) -> int:
    """Position of a term within its year; unknown names sort last."""
    try:
        return TermName.parse(term_name).order
    except ValidationError:
        return len(TERM_ORDER) + 1


def year_order(academic_year_name: str) -> int:
    """Sort key for an academic year label such as ``"2025"``."""
    try:
        return int(str(academic_year_name).strip()[:4])
    except ValueError:
        return 0
