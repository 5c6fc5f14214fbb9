"""
Module: school_engines.ledger
Responsibility:
    Merge a student's fee charges and payments into a chronological ledger
    with a running balance, starting from the point the student joined.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import school_kernel/domain.

Invariants enforced:
    - Nothing charged or paid before the join point appears.  With a known
      join year and term the cut-off is by (year, term) order, Term 1 <
      Term 2 < Term 3; otherwise by date against the join date.
    - Transactions are sorted ascending by date.  On equal timestamps the
      charge comes first, then ref order, so a payment made on invoice day
      never shows a transient credit and replays sort identically.
    - The sum of all deltas equals total_charges - total_payments exactly.
    - Purity: no clock access, no I/O.

Usage:
    from school_engines.ledger import LedgerBuilder, LedgerCharge, LedgerPayment

    ledger = LedgerBuilder().build(
        charges=[LedgerCharge("fee-1", "2025", "Term 1", Decimal("8000"), jan_6)],
        payments=[LedgerPayment("pay-1", "2025", "Term 1", Decimal("5000"), jan_20)],
        join=JoinPoint("2025", "Term 1"),
    )
    ledger.outstanding_balance   # Decimal("3000.00")
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum
from uuid import UUID

from school_engines.tracer import traced_engine
from school_kernel.domain.values import ZERO, clamp_zero, term_order, to_amount, year_order
from school_kernel.logging_config import get_logger

logger = get_logger("engines.ledger")

PAYMENT_DESCRIPTION = "PAYMENT"


def invoice_description(term_name: str, academic_year_name: str) -> str:
    return f"INVOICE - {term_name} {academic_year_name}"


def as_utc_datetime(value: datetime | date) -> datetime:
    """Dates become midnight UTC; naive datetimes are taken as UTC."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def period_key(academic_year_name: str, term_name: str) -> tuple[int, int]:
    return (year_order(academic_year_name), term_order(term_name))


class EntryKind(str, Enum):
    CHARGE = "charge"
    PAYMENT = "payment"


@dataclass(frozen=True)
class JoinPoint:
    """Academic year and term the student joined in."""

    academic_year_name: str
    term_name: str

    @property
    def key(self) -> tuple[int, int]:
        return period_key(self.academic_year_name, self.term_name)


@dataclass(frozen=True)
class LedgerCharge:
    ref: str
    academic_year_name: str
    term_name: str
    amount: Decimal
    charged_at: datetime | date
    academic_year_id: UUID | None = None

    @property
    def key(self) -> tuple[int, int]:
        return period_key(self.academic_year_name, self.term_name)


@dataclass(frozen=True)
class LedgerPayment:
    ref: str
    academic_year_name: str
    term_name: str
    amount: Decimal
    paid_at: datetime | date
    description: str | None = None
    academic_year_id: UUID | None = None

    @property
    def key(self) -> tuple[int, int]:
        return period_key(self.academic_year_name, self.term_name)


@dataclass(frozen=True)
class LedgerTransaction:
    kind: EntryKind
    ref: str
    description: str
    debit: Decimal
    credit: Decimal
    occurred_at: datetime
    academic_year_name: str
    term_name: str
    balance: Decimal

    @property
    def delta(self) -> Decimal:
        return self.debit - self.credit


@dataclass(frozen=True)
class Ledger:
    """
    Ordered ledger entries with running balance.

    ``outstanding_balance`` is the raw last running balance and may be
    negative (credit); ``amount_due`` is the same figure clamped at zero.
    """

    transactions: tuple[LedgerTransaction, ...] = ()

    @property
    def outstanding_balance(self) -> Decimal:
        if not self.transactions:
            return ZERO
        return self.transactions[-1].balance

    @property
    def total_charges(self) -> Decimal:
        return sum((t.debit for t in self.transactions), ZERO)

    @property
    def total_payments(self) -> Decimal:
        return sum((t.credit for t in self.transactions), ZERO)

    @property
    def amount_due(self) -> Decimal:
        return clamp_zero(self.outstanding_balance)

    @property
    def credit(self) -> Decimal:
        return clamp_zero(-self.outstanding_balance)

    def for_term(self, academic_year_name: str, term_name: str) -> tuple[LedgerTransaction, ...]:
        return tuple(
            t for t in self.transactions
            if t.academic_year_name == academic_year_name and t.term_name == term_name
        )

    def __len__(self) -> int:
        return len(self.transactions)


class LedgerBuilder:
    """
    Build a student's fee ledger from raw charges and payments.

    Contract:
        Pure function of its inputs; identical inputs give identical output.
    Non-goals:
        - Does not decide what a student owes; callers pass the charges.
        - Does not allocate overpayments; see school_engines.carry_forward.
    """

    @traced_engine(
        "ledger",
        "1.0",
        fingerprint_fields=("join", "join_date", "academic_year"),
        outcome=lambda ledger: {
            "transactions": len(ledger),
            "outstanding_balance": ledger.outstanding_balance,
        },
    )
    def build(
        self,
        charges: Iterable[LedgerCharge],
        payments: Iterable[LedgerPayment],
        join: JoinPoint | None = None,
        join_date: date | None = None,
        academic_year: str | None = None,
    ) -> Ledger:
        """
        Args:
            charges: Fee obligations (one per fee structure the student owes).
            payments: Payments and carry-forward allocations.
            join: Academic year + term the student joined in, if known.
            join_date: Enrolment date, used when ``join`` is unknown.
            academic_year: Restrict the ledger to one academic year name.
        """
        entries: list[tuple[tuple, EntryKind, object, datetime]] = []

        for charge in charges:
            if not self._included(charge.key, charge.charged_at, charge.academic_year_name,
                                  join, join_date, academic_year):
                continue
            at = as_utc_datetime(charge.charged_at)
            entries.append(((at, 0, charge.ref), EntryKind.CHARGE, charge, at))

        for payment in payments:
            if not self._included(payment.key, payment.paid_at, payment.academic_year_name,
                                  join, join_date, academic_year):
                continue
            at = as_utc_datetime(payment.paid_at)
            entries.append(((at, 1, payment.ref), EntryKind.PAYMENT, payment, at))

        entries.sort(key=lambda e: e[0])

        balance = ZERO
        transactions: list[LedgerTransaction] = []
        for _, kind, item, at in entries:
            amount = to_amount(item.amount)
            if kind is EntryKind.CHARGE:
                debit, credit = amount, ZERO
                description = invoice_description(item.term_name, item.academic_year_name)
            else:
                debit, credit = ZERO, amount
                description = item.description or PAYMENT_DESCRIPTION
            balance = balance + debit - credit
            transactions.append(
                LedgerTransaction(
                    kind=kind,
                    ref=item.ref,
                    description=description,
                    debit=debit,
                    credit=credit,
                    occurred_at=at,
                    academic_year_name=item.academic_year_name,
                    term_name=item.term_name,
                    balance=balance,
                )
            )

        logger.debug(
            "ledger_built",
            extra={
                "transaction_count": len(transactions),
                "outstanding_balance": str(balance),
                "academic_year": academic_year,
            },
        )
        return Ledger(transactions=tuple(transactions))

    @staticmethod
    def _included(
        key: tuple[int, int],
        occurred_at: datetime | date,
        academic_year_name: str,
        join: JoinPoint | None,
        join_date: date | None,
        academic_year: str | None,
    ) -> bool:
        if academic_year is not None and academic_year_name != academic_year:
            return False
        if join is not None:
            return key >= join.key
        if join_date is not None:
            return as_utc_datetime(occurred_at).date() >= join_date
        return True
