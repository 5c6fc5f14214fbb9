"""
Module: school_kernel.models.fees
Responsibility: ORM persistence for fee obligations (FeeStructure) and the
    money received against them (Payment, Receipt).
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Money columns are Decimal (db.base.Money); never float.
    - Payment.reference_number and Payment.receipt_number are unique.  The
      reference number is the idempotency key for recording a payment.
    - Payment and Receipt rows are immutable once flushed (enforced by
      ORM listeners in db/immutability.py).  Corrections are new rows.
    - FeeStructure money fields are frozen once any Payment references the
      same (academic year, term) for a student in that grade.
    - A carry-forward Payment (is_carry_forward=True) always points to the
      payment whose excess it applies via source_payment_id.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from school_kernel.db.base import TrackedBase, UUIDString
from school_kernel.domain.dtos import PaymentRecord, ReceiptInfo
from school_kernel.domain.values import ZERO, to_amount


class FeeStructure(TrackedBase):
    """
    What a grade owes for one term of one academic year.

    ``breakdown`` maps fee item names to amounts (stored as strings so JSON
    never sees a float); ``total_amount`` is the authoritative charge.
    """

    __tablename__ = "fee_structures"

    __table_args__ = (
        Index(
            "idx_fee_structure_lookup",
            "grade_id",
            "academic_year_id",
            "term_id",
            "is_active",
        ),
    )

    school_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("schools.id"), nullable=False
    )

    grade_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("grades.id"), nullable=False
    )

    academic_year_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("academic_years.id"), nullable=False
    )

    term_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("terms.id"), nullable=False
    )

    total_amount: Mapped[Decimal] = mapped_column(nullable=False)

    # Item name -> amount as string
    breakdown: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    # When the invoice is raised; falls back to the term start date
    charge_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<FeeStructure grade={self.grade_id} total={self.total_amount}>"

    @property
    def amount(self) -> Decimal:
        return to_amount(self.total_amount)

    def breakdown_amounts(self) -> dict[str, Decimal]:
        return {name: to_amount(value) for name, value in (self.breakdown or {}).items()}


class Payment(TrackedBase):
    """Money received for a student's term.  Immutable once recorded."""

    __tablename__ = "payments"

    __table_args__ = (
        UniqueConstraint("reference_number", name="uq_payment_reference"),
        UniqueConstraint("receipt_number", name="uq_payment_receipt_number"),
        Index("idx_payment_student_term", "student_id", "academic_year_id", "term_id"),
        Index("idx_payment_date", "payment_date"),
    )

    student_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("students.id"), nullable=False
    )

    academic_year_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("academic_years.id"), nullable=False
    )

    term_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("terms.id"), nullable=False
    )

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    # "cash", "bank", "mobile_money", ... or "CARRY_FORWARD" for allocations
    payment_method: Mapped[str] = mapped_column(String(50), nullable=False)

    reference_number: Mapped[str] = mapped_column(String(100), nullable=False)

    receipt_number: Mapped[str] = mapped_column(String(100), nullable=False)

    description: Mapped[str] = mapped_column(String(500), nullable=False)

    payment_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    received_by: Mapped[str] = mapped_column(String(100), nullable=False)

    is_carry_forward: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    source_payment_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("payments.id"), nullable=True
    )

    def __repr__(self) -> str:
        return f"<Payment {self.reference_number}: {self.amount}>"

    def to_dto(self, academic_year: str, term: str) -> PaymentRecord:
        return PaymentRecord(
            payment_id=self.id,
            student_id=self.student_id,
            amount=to_amount(self.amount),
            payment_date=self.payment_date,
            payment_method=self.payment_method,
            received_by=self.received_by,
            receipt_number=self.receipt_number,
            reference_number=self.reference_number,
            description=self.description,
            academic_year=academic_year,
            term=term,
            is_carry_forward=self.is_carry_forward,
            source_payment_id=self.source_payment_id,
        )


class Receipt(TrackedBase):
    """
    Receipt issued for a Payment, with the outstanding balances it observed.

    Immutable.  ``carried_forward`` is the part of the payment applied to
    later terms; ``unapplied_credit`` is any excess with nowhere to go.
    """

    __tablename__ = "receipts"

    __table_args__ = (
        UniqueConstraint("payment_id", name="uq_receipt_payment"),
        UniqueConstraint("receipt_number", name="uq_receipt_number"),
        Index("idx_receipt_student", "student_id"),
    )

    payment_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("payments.id"), nullable=False
    )

    student_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("students.id"), nullable=False
    )

    academic_year_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("academic_years.id"), nullable=False
    )

    term_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("terms.id"), nullable=False
    )

    receipt_number: Mapped[str] = mapped_column(String(100), nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    payment_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    payment_method: Mapped[str] = mapped_column(String(50), nullable=False)

    reference_number: Mapped[str] = mapped_column(String(100), nullable=False)

    term_outstanding_before: Mapped[Decimal] = mapped_column(nullable=False)

    term_outstanding_after: Mapped[Decimal] = mapped_column(nullable=False)

    year_outstanding_before: Mapped[Decimal] = mapped_column(nullable=False)

    year_outstanding_after: Mapped[Decimal] = mapped_column(nullable=False)

    carried_forward: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)

    unapplied_credit: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)

    def __repr__(self) -> str:
        return f"<Receipt {self.receipt_number}>"

    def to_dto(self) -> ReceiptInfo:
        return ReceiptInfo(
            receipt_id=self.id,
            payment_id=self.payment_id,
            student_id=self.student_id,
            receipt_number=self.receipt_number,
            amount=to_amount(self.amount),
            payment_date=self.payment_date,
            payment_method=self.payment_method,
            reference_number=self.reference_number,
            term_outstanding_before=to_amount(self.term_outstanding_before),
            term_outstanding_after=to_amount(self.term_outstanding_after),
            year_outstanding_before=to_amount(self.year_outstanding_before),
            year_outstanding_after=to_amount(self.year_outstanding_after),
            carried_forward=to_amount(self.carried_forward),
            unapplied_credit=to_amount(self.unapplied_credit),
        )
