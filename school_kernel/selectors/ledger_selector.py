"""
Module: school_kernel.selectors.ledger_selector
Responsibility: Read access to the inputs of a student's fee ledger --
    the student's placement and join point, the fee structures charged to
    the student's grade, and the payments recorded for the student.
Architecture position: Kernel > Selectors.

There are no stored balances.  Every balance is derived from these rows.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import aliased

from school_kernel.domain.dtos import PaymentRecord
from school_kernel.domain.values import ZERO, term_order, to_amount, year_order
from school_kernel.models.academic import AcademicYear, Term
from school_kernel.models.fees import FeeStructure, Payment
from school_kernel.models.school import Grade, School, SchoolClass
from school_kernel.models.student import Student, StudentStatus
from school_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class StudentContext:
    """A student with the placement data the ledger and promotion need."""

    student_id: UUID
    school_id: UUID
    school_code: str
    name: str
    admission_number: str
    is_active: bool
    status: str
    class_id: UUID | None = None
    class_name: str | None = None
    grade_id: UUID | None = None
    grade_name: str | None = None
    joined_on: date | None = None
    join_year_name: str | None = None
    join_term_name: str | None = None


@dataclass(frozen=True)
class FeeChargeRow:
    fee_structure_id: UUID
    grade_id: UUID
    academic_year_id: UUID
    academic_year_name: str
    term_id: UUID
    term_name: str
    total_amount: Decimal
    charged_at: datetime | date
    breakdown: dict[str, Decimal] = field(default_factory=dict)

    @property
    def period_key(self) -> tuple[int, int]:
        return (year_order(self.academic_year_name), term_order(self.term_name))


class LedgerSelector(BaseSelector):
    def _context_query(self):
        join_year = aliased(AcademicYear)
        join_term = aliased(Term)
        return (
            select(
                Student,
                School.code,
                SchoolClass.name,
                Grade.id,
                Grade.name,
                join_year.name,
                join_term.name,
            )
            .join(School, School.id == Student.school_id)
            .outerjoin(SchoolClass, SchoolClass.id == Student.class_id)
            .outerjoin(Grade, Grade.id == SchoolClass.grade_id)
            .outerjoin(join_year, join_year.id == Student.joined_academic_year_id)
            .outerjoin(join_term, join_term.id == Student.joined_term_id)
        )

    @staticmethod
    def _to_context(row) -> StudentContext:
        student, school_code, class_name, grade_id, grade_name, year_name, term_name = row
        return StudentContext(
            student_id=student.id,
            school_id=student.school_id,
            school_code=school_code,
            name=student.name,
            admission_number=student.admission_number,
            is_active=student.is_active,
            status=StudentStatus(student.status).value,
            class_id=student.class_id,
            class_name=class_name,
            grade_id=grade_id,
            grade_name=grade_name,
            joined_on=student.joined_on,
            join_year_name=year_name,
            join_term_name=term_name,
        )

    def student_context(self, student_id: UUID) -> StudentContext | None:
        row = self.session.execute(
            self._context_query().where(Student.id == student_id)
        ).one_or_none()
        return self._to_context(row) if row else None

    def students_for_school(
        self,
        school_id: UUID,
        grade_id: UUID | None = None,
        active_only: bool = True,
        student_ids: list[UUID] | None = None,
    ) -> list[StudentContext]:
        """Students ordered by name, then admission number."""
        query = self._context_query().where(Student.school_id == school_id)
        if active_only:
            query = query.where(Student.is_active.is_(True))
        if grade_id is not None:
            query = query.where(Grade.id == grade_id)
        if student_ids is not None:
            query = query.where(Student.id.in_(student_ids))
        query = query.order_by(Student.name, Student.admission_number)
        return [self._to_context(row) for row in self.session.execute(query).all()]

    def fee_charges(
        self,
        grade_id: UUID,
        academic_year_id: UUID | None = None,
        term_id: UUID | None = None,
    ) -> list[FeeChargeRow]:
        """Active fee structures for a grade, in (year, term) order."""
        query = (
            select(FeeStructure, AcademicYear.name, Term.name, Term.start_date)
            .join(AcademicYear, AcademicYear.id == FeeStructure.academic_year_id)
            .join(Term, Term.id == FeeStructure.term_id)
            .where(
                FeeStructure.grade_id == grade_id,
                FeeStructure.is_active.is_(True),
            )
        )
        if academic_year_id is not None:
            query = query.where(FeeStructure.academic_year_id == academic_year_id)
        if term_id is not None:
            query = query.where(FeeStructure.term_id == term_id)

        rows = [
            FeeChargeRow(
                fee_structure_id=fee.id,
                grade_id=fee.grade_id,
                academic_year_id=fee.academic_year_id,
                academic_year_name=year_name,
                term_id=fee.term_id,
                term_name=term_name,
                total_amount=fee.amount,
                charged_at=fee.charge_date or term_start,
                breakdown=fee.breakdown_amounts(),
            )
            for fee, year_name, term_name, term_start in self.session.execute(query).all()
        ]
        return sorted(rows, key=lambda r: r.period_key)

    def payments(
        self,
        student_id: UUID,
        academic_year_id: UUID | None = None,
        term_id: UUID | None = None,
    ) -> list[PaymentRecord]:
        """Payments for a student, most recent first."""
        query = (
            select(Payment, AcademicYear.name, Term.name)
            .join(AcademicYear, AcademicYear.id == Payment.academic_year_id)
            .join(Term, Term.id == Payment.term_id)
            .where(Payment.student_id == student_id)
        )
        if academic_year_id is not None:
            query = query.where(Payment.academic_year_id == academic_year_id)
        if term_id is not None:
            query = query.where(Payment.term_id == term_id)
        query = query.order_by(Payment.payment_date.desc(), Payment.receipt_number.desc())
        return [
            payment.to_dto(year_name, term_name)
            for payment, year_name, term_name in self.session.execute(query).all()
        ]

    def payment_by_reference(self, reference_number: str) -> PaymentRecord | None:
        row = self.session.execute(
            select(Payment, AcademicYear.name, Term.name)
            .join(AcademicYear, AcademicYear.id == Payment.academic_year_id)
            .join(Term, Term.id == Payment.term_id)
            .where(Payment.reference_number == reference_number)
        ).one_or_none()
        if row is None:
            return None
        payment, year_name, term_name = row
        return payment.to_dto(year_name, term_name)

    def net_paid(self, student_id: UUID, academic_year_id: UUID, term_id: UUID) -> Decimal:
        """
        Money applied to a term: payments and allocations recorded in it,
        less the excess carried out of it to later terms.
        """
        received = sum(
            (p.amount for p in self.payments(student_id, academic_year_id, term_id)),
            ZERO,
        )
        return received - self.carried_out(student_id, academic_year_id, term_id)

    def carried_out(self, student_id: UUID, academic_year_id: UUID, term_id: UUID) -> Decimal:
        """Sum of carry-forward allocations whose source payment is in this term."""
        source = aliased(Payment)
        amounts = self.session.execute(
            select(Payment.amount)
            .join(source, source.id == Payment.source_payment_id)
            .where(
                Payment.is_carry_forward.is_(True),
                source.student_id == student_id,
                source.academic_year_id == academic_year_id,
                source.term_id == term_id,
            )
        ).scalars().all()
        return sum((to_amount(a) for a in amounts), ZERO)
