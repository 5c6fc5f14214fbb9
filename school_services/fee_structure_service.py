"""
FeeStructureService -- defines what a grade owes for a term.

One active fee structure per (grade, academic year, term).  Defining it
again updates the active row in place; once payments exist for that term
the money fields are frozen and the immutability listener raises
ImmutabilityViolationError.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from school_kernel.domain.commands import FeeStructureCommand
from school_kernel.exceptions import (
    AcademicYearNotFoundError,
    TermNotFoundError,
    ValidationError,
)
from school_kernel.logging_config import get_logger
from school_kernel.models.academic import AcademicYear, Term
from school_kernel.models.fees import FeeStructure
from school_kernel.models.school import Grade
from school_kernel.selectors.ledger_selector import FeeChargeRow, LedgerSelector
from school_kernel.services.base import BaseService

logger = get_logger("services.fee_structure")


class FeeStructureService(BaseService):
    def __init__(self, session: Session):
        super().__init__(session)
        self._charges = LedgerSelector(session)

    def _resolve(self, command: FeeStructureCommand) -> tuple[AcademicYear, Term]:
        self._require_school(command.school_id)
        grade = self.session.get(Grade, command.grade_id)
        if grade is None or grade.school_id != command.school_id:
            raise ValidationError("grade_id", "not a grade of this school", command.grade_id)

        year = self.session.execute(
            select(AcademicYear).where(
                AcademicYear.school_id == command.school_id,
                AcademicYear.name == command.academic_year,
            )
        ).scalar_one_or_none()
        if year is None:
            raise AcademicYearNotFoundError(str(command.school_id), command.academic_year)
        term = self.session.execute(
            select(Term).where(
                Term.academic_year_id == year.id,
                Term.name == command.term.value,
            )
        ).scalar_one_or_none()
        if term is None:
            raise TermNotFoundError(year.name, command.term.value)
        return year, term

    def define_fee_structure(
        self, command: FeeStructureCommand, actor: str = "system"
    ) -> FeeChargeRow:
        """Create or update the active fee structure for the command's term."""
        year, term = self._resolve(command)
        breakdown = {item: str(amount) for item, amount in command.breakdown.items()}

        row = self.session.execute(
            select(FeeStructure).where(
                FeeStructure.grade_id == command.grade_id,
                FeeStructure.academic_year_id == year.id,
                FeeStructure.term_id == term.id,
                FeeStructure.is_active.is_(True),
            )
        ).scalar_one_or_none()

        if row is None:
            row = FeeStructure(
                school_id=command.school_id,
                grade_id=command.grade_id,
                academic_year_id=year.id,
                term_id=term.id,
                total_amount=command.total_amount,
                breakdown=breakdown,
                charge_date=command.charge_date,
                is_active=True,
                created_by=actor,
            )
            self.session.add(row)
            event = "fee_structure_created"
        else:
            row.total_amount = command.total_amount
            row.breakdown = breakdown
            row.charge_date = command.charge_date
            row.updated_by = actor
            event = "fee_structure_updated"
        self.session.flush()

        logger.info(
            event,
            extra={
                "fee_structure_id": str(row.id),
                "grade_id": str(command.grade_id),
                "academic_year": year.name,
                "term": term.name,
                "total_amount": str(command.total_amount),
            },
        )
        return self._charges.fee_charges(command.grade_id, year.id, term.id)[0]

    def get_fee_structure(
        self, grade_id: UUID, academic_year_id: UUID, term_id: UUID
    ) -> FeeChargeRow | None:
        rows = self._charges.fee_charges(grade_id, academic_year_id, term_id)
        return rows[0] if rows else None
