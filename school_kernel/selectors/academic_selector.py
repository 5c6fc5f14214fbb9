"""
Module: school_kernel.selectors.academic_selector
Responsibility: Read access to academic years and terms.
Architecture position: Kernel > Selectors.
"""

from uuid import UUID

from sqlalchemy import select

from school_kernel.domain.dtos import AcademicYearInfo, TermInfo
from school_kernel.domain.values import term_order, year_order
from school_kernel.models.academic import AcademicYear, Term
from school_kernel.selectors.base import BaseSelector


class AcademicSelector(BaseSelector):
    def get_year(self, school_id: UUID, name: str) -> AcademicYearInfo | None:
        return self._dto_or_none(
            select(AcademicYear).where(
                AcademicYear.school_id == school_id,
                AcademicYear.name == name,
            )
        )

    def get_year_by_id(self, year_id: UUID) -> AcademicYearInfo | None:
        return self._dto_by_id(AcademicYear, year_id)

    def get_term(self, academic_year_id: UUID, term_name: str) -> TermInfo | None:
        return self._dto_or_none(
            select(Term).where(
                Term.academic_year_id == academic_year_id,
                Term.name == term_name,
            )
        )

    def get_term_by_id(self, term_id: UUID) -> TermInfo | None:
        return self._dto_by_id(Term, term_id)

    def current_years(self, school_id: UUID) -> list[AcademicYearInfo]:
        """All years flagged current.  More than one means corrupted state."""
        return self._sorted_dtos(
            select(AcademicYear).where(
                AcademicYear.school_id == school_id,
                AcademicYear.is_current.is_(True),
            ),
            key=_by_year,
        )

    def current_year(self, school_id: UUID) -> AcademicYearInfo | None:
        years = self.current_years(school_id)
        return years[-1] if years else None

    def current_terms(self, academic_year_id: UUID) -> list[TermInfo]:
        return self._sorted_dtos(
            select(Term).where(
                Term.academic_year_id == academic_year_id,
                Term.is_current.is_(True),
            ),
            key=_by_term,
        )

    def current_term(self, school_id: UUID) -> TermInfo | None:
        year = self.current_year(school_id)
        if year is None:
            return None
        terms = self.current_terms(year.id)
        return terms[0] if terms else None

    def list_years(self, school_id: UUID) -> list[AcademicYearInfo]:
        """Years of a school, oldest first."""
        return self._sorted_dtos(
            select(AcademicYear).where(AcademicYear.school_id == school_id),
            key=_by_year,
        )

    def list_terms(self, academic_year_id: UUID) -> list[TermInfo]:
        """Terms of a year in Term 1, Term 2, Term 3 order."""
        return self._sorted_dtos(
            select(Term).where(Term.academic_year_id == academic_year_id),
            key=_by_term,
        )


def _by_year(year: AcademicYearInfo) -> int:
    return year_order(year.name)


def _by_term(term: TermInfo) -> int:
    return term_order(term.name)
