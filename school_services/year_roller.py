"""
AcademicYearRoller -- moves a school's current academic year and term.

Contract:
    ``roll_forward`` finds or creates the year after the current one
    (Jan 1 to Dec 31, with its three terms when new), makes it the current
    year and makes its first term the current term.  Runs once per bulk
    promotion.

Invariants enforced:
    - Exactly one current AcademicYear per school and one current Term.
      Each flip is a single UPDATE (``is_current = (id = :target)``) over
      every row of the school, so no reader sees zero or two current rows.
    - On PostgreSQL the school's year rows are locked ``FOR UPDATE`` first
      so concurrent rolls serialize.

Failure modes:
    - AcademicYearNotFoundError / TermNotFoundError for targets outside the
      school.
    - NoCurrentAcademicYearError from ``get_current_year``.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from school_kernel.domain.clock import Clock, SystemClock
from school_kernel.domain.dtos import AcademicYearInfo, TermInfo, YearRollResult
from school_kernel.domain.values import TermName, year_order
from school_kernel.exceptions import (
    AcademicYearNotFoundError,
    NoCurrentAcademicYearError,
    TermNotFoundError,
)
from school_kernel.logging_config import get_logger
from school_kernel.models.academic import AcademicYear, Term
from school_kernel.selectors.academic_selector import AcademicSelector
from school_kernel.services.base import BaseService

logger = get_logger("services.year_roller")

# (term, start month/day, end month/day)
_TERM_CALENDAR = (
    (TermName.FIRST, (1, 1), (4, 30)),
    (TermName.SECOND, (5, 1), (8, 31)),
    (TermName.THIRD, (9, 1), (12, 31)),
)


class AcademicYearRoller(BaseService):
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._academic = AcademicSelector(session)

    def get_current_year(self, school_id: UUID) -> AcademicYearInfo:
        year = self._academic.current_year(school_id)
        if year is None:
            raise NoCurrentAcademicYearError(str(school_id))
        return year

    def get_current_term(self, school_id: UUID) -> TermInfo | None:
        return self._academic.current_term(school_id)

    def _lock_years(self, school_id: UUID) -> list[AcademicYear]:
        return list(
            self.session.execute(
                select(AcademicYear)
                .where(AcademicYear.school_id == school_id)
                .with_for_update()
            ).scalars().all()
        )

    def set_current_year(self, school_id: UUID, year_id: UUID) -> AcademicYearInfo:
        years = self._lock_years(school_id)
        if not any(y.id == year_id for y in years):
            raise AcademicYearNotFoundError(str(school_id), str(year_id))

        self.session.execute(
            update(AcademicYear)
            .where(AcademicYear.school_id == school_id)
            .values(is_current=(AcademicYear.id == year_id))
            .execution_options(synchronize_session="fetch")
        )
        self.session.flush()
        year = self.session.get(AcademicYear, year_id)
        self.session.refresh(year)
        logger.info(
            "current_year_set",
            extra={"school_id": str(school_id), "academic_year": year.name},
        )
        return year.to_dto()

    def set_current_term(self, academic_year_id: UUID, term_id: UUID) -> TermInfo:
        """Make ``term_id`` the only current term across the school's years."""
        year = self.session.get(AcademicYear, academic_year_id)
        if year is None:
            raise AcademicYearNotFoundError("", str(academic_year_id))
        term = self.session.get(Term, term_id)
        if term is None or term.academic_year_id != academic_year_id:
            raise TermNotFoundError(year.name, str(term_id))

        school_years = select(AcademicYear.id).where(
            AcademicYear.school_id == year.school_id
        )
        self.session.execute(
            update(Term)
            .where(Term.academic_year_id.in_(school_years))
            .values(is_current=(Term.id == term_id))
            .execution_options(synchronize_session="fetch")
        )
        self.session.flush()
        self.session.refresh(term)
        logger.info(
            "current_term_set",
            extra={
                "school_id": str(year.school_id),
                "academic_year": year.name,
                "term": term.name,
            },
        )
        return term.to_dto()

    def _base_year(self, current: AcademicYearInfo | None) -> int:
        if current is not None and year_order(current.name) > 0:
            return year_order(current.name)
        return self._clock.calendar_year()

    def _create_year(self, school_id: UUID, year_number: int, actor: str) -> AcademicYear:
        year = AcademicYear(
            school_id=school_id,
            name=str(year_number),
            start_date=date(year_number, 1, 1),
            end_date=date(year_number, 12, 31),
            is_current=False,
            created_by=actor,
        )
        self._persist(year)
        for term_name, (sm, sd), (em, ed) in _TERM_CALENDAR:
            self.session.add(
                Term(
                    academic_year_id=year.id,
                    name=term_name.value,
                    start_date=date(year_number, sm, sd),
                    end_date=date(year_number, em, ed),
                    is_current=False,
                    created_by=actor,
                )
            )
        self.session.flush()
        return year

    def roll_forward(self, school_id: UUID, actor: str = "system") -> YearRollResult:
        """
        Advance the school to the next academic year, Term 1.

        Idempotent for the target year: a year that already exists is reused
        and only the current flags move.
        """
        self._require_school(school_id)

        previous = self._academic.current_year(school_id)
        next_number = self._base_year(previous) + 1

        year = self.session.execute(
            select(AcademicYear).where(
                AcademicYear.school_id == school_id,
                AcademicYear.name == str(next_number),
            )
        ).scalar_one_or_none()
        created = year is None
        if created:
            year = self._create_year(school_id, next_number, actor)

        current_year = self.set_current_year(school_id, year.id)

        first_term = self._academic.get_term(year.id, TermName.FIRST.value)
        current_term = None
        if first_term is not None:
            current_term = self.set_current_term(year.id, first_term.id)
        else:
            logger.warning(
                "first_term_missing",
                extra={"school_id": str(school_id), "academic_year": year.name},
            )

        logger.info(
            "academic_year_rolled",
            extra={
                "school_id": str(school_id),
                "previous_year": previous.name if previous else None,
                "current_year": current_year.name,
                "created_year": created,
                "actor": actor,
            },
        )
        return YearRollResult(
            school_id=school_id,
            previous_year=previous.name if previous else None,
            current_year=current_year,
            current_term=current_term,
            created_year=created,
        )
