"""
Tests for AcademicYearRoller.

Covers:
- Rolling 2025 -> 2026 with a single current year and term afterwards
- Reusing a pre-defined next year
- Current year/term setters and their lookups
"""

from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy import select

from school_kernel.exceptions import (
    AcademicYearNotFoundError,
    NoCurrentAcademicYearError,
    SchoolNotFoundError,
    TermNotFoundError,
)
from school_kernel.models.academic import AcademicYear, Term
from school_services.year_roller import AcademicYearRoller


@pytest.fixture
def roller(session, clock):
    return AcademicYearRoller(session, clock=clock)


def current_flags(session, school_id):
    years = session.execute(
        select(AcademicYear.name).where(
            AcademicYear.school_id == school_id, AcademicYear.is_current.is_(True)
        )
    ).scalars().all()
    terms = session.execute(
        select(AcademicYear.name, Term.name)
        .join(AcademicYear, AcademicYear.id == Term.academic_year_id)
        .where(AcademicYear.school_id == school_id, Term.is_current.is_(True))
    ).all()
    return list(years), [tuple(t) for t in terms]


class TestRollForward:

    def test_creates_next_year_and_moves_current_flags(self, roller, world, session):
        result = roller.roll_forward(world.school_id, actor="registrar")

        assert result.previous_year == "2025"
        assert result.current_year.name == "2026"
        assert result.created_year
        assert result.current_term.name == "Term 1"
        assert current_flags(session, world.school_id) == (["2026"], [("2026", "Term 1")])

    def test_new_year_spans_calendar_with_three_terms(self, roller, world, session):
        result = roller.roll_forward(world.school_id)

        assert result.current_year.start_date == date(2026, 1, 1)
        assert result.current_year.end_date == date(2026, 12, 31)
        terms = session.execute(
            select(Term.name, Term.start_date, Term.end_date)
            .where(Term.academic_year_id == result.current_year.id)
            .order_by(Term.start_date)
        ).all()
        assert [tuple(t) for t in terms] == [
            ("Term 1", date(2026, 1, 1), date(2026, 4, 30)),
            ("Term 2", date(2026, 5, 1), date(2026, 8, 31)),
            ("Term 3", date(2026, 9, 1), date(2026, 12, 31)),
        ]

    def test_reuses_predefined_year(self, roller, world, session):
        predefined = world.add_year("2026")

        result = roller.roll_forward(world.school_id)

        assert not result.created_year
        assert result.current_year.id == predefined.id
        count = len(session.execute(
            select(AcademicYear.id).where(AcademicYear.school_id == world.school_id)
        ).all())
        assert count == 2

    def test_successive_rolls(self, roller, world, session):
        roller.roll_forward(world.school_id)
        result = roller.roll_forward(world.school_id)

        assert (result.previous_year, result.current_year.name) == ("2026", "2027")
        assert current_flags(session, world.school_id) == (["2027"], [("2027", "Term 1")])

    def test_without_current_year_uses_clock(self, roller, make_school, session):
        """Clock is 2025-01-15, so the first roll opens 2026."""
        school = make_school()

        result = roller.roll_forward(school.school_id)

        assert result.previous_year is None
        assert result.current_year.name == "2026"

    def test_other_schools_untouched(self, roller, world, make_school, session):
        other = make_school()
        other.add_year("2025", current=True)

        roller.roll_forward(world.school_id)

        assert current_flags(session, other.school_id) == (["2025"], [("2025", "Term 1")])

    def test_unknown_school(self, roller):
        with pytest.raises(SchoolNotFoundError):
            roller.roll_forward(uuid4())

    def test_logs_roll(self, roller, world, captured_logs):
        roller.roll_forward(world.school_id, actor="registrar")

        rolled = [r for r in captured_logs() if r["message"] == "academic_year_rolled"]
        assert rolled[0]["previous_year"] == "2025"
        assert rolled[0]["current_year"] == "2026"


class TestCurrentSetters:

    def test_get_current_year_and_term(self, roller, world):
        assert roller.get_current_year(world.school_id).name == "2025"
        assert roller.get_current_term(world.school_id).name == "Term 1"

    def test_no_current_year(self, roller, make_school):
        school = make_school()
        school.add_year("2025")

        with pytest.raises(NoCurrentAcademicYearError):
            roller.get_current_year(school.school_id)

    def test_set_current_year(self, roller, world, session):
        world.add_year("2024")

        info = roller.set_current_year(world.school_id, world.years["2024"].id)

        assert info.is_current
        assert current_flags(session, world.school_id)[0] == ["2024"]

    def test_set_current_year_from_another_school(self, roller, world, make_school):
        other = make_school()
        foreign = other.add_year("2030")

        with pytest.raises(AcademicYearNotFoundError):
            roller.set_current_year(world.school_id, foreign.id)

    def test_set_current_term(self, roller, world, session):
        term2 = world.term("2025", "Term 2")

        info = roller.set_current_term(world.years["2025"].id, term2.id)

        assert info.name == "Term 2"
        assert current_flags(session, world.school_id)[1] == [("2025", "Term 2")]

    def test_term_must_belong_to_year(self, roller, world):
        world.add_year("2026")

        with pytest.raises(TermNotFoundError):
            roller.set_current_term(world.years["2025"].id, world.term("2026").id)
