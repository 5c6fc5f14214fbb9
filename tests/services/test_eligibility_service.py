"""
Tests for EligibilityService: metric gathering and school-wide evaluation.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from school_kernel.domain.commands import RecordPaymentCommand
from school_kernel.domain.dtos import CriteriaThresholds
from school_kernel.exceptions import (
    NoActiveCriteriaError,
    NoCurrentAcademicYearError,
    SchoolNotFoundError,
    StudentNotFoundError,
)
from school_services.balance_service import BalanceService
from school_services.eligibility_service import (
    NO_CLASS_NOTE,
    EligibilityService,
)
from school_services.performance import StaticPerformanceProvider
from tests.conftest import TEST_ACTOR

LENIENT_ON_FEES = CriteriaThresholds(
    min_grade=Decimal("50"),
    max_fee_balance=Decimal("16000"),
    max_disciplinary_cases=0,
)


@pytest.fixture
def balances(session, clock, settings):
    return BalanceService(session, clock=clock, settings=settings)


@pytest.fixture
def make_service(session, clock, settings, balances):
    def _make(performance=None):
        return EligibilityService(
            session,
            performance=performance or StaticPerformanceProvider(),
            balance_service=balances,
            settings=settings,
            clock=clock,
        )

    return _make


class TestEvaluateStudent:

    def test_outstanding_fees_block_promotion(self, make_service, world):
        student = world.add_student("Amina", "Grade 6A", joined=("2025", "Term 1"))
        world.add_criteria()

        result = make_service().evaluate_student(student.id)

        assert not result.is_eligible
        assert result.metrics.fee_balance == Decimal("16000")
        assert result.reason == "Fee balance $16000 exceeds maximum $0"

    def test_paid_up_student_is_eligible(self, make_service, world, balances):
        student = world.add_student("Amina", "Grade 6A", joined=("2025", "Term 1"))
        world.add_criteria()
        for term in ("Term 1", "Term 2"):
            balances.record_payment(
                RecordPaymentCommand(
                    student_id=student.id,
                    amount=Decimal("8000"),
                    academic_year="2025",
                    term=term,
                    received_by=TEST_ACTOR,
                )
            )

        result = make_service().evaluate_student(student.id)

        assert result.is_eligible
        assert result.metrics.fee_balance == Decimal("0")
        assert result.reasons == ()

    def test_metrics_come_from_the_performance_provider(self, make_service, world):
        student = world.add_student("Brian", "Grade 5A")
        performance = StaticPerformanceProvider(grades={student.id: "42"}, cases={student.id: 2})

        result = make_service(performance).evaluate_student(
            student.id, thresholds=LENIENT_ON_FEES
        )

        assert result.metrics.average_grade == Decimal("42")
        assert result.metrics.disciplinary_cases == 2
        assert [r.criterion for r in result.reasons] == ["min_grade", "max_disciplinary_cases"]

    def test_no_class_is_a_note_not_an_error(self, make_service, world):
        student = world.add_student("Drifter", None)

        result = make_service().evaluate_student(student.id, thresholds=LENIENT_ON_FEES)

        assert not result.is_eligible
        assert result.note == NO_CLASS_NOTE
        assert result.metrics is None
        assert result.reason == NO_CLASS_NOTE

    def test_requires_active_criteria_when_none_given(self, make_service, world):
        student = world.add_student("Amina", "Grade 6A")

        with pytest.raises(NoActiveCriteriaError):
            make_service().evaluate_student(student.id)

    def test_requires_current_year_when_none_given(self, make_service, make_school):
        bare = make_school()
        bare.add_year("2025", current=False)
        bare.add_class("Grade 1A", "Grade 1")
        student = bare.add_student("Eve", "Grade 1A")

        with pytest.raises(NoCurrentAcademicYearError):
            make_service().evaluate_student(student.id, thresholds=LENIENT_ON_FEES)

    def test_unknown_student(self, make_service, world):
        with pytest.raises(StudentNotFoundError):
            make_service().evaluate_student(uuid4(), thresholds=LENIENT_ON_FEES)


class TestGetEligibleStudents:

    def test_every_active_student_is_tagged(self, make_service, world):
        world.add_student("Amina", "Grade 5A")
        world.add_student("Brian", "Grade 6A")
        world.add_student("Gone", "Grade 6A", is_active=False)
        world.add_criteria()

        results = make_service().get_eligible_students("greenfield")

        assert [(r.student_name, r.is_eligible) for r in results] == [
            ("Amina", True),
            ("Brian", False),
        ]
        assert results[0].current_class == "Grade 5A"
        assert results[1].current_grade == "Grade 6"

    def test_explicit_thresholds_override_active(self, make_service, world):
        world.add_student("Brian", "Grade 6A")
        world.add_criteria()

        results = make_service().get_eligible_students("greenfield", thresholds=LENIENT_ON_FEES)

        assert results[0].is_eligible

    def test_unknown_school(self, make_service, world):
        with pytest.raises(SchoolNotFoundError):
            make_service().get_eligible_students("nowhere")
