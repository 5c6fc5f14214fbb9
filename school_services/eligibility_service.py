"""
EligibilityService -- gathers a student's metrics and runs the evaluator.

Metrics:
    average_grade, disciplinary_cases  from the AcademicPerformanceProvider
    fee_balance                        outstanding fees for the academic
                                       year (the current one by default)

Every student is returned tagged eligible or not, with reasons.  A student
without a class is ineligible with the note "Student has no class assigned"
rather than an error.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from school_config import LedgerSettings
from school_engines import EligibilityEvaluator
from school_kernel.domain.clock import Clock
from school_kernel.domain.dtos import (
    CriteriaThresholds,
    EligibilityDecision,
    StudentEligibility,
    StudentMetrics,
)
from school_kernel.exceptions import (
    NoCurrentAcademicYearError,
    SchoolNotFoundError,
    StudentNotFoundError,
)
from school_kernel.logging_config import get_logger
from school_kernel.models.school import School
from school_kernel.selectors.academic_selector import AcademicSelector
from school_kernel.selectors.ledger_selector import LedgerSelector, StudentContext
from school_services.balance_service import BalanceService
from school_services.criteria_service import PromotionCriteriaService
from school_services.performance import (
    AcademicPerformanceProvider,
    StaticPerformanceProvider,
)

logger = get_logger("services.eligibility")

NO_CLASS_NOTE = "Student has no class assigned"
NOT_ACTIVE_NOTE = "Student is not active"


class EligibilityService:
    def __init__(
        self,
        session: Session,
        performance: AcademicPerformanceProvider | None = None,
        balance_service: BalanceService | None = None,
        criteria_service: PromotionCriteriaService | None = None,
        settings: LedgerSettings | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._settings = settings or LedgerSettings.with_defaults()
        self._performance = performance or StaticPerformanceProvider()
        self._balances = balance_service or BalanceService(
            session, clock=clock, settings=self._settings
        )
        self._criteria = criteria_service or PromotionCriteriaService(
            session, settings=self._settings
        )
        self._academic = AcademicSelector(session)
        self._students = LedgerSelector(session)
        self._evaluator = EligibilityEvaluator()

    def _current_year_id(self, school_id: UUID) -> UUID:
        year = self._academic.current_year(school_id)
        if year is None:
            raise NoCurrentAcademicYearError(str(school_id))
        return year.id

    def metrics_for(self, student_id: UUID, academic_year_id: UUID) -> StudentMetrics:
        return StudentMetrics(
            average_grade=self._performance.average_grade(student_id, academic_year_id),
            fee_balance=self._balances.get_year_outstanding(student_id, academic_year_id),
            disciplinary_cases=self._performance.disciplinary_cases(student_id, academic_year_id),
        )

    def decide(
        self, thresholds: CriteriaThresholds, metrics: StudentMetrics
    ) -> tuple[EligibilityDecision, dict]:
        """Decision plus the JSON snapshot stored on promotion logs."""
        decision = self._evaluator.evaluate(thresholds=thresholds, metrics=metrics)
        return decision, self._evaluator.criteria_results(thresholds, metrics, decision)

    def _evaluate(
        self,
        ctx: StudentContext,
        thresholds: CriteriaThresholds,
        academic_year_id: UUID,
    ) -> StudentEligibility:
        base = dict(
            student_id=ctx.student_id,
            student_name=ctx.name,
            admission_number=ctx.admission_number,
            current_class=ctx.class_name,
            current_grade=ctx.grade_name,
        )
        if ctx.class_id is None:
            return StudentEligibility(**base, metrics=None, is_eligible=False, note=NO_CLASS_NOTE)
        if not ctx.is_active:
            return StudentEligibility(**base, metrics=None, is_eligible=False, note=NOT_ACTIVE_NOTE)

        metrics = self.metrics_for(ctx.student_id, academic_year_id)
        decision = self._evaluator.evaluate(thresholds=thresholds, metrics=metrics)
        return StudentEligibility(
            **base,
            metrics=metrics,
            is_eligible=decision.is_eligible,
            reasons=decision.reasons,
        )

    def evaluate_student(
        self,
        student_id: UUID,
        thresholds: CriteriaThresholds | None = None,
        academic_year_id: UUID | None = None,
    ) -> StudentEligibility:
        """
        Raises:
            StudentNotFoundError: unknown student.
            NoActiveCriteriaError: no thresholds given and none active.
            NoCurrentAcademicYearError: no year given and none current.
        """
        ctx = self._students.student_context(student_id)
        if ctx is None:
            raise StudentNotFoundError(str(student_id))
        if thresholds is None:
            thresholds = self._criteria.get_active(ctx.school_id).thresholds
        if academic_year_id is None:
            academic_year_id = self._current_year_id(ctx.school_id)
        return self._evaluate(ctx, thresholds, academic_year_id)

    def get_eligible_students(
        self,
        school_code: str,
        thresholds: CriteriaThresholds | None = None,
        academic_year_id: UUID | None = None,
    ) -> list[StudentEligibility]:
        """Every active student of the school, tagged eligible or not."""
        school = self._session.execute(
            select(School).where(School.code == school_code)
        ).scalar_one_or_none()
        if school is None:
            raise SchoolNotFoundError(school_code)

        if thresholds is None:
            thresholds = self._criteria.get_active(school.id).thresholds
        if academic_year_id is None:
            academic_year_id = self._current_year_id(school.id)

        results = [
            self._evaluate(ctx, thresholds, academic_year_id)
            for ctx in self._students.students_for_school(school.id)
        ]
        logger.info(
            "eligibility_evaluated",
            extra={
                "school_id": str(school.id),
                "student_count": len(results),
                "eligible_count": sum(1 for r in results if r.is_eligible),
            },
        )
        return results
