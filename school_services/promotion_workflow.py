"""
school_services.promotion_workflow -- wires the promotion services together.

Responsibility:
    Creates each service exactly once over one session and composes them
    into the two end-of-year flows:

        execute_bulk_promotion   eligibility-gated: ineligible students are
                                 logged as excluded with their reasons,
                                 eligible ones go through the executor.
        bulk_promote_students    executor batch followed by one year roll,
                                 regardless of individual outcomes.

Architecture position:
    Services -- top of the service layer.  The only place that constructs
    Balance, Criteria, Progression, Eligibility, Executor and Roller
    together.

Usage:
    with session_scope() as session:
        workflow = PromotionWorkflow(session, settings=settings)
        report = workflow.execute_bulk_promotion(
            "greenfield", selected_ids, criteria=None, promoted_by="registrar",
        )

Non-goals:
    - Does NOT commit.  The caller owns the transaction.
"""

from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from school_config import LedgerSettings
from school_kernel.domain.clock import Clock, SystemClock
from school_kernel.domain.commands import coerce_uuid
from school_kernel.domain.dtos import (
    BulkPromotionReport,
    CriteriaThresholds,
    PromotionCriteriaInfo,
    PromotionLogInfo,
    PromotionOutcome,
    PromotionStatus,
    StudentEligibility,
    StudentPromotionResult,
    YearRollResult,
)
from school_kernel.exceptions import (
    DuplicateBatchStudentError,
    SchoolKernelError,
    SchoolNotFoundError,
)
from school_kernel.logging_config import LogContext, get_logger
from school_kernel.models.school import School
from school_kernel.services.sequence_service import SequenceService
from school_services.balance_service import BalanceService
from school_services.criteria_service import PromotionCriteriaService
from school_services.eligibility_service import EligibilityService
from school_services.performance import (
    AcademicPerformanceProvider,
    StaticPerformanceProvider,
)
from school_services.progression_service import ProgressionService
from school_services.promotion_executor import PromotionExecutor
from school_services.year_roller import AcademicYearRoller

logger = get_logger("services.promotion_workflow")


def _key(student_id: UUID | str) -> str:
    """Canonical string form of a selected id, for matching results."""
    try:
        return str(coerce_uuid(student_id, "student_id"))
    except SchoolKernelError:
        return str(student_id)


def _in_selection_order(
    selected: list[UUID | str],
    evaluations: dict[str, StudentEligibility | None],
    outcomes: dict[str, PromotionOutcome],
):
    """One result per selected entry; a repeated id after the first is a failed item."""
    reported: set[str] = set()
    for raw_id in selected:
        key = _key(raw_id)
        if key in reported:
            repeat = DuplicateBatchStudentError(key)
            yield StudentPromotionResult(
                eligibility=None,
                outcome=PromotionOutcome(
                    student_id=outcomes[key].student_id,
                    status=PromotionStatus.FAILED,
                    reason=str(repeat),
                    error_code=repeat.code,
                ),
            )
            continue
        reported.add(key)
        yield StudentPromotionResult(eligibility=evaluations.get(key), outcome=outcomes[key])


class PromotionWorkflow:
    """
    Service container for one session.

    All services share the session, clock, settings, performance provider
    and sequence service, and are exposed as attributes.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: LedgerSettings | None = None,
        performance: AcademicPerformanceProvider | None = None,
    ):
        self.session = session
        self.clock = clock or SystemClock()
        self.settings = settings or LedgerSettings.with_defaults()
        self.performance = performance or StaticPerformanceProvider()

        self.sequence = SequenceService(session)
        self.balances = BalanceService(
            session, clock=self.clock, settings=self.settings, sequence_service=self.sequence
        )
        self.criteria = PromotionCriteriaService(session, settings=self.settings)
        self.progression = ProgressionService(session)
        self.eligibility = EligibilityService(
            session,
            performance=self.performance,
            balance_service=self.balances,
            criteria_service=self.criteria,
            settings=self.settings,
            clock=self.clock,
        )
        self.executor = PromotionExecutor(
            session,
            clock=self.clock,
            settings=self.settings,
            performance=self.performance,
            sequence_service=self.sequence,
            eligibility_service=self.eligibility,
        )
        self.roller = AcademicYearRoller(session, clock=self.clock)

    def _school(self, school_code: str) -> School:
        school = self.session.execute(
            select(School).where(School.code == school_code)
        ).scalar_one_or_none()
        if school is None:
            raise SchoolNotFoundError(school_code)
        return school

    @staticmethod
    def _thresholds(
        criteria: PromotionCriteriaInfo | CriteriaThresholds | None,
    ) -> CriteriaThresholds | None:
        if isinstance(criteria, PromotionCriteriaInfo):
            return criteria.thresholds
        return criteria

    def get_eligible_students(
        self,
        school_code: str,
        criteria: PromotionCriteriaInfo | CriteriaThresholds | None = None,
        academic_year_id: UUID | None = None,
    ) -> list[StudentEligibility]:
        return self.eligibility.get_eligible_students(
            school_code,
            thresholds=self._thresholds(criteria),
            academic_year_id=academic_year_id,
        )

    def execute_bulk_promotion(
        self,
        school_code: str,
        selected_student_ids: list[UUID | str],
        criteria: PromotionCriteriaInfo | None,
        promoted_by: str,
    ) -> BulkPromotionReport:
        """
        Re-check eligibility for the selected students, then promote.

        A selected id that cannot be evaluated (unknown, other school) is
        passed on to the executor, which reports it as a failed item.

        Raises:
            SchoolNotFoundError: unknown school code.
            NoActiveCriteriaError: no criteria given and none active.
            NoCurrentAcademicYearError: the school has no current year.
        """
        school = self._school(school_code)
        if criteria is None:
            criteria = self.criteria.get_active(school.id)
        year = self.roller.get_current_year(school.id)
        batch_id = uuid4()

        evaluations: dict[str, StudentEligibility | None] = {}
        eligible: list[UUID | str] = []
        excluded = {}

        with LogContext.bind(
            school_id=str(school.id), batch_id=str(batch_id), actor_id=promoted_by
        ):
            for raw_id in selected_student_ids:
                key = _key(raw_id)
                if key in evaluations:
                    continue
                try:
                    student_id = coerce_uuid(raw_id, "student_id")
                    evaluation = self.eligibility.evaluate_student(
                        student_id, criteria.thresholds, year.id
                    )
                except SchoolKernelError as exc:
                    logger.warning(
                        "eligibility_check_failed",
                        extra={"student_id": key, "error_code": exc.code},
                    )
                    evaluations[key] = None
                    eligible.append(raw_id)
                    continue

                evaluations[key] = evaluation
                if evaluation.is_eligible:
                    eligible.append(student_id)
                else:
                    excluded[key] = self.executor.exclude_student(
                        student_id,
                        promoted_by,
                        evaluation.reason,
                        batch_id=batch_id,
                        criteria=criteria,
                        metrics=evaluation.metrics,
                    )

            batch = self.executor.bulk_promote_students(
                school.id,
                eligible,
                promoted_by,
                criteria=criteria,
                batch_id=batch_id,
                metrics={
                    e.student_id: e.metrics
                    for e in evaluations.values()
                    if e is not None and e.metrics is not None
                },
            )
            outcomes = {_key(o.student_id): o for o in batch.results}
            outcomes.update(excluded)

            results = tuple(_in_selection_order(selected_student_ids, evaluations, outcomes))
            promoted_count = sum(1 for r in results if r.outcome.advanced)
            logger.info(
                "bulk_promotion_executed",
                extra={
                    "selected": len(results),
                    "promoted": promoted_count,
                    "excluded": len(results) - promoted_count,
                },
            )

        return BulkPromotionReport(
            batch_id=batch_id,
            promoted_count=promoted_count,
            excluded_count=len(results) - promoted_count,
            results=results,
        )

    def bulk_promote_students(
        self,
        school_id: UUID,
        students: list[UUID | str],
        promoted_by: str,
    ) -> tuple[list[PromotionLogInfo], YearRollResult]:
        """
        Promote every listed student, then roll the academic year once.

        The roll runs even when every student was excluded or failed.
        """
        batch = self.executor.bulk_promote_students(school_id, students, promoted_by)
        roll = self.roller.roll_forward(school_id, actor=promoted_by)
        logger.info(
            "bulk_promotion_with_year_roll",
            extra={
                "school_id": str(school_id),
                "batch_id": str(batch.batch_id),
                "promoted": batch.promoted_count,
                "excluded": batch.excluded_count,
                "current_year": roll.current_year.name,
            },
        )
        return list(batch.logs), roll
