"""
PromotionExecutor -- moves students to their next class or graduates them.

Contract:
    Per student:
        Active(A) --promote--> Active(B)            class_id changes, nothing else
        Active(A) --graduate--> Graduated + Alumni  terminal, class kept

    1. Resolve the current class and its active ClassProgression rule.
    2. No rule: excluded, "No next class configured".  Not an error.
    3. Target resolves to Graduate: Alumni row for (student, graduation
       year) if absent, then ``is_active=False, status=graduated``.
    4. Target resolves to ClassTarget: ``class_id`` moves.
    5. Exactly one PromotionLog row per outcome, with a monotonic ``seq``.

Batch:
    ``bulk_promote_students`` runs each student in its own SAVEPOINT.  A
    kernel error (``SchoolKernelError``) rolls back that student only and is
    recorded; a store-level error (``DBAPIError``) aborts the batch.

Non-goals:
    - Does NOT call ``session.commit()``.
    - Does NOT decide eligibility.  Callers filter first (see
      PromotionWorkflow); the executor only records the criteria snapshot.
"""

from dataclasses import dataclass
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from school_config import LedgerSettings
from school_kernel.domain.clock import Clock, SystemClock
from school_kernel.domain.commands import coerce_uuid
from school_kernel.domain.dtos import (
    BatchItemError,
    BatchPromotionResult,
    PromotionCriteriaInfo,
    PromotionLogInfo,
    PromotionOutcome,
    PromotionStatus,
    StudentMetrics,
)
from school_kernel.domain.progression import ClassTarget, Graduate, resolve_target
from school_kernel.domain.values import year_order
from school_kernel.exceptions import (
    DuplicateBatchStudentError,
    DuplicateProgressionRuleError,
    ProgressionTargetMissingError,
    SchoolKernelError,
    StudentNotFoundError,
)
from school_kernel.logging_config import LogContext, get_logger
from school_kernel.models.promotion import Alumni, PromotionLog, PromotionLogOutcome
from school_kernel.models.school import ClassProgression, SchoolClass
from school_kernel.models.student import Student
from school_kernel.selectors.academic_selector import AcademicSelector
from school_kernel.services.base import BaseService
from school_kernel.services.sequence_service import SequenceService
from school_services.eligibility_service import (
    NO_CLASS_NOTE,
    NOT_ACTIVE_NOTE,
    EligibilityService,
)
from school_services.performance import (
    AcademicPerformanceProvider,
    StaticPerformanceProvider,
)

logger = get_logger("services.promotion_executor")

NO_RULE_REASON = "No next class configured"

_LOG_OUTCOME = {
    PromotionStatus.PROMOTED: PromotionLogOutcome.PROMOTED,
    PromotionStatus.GRADUATED: PromotionLogOutcome.GRADUATED,
    PromotionStatus.EXCLUDED: PromotionLogOutcome.EXCLUDED,
}


@dataclass(frozen=True)
class _Placement:
    """Where a student stands before the executor touches it."""

    student: Student
    school_class: SchoolClass | None
    from_class: str
    from_year: str
    year_id: UUID | None


class PromotionExecutor(BaseService):
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: LedgerSettings | None = None,
        performance: AcademicPerformanceProvider | None = None,
        sequence_service: SequenceService | None = None,
        eligibility_service: EligibilityService | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._settings = settings or LedgerSettings.with_defaults()
        self._performance = performance or StaticPerformanceProvider()
        self._sequence = sequence_service or SequenceService(session)
        self._eligibility = eligibility_service or EligibilityService(
            session,
            performance=self._performance,
            settings=self._settings,
            clock=self._clock,
        )
        self._academic = AcademicSelector(session)

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def _active_rule(self, school_id: UUID, from_class: str) -> ClassProgression | None:
        rules = self.session.execute(
            select(ClassProgression)
            .where(
                ClassProgression.school_id == school_id,
                ClassProgression.from_class == from_class,
                ClassProgression.is_active.is_(True),
            )
            .order_by(ClassProgression.order)
        ).scalars().all()
        if len(rules) > 1:
            raise DuplicateProgressionRuleError(str(school_id), from_class)
        return rules[0] if rules else None

    def _active_classes(self, school_id: UUID) -> dict[str, UUID]:
        rows = self.session.execute(
            select(SchoolClass.name, SchoolClass.id).where(
                SchoolClass.school_id == school_id,
                SchoolClass.is_active.is_(True),
            )
        ).all()
        return {name: class_id for name, class_id in rows}

    def _years(self, student: Student, school_class: SchoolClass | None) -> tuple[str, UUID | None]:
        """Current academic year name and id for the student's school."""
        current = self._academic.current_year(student.school_id)
        if current is not None:
            return current.name, current.id
        if school_class is not None and school_class.academic_year:
            return school_class.academic_year, None
        return str(self._clock.calendar_year()), None

    @staticmethod
    def _next_year(year_name: str) -> str:
        number = year_order(year_name)
        return str(number + 1) if number else year_name

    def _snapshot(
        self,
        criteria: PromotionCriteriaInfo | None,
        metrics: StudentMetrics | None,
    ) -> dict:
        if criteria is None:
            return {}
        if metrics is None:
            return {"criteria_id": str(criteria.id), "thresholds": criteria.thresholds.as_dict()}
        _, results = self._eligibility.decide(criteria.thresholds, metrics)
        results["criteria_id"] = str(criteria.id)
        return results

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def _write_log(
        self,
        student: Student,
        status: PromotionStatus,
        from_class: str,
        to_class: str,
        from_year: str,
        to_year: str,
        promoted_by: str,
        batch_id: UUID | None,
        reason: str | None,
        criteria_results: dict,
        metrics: StudentMetrics | None,
    ) -> PromotionLog:
        log = PromotionLog(
            seq=self._sequence.next_value(SequenceService.PROMOTION_LOG),
            school_id=student.school_id,
            student_id=student.id,
            batch_id=batch_id,
            from_class=from_class,
            to_class=to_class,
            from_year=from_year,
            to_year=to_year,
            promoted_by=promoted_by,
            promotion_type=self._settings.promotion_type,
            outcome=_LOG_OUTCOME[status].value,
            reason=reason,
            criteria_results=criteria_results,
            average_grade=metrics.average_grade if metrics else None,
            outstanding_balance=metrics.fee_balance if metrics else None,
            disciplinary_cases=metrics.disciplinary_cases if metrics else None,
            created_by=promoted_by,
        )
        self._persist(log)
        return log

    def _find_alumni(self, student_id: UUID, graduation_year: str) -> Alumni | None:
        return self.session.execute(
            select(Alumni).where(
                Alumni.student_id == student_id,
                Alumni.graduation_year == graduation_year,
            )
        ).scalar_one_or_none()

    def _ensure_alumni(self, student: Student, graduation_year: str, actor: str) -> Alumni:
        """Idempotent: returns the existing row for (student, year) if any."""
        existing = self._find_alumni(student.id, graduation_year)
        if existing is not None:
            logger.info(
                "alumni_already_recorded",
                extra={"student_id": str(student.id), "graduation_year": graduation_year},
            )
            return existing

        savepoint = self.session.begin_nested()
        try:
            alumni = Alumni(
                school_id=student.school_id,
                student_id=student.id,
                graduation_year=graduation_year,
                final_grade=self._performance.final_grade(student.id),
                achievements=[],
                created_by=actor,
            )
            self._persist(alumni)
            savepoint.commit()
            return alumni
        except IntegrityError:
            # Lost a race with a concurrent graduation of the same student.
            savepoint.rollback()
            existing = self._find_alumni(student.id, graduation_year)
            if existing is None:
                raise
            return existing

    # -------------------------------------------------------------------------
    # Single student
    # -------------------------------------------------------------------------

    def _placement(self, student_id: UUID | str, school_id: UUID | None) -> _Placement:
        student_id = coerce_uuid(student_id, "student_id")
        student = self.session.get(Student, student_id)
        if student is None or (school_id is not None and student.school_id != school_id):
            raise StudentNotFoundError(str(student_id))
        school_class = (
            self.session.get(SchoolClass, student.class_id) if student.class_id else None
        )
        from_year, year_id = self._years(student, school_class)
        return _Placement(
            student=student,
            school_class=school_class,
            from_class=school_class.name if school_class else "",
            from_year=from_year,
            year_id=year_id,
        )

    def _record(
        self,
        placement: _Placement,
        status: PromotionStatus,
        to_class: str,
        to_year: str,
        promoted_by: str,
        batch_id: UUID | None,
        reason: str | None,
        criteria: PromotionCriteriaInfo | None,
        metrics: StudentMetrics | None,
        alumni_id: UUID | None = None,
    ) -> PromotionOutcome:
        student = placement.student
        log = self._write_log(
            student,
            status,
            placement.from_class,
            to_class,
            placement.from_year,
            to_year,
            promoted_by,
            batch_id,
            reason,
            self._snapshot(criteria, metrics),
            metrics,
        )
        logger.info(
            f"student_{status.value}",
            extra={
                "student_id": str(student.id),
                "from_class": placement.from_class,
                "to_class": to_class,
                "seq": log.seq,
                "reason": reason,
            },
        )
        return PromotionOutcome(
            student_id=student.id,
            status=status,
            from_class=placement.from_class or None,
            to_class=to_class or None,
            from_year=placement.from_year,
            to_year=to_year,
            reason=reason,
            log_id=log.id,
            alumni_id=alumni_id,
        )

    def exclude_student(
        self,
        student_id: UUID | str,
        promoted_by: str,
        reason: str,
        batch_id: UUID | None = None,
        criteria: PromotionCriteriaInfo | None = None,
        metrics: StudentMetrics | None = None,
    ) -> PromotionOutcome:
        """Log a student as excluded without touching the student row."""
        placement = self._placement(student_id, None)
        return self._record(
            placement,
            PromotionStatus.EXCLUDED,
            placement.from_class,
            placement.from_year,
            promoted_by,
            batch_id,
            reason,
            criteria,
            metrics,
        )

    def promote_student(
        self,
        student_id: UUID | str,
        promoted_by: str,
        batch_id: UUID | None = None,
        criteria: PromotionCriteriaInfo | None = None,
        metrics: StudentMetrics | None = None,
        school_id: UUID | None = None,
    ) -> PromotionOutcome:
        """
        Apply the progression rule for one student.

        Args:
            criteria: Criteria the caller decided with; stored on the log.
            metrics: Metrics the caller decided with.  Computed from the
                current year when criteria are given without metrics.
            school_id: When given, a student of another school is treated
                as not found.

        Raises:
            StudentNotFoundError, DuplicateProgressionRuleError,
            ProgressionTargetMissingError (strict targets only).
        """
        placement = self._placement(student_id, school_id)
        student = placement.student
        from_class = placement.from_class

        def exclude(reason: str) -> PromotionOutcome:
            return self._record(
                placement,
                PromotionStatus.EXCLUDED,
                from_class,
                placement.from_year,
                promoted_by,
                batch_id,
                reason,
                criteria,
                metrics,
            )

        if not student.is_active or student.is_graduated:
            return exclude(NOT_ACTIVE_NOTE)
        if placement.school_class is None:
            return exclude(NO_CLASS_NOTE)

        if criteria is not None and metrics is None and placement.year_id is not None:
            metrics = self._eligibility.metrics_for(student.id, placement.year_id)

        rule = self._active_rule(student.school_id, from_class)
        if rule is None:
            return exclude(NO_RULE_REASON)

        graduation_name = self._settings.graduation_target_name
        target = resolve_target(
            rule.to_class, self._active_classes(student.school_id), graduation_name
        )
        if (
            isinstance(target, Graduate)
            and self._settings.strict_progression_targets
            and target.label.casefold() != graduation_name.casefold()
        ):
            raise ProgressionTargetMissingError(from_class, rule.to_class)

        to_year = self._next_year(placement.from_year)
        if isinstance(target, ClassTarget):
            student.class_id = target.class_id
            student.updated_by = promoted_by
            self.session.flush()
            return self._record(
                placement,
                PromotionStatus.PROMOTED,
                target.name,
                to_year,
                promoted_by,
                batch_id,
                f"Promoted from {from_class} to {target.name}",
                criteria,
                metrics,
            )

        alumni = self._ensure_alumni(student, placement.from_year, promoted_by)
        student.graduate()
        student.updated_by = promoted_by
        self.session.flush()
        return self._record(
            placement,
            PromotionStatus.GRADUATED,
            target.label,
            to_year,
            promoted_by,
            batch_id,
            f"Graduated from {from_class}",
            criteria,
            metrics,
            alumni_id=alumni.id,
        )

    # -------------------------------------------------------------------------
    # Batch
    # -------------------------------------------------------------------------

    def bulk_promote_students(
        self,
        school_id: UUID,
        student_ids: list[UUID | str],
        promoted_by: str,
        criteria: PromotionCriteriaInfo | None = None,
        batch_id: UUID | None = None,
        metrics: dict[UUID, StudentMetrics] | None = None,
    ) -> BatchPromotionResult:
        """
        Promote a batch, one SAVEPOINT per student.

        ``promoted_count`` includes graduations; ``excluded_count`` includes
        students whose promotion failed with a kernel error.

        Raises:
            DBAPIError: store-level failure; the batch is aborted.
        """
        batch_id = batch_id or uuid4()
        metrics = metrics or {}
        outcomes: list[PromotionOutcome] = []
        errors: list[BatchItemError] = []
        seen: set[UUID] = set()

        with LogContext.bind(
            school_id=str(school_id), batch_id=str(batch_id), actor_id=promoted_by
        ):
            logger.info("promotion_batch_started", extra={"student_count": len(student_ids)})

            for raw_id in student_ids:
                item_id: UUID | str = raw_id
                savepoint = self.session.begin_nested()
                try:
                    student_id = item_id = coerce_uuid(raw_id, "student_id")
                    if student_id in seen:
                        raise DuplicateBatchStudentError(str(student_id))
                    seen.add(student_id)
                    outcome = self.promote_student(
                        student_id,
                        promoted_by,
                        batch_id=batch_id,
                        criteria=criteria,
                        metrics=metrics.get(student_id),
                        school_id=school_id,
                    )
                    savepoint.commit()
                except SchoolKernelError as exc:
                    savepoint.rollback()
                    errors.append(
                        BatchItemError(student_id=str(item_id), error_code=exc.code, message=str(exc))
                    )
                    outcome = PromotionOutcome(
                        student_id=item_id,
                        status=PromotionStatus.FAILED,
                        reason=str(exc),
                        error_code=exc.code,
                    )
                    logger.warning(
                        "promotion_item_failed",
                        extra={"student_id": str(item_id), "error_code": exc.code},
                    )
                except DBAPIError:
                    savepoint.rollback()
                    logger.error("promotion_batch_aborted", extra={"student_id": str(raw_id)})
                    raise
                outcomes.append(outcome)

            promoted = sum(1 for o in outcomes if o.status == PromotionStatus.PROMOTED)
            graduated = sum(1 for o in outcomes if o.status == PromotionStatus.GRADUATED)
            excluded = len(outcomes) - promoted - graduated

            log_ids = [o.log_id for o in outcomes if o.log_id is not None]
            logs = self._logs(log_ids)

            logger.info(
                "promotion_batch_completed",
                extra={
                    "promoted": promoted,
                    "graduated": graduated,
                    "excluded": excluded,
                    "failed": len(errors),
                },
            )

        return BatchPromotionResult(
            batch_id=batch_id,
            promoted_count=promoted + graduated,
            graduated_count=graduated,
            excluded_count=excluded,
            results=tuple(outcomes),
            errors=tuple(errors),
            logs=tuple(logs),
        )

    def _logs(self, log_ids: list[UUID]) -> list[PromotionLogInfo]:
        if not log_ids:
            return []
        rows = self.session.execute(
            select(PromotionLog).where(PromotionLog.id.in_(log_ids)).order_by(PromotionLog.seq)
        ).scalars().all()
        return [r.to_dto() for r in rows]

    def get_promotion_history(self, student_id: UUID) -> list[PromotionLogInfo]:
        """Promotion log rows for a student, oldest first."""
        rows = self.session.execute(
            select(PromotionLog)
            .where(PromotionLog.student_id == student_id)
            .order_by(PromotionLog.seq)
        ).scalars().all()
        return [r.to_dto() for r in rows]
