"""
PromotionCriteriaService -- lifecycle of a school's promotion criteria.

Invariants enforced:
    - At most one active criteria per (school, promotion_type).  Activating
      one deactivates the others in the same flush; a lookup that finds two
      raises DuplicateActiveCriteriaError instead of guessing.
    - The only active criteria of a school cannot be deleted.
    - ``get_or_create_default`` seeds 50% / 0 balance / 0 cases from the
      configured defaults when a school has no criteria at all.
"""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from school_config import LedgerSettings
from school_kernel.domain.commands import PromotionCriteriaCommand
from school_kernel.domain.dtos import PromotionCriteriaInfo
from school_kernel.exceptions import (
    CriteriaNotFoundError,
    DuplicateActiveCriteriaError,
    LastActiveCriteriaError,
    NoActiveCriteriaError,
    ValidationError,
)
from school_kernel.logging_config import get_logger
from school_kernel.models.promotion import PromotionCriteria
from school_kernel.services.base import BaseService

logger = get_logger("services.criteria")


class PromotionCriteriaService(BaseService):
    def __init__(self, session: Session, settings: LedgerSettings | None = None):
        super().__init__(session)
        self._settings = settings or LedgerSettings.with_defaults()

    def _get(self, criteria_id: UUID) -> PromotionCriteria:
        row = self.session.get(PromotionCriteria, criteria_id)
        if row is None:
            raise CriteriaNotFoundError(str(criteria_id))
        return row

    def _active_rows(self, school_id: UUID, promotion_type: str) -> list[PromotionCriteria]:
        return list(
            self.session.execute(
                select(PromotionCriteria).where(
                    PromotionCriteria.school_id == school_id,
                    PromotionCriteria.promotion_type == promotion_type,
                    PromotionCriteria.is_active.is_(True),
                )
            ).scalars().all()
        )

    def _deactivate_others(self, school_id: UUID, promotion_type: str, keep_id: UUID) -> None:
        self.session.execute(
            update(PromotionCriteria)
            .where(
                PromotionCriteria.school_id == school_id,
                PromotionCriteria.promotion_type == promotion_type,
                PromotionCriteria.id != keep_id,
            )
            .values(is_active=False)
            .execution_options(synchronize_session="fetch")
        )

    def create_criteria(
        self,
        command: PromotionCriteriaCommand,
        actor: str = "system",
    ) -> PromotionCriteriaInfo:
        self._require_school(command.school_id)

        row = PromotionCriteria(
            school_id=command.school_id,
            name=command.name,
            description=command.description,
            promotion_type=command.promotion_type,
            min_grade=command.min_grade,
            max_fee_balance=command.max_fee_balance,
            max_disciplinary_cases=command.max_disciplinary_cases,
            is_active=command.is_active,
            created_by=actor,
        )
        self._persist(row)
        if row.is_active:
            self._deactivate_others(row.school_id, row.promotion_type, row.id)
            self.session.flush()

        logger.info(
            "promotion_criteria_created",
            extra={
                "criteria_id": str(row.id),
                "school_id": str(row.school_id),
                "promotion_type": row.promotion_type,
                "is_active": row.is_active,
            },
        )
        return row.to_dto()

    def get_active(
        self,
        school_id: UUID,
        promotion_type: str | None = None,
    ) -> PromotionCriteriaInfo:
        """
        Raises:
            NoActiveCriteriaError: none active.
            DuplicateActiveCriteriaError: more than one active.
        """
        promotion_type = promotion_type or self._settings.promotion_type
        rows = self._active_rows(school_id, promotion_type)
        if not rows:
            raise NoActiveCriteriaError(str(school_id), promotion_type)
        if len(rows) > 1:
            logger.error(
                "duplicate_active_criteria",
                extra={
                    "school_id": str(school_id),
                    "promotion_type": promotion_type,
                    "count": len(rows),
                },
            )
            raise DuplicateActiveCriteriaError(str(school_id), promotion_type, len(rows))
        return rows[0].to_dto()

    def get_or_create_default(self, school_id: UUID, actor: str = "system") -> PromotionCriteriaInfo:
        promotion_type = self._settings.promotion_type
        if self._active_rows(school_id, promotion_type):
            return self.get_active(school_id, promotion_type)

        defaults = self._settings.default_thresholds
        logger.info("default_criteria_created", extra={"school_id": str(school_id)})
        return self.create_criteria(
            PromotionCriteriaCommand(
                school_id=school_id,
                name="Default Criteria",
                description="Default promotion criteria",
                min_grade=defaults.min_grade,
                max_fee_balance=defaults.max_fee_balance,
                max_disciplinary_cases=defaults.max_disciplinary_cases,
                promotion_type=promotion_type,
            ),
            actor=actor,
        )

    def activate(self, criteria_id: UUID, actor: str = "system") -> PromotionCriteriaInfo:
        row = self._get(criteria_id)
        self._deactivate_others(row.school_id, row.promotion_type, row.id)
        row.is_active = True
        row.updated_by = actor
        self.session.flush()
        logger.info(
            "promotion_criteria_activated",
            extra={"criteria_id": str(row.id), "school_id": str(row.school_id)},
        )
        return row.to_dto()

    def update_criteria(
        self,
        criteria_id: UUID,
        command: PromotionCriteriaCommand,
        actor: str = "system",
    ) -> PromotionCriteriaInfo:
        row = self._get(criteria_id)
        if command.school_id != row.school_id:
            raise ValidationError("school_id", "criteria belongs to another school", command.school_id)
        leaves_type = not command.is_active or command.promotion_type != row.promotion_type
        if row.is_active and leaves_type and len(
            self._active_rows(row.school_id, row.promotion_type)
        ) <= 1:
            raise LastActiveCriteriaError(str(criteria_id))

        row.name = command.name
        row.description = command.description
        row.promotion_type = command.promotion_type
        row.min_grade = command.min_grade
        row.max_fee_balance = command.max_fee_balance
        row.max_disciplinary_cases = command.max_disciplinary_cases
        row.updated_by = actor
        self.session.flush()
        if command.is_active and not row.is_active:
            return self.activate(row.id, actor)
        row.is_active = command.is_active
        if row.is_active:
            self._deactivate_others(row.school_id, row.promotion_type, row.id)
        self.session.flush()
        logger.info("promotion_criteria_updated", extra={"criteria_id": str(row.id)})
        return row.to_dto()

    def delete_criteria(self, criteria_id: UUID) -> None:
        """
        Raises:
            LastActiveCriteriaError: it is the only active criteria.
        """
        row = self._get(criteria_id)
        if row.is_active and len(self._active_rows(row.school_id, row.promotion_type)) <= 1:
            raise LastActiveCriteriaError(str(criteria_id))
        self.session.delete(row)
        self.session.flush()
        logger.info("promotion_criteria_deleted", extra={"criteria_id": str(criteria_id)})

    def list_criteria(self, school_id: UUID) -> list[PromotionCriteriaInfo]:
        """Active first, then by name."""
        rows = self.session.execute(
            select(PromotionCriteria)
            .where(PromotionCriteria.school_id == school_id)
            .order_by(PromotionCriteria.is_active.desc(), PromotionCriteria.name)
        ).scalars().all()
        return [r.to_dto() for r in rows]
