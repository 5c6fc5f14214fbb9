"""
ProgressionService -- the class-to-class promotion chain of a school.

A school saves its rules as a list ("Grade 5A -> Grade 6A", "Grade 6A ->
Alumni").  Each rule is upserted by ``(school, from_class)``: an existing
row for that class is updated and re-activated, any other active row for
the same class is deactivated, so the executor always finds at most one
active rule per class.  Rules missing from the list are left as they are.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import select

from school_kernel.domain.commands import ProgressionRuleCommand
from school_kernel.domain.dtos import ProgressionRuleInfo
from school_kernel.exceptions import ValidationError
from school_kernel.logging_config import get_logger
from school_kernel.models.school import ClassProgression
from school_kernel.services.base import BaseService

logger = get_logger("services.progression")


class ProgressionService(BaseService):

    def set_rules(
        self,
        school_id: UUID,
        rules: list[ProgressionRuleCommand | dict[str, Any]],
        actor: str = "system",
    ) -> list[ProgressionRuleInfo]:
        """
        Upsert each rule and return the school's active chain.

        Raises:
            SchoolNotFoundError: unknown school.
            ValidationError: a malformed rule, or one class listed twice.
        """
        self._require_school(school_id)
        commands = [
            r if isinstance(r, ProgressionRuleCommand) else ProgressionRuleCommand.from_dict(r)
            for r in rules
        ]
        from_classes = [c.from_class for c in commands]
        repeated = sorted({name for name in from_classes if from_classes.count(name) > 1})
        if repeated:
            raise ValidationError("rules", "a class may have only one rule", repeated)

        for command in commands:
            self._upsert(school_id, command, actor)

        logger.info(
            "progression_rules_saved",
            extra={"school_id": str(school_id), "rule_count": len(commands), "actor": actor},
        )
        return self.list_rules(school_id)

    def _upsert(self, school_id: UUID, command: ProgressionRuleCommand, actor: str) -> None:
        existing = self.session.execute(
            select(ClassProgression)
            .where(
                ClassProgression.school_id == school_id,
                ClassProgression.from_class == command.from_class,
            )
            .order_by(ClassProgression.is_active.desc(), ClassProgression.order)
        ).scalars().all()

        if not existing:
            self._persist(
                ClassProgression(
                    school_id=school_id,
                    from_class=command.from_class,
                    to_class=command.to_class,
                    order=command.order,
                    is_active=True,
                    created_by=actor,
                )
            )
            return

        kept, *others = existing
        kept.to_class = command.to_class
        kept.order = command.order
        kept.is_active = True
        kept.updated_by = actor
        for row in others:
            if row.is_active:
                row.is_active = False
                row.updated_by = actor
                logger.warning(
                    "progression_rule_superseded",
                    extra={"rule_id": str(row.id), "from_class": row.from_class},
                )
        self.session.flush()

    def list_rules(
        self, school_id: UUID, include_inactive: bool = False
    ) -> list[ProgressionRuleInfo]:
        """Rules in chain order (``order``, then class name)."""
        query = select(ClassProgression).where(ClassProgression.school_id == school_id)
        if not include_inactive:
            query = query.where(ClassProgression.is_active.is_(True))
        rows = self.session.execute(
            query.order_by(ClassProgression.order, ClassProgression.from_class)
        ).scalars().all()
        return [r.to_dto() for r in rows]
