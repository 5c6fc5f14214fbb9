"""
Module: school_kernel.models.promotion
Responsibility: ORM persistence for promotion criteria, the append-only
    promotion log and alumni records.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - At most one active PromotionCriteria per (school, promotion_type).
      Enforced by PromotionCriteriaService; lookups raise
      DuplicateActiveCriteriaError if two are ever found.
    - PromotionLog is append-only and ordered by a monotonic ``seq`` from
      SequenceService.  Every executor outcome (promoted, graduated,
      excluded) writes exactly one row.
    - Alumni is unique per (student, graduation_year).  Graduation is
      idempotent: a second run finds the existing row.
"""

from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from school_kernel.db.base import TrackedBase, UUIDString
from school_kernel.domain.dtos import (
    CriteriaThresholds,
    PromotionCriteriaInfo,
    PromotionLogInfo,
)
from school_kernel.domain.values import to_amount


class PromotionLogOutcome(str, Enum):
    PROMOTED = "promoted"
    GRADUATED = "graduated"
    EXCLUDED = "excluded"


class PromotionCriteria(TrackedBase):
    __tablename__ = "promotion_criteria"

    __table_args__ = (
        Index("idx_criteria_active", "school_id", "promotion_type", "is_active"),
    )

    school_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("schools.id"), nullable=False
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    promotion_type: Mapped[str] = mapped_column(
        String(50), default="bulk", nullable=False
    )

    # Minimum average grade (percent), inclusive
    min_grade: Mapped[Decimal] = mapped_column(nullable=False)

    # Maximum outstanding fee balance, inclusive
    max_fee_balance: Mapped[Decimal] = mapped_column(nullable=False)

    max_disciplinary_cases: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        flag = " (active)" if self.is_active else ""
        return f"<PromotionCriteria {self.name}{flag}>"

    @property
    def thresholds(self) -> CriteriaThresholds:
        return CriteriaThresholds(
            min_grade=to_amount(self.min_grade),
            max_fee_balance=to_amount(self.max_fee_balance),
            max_disciplinary_cases=self.max_disciplinary_cases,
        )

    def to_dto(self) -> PromotionCriteriaInfo:
        return PromotionCriteriaInfo(
            id=self.id,
            school_id=self.school_id,
            name=self.name,
            description=self.description,
            promotion_type=self.promotion_type,
            thresholds=self.thresholds,
            is_active=self.is_active,
        )


class PromotionLog(TrackedBase):
    """One row per executor outcome.  Immutable."""

    __tablename__ = "promotion_logs"

    __table_args__ = (
        UniqueConstraint("seq", name="uq_promotion_log_seq"),
        Index("idx_promotion_log_student", "student_id"),
        Index("idx_promotion_log_batch", "batch_id"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)

    school_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("schools.id"), nullable=False
    )

    student_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("students.id"), nullable=False
    )

    batch_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    from_class: Mapped[str] = mapped_column(String(100), nullable=False)

    to_class: Mapped[str] = mapped_column(String(100), nullable=False)

    from_year: Mapped[str] = mapped_column(String(20), nullable=False)

    to_year: Mapped[str] = mapped_column(String(20), nullable=False)

    promoted_by: Mapped[str] = mapped_column(String(100), nullable=False)

    promotion_type: Mapped[str] = mapped_column(String(50), nullable=False)

    outcome: Mapped[str] = mapped_column(String(20), nullable=False)

    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Criteria snapshot and per-criterion pass/fail at decision time
    criteria_results: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    average_grade: Mapped[Decimal | None] = mapped_column(nullable=True)

    outstanding_balance: Mapped[Decimal | None] = mapped_column(nullable=True)

    disciplinary_cases: Mapped[int | None] = mapped_column(Integer, nullable=True)

    def __repr__(self) -> str:
        return f"<PromotionLog #{self.seq} {self.from_class} -> {self.to_class}>"

    def to_dto(self) -> PromotionLogInfo:
        return PromotionLogInfo(
            id=self.id,
            seq=self.seq,
            batch_id=self.batch_id,
            student_id=self.student_id,
            from_class=self.from_class,
            to_class=self.to_class,
            from_year=self.from_year,
            to_year=self.to_year,
            promoted_by=self.promoted_by,
            promotion_type=self.promotion_type,
            outcome=self.outcome,
            reason=self.reason,
            criteria_results=dict(self.criteria_results or {}),
        )


class Alumni(TrackedBase):
    """Graduation record.  Created once per (student, graduation year)."""

    __tablename__ = "alumni"

    __table_args__ = (
        UniqueConstraint("student_id", "graduation_year", name="uq_alumni_student_year"),
        Index("idx_alumni_school_year", "school_id", "graduation_year"),
    )

    school_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("schools.id"), nullable=False
    )

    student_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("students.id"), nullable=False
    )

    graduation_year: Mapped[str] = mapped_column(String(20), nullable=False)

    final_grade: Mapped[str | None] = mapped_column(String(20), nullable=True)

    achievements: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    def __repr__(self) -> str:
        return f"<Alumni {self.student_id} ({self.graduation_year})>"
