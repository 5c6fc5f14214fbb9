"""
Module: school_kernel.models.school
Responsibility: ORM persistence for the school structure -- schools, grades,
    classes and the progression rules that chain classes together.
Architecture position: Kernel > Models.  May import from db/base.py and domain DTOs.

Invariants enforced:
    - School.code is unique; it is the tenant key callers pass around.
    - Grade name is unique within a school.
    - ClassProgression rules are keyed by class *names*.  At most one active
      rule per (school, from_class): ProgressionService deactivates the
      others when it saves a rule, and the executor raises
      DuplicateProgressionRuleError if it ever finds two.
"""

from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from school_kernel.db.base import TrackedBase, UUIDString
from school_kernel.domain.dtos import ProgressionRuleInfo


class School(TrackedBase):
    """A tenant.  Every other record hangs off a school."""

    __tablename__ = "schools"

    __table_args__ = (UniqueConstraint("code", name="uq_school_code"),)

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    def __repr__(self) -> str:
        return f"<School {self.code}>"


class Grade(TrackedBase):
    """A grade level (e.g. "Grade 6").  Fee structures are set per grade."""

    __tablename__ = "grades"

    __table_args__ = (
        UniqueConstraint("school_id", "name", name="uq_grade_school_name"),
    )

    school_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("schools.id"), nullable=False
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    def __repr__(self) -> str:
        return f"<Grade {self.name}>"


class SchoolClass(TrackedBase):
    """A class (stream) within a grade, e.g. "Grade 6A"."""

    __tablename__ = "classes"

    __table_args__ = (
        Index("idx_class_school_name", "school_id", "name"),
    )

    school_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("schools.id"), nullable=False
    )

    grade_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("grades.id"), nullable=False
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Academic year label the class was opened for (e.g. "2025")
    academic_year: Mapped[str | None] = mapped_column(String(20), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<SchoolClass {self.name}>"


class ClassProgression(TrackedBase):
    """
    Promotion rule: students in ``from_class`` move to ``to_class``.

    ``to_class`` is either the name of another class in the school or the
    graduation target ("Alumni").  A name that matches no active class is
    also treated as graduation.
    """

    __tablename__ = "class_progressions"

    __table_args__ = (
        Index("idx_progression_from", "school_id", "from_class", "is_active"),
    )

    school_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("schools.id"), nullable=False
    )

    from_class: Mapped[str] = mapped_column(String(100), nullable=False)

    to_class: Mapped[str] = mapped_column(String(100), nullable=False)

    # Ordering key for listing the progression chain
    order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def to_dto(self) -> ProgressionRuleInfo:
        return ProgressionRuleInfo(
            id=self.id,
            school_id=self.school_id,
            from_class=self.from_class,
            to_class=self.to_class,
            order=self.order,
            is_active=self.is_active,
        )

    def __repr__(self) -> str:
        return f"<ClassProgression {self.from_class} -> {self.to_class}>"
