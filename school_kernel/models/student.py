"""
Module: school_kernel.models.student
Responsibility: ORM persistence for enrolled students and their lifecycle
    status.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - A student moves ACTIVE -> GRADUATED at most once.  Graduation leaves
      ``class_id`` untouched and sets ``is_active`` to False.
    - The join point (joined_academic_year_id + joined_term_id, or
      ``joined_on`` when those are unknown) bounds the fee ledger: nothing
      charged before it is owed.
"""

from datetime import date
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, Date, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from school_kernel.db.base import TrackedBase, UUIDString


class StudentStatus(str, Enum):
    ACTIVE = "active"
    GRADUATED = "graduated"
    TRANSFERRED = "transferred"
    SUSPENDED = "suspended"


class Student(TrackedBase):
    __tablename__ = "students"

    __table_args__ = (
        UniqueConstraint("school_id", "admission_number", name="uq_student_admission"),
        Index("idx_student_school_active", "school_id", "is_active"),
        Index("idx_student_class", "class_id"),
    )

    school_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("schools.id"), nullable=False
    )

    admission_number: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    class_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("classes.id"), nullable=True
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    status: Mapped[StudentStatus] = mapped_column(
        String(20), default=StudentStatus.ACTIVE.value, nullable=False
    )

    joined_on: Mapped[date | None] = mapped_column(Date, nullable=True)

    joined_academic_year_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("academic_years.id"), nullable=True
    )

    joined_term_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("terms.id"), nullable=True
    )

    def __repr__(self) -> str:
        return f"<Student {self.admission_number}: {self.status}>"

    @property
    def is_graduated(self) -> bool:
        return StudentStatus(self.status) == StudentStatus.GRADUATED

    def graduate(self) -> None:
        """Terminal transition.  Class assignment is kept for the record."""
        self.is_active = False
        self.status = StudentStatus.GRADUATED.value
