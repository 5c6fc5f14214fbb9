"""
Module: school_kernel.models.academic
Responsibility: ORM persistence for the academic calendar -- years and the
    three terms inside each year.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Exactly one current AcademicYear per school and exactly one current
      Term within the current year.  The flags are flipped by
      AcademicYearRoller with a single UPDATE per table so no reader sees
      zero or two current rows.
    - Year name is unique within a school; term name is unique within a year.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import Boolean, Date, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from school_kernel.db.base import TrackedBase, UUIDString
from school_kernel.domain.dtos import AcademicYearInfo, TermInfo
from school_kernel.domain.values import term_order, year_order


class AcademicYear(TrackedBase):
    __tablename__ = "academic_years"

    __table_args__ = (
        UniqueConstraint("school_id", "name", name="uq_academic_year_school_name"),
        Index("idx_academic_year_current", "school_id", "is_current"),
    )

    school_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("schools.id"), nullable=False
    )

    # Year label, e.g. "2025"
    name: Mapped[str] = mapped_column(String(20), nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    is_current: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        flag = " (current)" if self.is_current else ""
        return f"<AcademicYear {self.name}{flag}>"

    @property
    def sort_key(self) -> int:
        return year_order(self.name)

    def to_dto(self) -> AcademicYearInfo:
        return AcademicYearInfo(
            id=self.id,
            school_id=self.school_id,
            name=self.name,
            start_date=self.start_date,
            end_date=self.end_date,
            is_current=self.is_current,
        )


class Term(TrackedBase):
    __tablename__ = "terms"

    __table_args__ = (
        UniqueConstraint("academic_year_id", "name", name="uq_term_year_name"),
    )

    academic_year_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("academic_years.id"), nullable=False
    )

    # "Term 1" | "Term 2" | "Term 3"
    name: Mapped[str] = mapped_column(String(20), nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    is_current: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<Term {self.name}>"

    @property
    def order(self) -> int:
        return term_order(self.name)

    def to_dto(self) -> TermInfo:
        return TermInfo(
            id=self.id,
            academic_year_id=self.academic_year_id,
            name=self.name,
            start_date=self.start_date,
            end_date=self.end_date,
            is_current=self.is_current,
        )
