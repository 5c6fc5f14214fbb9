"""
Academic performance inputs for promotion decisions.

Grades and disciplinary records live outside the fee ledger (the marks
system, the pastoral register).  Services depend on the
``AcademicPerformanceProvider`` protocol and the deployment wires in an
adapter.  ``StaticPerformanceProvider`` serves fixed values and is what
tests and single-school installs without a marks system use.
"""

from decimal import Decimal
from typing import Protocol, runtime_checkable
from uuid import UUID

from school_kernel.domain.values import to_amount


@runtime_checkable
class AcademicPerformanceProvider(Protocol):
    def average_grade(self, student_id: UUID, academic_year_id: UUID | None) -> Decimal:
        """Average grade in percent for the academic year."""
        ...

    def disciplinary_cases(self, student_id: UUID, academic_year_id: UUID | None) -> int:
        ...

    def final_grade(self, student_id: UUID) -> str | None:
        """Grade recorded on the alumni record at graduation."""
        ...


class StaticPerformanceProvider:
    """
    Fixed per-student values with school-wide defaults.

    The default average grade is 75 and disciplinary cases 0, so students
    with no recorded marks are not held back by missing data.
    """

    def __init__(
        self,
        grades: dict[UUID, Decimal | int | str] | None = None,
        cases: dict[UUID, int] | None = None,
        final_grades: dict[UUID, str] | None = None,
        default_grade: Decimal | int | str = Decimal("75"),
        default_cases: int = 0,
    ):
        self._grades = {k: to_amount(v, "average_grade") for k, v in (grades or {}).items()}
        self._cases = dict(cases or {})
        self._final_grades = dict(final_grades or {})
        self._default_grade = to_amount(default_grade, "default_grade")
        self._default_cases = default_cases

    def set_grade(self, student_id: UUID, grade: Decimal | int | str) -> None:
        self._grades[student_id] = to_amount(grade, "average_grade")

    def set_cases(self, student_id: UUID, cases: int) -> None:
        self._cases[student_id] = cases

    def average_grade(self, student_id: UUID, academic_year_id: UUID | None) -> Decimal:
        return self._grades.get(student_id, self._default_grade)

    def disciplinary_cases(self, student_id: UUID, academic_year_id: UUID | None) -> int:
        return self._cases.get(student_id, self._default_cases)

    def final_grade(self, student_id: UUID) -> str | None:
        if student_id in self._final_grades:
            return self._final_grades[student_id]
        if student_id in self._grades:
            return str(self._grades[student_id])
        return None
