"""
Module: school_engines.eligibility
Responsibility:
    Decide whether a student meets the promotion criteria.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - is_eligible = fee_balance <= max_fee_balance
                    AND average_grade >= min_grade
                    AND disciplinary_cases <= max_disciplinary_cases
      Bounds are inclusive.
    - Monotonic: raising a maximum or lowering the minimum never turns an
      eligible student ineligible.
    - Ineligibility is a result with reasons, never an exception.
"""

from __future__ import annotations

from decimal import Decimal

from school_engines.tracer import traced_engine
from school_kernel.domain.dtos import (
    CriteriaThresholds,
    EligibilityDecision,
    FailedCriterion,
    StudentMetrics,
)

MIN_GRADE = "min_grade"
MAX_FEE_BALANCE = "max_fee_balance"
MAX_DISCIPLINARY_CASES = "max_disciplinary_cases"


def _plain(value: Decimal | int) -> str:
    """45.50 -> "45.5", 8000.00 -> "8000"."""
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    return str(value)


class EligibilityEvaluator:
    @traced_engine(
        "eligibility",
        "1.0",
        fingerprint_fields=("thresholds", "metrics"),
        outcome=lambda decision: {
            "is_eligible": decision.is_eligible,
            "failed": [r.criterion for r in decision.reasons],
        },
    )
    def evaluate(
        self,
        thresholds: CriteriaThresholds,
        metrics: StudentMetrics,
    ) -> EligibilityDecision:
        reasons: list[FailedCriterion] = []

        if metrics.average_grade < thresholds.min_grade:
            reasons.append(
                FailedCriterion(
                    criterion=MIN_GRADE,
                    actual=metrics.average_grade,
                    threshold=thresholds.min_grade,
                    message=(
                        f"Grade {_plain(metrics.average_grade)}% below minimum "
                        f"{_plain(thresholds.min_grade)}%"
                    ),
                )
            )

        if metrics.fee_balance > thresholds.max_fee_balance:
            reasons.append(
                FailedCriterion(
                    criterion=MAX_FEE_BALANCE,
                    actual=metrics.fee_balance,
                    threshold=thresholds.max_fee_balance,
                    message=(
                        f"Fee balance ${_plain(metrics.fee_balance)} exceeds maximum "
                        f"${_plain(thresholds.max_fee_balance)}"
                    ),
                )
            )

        if metrics.disciplinary_cases > thresholds.max_disciplinary_cases:
            reasons.append(
                FailedCriterion(
                    criterion=MAX_DISCIPLINARY_CASES,
                    actual=metrics.disciplinary_cases,
                    threshold=thresholds.max_disciplinary_cases,
                    message=(
                        f"{metrics.disciplinary_cases} disciplinary cases exceed maximum "
                        f"{thresholds.max_disciplinary_cases}"
                    ),
                )
            )

        return EligibilityDecision(is_eligible=not reasons, reasons=tuple(reasons))

    def criteria_results(
        self,
        thresholds: CriteriaThresholds,
        metrics: StudentMetrics,
        decision: EligibilityDecision,
    ) -> dict:
        """JSON-safe snapshot of the decision, stored on the promotion log."""
        failed = {r.criterion for r in decision.reasons}
        return {
            "thresholds": thresholds.as_dict(),
            "metrics": {
                "average_grade": str(metrics.average_grade),
                "fee_balance": str(metrics.fee_balance),
                "disciplinary_cases": metrics.disciplinary_cases,
            },
            "passed": {
                MIN_GRADE: MIN_GRADE not in failed,
                MAX_FEE_BALANCE: MAX_FEE_BALANCE not in failed,
                MAX_DISCIPLINARY_CASES: MAX_DISCIPLINARY_CASES not in failed,
            },
            "is_eligible": decision.is_eligible,
        }
