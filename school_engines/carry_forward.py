"""
Module: school_engines.carry_forward
Responsibility:
    Decide where the excess of an overpayment goes: sequentially onto the
    student's later outstanding terms, in the order the policy dictates.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Conservation: total_applied + unapplied == excess, to the cent.
    - Only terms strictly after the paid term receive money, and never more
      than their outstanding amount.
    - Excess with no eligible target is reported as ``unapplied`` and is
      never dropped.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID

from school_engines.ledger import period_key
from school_engines.tracer import traced_engine
from school_kernel.domain.values import ZERO
from school_kernel.logging_config import get_logger

logger = get_logger("engines.carry_forward")


class CarryForwardPolicy(str, Enum):
    """Which later term is funded first."""

    EARLIEST_OUTSTANDING = "earliest_outstanding"
    LATEST_OUTSTANDING = "latest_outstanding"


@dataclass(frozen=True)
class OutstandingTerm:
    """A later term with money still owed."""

    academic_year_name: str
    term_name: str
    outstanding: Decimal
    academic_year_id: UUID | None = None
    term_id: UUID | None = None

    @property
    def key(self) -> tuple[int, int]:
        return period_key(self.academic_year_name, self.term_name)


@dataclass(frozen=True)
class CarryForwardLine:
    target: OutstandingTerm
    amount: Decimal


@dataclass(frozen=True)
class CarryForwardPlan:
    excess: Decimal
    lines: tuple[CarryForwardLine, ...] = ()
    unapplied: Decimal = ZERO

    @property
    def total_applied(self) -> Decimal:
        return sum((line.amount for line in self.lines), ZERO)


class CarryForwardAllocator:
    """Sequential allocation of an overpayment across later terms."""

    @traced_engine(
        "carry_forward",
        "1.0",
        fingerprint_fields=("excess", "after", "policy"),
        outcome=lambda plan: {"applied": plan.total_applied, "unapplied": plan.unapplied},
    )
    def allocate(
        self,
        excess: Decimal,
        candidates: Sequence[OutstandingTerm],
        after: tuple[int, int],
        policy: CarryForwardPolicy = CarryForwardPolicy.EARLIEST_OUTSTANDING,
    ) -> CarryForwardPlan:
        """
        Args:
            excess: Amount paid beyond the term's outstanding balance.
            candidates: The student's terms with their outstanding balances.
            after: (year order, term order) of the term that was paid.
            policy: Funding order among eligible terms.
        """
        if excess <= ZERO:
            return CarryForwardPlan(excess=ZERO)

        eligible = [c for c in candidates if c.key > after and c.outstanding > ZERO]
        eligible.sort(
            key=lambda c: c.key,
            reverse=policy is CarryForwardPolicy.LATEST_OUTSTANDING,
        )

        remaining = excess
        lines: list[CarryForwardLine] = []
        for target in eligible:
            if remaining <= ZERO:
                break
            applied = min(remaining, target.outstanding)
            remaining -= applied
            lines.append(CarryForwardLine(target=target, amount=applied))

        plan = CarryForwardPlan(excess=excess, lines=tuple(lines), unapplied=remaining)
        logger.info(
            "carry_forward_planned",
            extra={
                "policy": policy.value,
                "excess": str(excess),
                "applied": str(plan.total_applied),
                "unapplied": str(remaining),
                "targets_funded": len(lines),
            },
        )
        return plan
