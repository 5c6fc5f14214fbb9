"""
Module: school_engines
Responsibility:
    Re-exports the pure calculation engines.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import school_kernel/domain (and sibling engine modules).
    MUST NOT import school_services.

Invariants enforced:
    - Engines never read the clock; timestamps are passed in.
    - Decimal-only arithmetic for money.
    - Identical inputs always produce identical outputs.

Usage:
    from school_engines import LedgerBuilder, EligibilityEvaluator, CarryForwardAllocator
"""

from school_engines.carry_forward import (
    CarryForwardAllocator,
    CarryForwardLine,
    CarryForwardPlan,
    CarryForwardPolicy,
    OutstandingTerm,
)
from school_engines.eligibility import EligibilityEvaluator
from school_engines.ledger import (
    EntryKind,
    JoinPoint,
    Ledger,
    LedgerBuilder,
    LedgerCharge,
    LedgerPayment,
    LedgerTransaction,
    invoice_description,
    period_key,
)
from school_engines.tracer import traced_engine

__all__ = [
    "CarryForwardAllocator",
    "CarryForwardLine",
    "CarryForwardPlan",
    "CarryForwardPolicy",
    "EligibilityEvaluator",
    "EntryKind",
    "JoinPoint",
    "Ledger",
    "LedgerBuilder",
    "LedgerCharge",
    "LedgerPayment",
    "LedgerTransaction",
    "OutstandingTerm",
    "invoice_description",
    "period_key",
    "traced_engine",
]
