"""Pure domain types for the school ledger: values, clock, DTOs, commands."""

from school_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from school_kernel.domain.commands import (
    CARRY_FORWARD_METHOD,
    DEFAULT_PROMOTION_TYPE,
    FeeStructureCommand,
    ProgressionRuleCommand,
    PromotionCriteriaCommand,
    RecordPaymentCommand,
)
from school_kernel.domain.progression import (
    DEFAULT_GRADUATION_TARGET,
    ClassTarget,
    Graduate,
    ProgressionTarget,
    resolve_target,
)
from school_kernel.domain.values import (
    TERM_ORDER,
    ZERO,
    TermName,
    clamp_zero,
    term_order,
    to_amount,
    year_order,
)

__all__ = [
    "CARRY_FORWARD_METHOD",
    "DEFAULT_GRADUATION_TARGET",
    "DEFAULT_PROMOTION_TYPE",
    "TERM_ORDER",
    "ZERO",
    "ClassTarget",
    "Clock",
    "DeterministicClock",
    "FeeStructureCommand",
    "Graduate",
    "ProgressionRuleCommand",
    "ProgressionTarget",
    "PromotionCriteriaCommand",
    "RecordPaymentCommand",
    "SystemClock",
    "TermName",
    "clamp_zero",
    "resolve_target",
    "term_order",
    "to_amount",
    "year_order",
]
