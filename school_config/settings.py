"""
Ledger settings schema.

Defines the structure and defaults for the fee ledger and promotion engine.
Actual values come from a YAML file (see ``school_config.load_settings``)
with environment overrides for deployment secrets:

    settings = LedgerSettings(
        receipt_prefix="RCT",
        carry_forward_policy=CarryForwardPolicy.LATEST_OUTSTANDING,
    )
"""

from dataclasses import dataclass, fields
from decimal import Decimal, InvalidOperation
from typing import Any, Self

from school_engines.carry_forward import CarryForwardPolicy
from school_kernel.domain.dtos import CriteriaThresholds
from school_kernel.domain.progression import DEFAULT_GRADUATION_TARGET
from school_kernel.logging_config import get_logger

logger = get_logger("config.settings")

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _decimal(value: Any, name: str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        raise ValueError(f"{name} must be given as a string or integer, not float")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{name} is not a number: {value!r}") from None


@dataclass
class LedgerSettings:
    """
    Configuration for the school ledger.

    Field defaults match a school that promotes in bulk once a year,
    requires a 50% average and a fully paid balance.
    """

    # Persistence
    database_url: str = "sqlite://"
    echo_sql: bool = False

    # Receipts and references
    receipt_prefix: str = "RCP"
    reference_prefix: str = "PAY"

    # Overpayment handling
    carry_forward_policy: CarryForwardPolicy = CarryForwardPolicy.EARLIEST_OUTSTANDING

    # Promotion
    graduation_target_name: str = DEFAULT_GRADUATION_TARGET
    strict_progression_targets: bool = False
    promotion_type: str = "bulk"
    default_min_grade: Decimal = Decimal("50")
    default_max_fee_balance: Decimal = Decimal("0")
    default_max_disciplinary_cases: int = 0

    # Logging
    log_level: str = "INFO"

    def __post_init__(self):
        if not self.database_url or not self.database_url.strip():
            raise ValueError("database_url cannot be empty")
        if not self.receipt_prefix or not self.receipt_prefix.strip():
            raise ValueError("receipt_prefix cannot be empty")
        if not self.reference_prefix or not self.reference_prefix.strip():
            raise ValueError("reference_prefix cannot be empty")
        if not self.graduation_target_name or not self.graduation_target_name.strip():
            raise ValueError("graduation_target_name cannot be empty")
        if not self.promotion_type or not self.promotion_type.strip():
            raise ValueError("promotion_type cannot be empty")

        if not isinstance(self.carry_forward_policy, CarryForwardPolicy):
            try:
                self.carry_forward_policy = CarryForwardPolicy(str(self.carry_forward_policy))
            except ValueError:
                valid = sorted(p.value for p in CarryForwardPolicy)
                raise ValueError(
                    f"carry_forward_policy must be one of {valid}, "
                    f"got '{self.carry_forward_policy}'"
                ) from None

        self.default_min_grade = _decimal(self.default_min_grade, "default_min_grade")
        self.default_max_fee_balance = _decimal(
            self.default_max_fee_balance, "default_max_fee_balance"
        )
        if self.default_min_grade < 0 or self.default_min_grade > Decimal("100"):
            raise ValueError("default_min_grade must be between 0 and 100")
        if self.default_max_fee_balance < 0:
            raise ValueError("default_max_fee_balance cannot be negative")
        if int(self.default_max_disciplinary_cases) < 0:
            raise ValueError("default_max_disciplinary_cases cannot be negative")
        self.default_max_disciplinary_cases = int(self.default_max_disciplinary_cases)

        self.log_level = str(self.log_level).upper()
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_LOG_LEVELS)}")

        logger.debug(
            "ledger_settings_initialized",
            extra={
                "receipt_prefix": self.receipt_prefix,
                "carry_forward_policy": self.carry_forward_policy.value,
                "graduation_target_name": self.graduation_target_name,
                "promotion_type": self.promotion_type,
            },
        )

    @property
    def default_thresholds(self) -> CriteriaThresholds:
        return CriteriaThresholds(
            min_grade=self.default_min_grade,
            max_fee_balance=self.default_max_fee_balance,
            max_disciplinary_cases=self.default_max_disciplinary_cases,
        )

    @classmethod
    def with_defaults(cls) -> Self:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Build from a parsed mapping.  Unknown keys are rejected."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown ledger settings: {unknown}")
        return cls(**data)
