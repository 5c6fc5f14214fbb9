"""
Module: school_kernel.db.base
Responsibility: Declarative bases and column types shared by every model.
Architecture position: Kernel > DB.  Lowest-level import target within the
    kernel.  MUST NOT import from models/, services/, selectors/ or domain/.

Invariants enforced:
    - Primary keys are uuid4, stored as String(36) so the same schema runs
      on PostgreSQL and SQLite.
    - Every ``Mapped[Decimal]`` column is ``Money``: NUMERIC(38, 9) on
      PostgreSQL, the exact decimal text on SQLite (which would otherwise
      round-trip through float).  Loaded values are always Decimal.
    - ``created_by`` / ``updated_by`` hold the acting user as the caller
      supplies it (bursar id, admin e-mail, "system").  They are audit
      metadata and may change on otherwise-immutable rows.

No SQL arithmetic or ordering is done on Money columns; sums and
comparisons happen in Python on Decimal.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

MONEY_PRECISION = 38
MONEY_SCALE = 9


class UUIDString(TypeDecorator):
    """UUID stored as its 36-character string form."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(str(value))


class Money(TypeDecorator):
    """Decimal amount; never float on any backend."""

    impl = Numeric(MONEY_PRECISION, MONEY_SCALE, asdecimal=True)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(MONEY_PRECISION + 2))
        return dialect.type_descriptor(Numeric(MONEY_PRECISION, MONEY_SCALE, asdecimal=True))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, float):
            raise TypeError(f"Money columns take Decimal, not float: {value!r}")
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
        return str(amount) if dialect.name == "sqlite" else amount

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, Decimal):
            return value
        return Decimal(str(value))


class Base(DeclarativeBase):
    """Declarative base for all ledger and promotion models."""

    type_annotation_map: ClassVar[dict] = {
        Decimal: Money(),
        datetime: DateTime(timezone=True),
        PyUUID: UUIDString(),
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """Abstract base adding creation/update timestamps and actors."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    created_by: Mapped[str] = mapped_column(String(100), nullable=False, default="system")

    updated_by: Mapped[str | None] = mapped_column(String(100), nullable=True)


UUID = PyUUID
