"""
Receipt numbers and promotion log ordering from locked counter rows.

Each school numbers its receipts independently ("receipt:<school code>"),
and every promotion log row takes its ``seq`` from the shared
"promotion_log" counter.  A counter row is read ``FOR UPDATE`` and bumped
in place, so two bursars recording payments at once serialize on the row
instead of both reading the same maximum receipt number.

Numbers are consumed only when the caller commits.  A payment that is
rolled back gives its receipt number back.
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from school_kernel.db.base import Base
from school_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class SequenceService:
    """
    Usage:
        numbers = SequenceService(session)
        numbers.next_receipt_number("greenfield", prefix="RCP")  # "RCP-greenfield-000001"
        numbers.next_value(SequenceService.PROMOTION_LOG)         # 1
    """

    PROMOTION_LOG = "promotion_log"
    RECEIPT_DIGITS = 6

    def __init__(self, session: Session):
        self._session = session

    @staticmethod
    def receipt_sequence(school_code: str) -> str:
        return f"receipt:{school_code}"

    def next_receipt_number(self, school_code: str, prefix: str) -> str:
        value = self.next_value(self.receipt_sequence(school_code))
        return f"{prefix}-{school_code}-{value:0{self.RECEIPT_DIGITS}d}"

    def next_value(self, sequence_name: str) -> int:
        """Bump the named counter, creating it at 1 on first use."""
        counter = self._lock(sequence_name)
        if counter is None:
            counter = self._create(sequence_name)
        else:
            counter.current_value += 1
            self._session.flush()

        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Last value handed out, or None for a counter never used."""
        return self._session.execute(
            select(SequenceCounter.current_value).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()

    def _lock(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _create(self, sequence_name: str) -> SequenceCounter:
        # A concurrent first payment may insert the same counter; the
        # savepoint keeps the caller's other rows when that insert loses.
        counter = SequenceCounter(name=sequence_name, current_value=1)
        try:
            with self._session.begin_nested():
                self._session.add(counter)
        except IntegrityError:
            logger.info("sequence_counter_race", extra={"sequence_name": sequence_name})
            winner = self._lock(sequence_name)
            if winner is None:
                raise
            winner.current_value += 1
            self._session.flush()
            return winner
        return counter
