"""
Injectable time source for payments, receipts and year roll-over.

Nothing in the services reads the wall clock directly.  The payment date
of a receipt, the graduation year written to an alumni record and the base
year used when no academic year is current all come from the ``Clock``
handed to the service.  Tests pin a ``DeterministicClock`` at a known
school day so ledgers order identically on every run.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone

# A mid-January morning: first term of the calendar year is open.
DEFAULT_SCHOOL_DAY = datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc)


class Clock(ABC):

    @abstractmethod
    def now(self) -> datetime:
        """Current instant, always timezone-aware."""

    def today(self) -> date:
        return self.now().date()

    def calendar_year(self) -> int:
        """Calendar year used when a school has no current academic year."""
        return self.today().year


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

        clock = DeterministicClock()
        clock.advance(days=120)      # into the second term
        clock.move_to(datetime(2026, 1, 5, tzinfo=timezone.utc))
    """

    def __init__(self, start: datetime | None = None):
        self._current = self._aware(start or DEFAULT_SCHOOL_DAY)

    @staticmethod
    def _aware(moment: datetime) -> datetime:
        if moment.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware datetime")
        return moment

    def now(self) -> datetime:
        return self._current

    def advance(self, **delta: float) -> datetime:
        """Move forward by ``timedelta(**delta)`` and return the new time."""
        step = timedelta(**delta)
        if step < timedelta(0):
            raise ValueError("DeterministicClock cannot move backwards; use move_to()")
        self._current += step
        return self._current

    def move_to(self, moment: datetime) -> None:
        self._current = self._aware(moment)
