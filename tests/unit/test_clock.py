"""Injectable clocks."""

from datetime import date, datetime, timedelta, timezone

import pytest

from school_kernel.domain.clock import DeterministicClock, SystemClock


class TestDeterministicClock:

    def test_default_is_fixed_school_day(self):
        clock = DeterministicClock()

        assert clock.now() == datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc)
        assert clock.now() == clock.now()
        assert clock.today() == date(2025, 1, 15)
        assert clock.calendar_year() == 2025

    def test_advance_by_days(self):
        clock = DeterministicClock()

        moved = clock.advance(days=365)

        assert moved == clock.now()
        assert clock.calendar_year() == 2026

    def test_advance_refuses_going_back(self):
        clock = DeterministicClock()

        with pytest.raises(ValueError):
            clock.advance(seconds=-1)

    def test_move_to(self):
        clock = DeterministicClock()
        clock.move_to(datetime(2030, 9, 1, tzinfo=timezone.utc))

        assert clock.today() == date(2030, 9, 1)

    def test_naive_datetime_rejected(self):
        with pytest.raises(ValueError, match="timezone-aware"):
            DeterministicClock(datetime(2025, 1, 1))


class TestSystemClock:

    def test_now_is_utc(self):
        now = SystemClock().now()

        assert now.tzinfo is not None
        assert now.utcoffset() == timedelta(0)
