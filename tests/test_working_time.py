"""
Tests for working-time arithmetic on the business calendar.
"""

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from src.core import InvalidRangeError
from src.issues.domain import BusinessCalendar, WorkingTimeCalculator

from conftest import at

UTC = timezone.utc


@pytest.fixture
def calc() -> WorkingTimeCalculator:
    return WorkingTimeCalculator(BusinessCalendar())


class TestElapsedWorkingHours:
    """elapsed_working_hours counts only 09:00-17:00 Mon-Sat."""

    def test_same_instant_is_zero(self, calc):
        assert calc.elapsed_working_hours(at(3, 10), at(3, 10)) == timedelta(0)

    def test_end_before_start_raises(self, calc):
        with pytest.raises(InvalidRangeError):
            calc.elapsed_working_hours(at(3, 12), at(3, 11))

    def test_single_day_window(self, calc):
        assert calc.elapsed_hours(at(3, 9), at(3, 17)) == 8

    def test_time_outside_window_is_ignored(self, calc):
        assert calc.elapsed_hours(at(3, 6), at(3, 20)) == 8

    def test_monday_morning_to_tuesday_morning(self, calc):
        assert calc.elapsed_hours(at(3, 9), at(4, 9)) == 8

    def test_two_full_days(self, calc):
        assert calc.elapsed_hours(at(3, 9), at(4, 17)) == 16

    def test_friday_afternoon_to_saturday_morning(self, calc):
        # Fri 16:00-17:00 plus Sat 09:00-10:00
        assert calc.elapsed_hours(at(7, 16), at(8, 10)) == 2

    def test_sunday_contributes_nothing(self, calc):
        assert calc.elapsed_hours(at(9, 8), at(9, 18)) == 0
        assert calc.elapsed_hours(at(8, 17), at(10, 9)) == 0

    def test_holiday_contributes_nothing(self):
        calc = WorkingTimeCalculator(BusinessCalendar(holidays=frozenset({date(2025, 3, 4)})))
        assert calc.elapsed_hours(at(3, 9), at(5, 17)) == 16

    def test_partial_minutes(self, calc):
        assert calc.elapsed_working_hours(at(3, 16, 59), at(4, 9, 1)) == timedelta(minutes=2)

    def test_naive_timestamps_use_calendar_timezone(self, calc):
        naive = datetime(2025, 3, 3, 9, 0)
        assert calc.elapsed_hours(naive, at(3, 11)) == 2

    def test_timezone_aware_calendar(self):
        calc = WorkingTimeCalculator(BusinessCalendar(tz=ZoneInfo("Asia/Kolkata")))
        # 03:30 UTC is 09:00 IST, 11:30 UTC is 17:00 IST
        start = datetime(2025, 3, 3, 3, 30, tzinfo=UTC)
        end = datetime(2025, 3, 3, 11, 30, tzinfo=UTC)
        assert calc.elapsed_hours(start, end) == 8
        assert calc.elapsed_hours(datetime(2025, 3, 3, 0, 0, tzinfo=UTC), start) == 0

    def test_monotonic_in_end(self, calc):
        start = at(3, 10)
        previous = 0.0
        for minutes in range(0, 60 * 24 * 8, 37):
            current = calc.elapsed_hours(start, start + timedelta(minutes=minutes))
            assert current >= previous
            previous = current


class TestCalendarQueries:

    def test_is_working_day(self, calc):
        assert calc.is_working_day(date(2025, 3, 8))  # Saturday
        assert not calc.is_working_day(date(2025, 3, 9))  # Sunday

    def test_is_working_time(self, calc):
        assert calc.is_working_time(at(3, 9))
        assert calc.is_working_time(at(3, 16, 59))
        assert not calc.is_working_time(at(3, 17))
        assert not calc.is_working_time(at(9, 12))

    def test_invalid_calendar_rejected(self):
        with pytest.raises(ValueError):
            BusinessCalendar(start_hour=17, end_hour=9)


class TestAddWorkingHours:

    def test_within_day(self, calc):
        assert calc.add_working_hours(at(3, 9), 4) == at(3, 13)

    def test_rolls_into_next_day(self, calc):
        assert calc.add_working_hours(at(7, 16), 3) == at(8, 11)

    def test_skips_sunday(self, calc):
        assert calc.add_working_hours(at(8, 16), 2) == at(10, 10)

    def test_start_outside_window(self, calc):
        assert calc.add_working_hours(at(3, 7), 1) == at(3, 10)

    def test_zero_hours(self, calc):
        assert calc.add_working_hours(at(3, 12), 0) == at(3, 12)

    def test_inverse_of_elapsed(self, calc):
        start = at(4, 11, 15)
        deadline = calc.add_working_hours(start, 24)
        assert calc.elapsed_hours(start, deadline) == pytest.approx(24)
