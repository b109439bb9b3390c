from datetime import datetime, timezone

import pytest

from callcatch.hours import (
    HourWindow,
    WeeklySchedule,
    default_schedule,
    is_within_business_hours,
    parse_schedule,
)
from conftest import SYDNEY, TUESDAY_10AM, TUESDAY_10PM


class TestHourWindow:
    def test_normal_window(self):
        w = HourWindow(7, 17)
        assert w.contains(7)
        assert w.contains(16)
        assert not w.contains(17)
        assert not w.contains(6)

    def test_overnight_window(self):
        w = HourWindow(22, 6)
        assert w.contains(22)
        assert w.contains(23)
        assert w.contains(0)
        assert w.contains(5)
        assert not w.contains(6)
        assert not w.contains(12)

    def test_equal_bounds_always_closed(self):
        w = HourWindow(9, 9)
        assert not any(w.contains(h) for h in range(24))


class TestIsWithinBusinessHours:
    def test_tuesday_morning_open(self):
        assert is_within_business_hours(TUESDAY_10AM, SYDNEY, default_schedule(7, 17))

    def test_tuesday_night_closed(self):
        assert not is_within_business_hours(TUESDAY_10PM, SYDNEY, default_schedule(7, 17))

    def test_weekend_closed(self):
        saturday = datetime(2026, 10, 24, 10, 0, tzinfo=SYDNEY)
        assert not is_within_business_hours(saturday, SYDNEY, default_schedule(7, 17))

    def test_converts_to_business_timezone(self):
        # 23:00 UTC Monday is 10:00 Tuesday in Sydney (AEDT, +11)
        utc = datetime(2026, 10, 19, 23, 0, tzinfo=timezone.utc)
        assert is_within_business_hours(utc, "Australia/Sydney", default_schedule(7, 17))

    def test_naive_datetime_is_utc(self):
        naive = datetime(2026, 10, 19, 23, 0)
        assert is_within_business_hours(naive, SYDNEY, default_schedule(7, 17))

    def test_pure_same_inputs_same_answer(self):
        schedule = default_schedule(7, 17)
        results = {is_within_business_hours(TUESDAY_10AM, SYDNEY, schedule) for _ in range(5)}
        assert results == {True}

    def test_overnight_schedule(self):
        schedule = WeeklySchedule({1: (HourWindow(22, 6),)})
        assert is_within_business_hours(TUESDAY_10PM, SYDNEY, schedule)
        assert not is_within_business_hours(TUESDAY_10AM, SYDNEY, schedule)

    def test_equal_start_and_end_never_open(self):
        schedule = default_schedule(9, 9)
        assert not is_within_business_hours(TUESDAY_10AM, SYDNEY, schedule)


class TestParseSchedule:
    def test_weekdays_and_saturday(self):
        schedule = parse_schedule("mon-fri 7-17; sat 7-12")
        assert schedule.windows_for(0) == (HourWindow(7, 17),)
        assert schedule.windows_for(4) == (HourWindow(7, 17),)
        assert schedule.windows_for(5) == (HourWindow(7, 12),)
        assert schedule.windows_for(6) == ()

    def test_full_day_names_and_split_shifts(self):
        schedule = parse_schedule("Monday 7-12, Monday 13-17")
        assert schedule.is_open(0, 8)
        assert not schedule.is_open(0, 12)
        assert schedule.is_open(0, 14)

    @pytest.mark.parametrize("text", ["", "mon", "funday 7-17", "fri-mon 7-17", "mon 7-25", "mon seven-five"])
    def test_invalid_raises(self, text):
        with pytest.raises(ValueError):
            parse_schedule(text)
