"""Unit tests for time-of-day rules and duration formatting."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from narrator.systems.awareness.timekeeping import (
    format_clock,
    format_duration,
    is_deep_night,
    is_late_night,
    time_period,
    touched_deep_night,
)
from narrator.systems.awareness.types import TimePeriod


def at(hour: int, minute: int = 0, day: int = 14) -> datetime:
    return datetime(2024, 5, day, hour, minute).astimezone()


class TestTimePeriod:
    @pytest.mark.parametrize(
        ("hour", "expected"),
        [
            (6, TimePeriod.MORNING),
            (11, TimePeriod.MORNING),
            (12, TimePeriod.AFTERNOON),
            (16, TimePeriod.AFTERNOON),
            (17, TimePeriod.EVENING),
            (20, TimePeriod.EVENING),
            (21, TimePeriod.LATE_NIGHT),
            (0, TimePeriod.LATE_NIGHT),
            (1, TimePeriod.LATE_NIGHT),
            (2, TimePeriod.DEEP_NIGHT),
            (5, TimePeriod.DEEP_NIGHT),
        ],
    )
    def test_period_boundaries(self, hour: int, expected: TimePeriod) -> None:
        assert time_period(at(hour)) == expected

    def test_deep_night_window(self) -> None:
        assert is_deep_night(at(2))
        assert is_deep_night(at(5, 59))
        assert not is_deep_night(at(6))
        assert not is_deep_night(at(1, 59))

    def test_late_night_is_wider_than_the_period(self) -> None:
        assert is_late_night(at(22))
        assert is_late_night(at(3))
        assert not is_late_night(at(21, 30))
        assert not is_late_night(at(6))


class TestTouchedDeepNight:
    def test_afternoon_span_never_touches(self) -> None:
        assert not touched_deep_night(at(13), at(18))

    def test_span_crossing_into_window(self) -> None:
        assert touched_deep_night(at(23, day=14), at(2, 30, day=15))

    def test_span_ending_just_before_window(self) -> None:
        assert not touched_deep_night(at(23, day=14), at(1, 59, day=15))

    def test_span_that_passed_through_and_left(self) -> None:
        assert touched_deep_night(at(1, day=15), at(9, day=15))

    def test_start_inside_window(self) -> None:
        assert touched_deep_night(at(4), at(4))

    def test_full_day_always_touches(self) -> None:
        start = at(12)
        assert touched_deep_night(start, start + timedelta(days=1))

    def test_reversed_span(self) -> None:
        assert not touched_deep_night(at(4), at(3))


class TestFormatting:
    @pytest.mark.parametrize(
        ("seconds", "expected"),
        [
            (0, "0 minutes"),
            (59, "0 minutes"),
            (45 * 60, "45 minutes"),
            (60 * 60, "1 hours"),
            (90 * 60, "1h 30m"),
            (3 * 3600 + 5 * 60 + 30, "3h 5m"),
        ],
    )
    def test_format_duration(self, seconds: float, expected: str) -> None:
        assert format_duration(seconds) == expected

    def test_format_clock(self) -> None:
        assert format_clock(at(3, 7)) == "3:07 AM"
        assert format_clock(at(0, 0)) == "12:00 AM"
        assert format_clock(at(12, 30)) == "12:30 PM"
        assert format_clock(at(23, 5)) == "11:05 PM"
