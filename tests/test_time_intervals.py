"""
Tests de aritmética de horas e intervalos.
"""

from datetime import date, time

import pytest

from app.core.time_intervals import (
    DayOfWeek,
    Interval,
    add_minutes,
    day_of_week,
    from_minutes,
    intersect_all,
    overlaps,
    spans_midnight,
    subtract,
    to_minutes,
)


def test_to_minutes_accepts_strings_and_times():
    assert to_minutes("09:30") == 570
    assert to_minutes(time(13, 5)) == 785
    assert to_minutes("00:00") == 0


@pytest.mark.parametrize("value", ["25:00", "10:75", "abc", "", None])
def test_to_minutes_rejects_malformed_input(value):
    with pytest.raises(ValueError):
        to_minutes(value)


def test_from_minutes_is_zero_padded_and_clamped():
    assert from_minutes(570) == "09:30"
    assert from_minutes(-10) == "00:00"
    assert from_minutes(2000) == "23:59"


def test_add_minutes_never_wraps_to_next_day():
    assert add_minutes("10:00", 30) == "10:30"
    assert add_minutes("23:45", 30) == "23:59"


def test_spans_midnight():
    assert spans_midnight("23:45", 30)
    assert not spans_midnight("23:30", 30)


def test_intervals_are_half_open():
    assert not overlaps(Interval(600, 630), Interval(630, 660))
    assert overlaps(Interval(600, 630), Interval(615, 645))


def test_subtract_splits_around_break():
    assert subtract(Interval(540, 1020), [Interval(720, 780)]) == [
        Interval(540, 720),
        Interval(780, 1020),
    ]


def test_subtract_drops_empty_pieces():
    assert subtract(Interval(540, 600), [Interval(540, 600)]) == []


def test_intersect_all():
    left = [Interval(480, 720), Interval(780, 960)]
    right = [Interval(540, 900)]
    assert intersect_all(left, right) == [Interval(540, 720), Interval(780, 900)]


def test_day_of_week_is_iso_ordered():
    assert day_of_week(date(2026, 10, 19)) == DayOfWeek.MONDAY
    assert day_of_week(date(2026, 10, 25)) == DayOfWeek.SUNDAY
