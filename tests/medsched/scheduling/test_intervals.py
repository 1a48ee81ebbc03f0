from datetime import datetime, time

import pytest

from medsched.scheduling.intervals import Interval, contains, overlaps, subtract, truncate_to_minute


def test_touching_intervals_do_not_overlap() -> None:
    morning = Interval(time(9, 0), time(12, 0))
    afternoon = Interval(time(12, 0), time(17, 0))

    assert not overlaps(morning, afternoon)
    assert not overlaps(afternoon, morning)


@pytest.mark.parametrize(
    ('first', 'second'),
    [
        (Interval(time(9, 0), time(12, 0)), Interval(time(11, 0), time(14, 0))),
        (Interval(time(9, 0), time(17, 0)), Interval(time(10, 0), time(11, 0))),
        (Interval(time(10, 0), time(11, 0)), Interval(time(10, 0), time(11, 0))),
    ],
)
def test_overlapping_intervals_overlap_in_both_directions(first: Interval, second: Interval) -> None:
    assert overlaps(first, second)
    assert overlaps(second, first)


def test_contains_accepts_shared_endpoints() -> None:
    window = Interval(time(9, 0), time(17, 0))

    assert contains(window, Interval(time(9, 0), time(17, 0)))
    assert contains(window, Interval(time(12, 0), time(13, 0)))
    assert not contains(window, Interval(time(16, 30), time(17, 30)))


def test_contains_point_is_half_open() -> None:
    window = Interval(time(9, 0), time(17, 0))

    assert window.contains_point(time(9, 0))
    assert window.contains_point(time(16, 59))
    assert not window.contains_point(time(17, 0))
    assert not window.contains_point(time(8, 59))


def test_subtract_without_break_returns_window() -> None:
    window = Interval(time(9, 0), time(17, 0))

    assert subtract(window, None) == [window]


def test_subtract_break_in_the_middle_splits_window() -> None:
    pieces = subtract(Interval(time(9, 0), time(17, 0)), Interval(time(12, 0), time(13, 0)))

    assert pieces == [Interval(time(9, 0), time(12, 0)), Interval(time(13, 0), time(17, 0))]


def test_subtract_break_at_window_start_leaves_single_piece() -> None:
    pieces = subtract(Interval(time(9, 0), time(17, 0)), Interval(time(9, 0), time(10, 0)))

    assert pieces == [Interval(time(10, 0), time(17, 0))]


def test_subtract_break_covering_window_leaves_nothing() -> None:
    assert subtract(Interval(time(9, 0), time(10, 0)), Interval(time(8, 0), time(11, 0))) == []


def test_subtract_disjoint_break_keeps_window() -> None:
    window = Interval(time(9, 0), time(12, 0))

    assert subtract(window, Interval(time(13, 0), time(14, 0))) == [window]


def test_from_duration_and_empty_intervals() -> None:
    interval = Interval.from_duration(datetime(2030, 1, 14, 10, 0), 30)

    assert interval == Interval(datetime(2030, 1, 14, 10, 0), datetime(2030, 1, 14, 10, 30))
    assert not interval.is_empty
    assert Interval(time(10, 0), time(10, 0)).is_empty


def test_truncate_to_minute_drops_seconds() -> None:
    assert truncate_to_minute(datetime(2030, 1, 14, 10, 0, 59, 999)) == datetime(2030, 1, 14, 10, 0)
