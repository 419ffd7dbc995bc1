"""Unit tests for the day grid and duty windows."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone

from django.test import SimpleTestCase

from apps.resources.domain.calendar import OpenHours, SlotGrid, day_grid, duty_windows
from shared.domain.value_objects import TimeWindow

MONDAY = date(2026, 11, 2)
UTC = timezone.utc


def at(hour: int, minute: int = 0) -> datetime:
    return datetime(2026, 11, 2, hour, minute, tzinfo=UTC)


class DayGridTests(SimpleTestCase):
    def setUp(self) -> None:
        self.template = [OpenHours(weekday=0, start=time(9), end=time(18))]

    def test_divisible_day_yields_exact_slot_count(self) -> None:
        grid = day_grid(self.template, MONDAY, 30, UTC)
        starts = list(grid)

        self.assertEqual(len(starts), 18)
        self.assertEqual(len(grid), 18)
        self.assertEqual(starts[0], at(9))
        self.assertEqual(starts[-1], at(17, 30))
        self.assertTrue(all(a < b for a, b in zip(starts, starts[1:])))

    def test_grid_can_be_iterated_twice(self) -> None:
        grid = day_grid(self.template, MONDAY, 60, UTC)
        self.assertEqual(list(grid), list(grid))

    def test_trailing_partial_slot_is_truncated(self) -> None:
        template = [OpenHours(weekday=0, start=time(9), end=time(10, 45))]
        starts = list(day_grid(template, MONDAY, 30, UTC))

        self.assertEqual(starts, [at(9), at(9, 30), at(10)])
        self.assertLessEqual(starts[-1] + timedelta(minutes=30), at(10, 45))

    def test_day_off_when_open_equals_close(self) -> None:
        template = [OpenHours(weekday=0, start=time(9), end=time(9))]
        grid = day_grid(template, MONDAY, 30, UTC)

        self.assertEqual(list(grid), [])
        self.assertFalse(grid)
        self.assertIsNone(grid.window)

    def test_day_off_when_weekday_missing(self) -> None:
        tuesday = MONDAY + timedelta(days=1)
        self.assertEqual(list(day_grid(self.template, tuesday, 30, UTC)), [])

    def test_invalid_hours_rejected(self) -> None:
        with self.assertRaises(ValueError):
            OpenHours(weekday=0, start=time(18), end=time(9))
        with self.assertRaises(ValueError):
            OpenHours(weekday=7, start=time(9), end=time(18))

    def test_granularity_must_be_positive(self) -> None:
        with self.assertRaises(ValueError):
            SlotGrid(at(9), at(10), timedelta(0))


class DutyWindowTests(SimpleTestCase):
    def test_no_time_off_keeps_full_day(self) -> None:
        self.assertEqual(duty_windows(at(9), at(18), []), [TimeWindow(at(9), at(18))])

    def test_lunch_break_splits_the_day(self) -> None:
        windows = duty_windows(at(9), at(18), [(at(13), at(14))])
        self.assertEqual(windows, [TimeWindow(at(9), at(13)), TimeWindow(at(14), at(18))])

    def test_blocks_outside_and_overlapping_edges(self) -> None:
        windows = duty_windows(
            at(9),
            at(18),
            [(at(7), at(10)), (at(17), at(20)), (at(19), at(21))],
        )
        self.assertEqual(windows, [TimeWindow(at(10), at(17))])

    def test_full_day_vacation_leaves_nothing(self) -> None:
        self.assertEqual(duty_windows(at(9), at(18), [(at(0), at(23))]), [])
