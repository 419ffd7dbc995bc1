"""
Resource Calendar

Pure functions turning a weekly open-hours template into the day's slot
grid and the resource's duty windows. Nothing here touches the database.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Iterable, Iterator, List, Optional, Tuple

from shared.domain.base import ValueObject
from shared.domain.value_objects import TimeWindow


@dataclass(frozen=True)
class OpenHours(ValueObject):
    """Wall-clock opening hours of one weekday; start == end is a day off."""
    weekday: int
    start: time
    end: time

    def __post_init__(self):
        if not 0 <= self.weekday <= 6:
            raise ValueError(f"Weekday must be 0..6, got {self.weekday}")
        if self.end < self.start:
            raise ValueError(f"Closing time {self.end} is before opening time {self.start}")

    @property
    def is_day_off(self) -> bool:
        return self.start == self.end


@dataclass(frozen=True)
class SlotGrid(ValueObject):
    """
    Start times of fixed-length slots covering [opens_at, closes_at)

    Iterating the grid yields datetimes lazily; the grid can be iterated
    any number of times. A trailing partial slot is dropped, so the last
    start is the latest one whose slot still ends by closing time.
    """
    opens_at: Optional[datetime]
    closes_at: Optional[datetime]
    granularity: timedelta

    def __post_init__(self):
        if self.granularity <= timedelta(0):
            raise ValueError("Granularity must be positive")

    @classmethod
    def empty(cls, granularity: timedelta) -> 'SlotGrid':
        return cls(None, None, granularity)

    def __iter__(self) -> Iterator[datetime]:
        if self.opens_at is None or self.closes_at is None:
            return
        current = self.opens_at
        while current + self.granularity <= self.closes_at:
            yield current
            current += self.granularity

    def __len__(self) -> int:
        if self.opens_at is None or self.closes_at is None or self.closes_at <= self.opens_at:
            return 0
        return (self.closes_at - self.opens_at) // self.granularity

    def __bool__(self) -> bool:
        return len(self) > 0

    @property
    def window(self) -> Optional[TimeWindow]:
        if not self:
            return None
        return TimeWindow(self.opens_at, self.closes_at)


def hours_for(template: Iterable[OpenHours], day: date) -> Optional[OpenHours]:
    for row in template:
        if row.weekday == day.weekday():
            return row
    return None


def day_grid(
    template: Iterable[OpenHours],
    day: date,
    granularity_minutes: int,
    tz: tzinfo,
) -> SlotGrid:
    """Build the slot grid of a resource for a calendar day"""
    granularity = timedelta(minutes=granularity_minutes)
    hours = hours_for(template, day)
    if hours is None or hours.is_day_off:
        return SlotGrid.empty(granularity)

    opens_at = _localize(datetime.combine(day, hours.start), tz)
    closes_at = _localize(datetime.combine(day, hours.end), tz)
    return SlotGrid(opens_at, closes_at, granularity)


def duty_windows(
    opens_at: datetime,
    closes_at: datetime,
    time_off: Iterable[Tuple[datetime, datetime]],
) -> List[TimeWindow]:
    """
    Working interval minus time-off blocks

    Returns the disjoint, ordered windows in which the resource can host
    reservations.
    """
    if closes_at <= opens_at:
        return []

    windows = [(opens_at, closes_at)]
    for block_start, block_end in sorted(time_off):
        next_windows = []
        for start, end in windows:
            if block_end <= start or block_start >= end:
                next_windows.append((start, end))
                continue
            if block_start > start:
                next_windows.append((start, block_start))
            if block_end < end:
                next_windows.append((block_end, end))
        windows = next_windows

    return [TimeWindow(start, end) for start, end in windows]


def _localize(value: datetime, tz: tzinfo) -> datetime:
    return value.replace(tzinfo=tz)
