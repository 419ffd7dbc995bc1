"""
Resource Schedule Aggregate

One resource's day as the ledger sees it: the windows it is on duty and
the reservations (live holds and blocking bookings) it already carries.

Reservations are kept sorted by start time together with the length of
the longest one, so an overlap check only inspects reservations starting
inside (window.start - longest, window.end): O(log n + k) per check.
"""

from bisect import bisect_left, bisect_right
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Collection, FrozenSet, List, Optional, Tuple

from shared.domain.base import Aggregate, ValueObject
from shared.domain.value_objects import TimeWindow

HOLD = 'hold'
BOOKING = 'booking'


@dataclass(frozen=True)
class Reservation(ValueObject):
    """
    Window occupied on a resource by a hold or a booking

    Holds carry their expiry: a hold blocks only while expires_at > as_of.
    """
    window: TimeWindow
    source: str
    ref_id: int
    expires_at: Optional[datetime] = None

    @property
    def key(self) -> Tuple[str, int]:
        return (self.source, self.ref_id)

    def blocks(self, as_of: datetime) -> bool:
        return self.expires_at is None or self.expires_at > as_of


@dataclass(eq=False)
class ResourceSchedule(Aggregate):
    """Duty windows and sorted reservations of a single resource"""
    resource_type: str = 'human'
    skills: FrozenSet[str] = frozenset()
    duty: List[TimeWindow] = field(default_factory=list)
    _starts: List[datetime] = field(default_factory=list, init=False, repr=False)
    _reservations: List[Reservation] = field(default_factory=list, init=False, repr=False)
    _longest: timedelta = field(default=timedelta(0), init=False, repr=False)

    @classmethod
    def build(cls, resource_id, resource_type, skills=(), duty=(), reservations=()) -> 'ResourceSchedule':
        schedule = cls(
            id=resource_id,
            resource_type=resource_type,
            skills=frozenset(skills),
            duty=sorted(duty, key=lambda w: w.start),
        )
        for reservation in reservations:
            schedule.add(reservation)
        return schedule

    @property
    def reservations(self) -> List[Reservation]:
        return list(self._reservations)

    def add(self, reservation: Reservation):
        index = bisect_right(self._starts, reservation.window.start)
        self._starts.insert(index, reservation.window.start)
        self._reservations.insert(index, reservation)
        if reservation.window.duration > self._longest:
            self._longest = reservation.window.duration

    def conflicts(
        self,
        window: TimeWindow,
        as_of: datetime,
        exclude: Collection[Tuple[str, int]] = (),
    ) -> List[Reservation]:
        """Blocking reservations overlapping the window"""
        lo = bisect_right(self._starts, window.start - self._longest)
        hi = bisect_left(self._starts, window.end)
        return [
            r for r in self._reservations[lo:hi]
            if r.window.overlaps_with(window) and r.blocks(as_of) and r.key not in exclude
        ]

    def is_free(self, window: TimeWindow, as_of: datetime, exclude: Collection[Tuple[str, int]] = ()) -> bool:
        return not self.conflicts(window, as_of, exclude)

    def is_on_duty(self, window: TimeWindow) -> bool:
        return any(duty.covers(window) for duty in self.duty)

    def can_host(self, window: TimeWindow, as_of: datetime, exclude: Collection[Tuple[str, int]] = ()) -> bool:
        return self.is_on_duty(window) and self.is_free(window, as_of, exclude)

    def has_skills(self, required: FrozenSet[str]) -> bool:
        return required <= self.skills
