"""
Availability Resolver

Bookable start times of a service or bundle on a day:

1. compose the offering and derive its resource requirements
2. enumerate candidate starts from the slot grids of the anchor
   requirement's candidates (only the filtered resource, if it is one)
3. keep a start only if every requirement can be given a resource that
   is on duty and free for its window, with no resource double-booked
   inside the plan

Results are recomputed per request (optionally behind the cache) from a
lock-free snapshot; they are advisory. create_hold re-validates.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Callable, List, Optional
import logging

from django.utils import timezone  # type: ignore

from apps.catalog.services import compose_offering, parse_offering

from .cache import get_cached_slots
from .domain.planning import find_assignment, pin_for, requirements_for
from .ledger import BookingLedger

logger = logging.getLogger(__name__)


class AvailabilityResolver:
    def __init__(self, ledger: Optional[BookingLedger] = None, clock: Callable[[], datetime] = timezone.now):
        self.ledger = ledger or BookingLedger(clock=clock)
        self.clock = clock

    def resolve(
        self,
        offering,
        day: date,
        resource_id: Optional[int] = None,
        as_of: Optional[datetime] = None,
    ) -> List[datetime]:
        """Ascending, de-duplicated start times; an empty list means no slots."""
        as_of = as_of or self.clock()
        composition = compose_offering(offering)
        requirements = requirements_for(composition)
        if not requirements:
            return []

        schedules = self.ledger.snapshot(self.ledger.candidate_ids(requirements), day, as_of)

        pin = None
        if resource_id is not None:
            pin = pin_for(requirements, schedules.get(resource_id))
            if pin is None:
                logger.debug(f"Resource {resource_id} cannot serve {offering}")
                return []

        starts = self.ledger.anchor_starts(requirements, schedules, day, pin)
        available = [
            start
            for start in starts
            if start >= as_of
            and find_assignment(requirements, start, schedules, as_of, pin=pin) is not None
        ]
        logger.debug(f"{len(available)} of {len(starts)} starts available for {offering} on {day}")
        return available

    def resolve_cached(self, offering, day: date, resource_id: Optional[int] = None) -> List[datetime]:
        ref = str(parse_offering(offering))
        slots = get_cached_slots(ref, day, resource_id, lambda: self.resolve(ref, day, resource_id))
        now = self.clock()
        return [start for start in slots if start >= now]
