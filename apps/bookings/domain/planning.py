"""
Resource Planning

Turns a composed offering into resource requirements and searches for an
assignment of concrete resources at a given start time.

Requirements, in order:
- shared human policy: one 'human' requirement spanning the whole offering
- independent policy: one '<i>:human' requirement per service needing staff
- every room or equipment need of a service: '<i>:<type>' for that service

Each requirement window runs past its service by the service buffer; a
shared human is held until the last buffer of the offering ends.

Human requirements come first, so the first requirement (the anchor) is a
human whenever the offering needs one.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Collection, Dict, FrozenSet, Iterable, List, Optional, Tuple

from apps.catalog.domain.composer import HUMAN, Composition
from shared.domain.base import ValueObject
from shared.domain.value_objects import TimeWindow

from .schedule import ResourceSchedule


@dataclass(frozen=True)
class Requirement(ValueObject):
    role: str
    resource_type: str
    skills: FrozenSet[str]
    offset_minutes: int
    duration_minutes: int

    def window_at(self, start: datetime) -> TimeWindow:
        return TimeWindow.of(start + timedelta(minutes=self.offset_minutes), self.duration_minutes)

    def accepts(self, schedule: ResourceSchedule) -> bool:
        return schedule.resource_type == self.resource_type and schedule.has_skills(self.skills)


@dataclass(frozen=True)
class Allocation(ValueObject):
    role: str
    resource_id: int
    window: TimeWindow


def requirements_for(composition: Composition) -> List[Requirement]:
    humans: List[Requirement] = []
    others: List[Requirement] = []

    staffed = [s for s in composition.segments if s.needs_human]
    if composition.shares_human and staffed:
        humans.append(Requirement(
            role=HUMAN,
            resource_type=HUMAN,
            skills=composition.required_skills,
            offset_minutes=0,
            duration_minutes=max([composition.duration_minutes] + [s.blocked_until for s in staffed]),
        ))

    for index, segment in enumerate(composition.segments):
        for resource_type in segment.resource_types:
            if resource_type == HUMAN:
                if composition.shares_human:
                    continue
                humans.append(Requirement(
                    role=f"{index}:{HUMAN}",
                    resource_type=HUMAN,
                    skills=frozenset({segment.skill}) if segment.skill else frozenset(),
                    offset_minutes=segment.offset_minutes,
                    duration_minutes=segment.duration_minutes + segment.buffer_minutes,
                ))
            else:
                others.append(Requirement(
                    role=f"{index}:{resource_type}",
                    resource_type=resource_type,
                    skills=frozenset(),
                    offset_minutes=segment.offset_minutes,
                    duration_minutes=segment.duration_minutes + segment.buffer_minutes,
                ))

    return humans + others


def candidates_for(
    requirement: Requirement,
    schedules: Iterable[ResourceSchedule],
    only: Optional[int] = None,
) -> List[ResourceSchedule]:
    return sorted(
        (s for s in schedules if requirement.accepts(s) and (only is None or s.id == only)),
        key=lambda s: s.id,
    )


def pin_for(requirements: List[Requirement], schedule: Optional[ResourceSchedule]) -> Optional[Tuple[int, int]]:
    """First requirement the resource can serve, as a pin for find_assignment"""
    if schedule is None:
        return None
    for index, requirement in enumerate(requirements):
        if requirement.accepts(schedule):
            return (index, schedule.id)
    return None


def find_assignment(
    requirements: List[Requirement],
    start: datetime,
    schedules: Dict[int, ResourceSchedule],
    as_of: datetime,
    exclude: Collection[Tuple[str, int]] = (),
    pin: Optional[Tuple[int, int]] = None,
) -> Optional[List[Allocation]]:
    """
    Depth-first search for resources hosting every requirement at `start`

    Each chosen resource must be on duty and free for its window, and no
    resource may be given two overlapping windows of the same plan. A
    `pin` of (requirement index, resource id) restricts that requirement
    to the given resource. Returns None when no assignment exists.
    """
    if not requirements:
        return []

    pinned_index, pinned_id = pin if pin is not None else (None, None)
    options = [
        candidates_for(req, schedules.values(), pinned_id if i == pinned_index else None)
        for i, req in enumerate(requirements)
    ]
    windows = [req.window_at(start) for req in requirements]
    chosen: List[Allocation] = []

    def search(i: int) -> bool:
        if i == len(requirements):
            return True
        window = windows[i]
        for schedule in options[i]:
            if any(a.resource_id == schedule.id and a.window.overlaps_with(window) for a in chosen):
                continue
            if not schedule.can_host(window, as_of, exclude):
                continue
            chosen.append(Allocation(requirements[i].role, schedule.id, window))
            if search(i + 1):
                return True
            chosen.pop()
        return False

    if search(0):
        return list(chosen)
    return None
