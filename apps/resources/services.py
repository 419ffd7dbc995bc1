"""Calendar services: load a resource's template and build its day."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Iterable, List

from django.conf import settings  # type: ignore
from django.utils import timezone  # type: ignore

from shared.domain.value_objects import TimeWindow

from .domain.calendar import OpenHours, SlotGrid, day_grid, duty_windows
from .models import Resource, TimeOff, WorkingHours


def slot_granularity() -> int:
    return int(getattr(settings, "BOOKING_SLOT_GRANULARITY_MINUTES", 30))


def open_hours_for(resource_ids: Iterable[int]) -> dict[int, List[OpenHours]]:
    """Weekly templates of several resources in one query."""

    templates: dict[int, List[OpenHours]] = {}
    rows = WorkingHours.objects.filter(resource_id__in=list(resource_ids))
    for row in rows:
        templates.setdefault(row.resource_id, []).append(
            OpenHours(weekday=row.weekday, start=row.start_time, end=row.end_time)
        )
    return templates


def resource_day_grid(resource: Resource, day: date, granularity_minutes: int | None = None) -> SlotGrid:
    template = open_hours_for([resource.pk]).get(resource.pk, [])
    return day_grid(
        template,
        day,
        granularity_minutes or slot_granularity(),
        timezone.get_default_timezone(),
    )


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Aware [midnight, next midnight) of a local calendar day."""

    tz = timezone.get_default_timezone()
    start = timezone.make_aware(datetime.combine(day, datetime.min.time()), tz)
    return start, start + timedelta(days=1)


def duty_windows_for(resource_ids: Iterable[int], day: date) -> dict[int, List[TimeWindow]]:
    """
    On-duty windows of every resource for the given day.

    Resources without working hours that day map to an empty list.
    """

    resource_ids = list(resource_ids)
    templates = open_hours_for(resource_ids)
    tz = timezone.get_default_timezone()
    granularity = slot_granularity()
    day_start, day_end = day_bounds(day)

    time_off: dict[int, list[tuple[datetime, datetime]]] = {}
    blocks = TimeOff.objects.filter(
        resource_id__in=resource_ids,
        starts_at__lt=day_end,
        ends_at__gt=day_start,
    )
    for block in blocks:
        time_off.setdefault(block.resource_id, []).append((block.starts_at, block.ends_at))

    result: dict[int, List[TimeWindow]] = {}
    for resource_id in resource_ids:
        grid = day_grid(templates.get(resource_id, []), day, granularity, tz)
        if grid.opens_at is None:
            result[resource_id] = []
            continue
        result[resource_id] = duty_windows(grid.opens_at, grid.closes_at, time_off.get(resource_id, []))
    return result
