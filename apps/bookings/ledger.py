"""
Booking Ledger

The set of live holds and blocking bookings per resource, and every
state change applied to them. Each mutating operation runs as its own
unit of work; nested calls join the caller's transaction as a savepoint.

Blocking reservations:
- bookings with status confirmed or completed
- holds with status pending and expires_at > as_of

The second rule is the only expiry predicate: a pending hold whose
expires_at <= as_of neither blocks a slot nor can be confirmed, whether
or not the sweeper has flipped it to expired yet.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Collection, Dict, Iterable, List, Optional, Tuple
import logging

from django.db import transaction  # type: ignore
from django.db.utils import NotSupportedError  # type: ignore
from django.utils import timezone  # type: ignore

from apps.catalog.domain.composer import Composition
from apps.resources.domain.calendar import day_grid
from apps.resources.models import Resource
from apps.resources.services import day_bounds, duty_windows_for, open_hours_for, slot_granularity
from shared.application.uow import DjangoUnitOfWork
from shared.domain import exceptions as errors
from shared.domain.value_objects import TimeWindow

from .domain import events
from .domain.planning import Requirement, candidates_for, find_assignment, pin_for, requirements_for
from .domain.schedule import BOOKING, HOLD, Reservation, ResourceSchedule
from .models import Booking, BookingAllocation, Hold, HoldAllocation

logger = logging.getLogger(__name__)

RESCHEDULED = "rescheduled"


def _lock_queryset_if_possible(queryset):
    """Apply select_for_update when inside transaction.atomic()."""

    if not transaction.get_connection().in_atomic_block:
        return queryset

    try:
        return queryset.select_for_update()
    except NotSupportedError:
        return queryset


def _resource_ids(allocations: Iterable[Any]) -> Tuple[int, ...]:
    return tuple(sorted({a.resource_id for a in allocations}))


@dataclass
class HoldRequest:
    """Everything the ledger needs to place a hold."""

    idempotency_key: str
    offering: str
    composition: Composition
    start: datetime
    expires_at: datetime
    resource_id: Optional[int] = None
    reschedule_of: Optional[Booking] = None
    customer: Any = None


class BookingLedger:
    def __init__(self, clock: Callable[[], datetime] = timezone.now):
        self.clock = clock

    # ===== Reads =====

    def candidate_ids(self, requirements: List[Requirement]) -> List[int]:
        """Active resources of every type the requirements mention."""
        types = {req.resource_type for req in requirements}
        return list(
            Resource.objects.filter(is_active=True, resource_type__in=types)
            .order_by("pk")
            .values_list("pk", flat=True)
        )

    def reservations(
        self,
        resource_ids: Iterable[int],
        start: datetime,
        end: datetime,
        as_of: datetime,
    ) -> Dict[int, List[Reservation]]:
        """Blocking reservations of the resources overlapping [start, end)."""
        resource_ids = list(resource_ids)
        result: Dict[int, List[Reservation]] = {}

        held = HoldAllocation.objects.filter(
            resource_id__in=resource_ids,
            start_at__lt=end,
            end_at__gt=start,
            hold__status=Hold.Status.PENDING,
            hold__expires_at__gt=as_of,
        ).values_list("resource_id", "start_at", "end_at", "hold_id", "hold__expires_at")
        for resource_id, start_at, end_at, hold_id, expires_at in held:
            result.setdefault(resource_id, []).append(
                Reservation(TimeWindow(start_at, end_at), HOLD, hold_id, expires_at)
            )

        booked = BookingAllocation.objects.filter(
            resource_id__in=resource_ids,
            start_at__lt=end,
            end_at__gt=start,
            booking__status__in=Booking.BLOCKING_STATUSES,
        ).values_list("resource_id", "start_at", "end_at", "booking_id")
        for resource_id, start_at, end_at, booking_id in booked:
            result.setdefault(resource_id, []).append(
                Reservation(TimeWindow(start_at, end_at), BOOKING, booking_id)
            )
        return result

    def snapshot(
        self,
        resource_ids: Iterable[int],
        day: date,
        as_of: Optional[datetime] = None,
        lock: bool = False,
    ) -> Dict[int, ResourceSchedule]:
        """
        Schedules of the active resources for one day.

        With lock=True the resource rows are locked FOR UPDATE in primary
        key order; call it inside a unit of work.
        """
        as_of = as_of or self.clock()
        queryset = Resource.objects.filter(pk__in=sorted(set(resource_ids)), is_active=True).order_by("pk")
        if lock:
            queryset = _lock_queryset_if_possible(queryset)
        resources = list(queryset)
        ids = [resource.pk for resource in resources]

        duty = duty_windows_for(ids, day)
        day_start, day_end = day_bounds(day)
        reservations = self.reservations(ids, day_start, day_end, as_of)

        return {
            resource.pk: ResourceSchedule.build(
                resource.pk,
                resource.resource_type,
                skills=resource.skills or (),
                duty=duty.get(resource.pk, []),
                reservations=reservations.get(resource.pk, []),
            )
            for resource in resources
        }

    def anchor_starts(
        self,
        requirements: List[Requirement],
        schedules: Dict[int, ResourceSchedule],
        day: date,
        pin: Optional[Tuple[int, int]] = None,
    ) -> List[datetime]:
        """
        Slot grid starts of the anchor requirement's candidates on the day.

        A pin on the anchor narrows the grid to the pinned resource.
        """
        anchor_only = pin[1] if pin is not None and pin[0] == 0 else None
        anchors = candidates_for(requirements[0], schedules.values(), anchor_only)
        templates = open_hours_for([s.id for s in anchors])
        tz = timezone.get_default_timezone()
        granularity = slot_granularity()

        starts = set()
        for anchor in anchors:
            starts.update(day_grid(templates.get(anchor.id, []), day, granularity, tz))
        return sorted(starts)

    def is_free(
        self,
        resource_id: int,
        start: datetime,
        duration_minutes: int,
        as_of: Optional[datetime] = None,
        exclude: Collection[Tuple[str, int]] = (),
    ) -> bool:
        """True when no live hold or blocking booking overlaps the window."""
        as_of = as_of or self.clock()
        window = TimeWindow.of(start, duration_minutes)
        found = self.reservations([resource_id], window.start, window.end, as_of)
        schedule = ResourceSchedule.build(resource_id, "", reservations=found.get(resource_id, []))
        return schedule.is_free(window, as_of, exclude)

    # ===== Holds =====

    def reserve(self, request: HoldRequest, as_of: Optional[datetime] = None) -> Hold:
        """
        Place a hold for the composed offering at request.start.

        The assignment is searched on schedules read under row locks, so
        freeness is re-validated inside the same transaction that inserts
        the hold and all of its allocations.

        Raises:
            SlotUnavailable: the start is not a slot of the anchor calendar, or
                no resource assignment fits the window
        """
        as_of = as_of or self.clock()
        composition = request.composition
        requirements = requirements_for(composition)
        day = timezone.localdate(request.start)
        exclude = {(BOOKING, request.reschedule_of.pk)} if request.reschedule_of is not None else set()

        with DjangoUnitOfWork(serializable=True) as uow:
            schedules = self.snapshot(self.candidate_ids(requirements), day, as_of, lock=True)

            pin = None
            if request.resource_id is not None:
                pin = pin_for(requirements, schedules.get(request.resource_id))
                if pin is None:
                    raise errors.SlotUnavailable(
                        f"Resource {request.resource_id} cannot serve {request.offering}",
                        resource_id=request.resource_id,
                    )

            if request.start not in self.anchor_starts(requirements, schedules, day, pin):
                logger.warning(f"Start {request.start.isoformat()} of {request.offering} is not a calendar slot")
                raise errors.SlotUnavailable(
                    f"{request.start:%Y-%m-%d %H:%M} is not a bookable slot",
                    offering=request.offering,
                )

            allocations = find_assignment(requirements, request.start, schedules, as_of, exclude, pin)
            if allocations is None:
                logger.warning(f"No free resources for {request.offering} at {request.start.isoformat()}")
                raise errors.SlotUnavailable(
                    f"{composition.name} is not available at {request.start:%Y-%m-%d %H:%M}",
                    offering=request.offering,
                )

            window = composition.window_at(request.start)
            hold = Hold.objects.create(
                idempotency_key=request.idempotency_key,
                offering=request.offering,
                offering_name=composition.name,
                duration_minutes=composition.duration_minutes,
                price=composition.price.amount,
                currency=composition.price.currency,
                start_at=window.start,
                end_at=window.end,
                expires_at=request.expires_at,
                reschedule_of=request.reschedule_of,
                customer=request.customer,
            )
            HoldAllocation.objects.bulk_create(
                HoldAllocation(
                    hold=hold,
                    role=allocation.role,
                    resource_id=allocation.resource_id,
                    start_at=allocation.window.start,
                    end_at=allocation.window.end,
                )
                for allocation in allocations
            )
            uow.record(events.HoldCreated(
                aggregate_id=hold.pk,
                hold_id=hold.pk,
                offering=hold.offering,
                resource_ids=_resource_ids(allocations),
                start_at=hold.start_at,
            ))

        logger.info(
            f"Hold {hold.pk} placed for {hold.offering} at {hold.start_at.isoformat()} "
            f"on resources {list(_resource_ids(allocations))}, expires {hold.expires_at.isoformat()}"
        )
        return hold

    def _hold_for_update(self, hold_id) -> Hold:
        hold = _lock_queryset_if_possible(Hold.objects.filter(pk=hold_id)).first()
        if hold is None:
            raise errors.HoldNotFound(f"Hold {hold_id} does not exist", hold_id=hold_id)
        return hold

    def _expire(self, hold: Hold, uow: DjangoUnitOfWork) -> None:
        hold.status = Hold.Status.EXPIRED
        hold.save(update_fields=["status", "updated_at"])
        uow.record(events.HoldExpired(
            aggregate_id=hold.pk,
            hold_id=hold.pk,
            resource_ids=_resource_ids(hold.allocations.all()),
            start_at=hold.start_at,
        ))

    def confirm(self, hold_id, as_of: Optional[datetime] = None) -> Booking:
        """
        Convert a pending hold into a booking.

        A hold past its TTL is flipped to expired, that flip is committed,
        and HoldExpired is raised afterwards.

        Raises:
            HoldNotFound: unknown hold, or already confirmed or released
            HoldExpired: the hold outlived its TTL
            InvalidBookingState: the booking being rescheduled is no longer confirmed
        """
        as_of = as_of or self.clock()
        lapsed = False

        with DjangoUnitOfWork(serializable=True) as uow:
            hold = self._hold_for_update(hold_id)
            if hold.status == Hold.Status.EXPIRED:
                raise errors.HoldExpired(f"Hold {hold_id} has expired", hold_id=hold_id)
            if hold.status != Hold.Status.PENDING:
                raise errors.HoldNotFound(f"Hold {hold_id} is already {hold.status}", hold_id=hold_id)

            if hold.is_lapsed(as_of):
                self._expire(hold, uow)
                lapsed = True
            else:
                booking = self._convert(hold, as_of, uow)

        if lapsed:
            logger.warning(f"Hold {hold_id} expired at {hold.expires_at.isoformat()} before confirm")
            raise errors.HoldExpired(f"Hold {hold_id} has expired", hold_id=hold_id)

        logger.info(f"Hold {hold.pk} confirmed as booking {booking.booking_code}")
        return booking

    def _convert(self, hold: Hold, as_of: datetime, uow: DjangoUnitOfWork) -> Booking:
        previous = None
        if hold.reschedule_of_id is not None:
            previous = _lock_queryset_if_possible(Booking.objects.filter(pk=hold.reschedule_of_id)).first()
            if previous is None or previous.status != Booking.Status.CONFIRMED:
                raise errors.InvalidBookingState(
                    f"Booking {hold.reschedule_of_id} can no longer be rescheduled",
                    booking_id=hold.reschedule_of_id,
                )

        allocations = list(hold.allocations.all())
        booking = Booking.objects.create(
            hold=hold,
            offering=hold.offering,
            offering_name=hold.offering_name,
            duration_minutes=hold.duration_minutes,
            price=hold.price,
            currency=hold.currency,
            start_at=hold.start_at,
            end_at=hold.end_at,
            customer_id=hold.customer_id,
        )
        BookingAllocation.objects.bulk_create(
            BookingAllocation(
                booking=booking,
                role=allocation.role,
                resource_id=allocation.resource_id,
                start_at=allocation.start_at,
                end_at=allocation.end_at,
            )
            for allocation in allocations
        )
        hold.status = Hold.Status.CONFIRMED
        hold.save(update_fields=["status", "updated_at"])

        resource_ids = _resource_ids(allocations)
        uow.record(events.BookingCreated(
            aggregate_id=booking.pk,
            booking_id=booking.pk,
            booking_code=booking.booking_code,
            hold_id=hold.pk,
            price=booking.price,
            currency=booking.currency,
            resource_ids=resource_ids,
            start_at=booking.start_at,
        ))

        if previous is not None:
            self._cancel(previous, RESCHEDULED, as_of, uow)
            booking.rescheduled_from = previous
            booking.save(update_fields=["rescheduled_from", "updated_at"])
            uow.record(events.BookingRescheduled(
                aggregate_id=booking.pk,
                booking_id=booking.pk,
                booking_code=booking.booking_code,
                previous_booking_id=previous.pk,
                previous_start_at=previous.start_at,
                resource_ids=resource_ids,
                start_at=booking.start_at,
            ))
            logger.info(f"Booking {previous.booking_code} rescheduled to {booking.booking_code}")

        return booking

    def release(self, hold_id, as_of: Optional[datetime] = None) -> Hold:
        """Cancel a hold before confirm; a non-pending hold is returned unchanged."""
        with DjangoUnitOfWork() as uow:
            hold = self._hold_for_update(hold_id)
            if hold.status != Hold.Status.PENDING:
                logger.debug(f"Hold {hold_id} already {hold.status}, nothing to release")
                return hold

            hold.status = Hold.Status.RELEASED
            hold.save(update_fields=["status", "updated_at"])
            uow.record(events.HoldReleased(
                aggregate_id=hold.pk,
                hold_id=hold.pk,
                resource_ids=_resource_ids(hold.allocations.all()),
                start_at=hold.start_at,
            ))

        logger.info(f"Hold {hold_id} released")
        return hold

    def expire_stale(self, as_of: Optional[datetime] = None, limit: int = 500) -> int:
        """Flip pending holds whose TTL has passed to expired."""
        as_of = as_of or self.clock()
        stale_ids = list(
            Hold.objects.filter(status=Hold.Status.PENDING, expires_at__lte=as_of)
            .order_by("expires_at")
            .values_list("pk", flat=True)[:limit]
        )

        expired = 0
        for hold_id in stale_ids:
            with DjangoUnitOfWork() as uow:
                hold = _lock_queryset_if_possible(Hold.objects.filter(pk=hold_id)).first()
                if hold is None or not hold.is_lapsed(as_of):
                    continue
                self._expire(hold, uow)
                expired += 1

        if expired:
            logger.info(f"Expired {expired} stale holds")
        return expired

    # ===== Bookings =====

    def _booking_for_update(self, booking_id) -> Booking:
        booking = _lock_queryset_if_possible(Booking.objects.filter(pk=booking_id)).first()
        if booking is None:
            raise errors.BookingNotFound(f"Booking {booking_id} does not exist", booking_id=booking_id)
        return booking

    def _cancel(self, booking: Booking, reason: str, as_of: datetime, uow: DjangoUnitOfWork) -> None:
        booking.status = Booking.Status.CANCELLED
        booking.cancellation_reason = reason
        booking.cancelled_at = as_of
        booking.save(update_fields=["status", "cancellation_reason", "cancelled_at", "updated_at"])
        uow.record(events.BookingCancelled(
            aggregate_id=booking.pk,
            booking_id=booking.pk,
            booking_code=booking.booking_code,
            reason=reason,
            resource_ids=_resource_ids(booking.allocations.all()),
            start_at=booking.start_at,
        ))

    def cancel(self, booking_id, reason: str = "", as_of: Optional[datetime] = None) -> Booking:
        """
        Cancel a confirmed booking; cancelling twice is a no-op.

        Raises:
            BookingNotFound: unknown booking
            InvalidBookingState: the booking is completed or a no-show
        """
        as_of = as_of or self.clock()
        with DjangoUnitOfWork() as uow:
            booking = self._booking_for_update(booking_id)
            if booking.status == Booking.Status.CANCELLED:
                return booking
            if booking.status != Booking.Status.CONFIRMED:
                raise errors.InvalidBookingState(
                    f"Booking {booking.booking_code} is {booking.status} and cannot be cancelled",
                    booking_id=booking.pk,
                )
            self._cancel(booking, reason, as_of, uow)

        logger.info(f"Booking {booking.booking_code} cancelled: {reason or 'no reason given'}")
        return booking

    def reschedule(self, booking_id, hold_id, as_of: Optional[datetime] = None) -> Booking:
        """Confirm the reschedule hold of a booking; the original is cancelled in the same transaction."""
        hold = Hold.objects.filter(pk=hold_id, reschedule_of_id=booking_id).first()
        if hold is None:
            raise errors.HoldNotFound(
                f"Hold {hold_id} does not reschedule booking {booking_id}",
                hold_id=hold_id,
                booking_id=booking_id,
            )
        return self.confirm(hold.pk, as_of)

    def _change_status(self, booking: Booking, new_status: str, uow: DjangoUnitOfWork) -> None:
        old_status = booking.status
        booking.status = new_status
        booking.save(update_fields=["status", "updated_at"])
        uow.record(events.BookingStatusChanged(
            aggregate_id=booking.pk,
            booking_id=booking.pk,
            booking_code=booking.booking_code,
            old_status=old_status,
            new_status=new_status,
            resource_ids=_resource_ids(booking.allocations.all()),
            start_at=booking.start_at,
        ))

    def mark_no_show(self, booking_id, as_of: Optional[datetime] = None) -> Booking:
        as_of = as_of or self.clock()
        with DjangoUnitOfWork() as uow:
            booking = self._booking_for_update(booking_id)
            if booking.status == Booking.Status.NO_SHOW:
                return booking
            if booking.status != Booking.Status.CONFIRMED or booking.start_at > as_of:
                raise errors.InvalidBookingState(
                    f"Booking {booking.booking_code} cannot be marked as no-show",
                    booking_id=booking.pk,
                )
            self._change_status(booking, Booking.Status.NO_SHOW, uow)

        logger.info(f"Booking {booking.booking_code} marked as no-show")
        return booking

    def complete_finished(self, as_of: Optional[datetime] = None) -> int:
        """Move confirmed bookings whose window has ended to completed."""
        as_of = as_of or self.clock()
        completed = 0
        with DjangoUnitOfWork() as uow:
            finished = _lock_queryset_if_possible(
                Booking.objects.filter(status=Booking.Status.CONFIRMED, end_at__lte=as_of).order_by("pk")
            )
            for booking in finished:
                self._change_status(booking, Booking.Status.COMPLETED, uow)
                completed += 1

        if completed:
            logger.info(f"Completed {completed} finished bookings")
        return completed
