"""
Booking Command Handlers

The Hold/Confirm coordinator. Each handler validates a command, composes
the offering with current catalog data and drives the ledger.

Commands:
- CreateHoldCommand: Hold a slot (idempotent per key)
- ConfirmHoldCommand: Turn a pending hold into a booking
- ReleaseHoldCommand: Give a hold back before confirm
- CancelBookingCommand: Cancel a confirmed booking
- RescheduleBookingCommand: Hold a new slot for an existing booking
- MarkNoShowCommand: Record that the customer did not come

State machine of a hold: pending -> confirmed | expired | released.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Optional
import logging

from django.conf import settings
from django.db import IntegrityError
from django.utils import timezone

from apps.bookings.ledger import BookingLedger, HoldRequest
from apps.bookings.models import Booking, Hold
from apps.catalog.services import compose_offering, parse_offering
from shared.domain import exceptions as errors

logger = logging.getLogger(__name__)


def hold_ttl() -> timedelta:
    return timedelta(seconds=int(getattr(settings, 'BOOKING_HOLD_TTL_SECONDS', 90)))


def local_start(day: date, start_time: time) -> datetime:
    """Aware start datetime from a local calendar day and wall-clock time"""
    naive = datetime.combine(day, start_time)
    return timezone.make_aware(naive, timezone.get_default_timezone())


# ===== Commands =====

@dataclass
class CreateHoldCommand:
    """
    Command to hold a slot

    Replaying the command with the same idempotency key returns the
    original hold, whatever its state.
    """
    idempotency_key: str
    offering: str
    date: date
    start_time: time
    resource_id: Optional[int] = None
    customer_id: Optional[Any] = None


@dataclass
class ConfirmHoldCommand:
    hold_id: int


@dataclass
class ReleaseHoldCommand:
    hold_id: int


@dataclass
class CancelBookingCommand:
    booking_id: int
    reason: str = ''


@dataclass
class RescheduleBookingCommand:
    """Command to hold the new slot of a booking; confirming the hold moves the booking"""
    booking_id: int
    idempotency_key: str
    date: date
    start_time: time
    resource_id: Optional[int] = None


@dataclass
class MarkNoShowCommand:
    booking_id: int


@dataclass
class HoldResult:
    hold: Hold
    replayed: bool = False


# ===== Command Handlers =====

class CreateHoldHandler:
    """
    Handler for CreateHold command

    Strategy:
    1. Return the stored hold if the idempotency key is known
    2. Compose the offering from current catalog data
    3. Inside one serializable transaction, lock the candidate resources,
       search an assignment and insert the hold with its allocations
    4. Publish HoldCreated after commit
    5. A concurrent insert of the same key loses on the unique index and
       returns the winner's hold
    """

    def __init__(self, ledger: Optional[BookingLedger] = None):
        self.ledger = ledger or BookingLedger()

    def handle(self, command: CreateHoldCommand) -> HoldResult:
        key = (command.idempotency_key or '').strip()
        if not key:
            raise errors.InputError('An idempotency key is required')

        existing = Hold.objects.filter(idempotency_key=key).first()
        if existing is not None:
            logger.info(f"Replaying hold {existing.pk} for idempotency key {key}")
            return HoldResult(existing, replayed=True)

        offering = str(parse_offering(command.offering))
        start = local_start(command.date, command.start_time)
        return self._place(
            HoldRequest(
                idempotency_key=key,
                offering=offering,
                composition=compose_offering(offering),
                start=start,
                expires_at=self.ledger.clock() + hold_ttl(),
                resource_id=command.resource_id,
                customer=self._customer(command.customer_id),
            )
        )

    def _place(self, request: HoldRequest) -> HoldResult:
        now = self.ledger.clock()
        if request.start < now:
            raise errors.SlotUnavailable(
                f"Cannot hold a slot in the past ({request.start.isoformat()})",
                offering=request.offering,
            )

        logger.info(
            f"Holding {request.offering} at {request.start.isoformat()} "
            f"(key {request.idempotency_key})"
        )
        try:
            hold = self.ledger.reserve(request, as_of=now)
        except IntegrityError:
            winner = Hold.objects.filter(idempotency_key=request.idempotency_key).first()
            if winner is None:
                raise
            logger.info(f"Concurrent hold for key {request.idempotency_key} won, returning hold {winner.pk}")
            return HoldResult(winner, replayed=True)
        return HoldResult(hold)

    @staticmethod
    def _customer(customer_id):
        if customer_id is None:
            return None
        from django.contrib.auth import get_user_model

        return get_user_model().objects.filter(pk=customer_id).first()


class ConfirmHoldHandler:
    """
    Handler for ConfirmHold command

    A hold placed by RescheduleBooking is confirmed as a reschedule of its
    booking. Raises HoldExpired when the hold outlived its TTL (the hold is
    then stored as expired) and HoldNotFound when it is unknown or consumed.
    """

    def __init__(self, ledger: Optional[BookingLedger] = None):
        self.ledger = ledger or BookingLedger()

    def handle(self, command: ConfirmHoldCommand) -> Booking:
        booking_id = Hold.objects.filter(pk=command.hold_id).values_list("reschedule_of_id", flat=True).first()
        if booking_id is not None:
            logger.info(f"Confirming hold {command.hold_id} as reschedule of booking {booking_id}")
            return self.ledger.reschedule(booking_id, command.hold_id)

        logger.info(f"Confirming hold {command.hold_id}")
        return self.ledger.confirm(command.hold_id)


class ReleaseHoldHandler:
    def __init__(self, ledger: Optional[BookingLedger] = None):
        self.ledger = ledger or BookingLedger()

    def handle(self, command: ReleaseHoldCommand) -> Hold:
        return self.ledger.release(command.hold_id)


class CancelBookingHandler:
    def __init__(self, ledger: Optional[BookingLedger] = None):
        self.ledger = ledger or BookingLedger()

    def handle(self, command: CancelBookingCommand) -> Booking:
        logger.info(f"Cancelling booking {command.booking_id}")
        return self.ledger.cancel(command.booking_id, command.reason)


class RescheduleBookingHandler(CreateHoldHandler):
    """
    Handler for RescheduleBooking command

    Places a hold linked to the booking. The booking's own allocations do
    not block the new window, so it can move within its current slot.
    Confirming the hold creates the new booking and cancels the old one.
    """

    def handle(self, command: RescheduleBookingCommand) -> HoldResult:
        key = (command.idempotency_key or '').strip()
        if not key:
            raise errors.InputError('An idempotency key is required')

        existing = Hold.objects.filter(idempotency_key=key).first()
        if existing is not None:
            return HoldResult(existing, replayed=True)

        booking = Booking.objects.filter(pk=command.booking_id).first()
        if booking is None:
            raise errors.BookingNotFound(f"Booking {command.booking_id} does not exist")
        if booking.status != Booking.Status.CONFIRMED:
            raise errors.InvalidBookingState(
                f"Booking {booking.booking_code} is {booking.status} and cannot be rescheduled"
            )

        start = local_start(command.date, command.start_time)
        return self._place(
            HoldRequest(
                idempotency_key=key,
                offering=booking.offering,
                composition=compose_offering(booking.offering),
                start=start,
                expires_at=self.ledger.clock() + hold_ttl(),
                resource_id=command.resource_id,
                reschedule_of=booking,
                customer=booking.customer,
            )
        )


class MarkNoShowHandler:
    def __init__(self, ledger: Optional[BookingLedger] = None):
        self.ledger = ledger or BookingLedger()

    def handle(self, command: MarkNoShowCommand) -> Booking:
        return self.ledger.mark_no_show(command.booking_id)
