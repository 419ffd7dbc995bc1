"""Booking ledger and hold/confirm coordinator tests against the database."""

from __future__ import annotations

from datetime import time, timedelta
from unittest import mock
import threading

from django.core.cache import cache
from django.db import connection
from django.test import TestCase, TransactionTestCase
from django.utils import timezone

from apps.bookings.application.command_handlers import (
    ConfirmHoldCommand,
    ConfirmHoldHandler,
    CreateHoldCommand,
    CreateHoldHandler,
    RescheduleBookingCommand,
    RescheduleBookingHandler,
    local_start,
)
from apps.bookings.availability import AvailabilityResolver
from apps.bookings.ledger import BookingLedger
from apps.bookings.models import Booking, Hold, HoldAllocation
from apps.bookings.tasks import complete_finished_bookings, expire_stale_holds
from apps.catalog.models import Bundle, BundleItem, Service
from apps.resources.models import Resource, TimeOff, WorkingHours
from shared.domain import exceptions as errors

DAY = timezone.localdate() + timedelta(days=14)


def at(hour: int, minute: int = 0):
    return local_start(DAY, time(hour, minute))


def make_resource(name, resource_type=Resource.ResourceType.HUMAN, skills=()):
    resource = Resource.objects.create(name=name, resource_type=resource_type, skills=list(skills))
    WorkingHours.objects.bulk_create(
        WorkingHours(resource=resource, weekday=weekday, start_time=time(9), end_time=time(18))
        for weekday in range(7)
    )
    return resource


class LedgerTestBase(TestCase):
    def setUp(self) -> None:
        cache.clear()
        self.ledger = BookingLedger()
        self.holds = CreateHoldHandler(self.ledger)

    def hold(self, offering, hour, minute=0, key=None, handler=None, **kwargs) -> Hold:
        command = CreateHoldCommand(
            idempotency_key=key or f"{offering}-{hour}-{minute}",
            offering=offering,
            date=DAY,
            start_time=time(hour, minute),
            **kwargs,
        )
        return (handler or self.holds).handle(command).hold


class HoldConfirmTests(LedgerTestBase):
    def setUp(self) -> None:
        super().setUp()
        self.anna = make_resource("Anna", skills=["hair"])
        self.haircut = Service.objects.create(name="Haircut", duration_minutes=60, price=1500, skill="hair")
        self.offering = f"service:{self.haircut.pk}"

    def test_held_window_blocks_overlapping_start(self) -> None:
        hold = self.hold(self.offering, 10)

        self.assertEqual(hold.status, Hold.Status.PENDING)
        self.assertEqual(hold.start_at, at(10))
        self.assertEqual(hold.end_at, at(11))
        self.assertEqual([(a.role, a.resource_id) for a in hold.allocations.all()], [("human", self.anna.pk)])

        with self.assertRaises(errors.SlotUnavailable):
            self.hold(self.offering, 10, 30)

    def test_confirm_freezes_price_and_removes_slot(self) -> None:
        hold = self.hold(self.offering, 10)

        booking = self.ledger.confirm(hold.pk)

        self.assertEqual(booking.status, Booking.Status.CONFIRMED)
        self.assertEqual(booking.price, 1500)
        self.assertEqual(booking.duration_minutes, 60)
        self.assertEqual(booking.hold_id, hold.pk)
        self.assertEqual(len(booking.booking_code), 8)
        self.assertEqual([a.resource_id for a in booking.allocations.all()], [self.anna.pk])
        hold.refresh_from_db()
        self.assertEqual(hold.status, Hold.Status.CONFIRMED)

        slots = AvailabilityResolver().resolve(self.offering, DAY)
        self.assertNotIn(at(9, 30), slots)
        self.assertNotIn(at(10), slots)
        self.assertNotIn(at(10, 30), slots)
        self.assertIn(at(9), slots)
        self.assertIn(at(11), slots)
        self.assertEqual(slots[-1], at(17))

    def test_off_grid_start_is_rejected(self) -> None:
        self.assertNotIn(at(10, 7), AvailabilityResolver().resolve(self.offering, DAY))

        with self.assertRaises(errors.SlotUnavailable):
            self.hold(self.offering, 10, 7)

        self.assertFalse(Hold.objects.exists())
        self.assertIn(at(9, 30), AvailabilityResolver().resolve(self.offering, DAY))

    def test_grid_follows_pinned_resource(self) -> None:
        boris = Resource.objects.create(name="Boris", skills=["hair"])
        WorkingHours.objects.bulk_create(
            WorkingHours(resource=boris, weekday=weekday, start_time=time(9, 15), end_time=time(18))
            for weekday in range(7)
        )

        pinned = self.hold(self.offering, 9, 15, resource_id=boris.pk)

        self.assertEqual([a.resource_id for a in pinned.allocations.all()], [boris.pk])
        with self.assertRaises(errors.SlotUnavailable):
            self.hold(self.offering, 9, 45, key="anna", resource_id=self.anna.pk)
        anyone = self.hold(self.offering, 9, 45, key="anyone")
        self.assertEqual([a.resource_id for a in anyone.allocations.all()], [self.anna.pk])

    def test_buffer_blocks_following_slot(self) -> None:
        self.haircut.buffer_minutes = 15
        self.haircut.save(update_fields=["buffer_minutes"])

        booking = self.ledger.confirm(self.hold(self.offering, 10).pk)

        self.assertEqual(booking.duration_minutes, 60)
        self.assertEqual(booking.end_at, at(11))
        allocation = booking.allocations.get()
        self.assertEqual((allocation.start_at, allocation.end_at), (at(10), at(11, 15)))

        slots = AvailabilityResolver().resolve(self.offering, DAY)
        self.assertNotIn(at(9), slots)
        self.assertNotIn(at(11), slots)
        self.assertIn(at(11, 30), slots)
        self.assertEqual(slots[-1], at(16, 30))
        with self.assertRaises(errors.SlotUnavailable):
            self.hold(self.offering, 11, key="next")

    def test_price_change_after_hold_keeps_held_price(self) -> None:
        hold = self.hold(self.offering, 10)
        self.haircut.price = 2000
        self.haircut.save()

        booking = self.ledger.confirm(hold.pk)

        self.assertEqual(booking.price, 1500)

    def test_same_key_replays_original_hold(self) -> None:
        command = CreateHoldCommand(idempotency_key="abc", offering=self.offering, date=DAY, start_time=time(10))
        first = self.holds.handle(command)
        command.start_time = time(14)
        second = self.holds.handle(command)

        self.assertFalse(first.replayed)
        self.assertTrue(second.replayed)
        self.assertEqual(second.hold.pk, first.hold.pk)
        self.assertEqual(second.hold.start_at, at(10))
        self.assertEqual(Hold.objects.count(), 1)

    def test_missing_key_is_rejected(self) -> None:
        with self.assertRaises(errors.InputError):
            self.hold(self.offering, 10, key="  ")

    def test_past_start_is_rejected(self) -> None:
        handler = CreateHoldHandler(BookingLedger(clock=lambda: at(12)))

        with self.assertRaises(errors.SlotUnavailable):
            self.hold(self.offering, 10, handler=handler)

    def test_unknown_offering_is_rejected(self) -> None:
        with self.assertRaises(errors.UnknownService):
            self.hold("service:999", 10)
        with self.assertRaises(errors.InvalidOffering):
            self.hold("combo:1", 10)

    def test_confirm_after_ttl_expires_hold(self) -> None:
        hold = self.hold(self.offering, 10)

        with self.assertRaises(errors.HoldExpired):
            self.ledger.confirm(hold.pk, as_of=hold.expires_at)

        hold.refresh_from_db()
        self.assertEqual(hold.status, Hold.Status.EXPIRED)
        self.assertFalse(Booking.objects.exists())
        self.assertTrue(self.ledger.is_free(self.anna.pk, at(10), 60))
        with self.assertRaises(errors.HoldExpired):
            self.ledger.confirm(hold.pk)

    def test_confirm_just_before_expiry_succeeds(self) -> None:
        hold = self.hold(self.offering, 10)

        booking = self.ledger.confirm(hold.pk, as_of=hold.expires_at - timedelta(seconds=1))

        self.assertEqual(booking.status, Booking.Status.CONFIRMED)

    def test_lapsed_hold_stops_blocking_before_sweep(self) -> None:
        hold = self.hold(self.offering, 10)
        later = hold.expires_at

        self.assertFalse(self.ledger.is_free(self.anna.pk, at(10), 60))
        self.assertTrue(self.ledger.is_free(self.anna.pk, at(10), 60, as_of=later))
        self.assertIn(at(10), AvailabilityResolver(clock=lambda: later).resolve(self.offering, DAY))

        handler = CreateHoldHandler(BookingLedger(clock=lambda: later))
        again = self.hold(self.offering, 10, key="second", handler=handler)
        self.assertNotEqual(again.pk, hold.pk)

    def test_confirm_twice_is_not_found(self) -> None:
        hold = self.hold(self.offering, 10)
        self.ledger.confirm(hold.pk)

        with self.assertRaises(errors.HoldNotFound):
            self.ledger.confirm(hold.pk)
        with self.assertRaises(errors.HoldNotFound):
            self.ledger.confirm(987654)

    def test_release_frees_slot(self) -> None:
        hold = self.hold(self.offering, 10)

        released = self.ledger.release(hold.pk)
        again = self.ledger.release(hold.pk)

        self.assertEqual(released.status, Hold.Status.RELEASED)
        self.assertEqual(again.status, Hold.Status.RELEASED)
        with self.assertRaises(errors.HoldNotFound):
            self.ledger.confirm(hold.pk)
        self.hold(self.offering, 10, key="retry")

    def test_sweeper_expires_only_lapsed_holds(self) -> None:
        early = self.hold(self.offering, 10)
        handler = CreateHoldHandler(BookingLedger(clock=lambda: timezone.now() + timedelta(minutes=5)))
        late = self.hold(self.offering, 12, handler=handler)

        self.assertEqual(self.ledger.expire_stale(as_of=early.expires_at), 1)
        self.assertEqual(self.ledger.expire_stale(as_of=early.expires_at), 0)

        early.refresh_from_db()
        late.refresh_from_db()
        self.assertEqual(early.status, Hold.Status.EXPIRED)
        self.assertEqual(late.status, Hold.Status.PENDING)

    def test_expire_task_reports_nothing_to_do(self) -> None:
        self.hold(self.offering, 10)

        self.assertEqual(expire_stale_holds.delay().get(), {"expired": 0})

    def test_cancel_frees_slot(self) -> None:
        booking = self.ledger.confirm(self.hold(self.offering, 10).pk)

        cancelled = self.ledger.cancel(booking.pk, "client asked")
        again = self.ledger.cancel(booking.pk)

        self.assertEqual(cancelled.status, Booking.Status.CANCELLED)
        self.assertEqual(cancelled.cancellation_reason, "client asked")
        self.assertIsNotNone(cancelled.cancelled_at)
        self.assertEqual(again.cancellation_reason, "client asked")
        self.assertTrue(self.ledger.is_free(self.anna.pk, at(10), 60))

        with self.assertRaises(errors.BookingNotFound):
            self.ledger.cancel(987654)

    def test_completed_booking_keeps_blocking_and_cannot_be_cancelled(self) -> None:
        booking = self.ledger.confirm(self.hold(self.offering, 10).pk)

        self.assertEqual(self.ledger.complete_finished(as_of=booking.end_at - timedelta(seconds=1)), 0)
        self.assertEqual(self.ledger.complete_finished(as_of=booking.end_at), 1)

        booking.refresh_from_db()
        self.assertEqual(booking.status, Booking.Status.COMPLETED)
        self.assertFalse(self.ledger.is_free(self.anna.pk, at(10), 60))
        with self.assertRaises(errors.InvalidBookingState):
            self.ledger.cancel(booking.pk)

    def test_complete_task_skips_future_bookings(self) -> None:
        self.ledger.confirm(self.hold(self.offering, 10).pk)

        self.assertEqual(complete_finished_bookings.delay().get(), {"completed": 0})

    def test_no_show_only_after_start(self) -> None:
        booking = self.ledger.confirm(self.hold(self.offering, 10).pk)

        with self.assertRaises(errors.InvalidBookingState):
            self.ledger.mark_no_show(booking.pk)

        marked = self.ledger.mark_no_show(booking.pk, as_of=booking.start_at)
        self.assertEqual(marked.status, Booking.Status.NO_SHOW)
        self.assertTrue(self.ledger.is_free(self.anna.pk, at(10), 60))

    def test_reschedule_within_own_slot(self) -> None:
        booking = self.ledger.confirm(self.hold(self.offering, 10).pk)
        handler = RescheduleBookingHandler(self.ledger)

        result = handler.handle(
            RescheduleBookingCommand(booking_id=booking.pk, idempotency_key="move", date=DAY, start_time=time(10, 30))
        )
        moved = self.ledger.reschedule(booking.pk, result.hold.pk)

        self.assertEqual(result.hold.reschedule_of_id, booking.pk)
        self.assertEqual(moved.start_at, at(10, 30))
        self.assertEqual(moved.rescheduled_from_id, booking.pk)
        booking.refresh_from_db()
        self.assertEqual(booking.status, Booking.Status.CANCELLED)
        self.assertEqual(booking.cancellation_reason, "rescheduled")
        self.assertTrue(self.ledger.is_free(self.anna.pk, at(10), 30))
        self.assertFalse(self.ledger.is_free(self.anna.pk, at(10, 30), 60))

    def test_confirming_reschedule_hold_moves_booking(self) -> None:
        booking = self.ledger.confirm(self.hold(self.offering, 10).pk)
        result = RescheduleBookingHandler(self.ledger).handle(
            RescheduleBookingCommand(booking_id=booking.pk, idempotency_key="move", date=DAY, start_time=time(14))
        )

        with mock.patch.object(self.ledger, "reschedule", wraps=self.ledger.reschedule) as reschedule:
            moved = ConfirmHoldHandler(self.ledger).handle(ConfirmHoldCommand(hold_id=result.hold.pk))

        reschedule.assert_called_once_with(booking.pk, result.hold.pk)
        self.assertEqual(moved.start_at, at(14))
        self.assertEqual(moved.rescheduled_from_id, booking.pk)
        booking.refresh_from_db()
        self.assertEqual(booking.status, Booking.Status.CANCELLED)
        self.assertTrue(self.ledger.is_free(self.anna.pk, at(10), 60))

    def test_confirming_plain_hold_skips_reschedule(self) -> None:
        hold = self.hold(self.offering, 10)

        with mock.patch.object(self.ledger, "reschedule") as reschedule:
            booking = ConfirmHoldHandler(self.ledger).handle(ConfirmHoldCommand(hold_id=hold.pk))

        reschedule.assert_not_called()
        self.assertIsNone(booking.rescheduled_from_id)

    def test_reschedule_needs_matching_hold(self) -> None:
        booking = self.ledger.confirm(self.hold(self.offering, 10).pk)
        other = self.hold(self.offering, 14)

        with self.assertRaises(errors.HoldNotFound):
            self.ledger.reschedule(booking.pk, other.pk)

    def test_cancelled_booking_cannot_be_rescheduled(self) -> None:
        booking = self.ledger.confirm(self.hold(self.offering, 10).pk)
        self.ledger.cancel(booking.pk)

        with self.assertRaises(errors.InvalidBookingState):
            RescheduleBookingHandler(self.ledger).handle(
                RescheduleBookingCommand(booking_id=booking.pk, idempotency_key="move", date=DAY, start_time=time(12))
            )

    def test_time_off_removes_slots(self) -> None:
        TimeOff.objects.create(resource=self.anna, starts_at=at(13), ends_at=at(14), kind=TimeOff.Kind.BREAK)

        slots = AvailabilityResolver().resolve(self.offering, DAY)

        self.assertIn(at(12), slots)
        self.assertNotIn(at(12, 30), slots)
        self.assertNotIn(at(13), slots)
        self.assertNotIn(at(13, 30), slots)
        self.assertIn(at(14), slots)
        with self.assertRaises(errors.SlotUnavailable):
            self.hold(self.offering, 13)

    def test_inactive_resource_offers_nothing(self) -> None:
        self.anna.is_active = False
        self.anna.save()

        self.assertEqual(AvailabilityResolver().resolve(self.offering, DAY), [])

    def test_resource_filter_pins_the_resource(self) -> None:
        boris = make_resource("Boris", skills=["hair"])
        room = make_resource("Room 1", Resource.ResourceType.ROOM)
        self.hold(self.offering, 10, resource_id=self.anna.pk)

        self.assertIn(at(10), AvailabilityResolver().resolve(self.offering, DAY))
        self.assertNotIn(at(10), AvailabilityResolver().resolve(self.offering, DAY, resource_id=self.anna.pk))
        self.assertEqual(AvailabilityResolver().resolve(self.offering, DAY, resource_id=room.pk), [])

        pinned = self.hold(self.offering, 10, key="boris", resource_id=boris.pk)
        self.assertEqual([a.resource_id for a in pinned.allocations.all()], [boris.pk])
        with self.assertRaises(errors.SlotUnavailable):
            self.hold(self.offering, 10, key="anna-again", resource_id=self.anna.pk)

    def test_cached_availability_dropped_after_commit(self) -> None:
        resolver = AvailabilityResolver()
        self.assertIn(at(10), resolver.resolve_cached(self.offering, DAY))

        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            self.hold(self.offering, 10)

        self.assertEqual(len(callbacks), 1)
        self.assertNotIn(at(10), resolver.resolve_cached(self.offering, DAY))

    def test_cached_availability_served_until_commit(self) -> None:
        resolver = AvailabilityResolver()
        self.assertIn(at(11), resolver.resolve_cached(self.offering, DAY))

        with self.captureOnCommitCallbacks(execute=False):
            self.hold(self.offering, 11)

        self.assertIn(at(11), resolver.resolve_cached(self.offering, DAY))
        self.assertNotIn(at(11), resolver.resolve(self.offering, DAY))


class BundleLedgerTests(LedgerTestBase):
    def setUp(self) -> None:
        super().setUp()
        self.anna = make_resource("Anna", skills=["hair", "nails"])
        self.boris = make_resource("Boris", skills=["nails"])
        self.room = make_resource("Spa room", Resource.ResourceType.ROOM)
        self.cut = Service.objects.create(name="Haircut", duration_minutes=60, price=1500, skill="hair")
        self.manicure = Service.objects.create(name="Manicure", duration_minutes=30, price=800, skill="nails")
        self.spa = Service.objects.create(
            name="Spa", duration_minutes=30, price=2000, required_resource_types=["human", "room"]
        )

    def make_bundle(self, services, **rules) -> str:
        bundle = Bundle.objects.create(name="Bundle", **rules)
        for position, service in enumerate(services):
            BundleItem.objects.create(bundle=bundle, service=service, position=position)
        return f"bundle:{bundle.pk}"

    def test_shared_serial_bundle_books_one_person(self) -> None:
        offering = self.make_bundle(
            [self.cut, self.manicure], concurrency=Bundle.Concurrency.SERIAL, human_policy=Bundle.HumanPolicy.SHARED
        )

        hold = self.hold(offering, 10)

        self.assertEqual(hold.duration_minutes, 90)
        self.assertEqual(hold.price, 2300)
        allocations = list(hold.allocations.all())
        self.assertEqual([(a.role, a.resource_id) for a in allocations], [("human", self.anna.pk)])
        self.assertEqual((allocations[0].start_at, allocations[0].end_at), (at(10), at(11, 30)))

        haircut_slots = AvailabilityResolver().resolve(f"service:{self.cut.pk}", DAY)
        self.assertNotIn(at(11), haircut_slots)
        self.assertIn(at(11, 30), haircut_slots)
        self.assertIn(at(10), AvailabilityResolver().resolve(f"service:{self.manicure.pk}", DAY))

    def test_parallel_independent_bundle_needs_two_people(self) -> None:
        offering = self.make_bundle(
            [self.cut, self.manicure],
            concurrency=Bundle.Concurrency.PARALLEL,
            human_policy=Bundle.HumanPolicy.INDEPENDENT,
        )

        hold = self.hold(offering, 10)

        self.assertEqual(hold.end_at, at(11))
        roles = {a.role: a.resource_id for a in hold.allocations.all()}
        self.assertEqual(roles, {"0:human": self.anna.pk, "1:human": self.boris.pk})
        with self.assertRaises(errors.SlotUnavailable):
            self.hold(offering, 10, key="second")
        self.assertNotIn(at(10), AvailabilityResolver().resolve(offering, DAY))

    def test_discounted_bundle_price_is_frozen_on_hold(self) -> None:
        offering = self.make_bundle(
            [self.cut, self.manicure],
            human_policy=Bundle.HumanPolicy.INDEPENDENT,
            price_mode=Bundle.PriceMode.DISCOUNT,
            discount_percent=10,
        )

        booking = self.ledger.confirm(self.hold(offering, 10).pk)

        self.assertEqual(booking.price, 2070)
        self.assertEqual(booking.duration_minutes, 90)

    def test_room_is_allocated_with_staff(self) -> None:
        offering = f"service:{self.spa.pk}"

        hold = self.hold(offering, 10)

        roles = {a.role: a.resource_id for a in hold.allocations.all()}
        self.assertEqual(roles, {"human": self.anna.pk, "0:room": self.room.pk})
        with self.assertRaises(errors.SlotUnavailable):
            self.hold(offering, 10, key="second")
        self.assertIn(at(10, 30), AvailabilityResolver().resolve(offering, DAY))

    def test_shared_bundle_without_qualified_staff_is_rejected(self) -> None:
        pedicure = Service.objects.create(name="Pedicure", duration_minutes=30, price=900, skill="feet")
        offering = self.make_bundle(
            [self.cut, pedicure], concurrency=Bundle.Concurrency.SERIAL, human_policy=Bundle.HumanPolicy.SHARED
        )

        with self.assertRaises(errors.IncompatibleSameHuman):
            self.hold(offering, 10)

    def test_empty_bundle_is_rejected(self) -> None:
        offering = self.make_bundle([])

        with self.assertRaises(errors.EmptyBundle):
            AvailabilityResolver().resolve(offering, DAY)


class ConcurrentHoldTests(TransactionTestCase):
    """Two customers racing for overlapping windows of one staff member."""

    def setUp(self) -> None:
        cache.clear()
        self.anna = make_resource("Anna", skills=["hair"])
        haircut = Service.objects.create(name="Haircut", duration_minutes=60, price=1500, skill="hair")
        self.offering = f"service:{haircut.pk}"

    def test_only_one_overlapping_hold_wins(self) -> None:
        barrier = threading.Barrier(2)
        outcomes = []

        def attempt(key, start_time):
            command = CreateHoldCommand(idempotency_key=key, offering=self.offering, date=DAY, start_time=start_time)
            try:
                barrier.wait(timeout=10)
                outcomes.append(CreateHoldHandler().handle(command).hold)
            except Exception as exc:
                outcomes.append(exc)
            finally:
                connection.close()

        threads = [
            threading.Thread(target=attempt, args=("first", time(10))),
            threading.Thread(target=attempt, args=("second", time(10, 30))),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        holds = [outcome for outcome in outcomes if isinstance(outcome, Hold)]
        failures = [outcome for outcome in outcomes if not isinstance(outcome, Hold)]
        self.assertEqual(len(holds), 1, outcomes)
        self.assertEqual(len(failures), 1, outcomes)
        self.assertIsInstance(failures[0], (errors.SlotUnavailable, errors.LockTimeout))
        self.assertEqual(Hold.objects.count(), 1)
        self.assertEqual(HoldAllocation.objects.count(), 1)
        self.assertEqual(HoldAllocation.objects.get().resource_id, self.anna.pk)
