"""Integration tests for availability, hold and booking endpoints."""

from __future__ import annotations

from datetime import time, timedelta

from django.core.cache import cache
from django.urls import reverse
from django.utils import timezone
from django.utils.dateparse import parse_datetime
from rest_framework import status
from rest_framework.test import APITestCase

from apps.bookings.application.command_handlers import local_start
from apps.bookings.models import Booking, Hold
from apps.catalog.models import Service
from apps.resources.models import Resource, WorkingHours

DAY = timezone.localdate() + timedelta(days=14)


def at(hour: int, minute: int = 0):
    return local_start(DAY, time(hour, minute))


class BookingAPITests(APITestCase):
    """Covers удержание слота, подтверждение, конфликты и отмену."""

    def setUp(self) -> None:
        cache.clear()
        self.anna = Resource.objects.create(name="Anna", skills=["hair"])
        self.boris = Resource.objects.create(name="Boris", skills=["hair"])
        for resource in (self.anna, self.boris):
            WorkingHours.objects.bulk_create(
                WorkingHours(resource=resource, weekday=weekday, start_time=time(9), end_time=time(18))
                for weekday in range(7)
            )
        self.haircut = Service.objects.create(name="Haircut", duration_minutes=60, price=1500, skill="hair")
        self.offering = f"service:{self.haircut.pk}"
        self.holds_url = reverse("hold-list")

    def _payload(self, start: str, key: str, **extra) -> dict:
        return {"offering": self.offering, "date": str(DAY), "start_time": start, "idempotency_key": key, **extra}

    def _hold(self, start: str = "10:00", key: str = "k-1", **extra) -> dict:
        response = self.client.post(self.holds_url, self._payload(start, key, **extra), format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        return response.data

    def _booking(self, start: str = "10:00", key: str = "k-1", **extra) -> dict:
        hold = self._hold(start, key, **extra)
        response = self.client.post(reverse("hold-confirm", args=[hold["id"]]))
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        return response.data

    def _slots(self, **params) -> list:
        response = self.client.get(reverse("availability"), {"offering": self.offering, "date": str(DAY), **params})
        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        return [parse_datetime(value) for value in response.data["slots"]]

    def test_availability_lists_free_starts(self) -> None:
        slots = self._slots()

        self.assertEqual(slots[0], at(9))
        self.assertEqual(slots[-1], at(17))
        self.assertEqual(len(slots), 17)

    def test_availability_validates_query(self) -> None:
        response = self.client.get(reverse("availability"), {"offering": self.offering, "date": "not-a-date"})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.client.get(reverse("availability"), {"offering": "service:999", "date": str(DAY)})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["error"], "UNKNOWN_SERVICE")

    def test_hold_off_grid_start_conflicts(self) -> None:
        response = self.client.post(self.holds_url, self._payload("10:07", "odd"), format="json")

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT, response.data)
        self.assertEqual(response.data["error"], "SLOT_UNAVAILABLE")
        self.assertEqual(len(self._slots()), 17)

    def test_hold_then_replay_with_same_key(self) -> None:
        created = self._hold()

        replay = self.client.post(self.holds_url, self._payload("10:00", "k-1"), format="json")

        self.assertEqual(replay.status_code, status.HTTP_200_OK, replay.data)
        self.assertEqual(replay.data["id"], created["id"])
        self.assertEqual(created["status"], Hold.Status.PENDING)
        self.assertEqual(created["price"], 1500)
        self.assertEqual(len(created["allocations"]), 1)

    def test_conflicting_hold_returns_409(self) -> None:
        self._hold(resource=self.anna.pk)

        response = self.client.post(
            self.holds_url, self._payload("10:30", "k-2", resource=self.anna.pk), format="json"
        )

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT, response.data)
        self.assertEqual(response.data["error"], "SLOT_UNAVAILABLE")
        self.assertTrue(response.data["retryable"])

    def test_confirm_creates_booking(self) -> None:
        booking = self._booking()

        self.assertEqual(booking["status"], Booking.Status.CONFIRMED)
        self.assertEqual(booking["price"], 1500)
        self.assertEqual(booking["duration_minutes"], 60)
        self.assertEqual(parse_datetime(booking["start_at"]), at(10))

    def test_confirm_expired_hold_returns_410(self) -> None:
        hold = self._hold()
        Hold.objects.filter(pk=hold["id"]).update(expires_at=timezone.now() - timedelta(seconds=1))

        response = self.client.post(reverse("hold-confirm", args=[hold["id"]]))

        self.assertEqual(response.status_code, status.HTTP_410_GONE, response.data)
        self.assertEqual(response.data["error"], "HOLD_EXPIRED")
        self.assertEqual(Hold.objects.get(pk=hold["id"]).status, Hold.Status.EXPIRED)

    def test_confirm_unknown_hold_returns_404(self) -> None:
        response = self.client.post(reverse("hold-confirm", args=[987654]))

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND, response.data)
        self.assertEqual(response.data["error"], "HOLD_NOT_FOUND")

    def test_release_hold(self) -> None:
        hold = self._hold(resource=self.anna.pk)

        response = self.client.delete(reverse("hold-detail", args=[hold["id"]]))

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data["status"], Hold.Status.RELEASED)
        self._hold(key="k-2", resource=self.anna.pk)

    def test_hold_creation_drops_cached_slots(self) -> None:
        self.assertIn(at(10), self._slots(resource=self.anna.pk))

        with self.captureOnCommitCallbacks(execute=True):
            self._hold(resource=self.anna.pk)

        self.assertNotIn(at(10), self._slots(resource=self.anna.pk))
        self.assertIn(at(10), self._slots(resource=self.boris.pk))

    def test_cancel_booking_with_reason(self) -> None:
        booking = self._booking()

        response = self.client.delete(reverse("booking-detail", args=[booking["id"]]), {"reason": "болею"}, format="json")

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data["status"], Booking.Status.CANCELLED)
        self.assertEqual(response.data["cancellation_reason"], "болею")

    def test_reschedule_booking(self) -> None:
        booking = self._booking(resource=self.anna.pk)

        response = self.client.patch(
            reverse("booking-detail", args=[booking["id"]]),
            {"date": str(DAY), "start_time": "10:30", "idempotency_key": "move-1", "resource": self.anna.pk},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        self.assertEqual(response.data["reschedule_of"], booking["id"])

        confirm = self.client.post(reverse("hold-confirm", args=[response.data["id"]]))

        self.assertEqual(confirm.status_code, status.HTTP_201_CREATED, confirm.data)
        self.assertEqual(confirm.data["rescheduled_from"], booking["id"])
        self.assertEqual(parse_datetime(confirm.data["start_at"]), at(10, 30))
        previous = Booking.objects.get(pk=booking["id"])
        self.assertEqual(previous.status, Booking.Status.CANCELLED)
        self.assertEqual(previous.cancellation_reason, "rescheduled")

    def test_no_show_before_start_is_rejected(self) -> None:
        booking = self._booking()

        response = self.client.post(reverse("booking-no-show", args=[booking["id"]]))

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT, response.data)
        self.assertEqual(response.data["error"], "INVALID_BOOKING_STATE")

    def test_unknown_booking_returns_404(self) -> None:
        response = self.client.delete(reverse("booking-detail", args=[987654]))

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND, response.data)

    def test_list_bookings_filters(self) -> None:
        first = self._booking("10:00", "k-1", resource=self.anna.pk)
        self._booking("12:00", "k-2", resource=self.boris.pk)
        self.client.delete(reverse("booking-detail", args=[first["id"]]))

        confirmed = self.client.get(reverse("booking-list"), {"status": "confirmed"})
        by_resource = self.client.get(reverse("booking-list"), {"resource": self.anna.pk})
        by_date = self.client.get(reverse("booking-list"), {"date_from": str(DAY + timedelta(days=1))})

        self.assertEqual(confirmed.status_code, status.HTTP_200_OK)
        self.assertEqual([b["offering"] for b in confirmed.data], [self.offering])
        self.assertEqual([b["id"] for b in by_resource.data], [first["id"]])
        self.assertEqual(by_date.data, [])
