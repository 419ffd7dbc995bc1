"""Booking ledger models: holds, bookings and their resource allocations."""

from __future__ import annotations

import secrets
from datetime import datetime

from django.conf import settings  # type: ignore
from django.db import models  # type: ignore
from django.utils import timezone  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore


class Hold(models.Model):
    """Short-lived reservation of a slot, finalized into a booking or expired."""

    class Status(models.TextChoices):
        PENDING = "pending", _("Удерживается")
        CONFIRMED = "confirmed", _("Подтверждено")
        EXPIRED = "expired", _("Истекло")
        RELEASED = "released", _("Освобождено")

    idempotency_key = models.CharField(max_length=128, unique=True)
    offering = models.CharField(
        max_length=64,
        help_text=_("Offering reference: service:<id> or bundle:<id>."),
    )
    offering_name = models.CharField(max_length=255)
    duration_minutes = models.PositiveIntegerField()
    price = models.PositiveIntegerField(help_text=_("Price in minor currency units at hold time."))
    currency = models.CharField(max_length=3)
    start_at = models.DateTimeField()
    end_at = models.DateTimeField()
    expires_at = models.DateTimeField()
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    reschedule_of = models.ForeignKey(
        "Booking",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="reschedule_holds",
    )
    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="booking_holds",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Hold")
        verbose_name_plural = _("Holds")
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(condition=models.Q(end_at__gt=models.F("start_at")), name="hold_valid_window"),
        ]
        indexes = [
            models.Index(fields=["status", "expires_at"]),
        ]

    def __str__(self) -> str:
        return f"Hold {self.pk} {self.offering} at {self.start_at:%Y-%m-%d %H:%M} ({self.status})"

    def is_live(self, as_of: datetime | None = None) -> bool:
        """A pending hold blocks its window until expires_at, exclusive."""
        as_of = as_of or timezone.now()
        return self.status == self.Status.PENDING and self.expires_at > as_of

    def is_lapsed(self, as_of: datetime | None = None) -> bool:
        as_of = as_of or timezone.now()
        return self.status == self.Status.PENDING and self.expires_at <= as_of


class HoldAllocation(models.Model):
    """Resource window reserved by a hold."""

    hold = models.ForeignKey(Hold, on_delete=models.CASCADE, related_name="allocations")
    role = models.CharField(max_length=32)
    resource = models.ForeignKey(
        "resources.Resource",
        on_delete=models.PROTECT,
        related_name="hold_allocations",
    )
    start_at = models.DateTimeField()
    end_at = models.DateTimeField()

    class Meta:
        ordering = ["start_at", "role"]
        indexes = [
            models.Index(fields=["resource", "start_at", "end_at"]),
        ]

    def __str__(self) -> str:
        return f"{self.role} -> {self.resource_id} [{self.start_at:%H:%M}, {self.end_at:%H:%M})"


class Booking(models.Model):
    """Confirmed booking with value copies of the offering at hold time."""

    class Status(models.TextChoices):
        CONFIRMED = "confirmed", _("Подтверждено")
        CANCELLED = "cancelled", _("Отменено")
        COMPLETED = "completed", _("Завершено")
        NO_SHOW = "no_show", _("Клиент не пришёл")

    BLOCKING_STATUSES = (Status.CONFIRMED, Status.COMPLETED)

    booking_code = models.CharField(max_length=12, unique=True, editable=False)
    hold = models.OneToOneField(Hold, on_delete=models.PROTECT, related_name="booking")
    offering = models.CharField(max_length=64)
    offering_name = models.CharField(max_length=255)
    duration_minutes = models.PositiveIntegerField()
    price = models.PositiveIntegerField(help_text=_("Price in minor currency units, frozen at hold time."))
    currency = models.CharField(max_length=3)
    start_at = models.DateTimeField()
    end_at = models.DateTimeField()
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.CONFIRMED)
    cancellation_reason = models.CharField(max_length=255, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    rescheduled_from = models.OneToOneField(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="rescheduled_to",
    )
    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="slot_bookings",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Бронирование")
        verbose_name_plural = _("Бронирования")
        ordering = ["start_at"]
        constraints = [
            models.CheckConstraint(condition=models.Q(end_at__gt=models.F("start_at")), name="booking_valid_window"),
        ]
        indexes = [
            models.Index(fields=["status", "start_at"]),
            models.Index(fields=["booking_code"]),
        ]

    def __str__(self) -> str:
        return f"Booking #{self.booking_code} {self.offering_name} at {self.start_at:%Y-%m-%d %H:%M}"

    def save(self, *args, **kwargs):  # type: ignore
        if self._state.adding and not self.booking_code:
            self.booking_code = self.generate_booking_code()
        super().save(*args, **kwargs)

    @staticmethod
    def generate_booking_code() -> str:
        return secrets.token_hex(4).upper()

    @property
    def is_blocking(self) -> bool:
        return self.status in self.BLOCKING_STATUSES


class BookingAllocation(models.Model):
    """Resource window occupied by a booking, copied from its hold."""

    booking = models.ForeignKey(Booking, on_delete=models.CASCADE, related_name="allocations")
    role = models.CharField(max_length=32)
    resource = models.ForeignKey(
        "resources.Resource",
        on_delete=models.PROTECT,
        related_name="booking_allocations",
    )
    start_at = models.DateTimeField()
    end_at = models.DateTimeField()

    class Meta:
        ordering = ["start_at", "role"]
        indexes = [
            models.Index(fields=["resource", "start_at", "end_at"]),
        ]

    def __str__(self) -> str:
        return f"{self.role} -> {self.resource_id} [{self.start_at:%H:%M}, {self.end_at:%H:%M})"
