"""Catalog models: bookable services and bundles of services."""

from __future__ import annotations

from django.conf import settings  # type: ignore
from django.core.exceptions import ValidationError  # type: ignore
from django.core.validators import MaxValueValidator, MinValueValidator  # type: ignore
from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore

RESOURCE_TYPES = ("human", "room", "equipment")


def default_currency() -> str:
    return getattr(settings, "BOOKING_DEFAULT_CURRENCY", "RUB")


def default_resource_types() -> list[str]:
    return ["human"]


class Service(models.Model):
    """Single bookable service with its own duration and price."""

    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    duration_minutes = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    buffer_minutes = models.PositiveIntegerField(
        default=0,
        help_text=_("Minutes the resources stay blocked after the service ends."),
    )
    price = models.PositiveIntegerField(help_text=_("Price in minor currency units."))
    currency = models.CharField(max_length=3, default=default_currency)
    required_resource_types = models.JSONField(default=default_resource_types)
    skill = models.CharField(
        max_length=64,
        blank=True,
        help_text=_("Skill code a staff member needs to perform this service."),
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Service")
        verbose_name_plural = _("Services")
        ordering = ["name"]
        constraints = [
            models.CheckConstraint(condition=models.Q(duration_minutes__gt=0), name="service_positive_duration"),
        ]

    def __str__(self) -> str:
        return f"{self.name} ({self.duration_minutes} min)"

    def clean(self) -> None:
        types = self.required_resource_types
        if not isinstance(types, list) or not types:
            raise ValidationError({"required_resource_types": _("At least one resource type is required.")})
        unknown = set(types) - set(RESOURCE_TYPES)
        if unknown:
            raise ValidationError({"required_resource_types": _("Unknown resource types: %s") % ", ".join(sorted(unknown))})
        if self.skill and "human" not in types:
            raise ValidationError({"skill": _("Only services performed by staff can require a skill.")})


class Bundle(models.Model):
    """Ordered set of services booked together as one offering."""

    class Concurrency(models.TextChoices):
        SERIAL = "serial", _("One after another")
        PARALLEL = "parallel", _("At the same time")

    class HumanPolicy(models.TextChoices):
        SHARED = "shared", _("Same staff member for every service")
        INDEPENDENT = "independent", _("Any staff member per service")

    class PriceMode(models.TextChoices):
        SUM = "sum", _("Sum of service prices")
        DISCOUNT = "discount", _("Sum with a percentage discount")
        FIXED = "fixed", _("Fixed bundle price")

    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    services = models.ManyToManyField(Service, through="BundleItem", related_name="bundles")
    concurrency = models.CharField(max_length=20, choices=Concurrency.choices, default=Concurrency.SERIAL)
    human_policy = models.CharField(max_length=20, choices=HumanPolicy.choices, default=HumanPolicy.INDEPENDENT)
    price_mode = models.CharField(max_length=20, choices=PriceMode.choices, default=PriceMode.SUM)
    discount_percent = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=0,
        validators=[MinValueValidator(0), MaxValueValidator(100)],
    )
    fixed_price = models.PositiveIntegerField(null=True, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Bundle")
        verbose_name_plural = _("Bundles")
        ordering = ["name"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(discount_percent__gte=0) & models.Q(discount_percent__lte=100),
                name="bundle_discount_range",
            ),
        ]

    def __str__(self) -> str:
        return self.name

    def clean(self) -> None:
        if self.price_mode == self.PriceMode.FIXED and self.fixed_price is None:
            raise ValidationError({"fixed_price": _("A fixed price is required for this price mode.")})

    def ordered_items(self):
        return self.items.select_related("service").order_by("position", "id")


class BundleItem(models.Model):
    bundle = models.ForeignKey(Bundle, on_delete=models.CASCADE, related_name="items")
    service = models.ForeignKey(Service, on_delete=models.PROTECT, related_name="bundle_items")
    position = models.PositiveSmallIntegerField(default=0)

    class Meta:
        verbose_name = _("Bundle item")
        verbose_name_plural = _("Bundle items")
        ordering = ["bundle", "position", "id"]
        constraints = [
            models.UniqueConstraint(fields=["bundle", "position"], name="bundle_item_unique_position"),
        ]

    def __str__(self) -> str:
        return f"{self.bundle_id}#{self.position}: {self.service_id}"
