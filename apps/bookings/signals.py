"""Model signal handlers for availability cache invalidation."""

from datetime import timedelta

from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver
from django.utils import timezone

from apps.catalog.models import Bundle, BundleItem, Service
from apps.resources.models import Resource, TimeOff, WorkingHours

from .cache import invalidate_availability_cache, invalidate_days


@receiver([post_save, post_delete], sender=Resource)
@receiver([post_save, post_delete], sender=WorkingHours)
@receiver([post_save, post_delete], sender=Service)
@receiver([post_save, post_delete], sender=Bundle)
@receiver([post_save, post_delete], sender=BundleItem)
def availability_cache_invalidator(**_: object) -> None:
    """Invalidate cached availability whenever calendars or the catalog change."""
    invalidate_availability_cache()


@receiver([post_save, post_delete], sender=TimeOff)
def time_off_cache_invalidator(sender, instance, **kwargs):
    """Time off only affects the days it spans."""
    day = timezone.localdate(instance.starts_at)
    last = timezone.localdate(instance.ends_at)
    days = []
    while day <= last:
        days.append(day)
        day += timedelta(days=1)
    invalidate_days(days)
