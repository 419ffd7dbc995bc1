"""Caching of resolved availability, invalidated per day."""

from __future__ import annotations

import hashlib
from datetime import date, datetime
from typing import Callable, Iterable, List, Optional

from django.conf import settings
from django.core.cache import cache
from django.utils import timezone

CACHE_KEYS_STORAGE_KEY = "availability:cache_keys"


def _is_cache_enabled() -> bool:
    return getattr(settings, "AVAILABILITY_CACHE_ENABLED", False)


def _prefix() -> str:
    return getattr(settings, "AVAILABILITY_CACHE_PREFIX", "availability")


def _build_cache_key(offering: str, day: date, resource_id: Optional[int]) -> str:
    fingerprint = f"{offering}|{day.isoformat()}|{resource_id or 'any'}"
    digest = hashlib.sha1(fingerprint.encode("utf-8")).hexdigest()
    return f"{_prefix()}:{day.isoformat()}:{digest}"


def _day_registry_key(day: date) -> str:
    return f"{_prefix()}:keys:{day.isoformat()}"


def _register_cache_key(day: date, key: str) -> None:
    registry_key = _day_registry_key(day)
    keys: List[str] | None = cache.get(registry_key)
    if keys is None:
        keys = []
    if key not in keys:
        keys.append(key)
        cache.set(registry_key, keys, None)

    days: List[str] | None = cache.get(CACHE_KEYS_STORAGE_KEY)
    if days is None:
        days = []
    if registry_key not in days:
        days.append(registry_key)
        cache.set(CACHE_KEYS_STORAGE_KEY, days, None)


def get_cached_slots(
    offering: str,
    day: date,
    resource_id: Optional[int],
    builder: Callable[[], List[datetime]],
) -> List[datetime]:
    """Return cached bookable start times for the offering and day."""
    if not _is_cache_enabled():
        return builder()

    key = _build_cache_key(offering, day, resource_id)
    cached: List[datetime] | None = cache.get(key)
    if cached is not None:
        return cached

    result = builder()
    timeout = getattr(settings, "AVAILABILITY_CACHE_TIMEOUT", 600)
    cache.set(key, result, timeout)
    _register_cache_key(day, key)
    return result


def invalidate_days(days: Iterable[date]) -> None:
    """
    Drop cached availability of the given days.

    An entry depends on every candidate resource of its offering, so a
    change to any resource clears the whole day.
    """
    for day in set(days):
        registry_key = _day_registry_key(day)
        keys: List[str] | None = cache.get(registry_key)
        if keys:
            cache.delete_many(keys)
        cache.delete(registry_key)


def invalidate_around(moment: Optional[datetime]) -> None:
    if moment is None:
        invalidate_availability_cache()
        return
    invalidate_days([timezone.localdate(moment)])


def invalidate_availability_cache() -> None:
    """Remove all cached availability entries."""
    registries: List[str] | None = cache.get(CACHE_KEYS_STORAGE_KEY)
    for registry_key in registries or []:
        keys: List[str] | None = cache.get(registry_key)
        if keys:
            cache.delete_many(keys)
        cache.delete(registry_key)
    cache.delete(CACHE_KEYS_STORAGE_KEY)


__all__ = [
    "get_cached_slots",
    "invalidate_around",
    "invalidate_availability_cache",
    "invalidate_days",
]
