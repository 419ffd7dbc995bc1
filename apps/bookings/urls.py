"""URL routing for availability, holds and bookings."""

from __future__ import annotations

from django.urls import include, path  # type: ignore
from rest_framework.routers import DefaultRouter  # type: ignore

from .views import AvailabilityView, BookingViewSet, HoldViewSet

router = DefaultRouter()
router.register(r"holds", HoldViewSet, basename="hold")
router.register(r"bookings", BookingViewSet, basename="booking")

urlpatterns = [
    path("availability/", AvailabilityView.as_view(), name="availability"),
    path("", include(router.urls)),
]
