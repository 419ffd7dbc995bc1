"""URL routing for the catalog."""

from __future__ import annotations

from django.urls import include, path  # type: ignore
from rest_framework.routers import DefaultRouter  # type: ignore

from .views import BundleViewSet, ServiceViewSet

router = DefaultRouter()
router.register(r"services", ServiceViewSet, basename="service")
router.register(r"bundles", BundleViewSet, basename="bundle")

urlpatterns = [
    path("", include(router.urls)),
]
