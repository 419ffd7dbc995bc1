"""Catalog API views."""

from __future__ import annotations

from django_filters.rest_framework import DjangoFilterBackend  # type: ignore
from rest_framework import viewsets  # type: ignore
from rest_framework.decorators import action  # type: ignore
from rest_framework.response import Response  # type: ignore

from shared.api.permissions import IsStaffOrReadOnly

from .models import Bundle, Service
from .serializers import BundleSerializer, QuoteSerializer, ServiceSerializer
from .services import compose_bundle


class ServiceViewSet(viewsets.ModelViewSet):
    queryset = Service.objects.all()
    serializer_class = ServiceSerializer
    permission_classes = [IsStaffOrReadOnly]
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ["is_active", "skill"]


class BundleViewSet(viewsets.ModelViewSet):
    """Bundles of services with their concurrency and pricing rules."""

    queryset = Bundle.objects.prefetch_related("items__service")
    serializer_class = BundleSerializer
    permission_classes = [IsStaffOrReadOnly]
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ["is_active", "concurrency", "human_policy"]

    @action(detail=True, methods=["get"])
    def quote(self, request, pk=None):  # type: ignore
        """Computed duration, price and per-service offsets of the bundle."""
        bundle = self.get_object()
        composition = compose_bundle(bundle)
        return Response(QuoteSerializer(composition.to_dict()).data)
