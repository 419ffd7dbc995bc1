"""Resource API views."""

from __future__ import annotations

from datetime import date

from django_filters.rest_framework import DjangoFilterBackend  # type: ignore
from rest_framework import serializers, viewsets  # type: ignore
from rest_framework.decorators import action  # type: ignore
from rest_framework.response import Response  # type: ignore

from shared.api.permissions import IsStaffOrReadOnly

from .models import Resource, TimeOff
from .serializers import ResourceSerializer, SlotGridSerializer, TimeOffSerializer
from .services import resource_day_grid, slot_granularity


def parse_date_param(value: str | None, field: str = "date") -> date:
    if not value:
        raise serializers.ValidationError({field: "Обязательный параметр."})
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise serializers.ValidationError({field: "Ожидается дата в формате YYYY-MM-DD."}) from exc


class ResourceViewSet(viewsets.ModelViewSet):
    """Staff, rooms and equipment with their weekly working hours."""

    queryset = Resource.objects.prefetch_related("working_hours")
    serializer_class = ResourceSerializer
    permission_classes = [IsStaffOrReadOnly]
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ["resource_type", "is_active"]

    @action(detail=True, methods=["get"])
    def slots(self, request, pk=None):  # type: ignore
        """Raw slot grid of the resource for ?date=YYYY-MM-DD."""
        resource = self.get_object()
        day = parse_date_param(request.query_params.get("date"))
        granularity = slot_granularity()
        grid = resource_day_grid(resource, day, granularity)
        payload = SlotGridSerializer(
            {
                "resource": resource.pk,
                "date": day,
                "granularity_minutes": granularity,
                "slots": list(grid),
            }
        ).data
        return Response(payload)


class TimeOffViewSet(viewsets.ModelViewSet):
    queryset = TimeOff.objects.select_related("resource")
    serializer_class = TimeOffSerializer
    permission_classes = [IsStaffOrReadOnly]
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ["resource", "kind"]
