"""Booking API views: availability, holds and bookings."""

from __future__ import annotations

from django_filters.rest_framework import DjangoFilterBackend  # type: ignore
from rest_framework import mixins, permissions, status, viewsets  # type: ignore
from rest_framework.decorators import action  # type: ignore
from rest_framework.filters import OrderingFilter  # type: ignore
from rest_framework.response import Response  # type: ignore
from rest_framework.views import APIView  # type: ignore

from .application.command_handlers import (
    CancelBookingCommand,
    CancelBookingHandler,
    ConfirmHoldCommand,
    ConfirmHoldHandler,
    CreateHoldCommand,
    CreateHoldHandler,
    MarkNoShowCommand,
    MarkNoShowHandler,
    ReleaseHoldCommand,
    ReleaseHoldHandler,
    RescheduleBookingCommand,
    RescheduleBookingHandler,
)
from .availability import AvailabilityResolver
from .filters import BookingFilterSet
from .models import Booking, Hold
from .serializers import (
    AvailabilityQuerySerializer,
    AvailabilitySerializer,
    BookingCancelSerializer,
    BookingRescheduleSerializer,
    BookingSerializer,
    HoldCreateSerializer,
    HoldSerializer,
)


def _customer_id(request):
    user = getattr(request, "user", None)
    if user is not None and user.is_authenticated:
        return user.pk
    return None


class AvailabilityView(APIView):
    """Bookable start times of a service or bundle on a day."""

    permission_classes = [permissions.AllowAny]

    def get(self, request):  # type: ignore
        query = AvailabilityQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        offering = query.validated_data["offering"]
        day = query.validated_data["date"]
        resource_id = query.validated_data.get("resource")

        slots = AvailabilityResolver().resolve_cached(offering, day, resource_id)
        payload = AvailabilitySerializer(
            {"offering": offering, "date": day, "resource": resource_id, "slots": slots}
        ).data
        return Response(payload)


class HoldViewSet(
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    """
    Hold/confirm protocol.

    POST creates a hold (201) or replays the stored one for a known
    idempotency key (200); confirm turns it into a booking; DELETE
    releases it.
    """

    queryset = Hold.objects.prefetch_related("allocations__resource")
    serializer_class = HoldSerializer
    permission_classes = [permissions.AllowAny]

    def create(self, request):  # type: ignore
        serializer = HoldCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = CreateHoldHandler().handle(
            CreateHoldCommand(
                idempotency_key=data["idempotency_key"],
                offering=data["offering"],
                date=data["date"],
                start_time=data["start_time"],
                resource_id=data.get("resource"),
                customer_id=_customer_id(request),
            )
        )
        code = status.HTTP_200_OK if result.replayed else status.HTTP_201_CREATED
        return Response(HoldSerializer(result.hold).data, status=code)

    def destroy(self, request, pk=None):  # type: ignore
        hold = ReleaseHoldHandler().handle(ReleaseHoldCommand(hold_id=pk))
        return Response(HoldSerializer(hold).data)

    @action(detail=True, methods=["post"])
    def confirm(self, request, pk=None):  # type: ignore
        booking = ConfirmHoldHandler().handle(ConfirmHoldCommand(hold_id=pk))
        return Response(BookingSerializer(booking).data, status=status.HTTP_201_CREATED)


class BookingViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    """Confirmed bookings: list, reschedule (PATCH), cancel (DELETE), no-show."""

    queryset = Booking.objects.prefetch_related("allocations__resource")
    serializer_class = BookingSerializer
    permission_classes = [permissions.AllowAny]
    filter_backends = [DjangoFilterBackend, OrderingFilter]
    filterset_class = BookingFilterSet
    ordering_fields = ["start_at", "created_at", "price"]
    ordering = ["start_at"]

    def partial_update(self, request, pk=None):  # type: ignore
        serializer = BookingRescheduleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = RescheduleBookingHandler().handle(
            RescheduleBookingCommand(
                booking_id=pk,
                idempotency_key=data["idempotency_key"],
                date=data["date"],
                start_time=data["start_time"],
                resource_id=data.get("resource"),
            )
        )
        code = status.HTTP_200_OK if result.replayed else status.HTTP_201_CREATED
        return Response(HoldSerializer(result.hold).data, status=code)

    def destroy(self, request, pk=None):  # type: ignore
        serializer = BookingCancelSerializer(data=request.data or request.query_params)
        serializer.is_valid(raise_exception=True)
        booking = CancelBookingHandler().handle(
            CancelBookingCommand(booking_id=pk, reason=serializer.validated_data["reason"])
        )
        return Response(BookingSerializer(booking).data)

    @action(detail=True, methods=["post"], url_path="no-show")
    def no_show(self, request, pk=None):  # type: ignore
        booking = MarkNoShowHandler().handle(MarkNoShowCommand(booking_id=pk))
        return Response(BookingSerializer(booking).data)
