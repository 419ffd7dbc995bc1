"""Serializers for holds, bookings and availability queries."""

from __future__ import annotations

from rest_framework import serializers  # type: ignore

from .models import Booking, BookingAllocation, Hold, HoldAllocation


class HoldAllocationSerializer(serializers.ModelSerializer):
    resource_name = serializers.CharField(source="resource.name", read_only=True)

    class Meta:
        model = HoldAllocation
        fields = ["role", "resource", "resource_name", "start_at", "end_at"]


class BookingAllocationSerializer(serializers.ModelSerializer):
    resource_name = serializers.CharField(source="resource.name", read_only=True)

    class Meta:
        model = BookingAllocation
        fields = ["role", "resource", "resource_name", "start_at", "end_at"]


class HoldSerializer(serializers.ModelSerializer):
    allocations = HoldAllocationSerializer(many=True, read_only=True)

    class Meta:
        model = Hold
        fields = [
            "id",
            "idempotency_key",
            "offering",
            "offering_name",
            "duration_minutes",
            "price",
            "currency",
            "start_at",
            "end_at",
            "expires_at",
            "status",
            "reschedule_of",
            "allocations",
            "created_at",
        ]
        read_only_fields = fields


class HoldCreateSerializer(serializers.Serializer):
    offering = serializers.CharField(max_length=64)
    date = serializers.DateField()
    start_time = serializers.TimeField()
    idempotency_key = serializers.CharField(max_length=128, trim_whitespace=True)
    resource = serializers.IntegerField(required=False, allow_null=True, min_value=1)


class BookingSerializer(serializers.ModelSerializer):
    allocations = BookingAllocationSerializer(many=True, read_only=True)
    hold = serializers.PrimaryKeyRelatedField(read_only=True)

    class Meta:
        model = Booking
        fields = [
            "id",
            "booking_code",
            "hold",
            "offering",
            "offering_name",
            "duration_minutes",
            "price",
            "currency",
            "start_at",
            "end_at",
            "status",
            "cancellation_reason",
            "cancelled_at",
            "rescheduled_from",
            "allocations",
            "created_at",
        ]
        read_only_fields = fields


class BookingRescheduleSerializer(serializers.Serializer):
    date = serializers.DateField()
    start_time = serializers.TimeField()
    idempotency_key = serializers.CharField(max_length=128, trim_whitespace=True)
    resource = serializers.IntegerField(required=False, allow_null=True, min_value=1)


class BookingCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")


class AvailabilityQuerySerializer(serializers.Serializer):
    offering = serializers.CharField(max_length=64)
    date = serializers.DateField()
    resource = serializers.IntegerField(required=False, allow_null=True, min_value=1)


class AvailabilitySerializer(serializers.Serializer):
    offering = serializers.CharField()
    date = serializers.DateField()
    resource = serializers.IntegerField(allow_null=True)
    slots = serializers.ListField(child=serializers.DateTimeField())
