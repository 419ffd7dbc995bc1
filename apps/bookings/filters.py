"""FilterSet definitions for booking listing."""

from __future__ import annotations

import django_filters  # type: ignore

from .models import Booking


class BookingFilterSet(django_filters.FilterSet):
    """Filter bookings by status, resource and local start date."""

    status = django_filters.MultipleChoiceFilter(choices=Booking.Status.choices)
    resource = django_filters.NumberFilter(method="filter_resource")
    date_from = django_filters.DateFilter(field_name="start_at", lookup_expr="date__gte")
    date_to = django_filters.DateFilter(field_name="start_at", lookup_expr="date__lte")
    offering = django_filters.CharFilter(field_name="offering", lookup_expr="exact")

    class Meta:
        model = Booking
        fields = ["status", "offering"]

    def filter_resource(self, queryset, name, value):  # type: ignore
        if not value:
            return queryset
        return queryset.filter(allocations__resource_id=value).distinct()
