"""Admin registrations for the booking ledger."""

from __future__ import annotations

from django.contrib import admin

from .models import Booking, BookingAllocation, Hold, HoldAllocation


class HoldAllocationInline(admin.TabularInline):
    model = HoldAllocation
    extra = 0
    fields = ("role", "resource", "start_at", "end_at")
    readonly_fields = fields


class BookingAllocationInline(admin.TabularInline):
    model = BookingAllocation
    extra = 0
    fields = ("role", "resource", "start_at", "end_at")
    readonly_fields = fields


@admin.register(Hold)
class HoldAdmin(admin.ModelAdmin):
    list_display = ("id", "offering_name", "start_at", "status", "expires_at", "created_at")
    list_filter = ("status",)
    search_fields = ("idempotency_key", "offering", "offering_name")
    inlines = (HoldAllocationInline,)
    readonly_fields = ("created_at", "updated_at")


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ("booking_code", "offering_name", "start_at", "end_at", "status", "price", "currency")
    list_filter = ("status",)
    search_fields = ("booking_code", "offering_name")
    date_hierarchy = "start_at"
    inlines = (BookingAllocationInline,)
    readonly_fields = ("booking_code", "hold", "rescheduled_from", "created_at", "updated_at")
