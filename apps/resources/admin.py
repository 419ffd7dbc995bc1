"""Admin registrations for resources."""

from __future__ import annotations

from django.contrib import admin

from .models import Resource, TimeOff, WorkingHours


class WorkingHoursInline(admin.TabularInline):
    model = WorkingHours
    extra = 0
    fields = ("weekday", "start_time", "end_time")


@admin.register(Resource)
class ResourceAdmin(admin.ModelAdmin):
    list_display = ("name", "resource_type", "is_active", "updated_at")
    list_filter = ("resource_type", "is_active")
    search_fields = ("name",)
    inlines = (WorkingHoursInline,)
    readonly_fields = ("created_at", "updated_at")


@admin.register(TimeOff)
class TimeOffAdmin(admin.ModelAdmin):
    list_display = ("resource", "kind", "starts_at", "ends_at", "reason")
    list_filter = ("kind",)
    search_fields = ("resource__name", "reason")
    date_hierarchy = "starts_at"
