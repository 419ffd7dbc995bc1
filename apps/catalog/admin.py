"""Admin registrations for the catalog."""

from __future__ import annotations

from django.contrib import admin

from .models import Bundle, BundleItem, Service


@admin.register(Service)
class ServiceAdmin(admin.ModelAdmin):
    list_display = ("name", "duration_minutes", "buffer_minutes", "price", "currency", "skill", "is_active")
    list_filter = ("is_active",)
    search_fields = ("name", "skill")
    readonly_fields = ("created_at", "updated_at")


class BundleItemInline(admin.TabularInline):
    model = BundleItem
    extra = 0
    fields = ("position", "service")
    autocomplete_fields = ("service",)


@admin.register(Bundle)
class BundleAdmin(admin.ModelAdmin):
    list_display = ("name", "concurrency", "human_policy", "price_mode", "discount_percent", "is_active")
    list_filter = ("concurrency", "human_policy", "price_mode", "is_active")
    search_fields = ("name",)
    inlines = (BundleItemInline,)
    readonly_fields = ("created_at", "updated_at")
