"""Admin registration for locations, stands and boxes."""

from __future__ import annotations

from django.contrib import admin

from .models import Box, Location, Stand


class StandInline(admin.TabularInline):
    model = Stand
    extra = 0


class BoxInline(admin.TabularInline):
    model = Box
    extra = 0
    fields = ("label", "model", "status", "score", "daily_rate")


@admin.register(Location)
class LocationAdmin(admin.ModelAdmin):
    list_display = ("name", "city", "is_active", "created_at")
    list_filter = ("is_active", "city")
    search_fields = ("name", "address", "city")
    inlines = [StandInline]


@admin.register(Stand)
class StandAdmin(admin.ModelAdmin):
    list_display = ("name", "location", "created_at")
    list_filter = ("location",)
    inlines = [BoxInline]


@admin.register(Box)
class BoxAdmin(admin.ModelAdmin):
    list_display = ("label", "stand", "model", "status", "score", "daily_rate")
    list_filter = ("model", "status", "stand__location")
    search_fields = ("label", "stand__name", "stand__location__name")
    readonly_fields = ("score", "created_at", "updated_at")
