"""Admin registration for bookings."""

from __future__ import annotations

from django.contrib import admin

from .models import Booking, BookingExtension, BookingReassignment


class BookingExtensionInline(admin.TabularInline):
    model = BookingExtension
    extra = 0
    readonly_fields = (
        "previous_end",
        "new_end",
        "additional_days",
        "additional_cost",
        "currency",
        "payment",
        "box_status_at_extension",
        "created_at",
    )
    can_delete = False


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = (
        "booking_code",
        "box",
        "customer",
        "status",
        "start_at",
        "end_at",
        "total_price",
        "extension_count",
        "created_at",
    )
    list_filter = ("status", "is_extended", "box__model", "box__stand__location")
    search_fields = ("booking_code", "customer__email", "box__label")
    readonly_fields = (
        "booking_code",
        "created_at",
        "updated_at",
        "extension_count",
        "extension_amount",
        "is_extended",
        "refund_amount",
    )
    inlines = [BookingExtensionInline]


@admin.register(BookingReassignment)
class BookingReassignmentAdmin(admin.ModelAdmin):
    list_display = ("booking", "from_box", "to_box", "extension", "created_at")
    readonly_fields = ("booking", "from_box", "to_box", "extension", "created_at")
