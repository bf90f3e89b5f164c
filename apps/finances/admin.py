"""Admin registration for payments."""

from __future__ import annotations

from django.contrib import admin

from .models import Payment, PaymentTransaction


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ("charge_id", "user", "purpose", "status", "amount", "currency", "created_at")
    list_filter = ("status", "purpose", "currency")
    search_fields = ("charge_id", "payment_intent_id", "user__email")
    readonly_fields = ("charge_id", "payment_intent_id", "completed_at", "refunded_at", "created_at", "updated_at")


@admin.register(PaymentTransaction)
class PaymentTransactionAdmin(admin.ModelAdmin):
    list_display = ("event_id", "event", "status", "payment", "created_at")
    list_filter = ("event", "status")
    search_fields = ("event_id",)
