"""Serializers for the finance domain (payments)."""

from __future__ import annotations

from rest_framework import serializers  # type: ignore

from .models import Payment


class PaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = [
            "id",
            "charge_id",
            "payment_intent_id",
            "purpose",
            "status",
            "amount",
            "currency",
            "completed_at",
            "refunded_at",
            "refund_amount",
            "created_at",
        ]
        read_only_fields = fields
