"""Serializers for the booking domain."""

from __future__ import annotations

from rest_framework import serializers  # type: ignore

from apps.locations.models import Box

from .application.command_handlers import CreateBookingCommand, CreateBookingHandler
from .models import Booking, BookingExtension


class BookingWindowSerializer(serializers.Serializer):
    box = serializers.PrimaryKeyRelatedField(queryset=Box.objects.all())
    start_at = serializers.DateTimeField()
    end_at = serializers.DateTimeField()

    def validate(self, attrs):  # type: ignore
        if attrs["end_at"] <= attrs["start_at"]:
            raise serializers.ValidationError("End time must be after start time.")
        return attrs

    def to_command(self) -> CreateBookingCommand:
        data = self.validated_data
        return CreateBookingCommand(
            box_id=data["box"].pk,
            customer=self.context["request"].user,
            start_at=data["start_at"],
            end_at=data["end_at"],
            payment_intent_id=data.get("payment_intent_id", ""),
        )


class BookingCreateSerializer(BookingWindowSerializer):
    """Создание брони клиентом; payment_intent_id берётся из bookings/payment-intent/."""

    payment_intent_id = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")

    def create(self, validated_data):  # type: ignore
        """Raises BookingError subclasses; the view maps them to responses."""
        return CreateBookingHandler().handle(self.to_command())


class BookingSerializer(serializers.ModelSerializer):
    """Детальный сериализатор бронирования."""

    customer_id = serializers.ReadOnlyField(source="customer.id")
    box_label = serializers.ReadOnlyField(source="box.label")
    box_model = serializers.ReadOnlyField(source="box.model")
    stand_id = serializers.ReadOnlyField(source="box.stand_id")

    class Meta:
        model = Booking
        fields = [
            "id",
            "booking_code",
            "customer_id",
            "box",
            "box_label",
            "box_model",
            "stand_id",
            "start_at",
            "end_at",
            "status",
            "total_price",
            "currency",
            "extension_count",
            "extension_amount",
            "is_extended",
            "returned_at",
            "cancelled_at",
            "cancellation_reason",
            "refund_amount",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class BookingExtensionSerializer(serializers.ModelSerializer):
    charge_id = serializers.ReadOnlyField(source="payment.charge_id")
    reassigned = serializers.SerializerMethodField()

    class Meta:
        model = BookingExtension
        fields = [
            "id",
            "previous_end",
            "new_end",
            "additional_days",
            "additional_cost",
            "currency",
            "box_status_at_extension",
            "charge_id",
            "reassigned",
            "created_at",
        ]
        read_only_fields = fields

    def get_reassigned(self, obj: BookingExtension) -> list[dict]:
        return [
            {"booking_id": r.booking_id, "from_box": r.from_box_id, "to_box": r.to_box_id}
            for r in obj.reassignments.all()
        ]


class ExtensionRequestSerializer(serializers.Serializer):
    new_end = serializers.DateTimeField()


class ExtensionCompleteSerializer(serializers.Serializer):
    charge_intent_id = serializers.CharField(max_length=255)


class CancelBookingSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
