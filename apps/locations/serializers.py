"""Serializers for locations, stands and boxes."""

from __future__ import annotations

from rest_framework import serializers  # type: ignore

from .models import Box, Location, Stand


class BoxSerializer(serializers.ModelSerializer):
    location_id = serializers.ReadOnlyField(source="stand.location_id")

    class Meta:
        model = Box
        fields = ["id", "label", "model", "status", "score", "daily_rate", "stand", "location_id"]
        read_only_fields = fields


class StandSerializer(serializers.ModelSerializer):
    boxes = BoxSerializer(many=True, read_only=True)

    class Meta:
        model = Stand
        fields = ["id", "name", "boxes"]


class LocationSerializer(serializers.ModelSerializer):
    stands = StandSerializer(many=True, read_only=True)

    class Meta:
        model = Location
        fields = ["id", "name", "address", "city", "is_active", "stands"]


class ModelQuerySerializer(serializers.Serializer):
    """?model=classic|pro, регистр не важен."""

    model = serializers.CharField()

    def validate_model(self, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in Box.ModelTier.values:
            raise serializers.ValidationError(
                f"Unknown box model '{value}'. Expected one of: {', '.join(Box.ModelTier.values)}."
            )
        return normalized


class WindowQuerySerializer(serializers.Serializer):
    start = serializers.DateTimeField(required=False)
    end = serializers.DateTimeField(required=False)

    def validate(self, attrs):  # type: ignore
        start, end = attrs.get("start"), attrs.get("end")
        if (start is None) != (end is None):
            raise serializers.ValidationError("Provide both start and end, or neither.")
        if start is not None and end <= start:
            raise serializers.ValidationError("End must be after start.")
        return attrs


class ModelWindowQuerySerializer(ModelQuerySerializer, WindowQuerySerializer):
    start = serializers.DateTimeField()
    end = serializers.DateTimeField()
