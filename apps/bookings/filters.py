"""FilterSet definitions for booking listings."""

from __future__ import annotations

import django_filters  # type: ignore

from .models import Booking


class BookingFilterSet(django_filters.FilterSet):
    status = django_filters.CharFilter(field_name="status", lookup_expr="exact")
    box = django_filters.NumberFilter(field_name="box_id", lookup_expr="exact")
    location = django_filters.NumberFilter(field_name="box__stand__location_id", lookup_expr="exact")
    start_after = django_filters.IsoDateTimeFilter(field_name="start_at", lookup_expr="gte")
    end_before = django_filters.IsoDateTimeFilter(field_name="end_at", lookup_expr="lte")
    is_extended = django_filters.BooleanFilter(field_name="is_extended")

    class Meta:
        model = Booking
        fields = ["status", "box", "location", "is_extended"]
