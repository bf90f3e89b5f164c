"""Location browsing API: boxes, availability and blocked ranges."""

from __future__ import annotations

from django.db.models import Prefetch  # type: ignore
from rest_framework import permissions, viewsets  # type: ignore
from rest_framework.decorators import action  # type: ignore
from rest_framework.response import Response  # type: ignore

from apps.bookings import services as booking_services
from shared.domain.value_objects import TimeWindow

from .models import Box, Location, Stand
from .serializers import (
    BoxSerializer,
    LocationSerializer,
    ModelQuerySerializer,
    ModelWindowQuerySerializer,
    WindowQuerySerializer,
)


class LocationViewSet(viewsets.ReadOnlyModelViewSet):
    """Точки с боксами; занятость по модели бокса."""

    serializer_class = LocationSerializer
    permission_classes = [permissions.AllowAny]
    queryset = Location.objects.filter(is_active=True).prefetch_related(
        Prefetch("stands", queryset=Stand.objects.prefetch_related("boxes"))
    )

    @action(detail=True, methods=["get"], url_path="blocked-ranges", url_name="blocked-ranges")
    def blocked_ranges(self, request, pk=None):  # type: ignore
        """
        Days on which at least one box of the model is booked.

        A day listed here may still have a free box; use ``availability``
        to ask whether any box is free for a concrete window.
        """
        location: Location = self.get_object()  # type: ignore
        query = ModelQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        model = query.validated_data["model"]
        result = booking_services.blocked_ranges_for_model(location, model)
        return Response({"model": model, **result.to_dict()})

    @action(detail=True, methods=["get"])
    def availability(self, request, pk=None):  # type: ignore
        """Сколько боксов модели свободно на весь интервал [start, end]."""
        location: Location = self.get_object()  # type: ignore
        query = ModelWindowQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        data = query.validated_data
        window = TimeWindow(data["start"], data["end"])
        boxes = booking_services.available_boxes_for_model(location, data["model"], window)
        return Response(
            {
                "model": data["model"],
                "start": window.start.isoformat(),
                "end": window.end.isoformat(),
                "available_boxes": len(boxes),
                "is_available": bool(boxes),
            }
        )


class BoxViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = BoxSerializer
    permission_classes = [permissions.AllowAny]
    queryset = Box.objects.select_related("stand").all()
    filterset_fields = ["model", "status", "stand"]

    @action(detail=True, methods=["get"])
    def availability(self, request, pk=None):  # type: ignore
        box: Box = self.get_object()  # type: ignore
        query = WindowQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        data = query.validated_data
        window = TimeWindow(data["start"], data["end"]) if "start" in data else None
        result = booking_services.check_box_availability(box, window)
        return Response(
            {
                "box": box.pk,
                "is_active": box.is_active,
                "is_available": box.is_active and result.is_available,
                "next_free_at": result.next_free_at.isoformat() if result.next_free_at else None,
            }
        )

    @action(detail=True, methods=["get"], url_path="blocked-ranges", url_name="blocked-ranges")
    def blocked_ranges(self, request, pk=None):  # type: ignore
        box: Box = self.get_object()  # type: ignore
        ranges = booking_services.blocked_ranges_for_box(box)
        return Response({"box": box.pk, "ranges": [r.to_dict() for r in ranges]})
