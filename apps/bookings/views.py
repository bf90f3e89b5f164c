"""API views for the booking domain."""

from __future__ import annotations

import logging

from django.utils import timezone  # type: ignore
from rest_framework import mixins, permissions, status, viewsets  # type: ignore
from rest_framework.decorators import action  # type: ignore
from rest_framework.response import Response  # type: ignore

from apps.finances.gateway import PaymentGatewayError

from .application.command_handlers import (
    CancelBookingCommand,
    CancelBookingHandler,
    ConfirmBookingCommand,
    ConfirmBookingHandler,
    ReturnBoxCommand,
    ReturnBoxHandler,
    start_booking_payment,
)
from .application.extension import ExtensionResolver, complete_extension, start_extension_payment
from .domain.exceptions import BookingError
from .filters import BookingFilterSet
from .models import Booking
from .serializers import (
    BookingCreateSerializer,
    BookingExtensionSerializer,
    BookingSerializer,
    BookingWindowSerializer,
    CancelBookingSerializer,
    ExtensionCompleteSerializer,
    ExtensionRequestSerializer,
)
from .services import reconcile_statuses, sync_all_statuses

logger = logging.getLogger(__name__)


def error_response(exc: BookingError | PaymentGatewayError) -> Response:
    return Response(exc.to_dict(), status=exc.http_status)


class IsBookingOwnerOrStaff(permissions.BasePermission):
    """Клиент видит свои брони, персонал видит все."""

    def has_object_permission(self, request, view, obj: Booking):  # type: ignore
        user = request.user
        if not user.is_authenticated:
            return False
        if getattr(user, "is_staff", False) or getattr(user, "is_superuser", False):
            return True
        return obj.customer_id == user.id


class BookingViewSet(
    mixins.CreateModelMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    """Бронирования: создание, просмотр, продление, отмена, возврат."""

    queryset = Booking.objects.select_related("box", "customer").all()
    permission_classes = [permissions.IsAuthenticated, IsBookingOwnerOrStaff]
    filterset_class = BookingFilterSet

    def get_serializer_class(self):  # type: ignore
        if self.action == "create":
            return BookingCreateSerializer
        if self.action == "payment_intent":
            return BookingWindowSerializer
        return BookingSerializer

    def get_queryset(self):  # type: ignore
        user = self.request.user
        qs = super().get_queryset()
        if not user.is_authenticated:
            return qs.none()
        if getattr(user, "is_staff", False) or getattr(user, "is_superuser", False):
            return qs
        return qs.filter(customer=user)

    def list(self, request, *args, **kwargs):  # type: ignore
        queryset = self.filter_queryset(self.get_queryset())
        page = self.paginate_queryset(queryset)
        bookings = list(page if page is not None else queryset)
        reconcile_statuses(bookings)
        serializer = self.get_serializer(bookings, many=True)
        if page is not None:
            return self.get_paginated_response(serializer.data)
        return Response(serializer.data)

    def retrieve(self, request, *args, **kwargs):  # type: ignore
        booking = self.get_object()
        reconcile_statuses([booking])
        return Response(self.get_serializer(booking).data)

    def create(self, request, *args, **kwargs):  # type: ignore
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            booking = serializer.save()
        except (BookingError, PaymentGatewayError) as exc:
            return error_response(exc)
        read_serializer = BookingSerializer(booking, context=self.get_serializer_context())
        headers = self.get_success_headers(read_serializer.data)
        return Response(read_serializer.data, status=status.HTTP_201_CREATED, headers=headers)

    @action(detail=False, methods=["post"], url_path="payment-intent", url_name="payment-intent")
    def payment_intent(self, request):  # type: ignore
        """Платёж за бронь: оплаченный intent передаётся в POST bookings/ как payment_intent_id."""
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            intent, price = start_booking_payment(serializer.to_command())
        except (BookingError, PaymentGatewayError) as exc:
            return error_response(exc)
        return Response(
            {
                "charge_intent_id": intent.intent_id,
                "client_secret": intent.client_secret,
                "amount": str(price.amount),
                "currency": price.currency,
            },
            status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=["get", "post"], url_path="extend")
    def extend(self, request, pk=None):  # type: ignore
        """
        GET: можно ли продлить до new_end и сколько это стоит.
        POST: создаёт платёж на продление.
        """
        booking: Booking = self.get_object()  # type: ignore
        data = request.query_params if request.method == "GET" else request.data
        serializer = ExtensionRequestSerializer(data=data)
        serializer.is_valid(raise_exception=True)
        new_end = serializer.validated_data["new_end"]

        if request.method == "GET":
            outcome = ExtensionResolver().preview(booking, request.user, new_end)
            if outcome.error is not None and outcome.error.http_status in (403, 404):
                return error_response(outcome.error)
            payload = {
                "can_extend": outcome.success,
                "current_end": booking.end_at.isoformat(),
                "new_end": new_end.isoformat(),
                "additional_days": outcome.additional_days,
                "additional_cost": str(outcome.additional_cost.amount) if outcome.additional_cost else None,
                "currency": outcome.additional_cost.currency if outcome.additional_cost else booking.currency,
                "reassignment_required": bool(outcome.reassigned),
            }
            if not outcome.success:
                payload["reason"] = outcome.reason
                payload["code"] = outcome.code
            return Response(payload)

        try:
            intent, outcome = start_extension_payment(booking, request.user, new_end)
        except PaymentGatewayError as exc:
            return error_response(exc)
        if intent is None:
            return Response(outcome.to_dict(), status=outcome.error.http_status)
        return Response(
            {
                "charge_intent_id": intent.intent_id,
                "client_secret": intent.client_secret,
                "additional_days": outcome.additional_days,
                "additional_cost": str(outcome.additional_cost.amount),
                "currency": outcome.additional_cost.currency,
                "new_end": outcome.new_end.isoformat(),
            },
            status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=["post"], url_path="extend/complete", url_name="extend-complete")
    def extend_complete(self, request, pk=None):  # type: ignore
        """Вызывается клиентом после подтверждения оплаты в Stripe."""
        booking: Booking = self.get_object()  # type: ignore
        serializer = ExtensionCompleteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            outcome = complete_extension(booking.pk, request.user, serializer.validated_data["charge_intent_id"])
        except PaymentGatewayError as exc:
            return error_response(exc)
        if not outcome.success:
            return Response(outcome.to_dict(), status=outcome.error.http_status)
        return Response(outcome.to_dict())

    @action(detail=True, methods=["get"])
    def extensions(self, request, pk=None):  # type: ignore
        booking: Booking = self.get_object()  # type: ignore
        history = booking.extensions.select_related("payment").prefetch_related("reassignments")
        return Response(BookingExtensionSerializer(history, many=True).data)

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):  # type: ignore
        booking: Booking = self.get_object()  # type: ignore
        serializer = CancelBookingSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            result = CancelBookingHandler().handle(
                CancelBookingCommand(
                    booking_id=booking.pk,
                    user=request.user,
                    reason=serializer.validated_data["reason"],
                )
            )
        except BookingError as exc:
            return error_response(exc)
        return Response(
            {
                "status": result.booking.status,
                "refund_amount": str(result.refund.amount.amount),
                "refund_percentage": result.refund.percentage,
                "transaction_fee": str(result.refund.fee.amount),
                "currency": result.refund.amount.currency,
                "reason": result.refund.reason,
            }
        )

    @action(detail=True, methods=["post"], permission_classes=[permissions.IsAdminUser])
    def confirm(self, request, pk=None):  # type: ignore
        booking: Booking = self.get_object()  # type: ignore
        try:
            booking = ConfirmBookingHandler().handle(ConfirmBookingCommand(booking_id=booking.pk))
        except BookingError as exc:
            return error_response(exc)
        return Response({"status": booking.status})

    @action(detail=True, methods=["post"], url_path="return", url_name="return")
    def return_box(self, request, pk=None):  # type: ignore
        booking: Booking = self.get_object()  # type: ignore
        try:
            booking = ReturnBoxHandler().handle(ReturnBoxCommand(booking_id=booking.pk, user=request.user))
        except BookingError as exc:
            return error_response(exc)
        return Response({"status": booking.status, "returned_at": booking.returned_at})

    @action(
        detail=False,
        methods=["post"],
        url_path="sync-statuses",
        url_name="sync-statuses",
        permission_classes=[permissions.IsAdminUser],
    )
    def sync_statuses(self, request):  # type: ignore
        result = sync_all_statuses(timezone.now())
        return Response(result)
