"""API views for payments and the Stripe webhook."""

from __future__ import annotations

import logging

from django.db import transaction  # type: ignore
from rest_framework import permissions, status, viewsets  # type: ignore
from rest_framework.response import Response  # type: ignore
from rest_framework.views import APIView  # type: ignore

from .gateway import PaymentGatewayError, charge_status_from_intent, construct_webhook_event
from .models import Payment, PaymentTransaction
from .serializers import PaymentSerializer

logger = logging.getLogger(__name__)


class PaymentViewSet(viewsets.ReadOnlyModelViewSet):
    """Платежи текущего пользователя; персонал видит все."""

    queryset = Payment.objects.select_related("user").all()
    serializer_class = PaymentSerializer
    permission_classes = [permissions.IsAuthenticated]
    filterset_fields = ["status", "purpose"]

    def get_queryset(self):  # type: ignore
        user = self.request.user
        qs = super().get_queryset()
        if getattr(user, "is_staff", False) or getattr(user, "is_superuser", False):
            return qs
        return qs.filter(user=user)


class StripeWebhookView(APIView):
    """
    Stripe webhook.

    ``payment_intent.succeeded`` for an extension charge runs the same
    completion as the client callback, so an extension goes through even
    if the client never comes back. Each event id is claimed before any
    work, and repeats are acknowledged without doing it again.
    """

    authentication_classes: list = []
    permission_classes = [permissions.AllowAny]

    def post(self, request, *args, **kwargs):  # type: ignore
        signature = request.META.get("HTTP_STRIPE_SIGNATURE", "")
        try:
            event = construct_webhook_event(request.body, signature)
        except PaymentGatewayError as exc:
            logger.warning(f"Rejected Stripe webhook: {exc}")
            return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        with transaction.atomic():
            # claim and work commit together
            record, created = PaymentTransaction.objects.get_or_create(
                event_id=event.id,
                defaults={
                    "event": event.type,
                    "status": "processing",
                    "payload": {"object_id": getattr(event.data.object, "id", "")},
                },
            )
            if not created:
                logger.info(f"Stripe event {event.id} already processed")
                return Response({"status": "already_processed"})

            result = "ignored"
            payment = None
            if event.type == "payment_intent.succeeded":
                charge = charge_status_from_intent(event.data.object)
                result, payment = self._handle_succeeded(charge)

            record.payment = payment
            record.status = result
            record.save(update_fields=["payment", "status"])
        logger.info(f"Stripe event {event.id} ({event.type}) handled: {result}")
        return Response({"status": result})

    @staticmethod
    def _handle_succeeded(charge):
        from apps.bookings.application.extension import (
            EXTENSION_PAYMENT_TYPE,
            complete_extension_for_charge,
        )
        from apps.bookings.models import Booking

        if charge.metadata.get("type") != EXTENSION_PAYMENT_TYPE:
            return "ignored", None

        try:
            booking_id = int(charge.metadata.get("booking_id", ""))
        except ValueError:
            logger.error(f"Extension charge {charge.intent_id} has no usable booking_id")
            return "invalid_metadata", None

        booking = Booking.objects.select_related("customer").filter(pk=booking_id).first()
        if booking is None:
            logger.error(f"Extension charge {charge.intent_id} references missing booking {booking_id}")
            return "booking_not_found", None

        outcome = complete_extension_for_charge(booking.pk, booking.customer, charge)
        payment = Payment.objects.filter(charge_id=charge.charge_id or charge.intent_id).first()
        return ("extended" if outcome.success else outcome.code), payment
