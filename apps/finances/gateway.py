"""
Stripe payment gateway.

Thin wrapper around the Stripe SDK: create a charge intent, read its
status back, refund, and verify webhook signatures. Every SDK error is
turned into ``PaymentGatewayError`` so callers deal with one type.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import stripe  # type: ignore
from django.conf import settings  # type: ignore

from shared.domain.value_objects import Money

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"


class PaymentGatewayError(Exception):
    """Payment provider unreachable or rejected the request."""

    code = "payment_gateway_error"
    http_status = 502

    def to_dict(self) -> dict:
        return {"detail": str(self), "code": self.code}


@dataclass(frozen=True)
class ChargeIntent:
    intent_id: str
    client_secret: str
    amount: Money


@dataclass(frozen=True)
class ChargeStatus:
    intent_id: str
    status: str
    charge_id: str | None
    amount: Money
    metadata: dict = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCEEDED


def _plain_metadata(metadata: Any) -> dict:
    if not metadata:
        return {}
    return {key: metadata[key] for key in metadata.keys()}


def charge_status_from_intent(intent: Any) -> ChargeStatus:
    """Build a ``ChargeStatus`` from a PaymentIntent object or webhook payload."""

    latest_charge = getattr(intent, "latest_charge", None)
    if latest_charge is not None and not isinstance(latest_charge, str):
        latest_charge = getattr(latest_charge, "id", None)

    received = getattr(intent, "amount_received", None) or getattr(intent, "amount", 0) or 0
    currency = (getattr(intent, "currency", None) or settings.BOOKING_CURRENCY).upper()

    return ChargeStatus(
        intent_id=intent.id,
        status=intent.status,
        charge_id=latest_charge,
        amount=Money.from_minor_units(received, currency),
        metadata=_plain_metadata(getattr(intent, "metadata", None)),
    )


def create_charge_intent(amount: Money, metadata: dict[str, Any]) -> ChargeIntent:
    """
    Создаёт PaymentIntent в Stripe.

    Metadata values are stringified, Stripe only stores strings.
    """
    logger.info(f"Creating charge intent for {amount} with metadata {metadata}")
    try:
        intent = stripe.PaymentIntent.create(
            amount=amount.to_minor_units(),
            currency=amount.currency.lower(),
            metadata={key: str(value) for key, value in metadata.items()},
            automatic_payment_methods={"enabled": True},
            api_key=settings.STRIPE_SECRET_KEY,
        )
    except stripe.StripeError as exc:
        logger.error(f"Stripe rejected charge intent for {amount}: {exc}")
        raise PaymentGatewayError(f"Payment initialization failed: {exc}") from exc

    return ChargeIntent(intent_id=intent.id, client_secret=intent.client_secret, amount=amount)


def retrieve_charge_status(intent_id: str) -> ChargeStatus:
    """Читает актуальный статус PaymentIntent."""
    try:
        intent = stripe.PaymentIntent.retrieve(intent_id, api_key=settings.STRIPE_SECRET_KEY)
    except stripe.StripeError as exc:
        logger.error(f"Failed to retrieve charge intent {intent_id}: {exc}")
        raise PaymentGatewayError(f"Failed to verify payment: {exc}") from exc

    return charge_status_from_intent(intent)


def refund_charge(amount: Money, *, payment_intent_id: str = "", charge_id: str = "") -> str:
    """Returns the refund id. Prefers the intent id, Stripe accepts both."""
    if not payment_intent_id and not charge_id:
        raise PaymentGatewayError("Nothing to refund: no payment intent or charge id.")

    params: dict[str, Any] = {"amount": amount.to_minor_units(), "api_key": settings.STRIPE_SECRET_KEY}
    if payment_intent_id:
        params["payment_intent"] = payment_intent_id
    else:
        params["charge"] = charge_id

    try:
        refund = stripe.Refund.create(**params)
    except stripe.StripeError as exc:
        logger.error(f"Refund of {amount} failed for {payment_intent_id or charge_id}: {exc}")
        raise PaymentGatewayError(f"Refund failed: {exc}") from exc

    logger.info(f"Refund {refund.id} created for {payment_intent_id or charge_id}, amount {amount}")
    return refund.id


def construct_webhook_event(payload: bytes, signature: str):
    """Проверка подписи webhook-запроса Stripe."""
    try:
        return stripe.Webhook.construct_event(payload, signature, settings.STRIPE_WEBHOOK_SECRET)
    except ValueError as exc:
        raise PaymentGatewayError("Invalid payload") from exc
    except stripe.SignatureVerificationError as exc:
        raise PaymentGatewayError("Invalid signature") from exc
