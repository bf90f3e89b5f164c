"""Payment record services."""

from __future__ import annotations

import logging
from typing import Any

from django.db import transaction  # type: ignore
from django.utils import timezone  # type: ignore

from shared.domain.value_objects import Money

from .models import Payment

logger = logging.getLogger(__name__)


def record_external_charge(
    charge_id: str,
    amount: Money,
    payer,
    *,
    payment_intent_id: str = "",
    purpose: str = Payment.Purpose.EXTENSION,
    metadata: dict[str, Any] | None = None,
) -> Payment:
    """
    Find or create the payment record for an external charge.

    Safe to call repeatedly and concurrently for the same ``charge_id``:
    the unique index on ``charge_id`` lets exactly one insert win and
    ``get_or_create`` re-reads the winner's row when its own insert hits
    the constraint. An existing record is returned unchanged.
    """
    if not charge_id:
        raise ValueError("charge_id is required to record an external charge")

    with transaction.atomic():
        payment, created = Payment.objects.get_or_create(
            charge_id=charge_id,
            defaults={
                "user": payer,
                "payment_intent_id": payment_intent_id,
                "purpose": purpose,
                "status": Payment.Status.COMPLETED,
                "amount": amount.amount,
                "currency": amount.currency,
                "metadata": metadata or {},
                "completed_at": timezone.now(),
            },
        )

    if created:
        logger.info(f"Recorded payment {payment.pk} for charge {charge_id}: {amount}")
    else:
        logger.info(f"Charge {charge_id} already recorded as payment {payment.pk}, reusing it")
        if payment.amount != amount.amount or payment.currency != amount.currency:
            logger.warning(
                f"Charge {charge_id} replayed with {amount}, stored record has "
                f"{payment.amount} {payment.currency}"
            )
    return payment


def mark_payment_refunded(payment: Payment, amount: Money) -> Payment:
    """Помечает платёж возвращённым; сам возврат в Stripe делает задача finances.refund_charge."""
    payment.mark_refunded(amount.amount)
    logger.info(f"Payment {payment.pk} marked refunded: {amount}")
    return payment
