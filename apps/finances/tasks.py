"""Celery tasks for the finance domain."""

from __future__ import annotations

import logging

from celery import shared_task  # type: ignore

from shared.domain.value_objects import Money

from .gateway import PaymentGatewayError, refund_charge as gateway_refund
from .models import Payment

logger = logging.getLogger(__name__)


@shared_task(
    name="finances.refund_charge",
    autoretry_for=(PaymentGatewayError,),
    retry_backoff=True,
    max_retries=5,
)
def refund_charge(payment_id: int) -> dict[str, str]:
    """
    Возврат средств в Stripe по ранее помеченному платежу.

    The payment must already be marked refunded with the amount to give
    back; the task only talks to Stripe and records the refund id.
    """
    try:
        payment = Payment.objects.get(pk=payment_id)
    except Payment.DoesNotExist:
        logger.error(f"Refund requested for missing payment {payment_id}")
        return {"status": "missing"}

    if payment.status != Payment.Status.REFUNDED or payment.refund_amount <= 0:
        logger.warning(f"Payment {payment_id} is not marked for refund (status {payment.status})")
        return {"status": "skipped"}

    if payment.metadata.get("refund_id"):
        return {"status": "already_refunded", "refund_id": payment.metadata["refund_id"]}

    refund_id = gateway_refund(
        Money(payment.refund_amount, payment.currency),
        payment_intent_id=payment.payment_intent_id,
        charge_id=payment.charge_id or "",
    )
    payment.metadata = {**payment.metadata, "refund_id": refund_id}
    payment.save(update_fields=["metadata", "updated_at"])
    logger.info(f"Payment {payment_id} refunded in Stripe: {refund_id}")
    return {"status": "refunded", "refund_id": refund_id}
