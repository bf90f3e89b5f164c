"""Domain event handlers: turn committed booking changes into background work."""

from __future__ import annotations

import logging

from shared.application.message_bus import MessageBus, message_bus

from .domain.events import (
    BookingCancelled,
    BookingCreated,
    BookingExtended,
    BookingReassigned,
)

logger = logging.getLogger(__name__)


def on_booking_created(event: BookingCreated) -> None:
    from .tasks import notify_booking_created

    notify_booking_created.delay(event.booking_id)


def on_booking_extended(event: BookingExtended) -> None:
    from .tasks import notify_booking_extended

    notify_booking_extended.delay(event.booking_id, event.additional_days, str(event.additional_cost))


def on_booking_reassigned(event: BookingReassigned) -> None:
    from .tasks import notify_booking_reassigned

    notify_booking_reassigned.delay(event.booking_id, event.from_box_id)


def on_booking_cancelled(event: BookingCancelled) -> None:
    from apps.finances.models import Payment
    from apps.finances.tasks import refund_charge

    from .tasks import notify_booking_cancelled

    notify_booking_cancelled.delay(event.booking_id)

    if event.refund_amount <= 0 or not event.charge_id:
        return
    payment_id = Payment.objects.filter(charge_id=event.charge_id).values_list("pk", flat=True).first()
    if payment_id is None:
        logger.error(f"Cancelled booking {event.booking_id} references unknown charge {event.charge_id}")
        return
    refund_charge.delay(payment_id)


def register_handlers(bus: MessageBus = message_bus) -> None:
    bus.register_event_handler(BookingCreated, on_booking_created)
    bus.register_event_handler(BookingExtended, on_booking_extended)
    bus.register_event_handler(BookingReassigned, on_booking_reassigned)
    bus.register_event_handler(BookingCancelled, on_booking_cancelled)
