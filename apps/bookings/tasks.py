"""Celery tasks for the booking domain."""

from __future__ import annotations

import logging

from celery import shared_task  # type: ignore

from apps.locations.models import Box

from . import notifications
from .models import Booking
from .services import sync_all_statuses

logger = logging.getLogger(__name__)


# ============================================================================
# PERIODIC TASKS (запускаются автоматически через Celery Beat)
# ============================================================================

@shared_task(name="bookings.reconcile_booking_statuses")
def reconcile_booking_statuses() -> dict[str, int]:
    """
    Приводит сохранённые статусы к вычисленным по времени.

    Upcoming -> Active -> Completed. Cancelled, completed and confirmed
    bookings are left alone.

    Returns:
        dict: {"checked": ..., "updated": ...}
    """
    return sync_all_statuses()


# ============================================================================
# NOTIFICATIONS
# ============================================================================

def _load(booking_id: int) -> Booking | None:
    try:
        return Booking.objects.select_related("customer", "box").get(pk=booking_id)
    except Booking.DoesNotExist:
        logger.error(f"Booking {booking_id} not found for notification")
        return None


@shared_task(name="bookings.notify_booking_created")
def notify_booking_created(booking_id: int) -> bool:
    booking = _load(booking_id)
    if booking is None:
        return False
    return notifications.send_booking_created_email(booking)


@shared_task(name="bookings.notify_booking_extended")
def notify_booking_extended(booking_id: int, additional_days: int, additional_cost: str) -> bool:
    """Квитанция о продлении владельцу брони."""
    booking = _load(booking_id)
    if booking is None:
        return False
    return notifications.send_booking_extended_email(booking, additional_days, additional_cost)


@shared_task(name="bookings.notify_booking_reassigned")
def notify_booking_reassigned(booking_id: int, from_box_id: int) -> bool:
    """Клиенту, чью бронь перенесли на другой бокс ради чужого продления."""
    booking = _load(booking_id)
    if booking is None:
        return False
    previous = Box.objects.filter(pk=from_box_id).values_list("label", flat=True).first() or str(from_box_id)
    return notifications.send_booking_reassigned_email(booking, previous)


@shared_task(name="bookings.notify_booking_cancelled")
def notify_booking_cancelled(booking_id: int) -> bool:
    booking = _load(booking_id)
    if booking is None:
        return False
    return notifications.send_booking_cancelled_email(booking)
