"""
Booking Status Engine

One enum and one transition function. Time-driven states are derived
from (start, end, now); cancelled and completed are terminal and
confirmed is a manual hold, and none of those three is ever recomputed.

The engine only returns the diff. Persisting it is the caller's job and
is best-effort (see ``apps.bookings.services.apply_status_updates``).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore


class BookingStatus(models.TextChoices):
    UPCOMING = "upcoming", _("Upcoming")
    ACTIVE = "active", _("Active")
    COMPLETED = "completed", _("Completed")
    CANCELLED = "cancelled", _("Cancelled")
    CONFIRMED = "confirmed", _("Confirmed")


# tuples: members compare equal to stored strings but do not hash like them
TERMINAL_STATUSES = (BookingStatus.COMPLETED, BookingStatus.CANCELLED)
STICKY_STATUSES = TERMINAL_STATUSES + (BookingStatus.CONFIRMED,)
# statuses that occupy a box
BLOCKING_STATUSES = (BookingStatus.UPCOMING, BookingStatus.ACTIVE, BookingStatus.CONFIRMED)


def effective_status(start: datetime, end: datetime, now: datetime) -> BookingStatus:
    """Status implied by the clock alone."""
    if now < start:
        return BookingStatus.UPCOMING
    if now <= end:
        return BookingStatus.ACTIVE
    return BookingStatus.COMPLETED


def resolve_status(stored: str, start: datetime, end: datetime, now: datetime) -> BookingStatus:
    """Stored status if it is sticky, otherwise the clock-derived one."""
    if stored in STICKY_STATUSES:
        return BookingStatus(stored)
    return effective_status(start, end, now)


def is_blocking(status: str) -> bool:
    return status in BLOCKING_STATUSES


@dataclass(frozen=True)
class StatusUpdate:
    booking_id: int
    previous: BookingStatus
    current: BookingStatus


def reconcile(bookings: Iterable, now: datetime) -> list[StatusUpdate]:
    """
    Compare stored and derived status for every booking.

    ``bookings`` may be model instances or any object exposing ``pk``,
    ``status``, ``start_at`` and ``end_at``.
    """
    updates: list[StatusUpdate] = []
    for booking in bookings:
        if booking.status in STICKY_STATUSES:
            continue
        derived = effective_status(booking.start_at, booking.end_at, now)
        if derived != booking.status:
            updates.append(
                StatusUpdate(
                    booking_id=booking.pk,
                    previous=BookingStatus(booking.status),
                    current=derived,
                )
            )
    return updates
