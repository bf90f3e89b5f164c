"""ORM side of the availability calculator and the status engine."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from django.db import DatabaseError, transaction  # type: ignore
from django.db.models import F, PositiveBigIntegerField  # type: ignore
from django.db.models.functions import Greatest  # type: ignore
from django.db.utils import NotSupportedError  # type: ignore
from django.utils import timezone  # type: ignore

from apps.locations.models import Box, Location
from shared.domain.value_objects import DateRange, TimeWindow

from .domain.schedule import Availability, BoxSchedule, blocked_date_ranges
from .domain.status import BLOCKING_STATUSES, STICKY_STATUSES, StatusUpdate, reconcile
from .models import Booking

logger = logging.getLogger(__name__)


def _lock_queryset_if_possible(queryset):
    """Apply select_for_update when inside transaction.atomic()."""

    if not transaction.get_connection().in_atomic_block:
        return queryset

    try:
        return queryset.select_for_update()
    except NotSupportedError:
        return queryset


def blocking_bookings():
    return Booking.objects.filter(status__in=BLOCKING_STATUSES)


def lock_boxes(box_ids: Iterable[int]) -> list[Box]:
    """Lock box rows in primary key order so concurrent writers never deadlock."""
    queryset = Box.objects.filter(pk__in=list(box_ids)).order_by("pk")
    return list(_lock_queryset_if_possible(queryset))


def load_box_schedules(boxes: Iterable[Box]) -> dict[int, BoxSchedule]:
    boxes = list(boxes)
    schedules = {box.pk: BoxSchedule(box_id=box.pk) for box in boxes}
    for booking in blocking_bookings().filter(box__in=boxes).order_by("start_at"):
        schedules[booking.box_id].occupancies.append(booking.to_occupancy())
    return schedules


def load_box_schedule(box: Box, *, lock: bool = False) -> BoxSchedule:
    """Schedule of one box; with ``lock`` the box row is held until commit."""
    if lock:
        lock_boxes([box.pk])
    return load_box_schedules([box])[box.pk]


def check_box_availability(
    box: Box,
    window: TimeWindow | None = None,
    *,
    exclude_booking_id: int | None = None,
) -> Availability:
    availability = load_box_schedule(box).check(window, exclude_booking_id=exclude_booking_id)
    logger.debug(
        f"Availability of box {box.pk} for {window or 'any time'}: "
        f"{availability.is_available}, next free at {availability.next_free_at}"
    )
    return availability


def blocked_ranges_for_box(box: Box) -> list[DateRange]:
    return load_box_schedule(box).blocked_ranges(timezone.get_current_timezone())


@dataclass(frozen=True)
class BlockedRanges:
    ranges: list[DateRange] = field(default_factory=list)
    total_bookings: int = 0

    @property
    def merged_ranges_count(self) -> int:
        return len(self.ranges)

    def to_dict(self) -> dict:
        return {
            "ranges": [r.to_dict() for r in self.ranges],
            "total_bookings": self.total_bookings,
            "merged_ranges_count": self.merged_ranges_count,
        }


def active_boxes_of_model(location: Location, model: str):
    return Box.objects.filter(
        stand__location=location,
        model=model,
        status=Box.Status.ACTIVE,
    ).order_by("score", "pk")


def blocked_ranges_for_model(location: Location, model: str) -> BlockedRanges:
    """
    Union of busy days across every active box of ``model`` at ``location``.

    A day inside a returned range means at least one box of the model is
    taken, not that all of them are. ``available_boxes_for_model``
    answers whether some box is still free.
    """
    bookings = list(
        blocking_bookings().filter(
            box__stand__location=location,
            box__model=model,
            box__status=Box.Status.ACTIVE,
        )
    )
    ranges = blocked_date_ranges(
        (booking.to_occupancy() for booking in bookings),
        timezone.get_current_timezone(),
    )
    result = BlockedRanges(ranges=ranges, total_bookings=len(bookings))
    logger.info(
        f"Blocked ranges for {model} at location {location.pk}: "
        f"{result.total_bookings} bookings merged into {result.merged_ranges_count} ranges"
    )
    return result


def available_boxes_for_model(location: Location, model: str, window: TimeWindow) -> list[Box]:
    """Active boxes of ``model`` free over ``window``, preferred first."""
    boxes = list(active_boxes_of_model(location, model))
    schedules = load_box_schedules(boxes)
    return [box for box in boxes if schedules[box.pk].can_allocate(window)]


def adjust_box_score(box_id: int, hours: int) -> None:
    """Add (or with negative ``hours`` subtract) booked hours, never below zero."""
    Box.objects.filter(pk=box_id).update(
        score=Greatest(F("score") + hours, 0, output_field=PositiveBigIntegerField())
    )


# ===== Status reconciliation =====

def apply_status_updates(updates: Iterable[StatusUpdate]) -> int:
    """
    Persist status diffs.

    Each write only succeeds while the row still holds the status the
    diff was computed from, so a concurrent cancel or confirm is never
    overwritten.
    """
    written = 0
    now = timezone.now()
    for update in updates:
        written += Booking.objects.filter(pk=update.booking_id, status=update.previous).update(
            status=update.current,
            updated_at=now,
        )
    return written


def reconcile_statuses(bookings: Iterable[Booking], now: datetime | None = None) -> list[StatusUpdate]:
    """
    Refresh the status of loaded bookings for a read.

    The in-memory instances always get the computed status. Writing it
    back is best effort: a database error is logged and swallowed so the
    read that triggered it still succeeds.
    """
    now = now or timezone.now()
    bookings = list(bookings)
    updates = reconcile(bookings, now)
    if not updates:
        return updates

    by_id = {update.booking_id: update for update in updates}
    for booking in bookings:
        update = by_id.get(booking.pk)
        if update is not None:
            booking.status = update.current

    try:
        with transaction.atomic():
            written = apply_status_updates(updates)
    except DatabaseError:
        logger.warning(
            f"Could not persist {len(updates)} booking status updates, will retry on next sync",
            exc_info=True,
        )
    else:
        logger.info(f"Reconciled {written} of {len(updates)} booking statuses")
    return updates


def sync_all_statuses(now: datetime | None = None) -> dict[str, int]:
    """Full reconciliation pass over every booking that is not sticky."""
    now = now or timezone.now()
    candidates = Booking.objects.exclude(status__in=STICKY_STATUSES).only("pk", "status", "start_at", "end_at")
    checked = 0
    updates: list[StatusUpdate] = []
    for booking in candidates.iterator():
        checked += 1
        updates.extend(reconcile([booking], now))
    updated = apply_status_updates(updates)
    logger.info(f"Status sync: checked {checked} bookings, updated {updated}")
    return {"checked": checked, "updated": updated}
