"""
Box Schedule Aggregate

Every question about whether a box is free goes through this module:
booking creation, extension conflict detection, reassignment search and
location browsing. Nothing else re-implements interval overlap.

Overlap is inclusive on both ends (see ``TimeWindow.overlaps``). Only
bookings in a blocking status occupy a box.

The database side of the invariant is row locking: callers load a
schedule after ``select_for_update`` on the box row, mutate it here and
persist while the lock is held.
"""

from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from typing import Iterable, List, Optional

from shared.domain.base import Aggregate
from shared.domain.value_objects import DateRange, TimeWindow, merge_date_ranges
from apps.bookings.domain.exceptions import BookingConflictError
from apps.bookings.domain.status import BookingStatus, is_blocking


@dataclass
class Occupancy:
    """A booking's claim on a box over its window."""
    booking_id: Optional[int]
    window: TimeWindow
    status: str = BookingStatus.UPCOMING

    @property
    def is_blocking(self) -> bool:
        return is_blocking(self.status)


@dataclass(frozen=True)
class Availability:
    is_available: bool
    next_free_at: Optional[datetime] = None
    conflicts: tuple = ()


def _blocking(occupancies: Iterable[Occupancy], exclude_booking_id=None) -> List[Occupancy]:
    return [
        o for o in occupancies
        if o.is_blocking and (exclude_booking_id is None or o.booking_id != exclude_booking_id)
    ]


def find_conflicts(
    occupancies: Iterable[Occupancy],
    window: TimeWindow,
    exclude_booking_id=None,
) -> List[Occupancy]:
    """Blocking occupancies whose window overlaps ``window``."""
    return [o for o in _blocking(occupancies, exclude_booking_id) if o.window.overlaps(window)]


def check_availability(
    occupancies: Iterable[Occupancy],
    window: Optional[TimeWindow] = None,
    exclude_booking_id=None,
) -> Availability:
    """
    Is the box free over ``window``?

    Without a window the box is available only when nothing blocks it at
    all. When unavailable, ``next_free_at`` is the latest end among the
    conflicting bookings, the first instant the box is clear of all of
    them.
    """
    if window is None:
        conflicts = _blocking(occupancies, exclude_booking_id)
    else:
        conflicts = find_conflicts(occupancies, window, exclude_booking_id)

    if not conflicts:
        return Availability(is_available=True)

    return Availability(
        is_available=False,
        next_free_at=max(o.window.end for o in conflicts),
        conflicts=tuple(conflicts),
    )


def blocked_date_ranges(occupancies: Iterable[Occupancy], tz: Optional[tzinfo] = None) -> List[DateRange]:
    """Merged day ranges covered by blocking occupancies, in ``tz`` local dates."""
    ranges = []
    for occupancy in occupancies:
        if not occupancy.is_blocking:
            continue
        start, end = occupancy.window.start, occupancy.window.end
        if tz is not None:
            start, end = start.astimezone(tz), end.astimezone(tz)
        ranges.append(DateRange(start.date(), end.date()))
    return merge_date_ranges(ranges)


@dataclass
class BoxSchedule(Aggregate):
    """
    Box Schedule Aggregate Root

    Holds the occupancies of one box. Key invariant: no two blocking
    occupancies overlap.

    Usage:
        schedule = load_box_schedule(box, lock=True)
        if schedule.can_allocate(window):
            schedule.allocate(booking.pk, window)
    """

    box_id: int
    occupancies: List[Occupancy] = field(default_factory=list)

    def check(self, window: Optional[TimeWindow] = None, exclude_booking_id=None) -> Availability:
        return check_availability(self.occupancies, window, exclude_booking_id)

    def conflicts_with(self, window: TimeWindow, exclude_booking_id=None) -> List[Occupancy]:
        return find_conflicts(self.occupancies, window, exclude_booking_id)

    def can_allocate(self, window: TimeWindow, exclude_booking_id=None) -> bool:
        return not self.conflicts_with(window, exclude_booking_id)

    def get(self, booking_id) -> Optional[Occupancy]:
        return next((o for o in self.occupancies if o.booking_id == booking_id), None)

    def allocate(
        self,
        booking_id,
        window: TimeWindow,
        status: str = BookingStatus.UPCOMING,
        *,
        moved_from_box_id: Optional[int] = None,
    ) -> Occupancy:
        """
        Claim the box for ``window``.

        Raises:
            BookingConflictError: the window overlaps a blocking occupancy
        """
        availability = self.check(window, exclude_booking_id=booking_id)
        if not availability.is_available:
            raise BookingConflictError(
                f"Box {self.box_id} is not available for {window}.",
                next_free_at=availability.next_free_at,
            )

        occupancy = Occupancy(booking_id=booking_id, window=window, status=status)
        self.occupancies.append(occupancy)

        if moved_from_box_id is not None:
            from apps.bookings.domain.events import BookingReassigned

            self.add_event(BookingReassigned(
                booking_id=booking_id,
                from_box_id=moved_from_box_id,
                to_box_id=self.box_id,
            ))

        return occupancy

    def release(self, booking_id) -> Occupancy:
        """
        Drop a booking's occupancy (cancel, return, move away).

        Raises:
            LookupError: the booking holds no occupancy on this box
        """
        occupancy = self.get(booking_id)
        if occupancy is None:
            raise LookupError(f"Booking {booking_id} holds no occupancy on box {self.box_id}")
        self.occupancies.remove(occupancy)
        return occupancy

    def extend(self, booking_id, new_end: datetime) -> Occupancy:
        """
        Move a booking's end boundary forward.

        Conflicting occupancies must have been released (moved to another
        box) before calling this.
        """
        occupancy = self.get(booking_id)
        if occupancy is None:
            raise LookupError(f"Booking {booking_id} holds no occupancy on box {self.box_id}")

        window = TimeWindow(occupancy.window.start, new_end)
        availability = self.check(window, exclude_booking_id=booking_id)
        if not availability.is_available:
            raise BookingConflictError(
                f"Box {self.box_id} is not available until {new_end}.",
                next_free_at=availability.next_free_at,
            )
        occupancy.window = window
        return occupancy

    def blocked_ranges(self, tz: Optional[tzinfo] = None) -> List[DateRange]:
        return blocked_date_ranges(self.occupancies, tz)

    def __repr__(self):
        return f"BoxSchedule(box_id={self.box_id}, occupancies={len(self.occupancies)})"
