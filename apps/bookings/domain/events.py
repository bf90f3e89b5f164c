"""
Booking Domain Events

Published through the message bus after the transaction that produced
them has committed. Handlers live in ``apps.bookings.handlers``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Tuple

from shared.domain.base import DomainEvent
from shared.domain.value_objects import Money


@dataclass
class BookingCreated(DomainEvent):
    """
    Event: A customer booked a box

    Triggers:
    - Booking confirmation to the customer
    """
    booking_id: int
    box_id: int
    customer_id: int


@dataclass
class BookingCancelled(DomainEvent):
    """
    Event: A booking was cancelled by its owner

    Triggers:
    - Refund of the linked charge when the refund amount is positive
    """
    booking_id: int
    box_id: int
    refund_amount: Decimal
    charge_id: str = ''


@dataclass
class BookingExtended(DomainEvent):
    """
    Event: A booking's end boundary moved forward

    Triggers:
    - Extension receipt to the customer
    """
    booking_id: int
    box_id: int
    customer_id: int
    previous_end: datetime
    new_end: datetime
    additional_days: int
    additional_cost: Money
    reassigned_booking_ids: Tuple[int, ...] = field(default_factory=tuple)


@dataclass
class BookingReassigned(DomainEvent):
    """
    Event: A future booking was moved to an equivalent box

    Triggers:
    - Notify the affected customer about the new box
    """
    booking_id: int
    from_box_id: int
    to_box_id: int
