"""
Booking Pricing

Rental price, extension quotes and the cancellation refund policy. All
functions are pure; rates and multipliers come from the box
(``Box.daily_rate_money`` / ``Box.price_multiplier``).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from shared.domain.value_objects import ONE_DAY, Money, TimeWindow
from apps.bookings.domain.exceptions import InvalidExtensionAmount, InvalidExtensionWindow

SHORT_RENTAL_DAYS = 3
SHORT_RENTAL_NOTICE = timedelta(hours=24)
LONG_RENTAL_NOTICE = timedelta(hours=48)


def rental_price(window: TimeWindow, daily_rate: Money, multiplier: Decimal) -> Money:
    return (daily_rate * window.billable_days * multiplier).quantized()


@dataclass(frozen=True)
class ExtensionQuote:
    current_end: datetime
    new_end: datetime
    additional_days: int
    additional_cost: Money

    def to_dict(self) -> dict:
        return {
            "current_end": self.current_end.isoformat(),
            "new_end": self.new_end.isoformat(),
            "additional_days": self.additional_days,
            "additional_cost": str(self.additional_cost.amount),
            "currency": self.additional_cost.currency,
        }


def additional_days_between(current_end: datetime, new_end: datetime) -> int:
    return math.ceil((new_end - current_end) / ONE_DAY)


def quote_extension(
    current_end: datetime,
    new_end: datetime,
    daily_rate: Money,
    multiplier: Decimal,
) -> ExtensionQuote:
    """
    Price moving a booking's end from ``current_end`` to ``new_end``.

    Raises:
        InvalidExtensionWindow: new end is not after the current end
        InvalidExtensionAmount: the resulting cost is not positive
    """
    if new_end <= current_end:
        raise InvalidExtensionWindow()

    days = additional_days_between(current_end, new_end)
    if days < 1:
        raise InvalidExtensionWindow("Extension must add at least one day.")

    cost = (daily_rate * days * multiplier).quantized()
    if not cost:
        raise InvalidExtensionAmount()

    return ExtensionQuote(
        current_end=current_end,
        new_end=new_end,
        additional_days=days,
        additional_cost=cost,
    )


@dataclass(frozen=True)
class RefundDecision:
    amount: Money
    percentage: int
    fee: Money
    reason: str


def refund_for_cancellation(window: TimeWindow, paid: Money, now: datetime, fee: Money) -> RefundDecision:
    """
    Refund owed when a booking is cancelled at ``now``.

    Rentals of up to three days refund 50% within 24 hours of the start,
    longer ones 75% within 48 hours. Earlier cancellations get everything
    back minus the transaction fee. Once the rental has started nothing
    is refunded.
    """
    zero = Money.zero(paid.currency)
    until_start = window.start - now

    if until_start <= timedelta(0):
        return RefundDecision(zero, 0, zero, "Rental has already started, no refund.")

    if window.billable_days <= SHORT_RENTAL_DAYS:
        notice, late_percentage = SHORT_RENTAL_NOTICE, 50
    else:
        notice, late_percentage = LONG_RENTAL_NOTICE, 75

    if until_start <= notice:
        amount = (paid * (Decimal(late_percentage) / 100)).quantized()
        hours = int(notice / timedelta(hours=1))
        return RefundDecision(
            amount,
            late_percentage,
            zero,
            f"Cancelled within {hours} hours of the start, {late_percentage}% refund.",
        )

    return RefundDecision(
        (paid - fee).quantized(),
        100,
        fee,
        "Full refund minus transaction fee.",
    )
