"""
Booking Command Handlers

Use cases that change a booking outside of extensions. Each one runs in
a ``DjangoUnitOfWork`` so the rows and the events it emits commit
together.

Commands:
- CreateBookingCommand: Book a box for a window
- CancelBookingCommand: Cancel and compute the refund
- ConfirmBookingCommand: Put a booking on manual hold (staff)
- ReturnBoxCommand: Hand the box back while the rental is running
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import logging

from django.conf import settings
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from shared.application.uow import DjangoUnitOfWork
from shared.domain.value_objects import Money, TimeWindow
from apps.bookings.domain.events import BookingCancelled, BookingCreated
from apps.bookings.domain.exceptions import (
    BookingClosed,
    BookingConflictError,
    BookingNotCancellable,
    BookingNotFound,
    BookingNotReturnable,
    BoxNotActive,
    BoxNotFound,
    InvalidBookingWindow,
    NotBookingOwner,
    PaymentMismatch,
    PaymentNotSucceeded,
)
from apps.bookings.domain.pricing import RefundDecision, refund_for_cancellation, rental_price
from apps.bookings.domain.status import BookingStatus, effective_status, resolve_status
from apps.bookings.models import Booking
from apps.bookings.services import (
    _lock_queryset_if_possible,
    adjust_box_score,
    load_box_schedule,
    lock_boxes,
)
from apps.finances.gateway import ChargeIntent, ChargeStatus, create_charge_intent, retrieve_charge_status
from apps.finances.models import Payment
from apps.finances.services import mark_payment_refunded, record_external_charge
from apps.locations.models import Box

logger = logging.getLogger(__name__)

# clock skew allowance for "start now" bookings
START_GRACE = timedelta(minutes=1)

BOOKING_PAYMENT_TYPE = "box_booking"


# ===== Commands =====

@dataclass
class CreateBookingCommand:
    box_id: int
    customer: object
    start_at: datetime
    end_at: datetime
    payment_intent_id: str = ''


@dataclass
class CancelBookingCommand:
    booking_id: int
    user: object
    reason: str = ''


@dataclass
class ConfirmBookingCommand:
    booking_id: int


@dataclass
class ReturnBoxCommand:
    booking_id: int
    user: object


@dataclass(frozen=True)
class CancellationResult:
    booking: Booking
    refund: RefundDecision


def _is_staff(user) -> bool:
    return bool(getattr(user, "is_staff", False) or getattr(user, "is_superuser", False))


def ensure_owner(booking: Booking, user) -> None:
    if booking.customer_id != getattr(user, "pk", None) and not _is_staff(user):
        raise NotBookingOwner()


def lock_booking(booking_id: int) -> Booking:
    """Load a booking holding its row lock until the surrounding transaction ends."""
    # no joins: FOR UPDATE would also lock the box row out of pk order
    queryset = Booking.objects.filter(pk=booking_id)
    booking = _lock_queryset_if_possible(queryset).first()
    if booking is None:
        raise BookingNotFound()
    return booking


def lock_bookings(booking_ids) -> list[Booking]:
    """Row locks on several bookings, taken in pk order."""
    queryset = Booking.objects.filter(pk__in=list(booking_ids)).order_by("pk")
    return list(_lock_queryset_if_possible(queryset))


def lock_booking_and_box(booking_id: int) -> Booking:
    """
    Box row first, then the booking row.

    Every writer that touches both takes them in this order. The box is
    read without a lock, so a booking moved in between is reported as
    a conflict instead of being written against the wrong box.
    """
    box_id = Booking.objects.filter(pk=booking_id).values_list("box_id", flat=True).first()
    if box_id is None:
        raise BookingNotFound()
    lock_boxes([box_id])
    booking = lock_booking(booking_id)
    if booking.box_id != box_id:
        raise BookingConflictError("Booking was moved to another box, try again.")
    return booking


def parse_charge_datetime(value) -> datetime | None:
    """Datetime stored in charge metadata; naive values are read in the current time zone."""
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = parse_datetime(str(value))
        except ValueError:
            return None
    if parsed is None:
        return None
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


def booking_window(start_at: datetime, end_at: datetime, now: datetime) -> TimeWindow:
    try:
        window = TimeWindow(start_at, end_at)
    except ValueError as exc:
        raise InvalidBookingWindow() from exc
    if window.start < now - START_GRACE:
        raise InvalidBookingWindow("Start time cannot be in the past.")
    return window


def verify_booking_charge(charge: ChargeStatus, box_id: int, window: TimeWindow, customer) -> None:
    """
    Check that a charge paid for booking ``box_id`` over ``window`` by
    ``customer``. The amount is checked against the price under the box lock.
    """
    if not charge.succeeded:
        raise PaymentNotSucceeded(f"Payment not completed. Status: {charge.status}")

    metadata = charge.metadata
    if (
        metadata.get("type") != BOOKING_PAYMENT_TYPE
        or metadata.get("box_id") != str(box_id)
        or metadata.get("user_id") != str(getattr(customer, "pk", ""))
        or parse_charge_datetime(metadata.get("start_at", "")) != window.start
        or parse_charge_datetime(metadata.get("end_at", "")) != window.end
    ):
        raise PaymentMismatch("Payment does not belong to this booking.")


def link_booking_charge(charge: ChargeStatus, price: Money, customer) -> Payment:
    """Record a verified booking charge; a charge pays for one booking only."""
    if charge.amount.currency != price.currency or charge.amount.amount < price.amount:
        raise PaymentMismatch(f"Charged {charge.amount}, booking costs {price}.")

    payment = record_external_charge(
        charge.charge_id or charge.intent_id,
        charge.amount,
        customer,
        payment_intent_id=charge.intent_id,
        purpose=Payment.Purpose.BOOKING,
        metadata=charge.metadata,
    )
    if (
        payment.status != Payment.Status.COMPLETED
        or Booking.objects.filter(payment=payment).exists()
        or payment.extensions.exists()
    ):
        raise PaymentMismatch("This payment has already been used.")
    return payment


def start_booking_payment(command: CreateBookingCommand) -> tuple[ChargeIntent, Money]:
    """
    Создаёт PaymentIntent на бронь бокса.

    Availability is checked without locks; the booking itself re-checks
    it under the box lock once the charge has gone through.
    """
    window = booking_window(command.start_at, command.end_at, timezone.now())
    box = Box.objects.filter(pk=command.box_id).first()
    if box is None:
        raise BoxNotFound()
    if not box.is_active:
        raise BoxNotActive()
    availability = load_box_schedule(box).check(window)
    if not availability.is_available:
        raise BookingConflictError(next_free_at=availability.next_free_at)

    price = rental_price(window, box.daily_rate_money(), box.price_multiplier())
    intent = create_charge_intent(
        price,
        metadata={
            "type": BOOKING_PAYMENT_TYPE,
            "box_id": box.pk,
            "start_at": window.start.isoformat(),
            "end_at": window.end.isoformat(),
            "user_id": getattr(command.customer, "pk", ""),
        },
    )
    logger.info(f"Booking charge intent {intent.intent_id} created for box {box.pk}, {price}")
    return intent, price


# ===== Command Handlers =====

class CreateBookingHandler:
    """
    Handler for CreateBooking command

    1. Verify the charge with the gateway, if one is given
    2. Lock the box row (SELECT FOR UPDATE)
    3. Re-check availability against the box schedule
    4. Price the window and link the charge
    5. Insert the booking with its clock-derived status
    6. Add the booked hours to the box score
    """

    def handle(self, command: CreateBookingCommand) -> Booking:
        """May raise PaymentGatewayError when the charge cannot be read back."""
        now = timezone.now()
        window = booking_window(command.start_at, command.end_at, now)

        charge = None
        if command.payment_intent_id:
            charge = retrieve_charge_status(command.payment_intent_id)
            verify_booking_charge(charge, command.box_id, window, command.customer)

        logger.info(f"Creating booking on box {command.box_id} for {window}")

        with DjangoUnitOfWork() as uow:
            boxes = lock_boxes([command.box_id])
            if not boxes:
                raise BoxNotFound()
            box = boxes[0]
            if not box.is_active:
                raise BoxNotActive()

            schedule = load_box_schedule(box)
            availability = schedule.check(window)
            if not availability.is_available:
                raise BookingConflictError(next_free_at=availability.next_free_at)

            price = rental_price(window, box.daily_rate_money(), box.price_multiplier())
            payment = link_booking_charge(charge, price, command.customer) if charge else None

            booking = Booking.objects.create(
                customer=command.customer,
                box=box,
                start_at=window.start,
                end_at=window.end,
                status=effective_status(window.start, window.end, now),
                total_price=price.amount,
                currency=price.currency,
                payment=payment,
            )
            schedule.allocate(booking.pk, window, booking.status)
            adjust_box_score(box.pk, window.billable_hours)

            uow.add_event(BookingCreated(
                booking_id=booking.pk,
                box_id=box.pk,
                customer_id=booking.customer_id,
            ))

        logger.info(f"Booking {booking.booking_code} created on box {box.pk}, price {price}")
        return booking


class CancelBookingHandler:
    """
    Handler for CancelBooking command

    Refund policy lives in ``domain.pricing.refund_for_cancellation``;
    the Stripe refund itself runs after commit (``finances.refund_charge``).
    """

    def handle(self, command: CancelBookingCommand) -> CancellationResult:
        now = timezone.now()

        with DjangoUnitOfWork() as uow:
            booking = lock_booking_and_box(command.booking_id)
            ensure_owner(booking, command.user)

            current = resolve_status(booking.status, booking.start_at, booking.end_at, now)
            if current not in (BookingStatus.UPCOMING, BookingStatus.CONFIRMED, BookingStatus.ACTIVE):
                raise BookingNotCancellable()

            payment = booking.payment
            paid = payment.money if payment else Money.zero(booking.currency)
            fee = Money(Decimal(str(settings.BOOKING_CANCELLATION_FEE)), paid.currency)
            refund = refund_for_cancellation(booking.window, paid, now, fee)

            booking.status = BookingStatus.CANCELLED
            booking.cancelled_at = now
            booking.cancellation_reason = command.reason[:255]
            booking.refund_amount = refund.amount.amount
            booking.save(update_fields=[
                "status",
                "cancelled_at",
                "cancellation_reason",
                "refund_amount",
                "updated_at",
            ])
            adjust_box_score(booking.box_id, -booking.window.billable_hours)

            if payment and refund.amount:
                mark_payment_refunded(payment, refund.amount)

            uow.add_event(BookingCancelled(
                booking_id=booking.pk,
                box_id=booking.box_id,
                refund_amount=refund.amount.amount,
                charge_id=(payment.charge_id or '') if payment else '',
            ))

        logger.info(
            f"Booking {booking.booking_code} cancelled ({current} at cancel time), "
            f"refund {refund.amount} ({refund.percentage}%)"
        )
        return CancellationResult(booking=booking, refund=refund)


class ConfirmBookingHandler:
    """Manual hold: confirmed bookings are no longer moved by the clock."""

    def handle(self, command: ConfirmBookingCommand) -> Booking:
        with DjangoUnitOfWork():
            booking = lock_booking(command.booking_id)
            if booking.status in (BookingStatus.CANCELLED, BookingStatus.COMPLETED):
                raise BookingClosed()
            if booking.status != BookingStatus.CONFIRMED:
                booking.status = BookingStatus.CONFIRMED
                booking.save(update_fields=["status", "updated_at"])

        logger.info(f"Booking {booking.booking_code} confirmed")
        return booking


class ReturnBoxHandler:
    """The customer hands the box back; the box is free from now on."""

    def handle(self, command: ReturnBoxCommand) -> Booking:
        now = timezone.now()

        with DjangoUnitOfWork():
            booking = lock_booking(command.booking_id)
            ensure_owner(booking, command.user)

            if booking.status in (BookingStatus.CANCELLED, BookingStatus.COMPLETED):
                raise BookingNotReturnable()
            if effective_status(booking.start_at, booking.end_at, now) != BookingStatus.ACTIVE:
                raise BookingNotReturnable()

            booking.status = BookingStatus.COMPLETED
            booking.returned_at = now
            booking.save(update_fields=["status", "returned_at", "updated_at"])
        logger.info(f"Box {booking.box_id} returned for booking {booking.booking_code}")
        return booking
