"""
Extension Resolver

Moves a booking's end boundary forward. If another booking already
holds the box in the added span, that booking is moved to an equivalent
box (same model, same stand) when one is free for its whole window.

The whole attempt is all-or-nothing:
1. Validate the new end and price the added days
2. Lock every box of the stand/model in pk order, then the booking row
3. Find conflicts on the booking's own box
4. Stage a move for each conflict (lowest score first, then lowest id)
5. Commit end, counters, moves, payment link and history in one transaction

Business rejections are returned as a failed ``ExtensionOutcome``;
anything else propagates after the transaction has rolled back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging

from django.db import transaction
from django.utils import timezone

from shared.application.uow import DjangoUnitOfWork
from shared.domain.value_objects import Money, TimeWindow
from apps.bookings.domain.events import BookingExtended
from apps.bookings.domain.exceptions import (
    BookingConflictError,
    BookingError,
    BookingNotExtendable,
    BookingNotFound,
    NoReassignmentAvailable,
    NotBookingOwner,
    PaymentMismatch,
    PaymentNotSucceeded,
)
from apps.bookings.domain.pricing import ExtensionQuote, quote_extension
from apps.bookings.domain.schedule import BoxSchedule, Occupancy
from apps.bookings.domain.status import BookingStatus, TERMINAL_STATUSES, resolve_status
from apps.bookings.models import Booking, BookingExtension, BookingReassignment
from apps.bookings.services import adjust_box_score, load_box_schedules, lock_boxes
from apps.finances.gateway import ChargeIntent, ChargeStatus, create_charge_intent, retrieve_charge_status
from apps.finances.models import Payment
from apps.finances.services import mark_payment_refunded, record_external_charge
from apps.finances.tasks import refund_charge
from apps.locations.models import Box

from .command_handlers import ensure_owner, lock_booking, lock_bookings, parse_charge_datetime

logger = logging.getLogger(__name__)

EXTENSION_PAYMENT_TYPE = "booking_extension"


@dataclass(frozen=True)
class ReassignedBooking:
    booking_id: int
    booking_code: str
    customer_id: int
    from_box_id: int
    to_box_id: int

    def to_dict(self) -> dict:
        return {
            "booking_id": self.booking_id,
            "from_box": self.from_box_id,
            "to_box": self.to_box_id,
        }


@dataclass(frozen=True)
class ExtensionOutcome:
    success: bool
    booking_id: int
    new_end: datetime | None = None
    additional_days: int = 0
    additional_cost: Money | None = None
    reassigned: tuple = ()
    error: BookingError | None = None
    extension_id: int | None = None
    replayed: bool = False

    @classmethod
    def failed(cls, booking_id: int, error: BookingError) -> "ExtensionOutcome":
        return cls(success=False, booking_id=booking_id, error=error)

    @property
    def reason(self) -> str:
        return self.error.message if self.error else ""

    @property
    def code(self) -> str:
        return self.error.code if self.error else ""

    def to_dict(self) -> dict:
        data = {
            "success": self.success,
            "booking_id": self.booking_id,
            "new_end": self.new_end.isoformat() if self.new_end else None,
            "additional_days": self.additional_days,
            "additional_cost": str(self.additional_cost.amount) if self.additional_cost else None,
            "currency": self.additional_cost.currency if self.additional_cost else None,
            "reassigned": [item.to_dict() for item in self.reassigned],
        }
        if self.error is not None:
            data["reason"] = self.reason
            data["code"] = self.code
        if self.replayed:
            data["replayed"] = True
        return data


@dataclass
class _Plan:
    quote: ExtensionQuote
    schedules: dict[int, BoxSchedule]
    moves: list[tuple[Occupancy, Box]] = field(default_factory=list)


def verify_extension_charge(charge: ChargeStatus, booking_id: int) -> datetime:
    """
    Check that a charge paid for extending ``booking_id`` and return the
    end it was quoted for.
    """
    if not charge.succeeded:
        raise PaymentNotSucceeded(f"Payment not completed. Status: {charge.status}")

    metadata = charge.metadata
    if metadata.get("type") != EXTENSION_PAYMENT_TYPE or metadata.get("booking_id") != str(booking_id):
        raise PaymentMismatch()

    new_end = parse_charge_datetime(metadata.get("new_end", ""))
    if new_end is None:
        raise PaymentMismatch("Payment carries no extension end date.")
    return new_end


class ExtensionResolver:
    """
    Usage:
        resolver = ExtensionResolver()
        quote = resolver.quote(booking, request.user, new_end)
        outcome = resolver.extend(booking.pk, request.user, new_end, charge=charge)
    """

    def __init__(self, now: datetime | None = None):
        self._now = now

    @property
    def now(self) -> datetime:
        return self._now or timezone.now()

    # ===== read-only =====

    def quote(self, booking: Booking, user, new_end: datetime) -> ExtensionQuote:
        """Validate and price; does not look at other bookings."""
        ensure_owner(booking, user)
        self._ensure_extendable(booking)
        box = booking.box
        return quote_extension(booking.end_at, new_end, box.daily_rate_money(), box.price_multiplier())

    def preview(self, booking: Booking, user, new_end: datetime) -> ExtensionOutcome:
        """
        Would an extension to ``new_end`` go through right now?

        Runs the full conflict and reassignment search without locks and
        without writing anything.
        """
        try:
            quote = self.quote(booking, user, new_end)
            boxes = list(self._stand_boxes(booking.box))
            plan = self._plan(booking, quote, boxes)
        except BookingError as exc:
            return ExtensionOutcome.failed(booking.pk, exc)

        return ExtensionOutcome(
            success=True,
            booking_id=booking.pk,
            new_end=quote.new_end,
            additional_days=quote.additional_days,
            additional_cost=quote.additional_cost,
            reassigned=tuple(self._describe_moves(booking.box_id, plan.moves)),
        )

    # ===== commit =====

    def extend(
        self,
        booking_id: int,
        user,
        new_end: datetime,
        *,
        charge: ChargeStatus | None = None,
    ) -> ExtensionOutcome:
        try:
            return self._extend(booking_id, user, new_end, charge)
        except BookingError as exc:
            logger.info(f"Extension of booking {booking_id} to {new_end} rejected: {exc.code}: {exc.message}")
            return ExtensionOutcome.failed(booking_id, exc)

    def _extend(self, booking_id: int, user, new_end: datetime, charge: ChargeStatus | None) -> ExtensionOutcome:
        charge_key = (charge.charge_id or charge.intent_id) if charge else ""

        with DjangoUnitOfWork() as uow:
            booking, box, locked = self._lock_for_extension(booking_id)

            if charge_key:
                previous = (
                    BookingExtension.objects.filter(payment__charge_id=charge_key)
                    .select_related("booking")
                    .first()
                )
                if previous is not None:
                    return self._replay(previous)
                if Payment.objects.filter(charge_id=charge_key, status=Payment.Status.REFUNDED).exists():
                    raise PaymentMismatch("This payment has been refunded.")

            quote = self.quote(booking, user, new_end)
            if charge is not None and charge.amount.amount < quote.additional_cost.amount:
                raise PaymentMismatch(
                    f"Charged {charge.amount}, extension costs {quote.additional_cost}."
                )

            plan = self._plan(booking, quote, locked)
            own = plan.schedules[box.pk]
            own.extend(booking.pk, quote.new_end)

            moved = self._apply_moves(box, plan.moves)

            previous_end = booking.end_at
            booking.end_at = quote.new_end
            booking.extension_count += 1
            booking.extension_amount += quote.additional_cost.amount
            booking.is_extended = True
            if booking.status not in TERMINAL_STATUSES:
                booking.status = resolve_status(booking.status, booking.start_at, booking.end_at, self.now)
            booking.save(update_fields=[
                "end_at",
                "extension_count",
                "extension_amount",
                "is_extended",
                "status",
                "updated_at",
            ])
            adjust_box_score(box.pk, TimeWindow(previous_end, quote.new_end).billable_hours)

            payment = None
            if charge is not None:
                payment = record_external_charge(
                    charge_key,
                    charge.amount,
                    booking.customer,
                    payment_intent_id=charge.intent_id,
                    purpose=Payment.Purpose.EXTENSION,
                    metadata=charge.metadata,
                )

            extension = BookingExtension.objects.create(
                booking=booking,
                payment=payment,
                previous_end=previous_end,
                new_end=quote.new_end,
                additional_days=quote.additional_days,
                additional_cost=quote.additional_cost.amount,
                currency=quote.additional_cost.currency,
                box_status_at_extension=box.status,
            )
            BookingReassignment.objects.bulk_create([
                BookingReassignment(
                    booking_id=item.booking_id,
                    from_box_id=item.from_box_id,
                    to_box_id=item.to_box_id,
                    extension=extension,
                )
                for item in moved
            ])

            uow.collect_events(*plan.schedules.values())
            uow.add_event(BookingExtended(
                booking_id=booking.pk,
                box_id=box.pk,
                customer_id=booking.customer_id,
                previous_end=previous_end,
                new_end=quote.new_end,
                additional_days=quote.additional_days,
                additional_cost=quote.additional_cost,
                reassigned_booking_ids=tuple(item.booking_id for item in moved),
            ))

        logger.info(
            f"Booking {booking.booking_code} extended {previous_end.isoformat()} -> "
            f"{quote.new_end.isoformat()} (+{quote.additional_days}d, {quote.additional_cost}), "
            f"{len(moved)} booking(s) reassigned"
        )
        return ExtensionOutcome(
            success=True,
            booking_id=booking.pk,
            new_end=quote.new_end,
            additional_days=quote.additional_days,
            additional_cost=quote.additional_cost,
            reassigned=tuple(moved),
            extension_id=extension.pk,
        )

    # ===== internals =====

    def _ensure_extendable(self, booking: Booking) -> None:
        current = resolve_status(booking.status, booking.start_at, booking.end_at, self.now)
        if current in TERMINAL_STATUSES:
            raise BookingNotExtendable()

    @staticmethod
    def _stand_boxes(box: Box):
        return Box.objects.filter(stand_id=box.stand_id, model=box.model).order_by("pk")

    def _lock_for_extension(self, booking_id: int) -> tuple[Booking, Box, list[Box]]:
        """
        Every box of the stand/model in pk order, then the booking row.

        Cancellations lock box before booking as well. Moves stay inside
        the stand/model, so the booking is on one of the locked boxes
        unless its box was changed under it.
        """
        box_id = Booking.objects.filter(pk=booking_id).values_list("box_id", flat=True).first()
        if box_id is None:
            raise BookingNotFound()
        box = Box.objects.get(pk=box_id)
        locked = lock_boxes(self._stand_boxes(box).values_list("pk", flat=True))
        booking = lock_booking(booking_id)
        boxes = {b.pk: b for b in locked}
        if booking.box_id not in boxes:
            raise BookingConflictError("Booking was moved to another box, try again.")
        return booking, boxes[booking.box_id], locked

    def _plan(self, booking: Booking, quote: ExtensionQuote, boxes) -> _Plan:
        """
        Conflicts on the booking's box over [current end, new end] and a
        target box for each of them. Moves are staged on the in-memory
        schedules, so a later conflict sees the boxes earlier ones took.
        """
        boxes = list(boxes)
        schedules = load_box_schedules(boxes)
        own = schedules[booking.box_id]
        plan = _Plan(quote=quote, schedules=schedules)

        added_span = TimeWindow(quote.current_end, quote.new_end)
        conflicts = own.conflicts_with(added_span, exclude_booking_id=booking.pk)
        if not conflicts:
            return plan

        candidates = sorted(
            (b for b in boxes if b.pk != booking.box_id and b.is_active),
            key=lambda b: (b.score, b.pk),
        )

        for conflict in sorted(conflicts, key=lambda o: (o.window.start, o.booking_id)):
            if conflict.status == BookingStatus.ACTIVE:
                raise NoReassignmentAvailable("The box is in use by another rental after your current end date.")

            target = next((b for b in candidates if schedules[b.pk].can_allocate(conflict.window)), None)
            if target is None:
                raise NoReassignmentAvailable()

            own.release(conflict.booking_id)
            schedules[target.pk].allocate(
                conflict.booking_id,
                conflict.window,
                conflict.status,
                moved_from_box_id=booking.box_id,
            )
            plan.moves.append((conflict, target))
            logger.debug(f"Staged move of booking {conflict.booking_id} to box {target.pk}")

        return plan

    def _describe_moves(self, from_box_id: int, moves) -> list[ReassignedBooking]:
        if not moves:
            return []
        rows = {
            row["pk"]: row
            for row in Booking.objects.filter(pk__in=[o.booking_id for o, _ in moves]).values(
                "pk", "booking_code", "customer_id"
            )
        }
        return [
            ReassignedBooking(
                booking_id=occupancy.booking_id,
                booking_code=rows[occupancy.booking_id]["booking_code"],
                customer_id=rows[occupancy.booking_id]["customer_id"],
                from_box_id=from_box_id,
                to_box_id=target.pk,
            )
            for occupancy, target in moves
        ]

    def _apply_moves(self, box: Box, moves) -> list[ReassignedBooking]:
        now = timezone.now()
        lock_bookings(occupancy.booking_id for occupancy, _ in moves)
        for occupancy, target in moves:
            updated = Booking.objects.filter(pk=occupancy.booking_id, box_id=box.pk).update(
                box_id=target.pk, updated_at=now
            )
            if not updated:
                raise BookingConflictError(
                    f"Booking {occupancy.booking_id} left box {box.pk} before it could be moved."
                )
            hours = occupancy.window.billable_hours
            adjust_box_score(box.pk, -hours)
            adjust_box_score(target.pk, hours)
            logger.info(f"Booking {occupancy.booking_id} reassigned from box {box.pk} to box {target.pk}")
        return self._describe_moves(box.pk, moves)

    def _replay(self, extension: BookingExtension) -> ExtensionOutcome:
        logger.info(f"Charge for extension {extension.pk} already processed, returning stored outcome")
        moved = [
            ReassignedBooking(
                booking_id=r.booking_id,
                booking_code=r.booking.booking_code,
                customer_id=r.booking.customer_id,
                from_box_id=r.from_box_id,
                to_box_id=r.to_box_id,
            )
            for r in extension.reassignments.select_related("booking")
        ]
        return ExtensionOutcome(
            success=True,
            booking_id=extension.booking_id,
            new_end=extension.new_end,
            additional_days=extension.additional_days,
            additional_cost=Money(extension.additional_cost, extension.currency),
            reassigned=tuple(moved),
            extension_id=extension.pk,
            replayed=True,
        )


# ===== Payment flow =====

def start_extension_payment(booking: Booking, user, new_end: datetime) -> tuple[ChargeIntent | None, ExtensionOutcome]:
    """
    Создаёт PaymentIntent на продление, если продление сейчас возможно.

    The intent metadata pins the booking and the quoted end, completion
    trusts nothing else.
    """
    outcome = ExtensionResolver().preview(booking, user, new_end)
    if not outcome.success:
        return None, outcome

    intent = create_charge_intent(
        outcome.additional_cost,
        metadata={
            "type": EXTENSION_PAYMENT_TYPE,
            "booking_id": booking.pk,
            "new_end": outcome.new_end.isoformat(),
            "additional_days": outcome.additional_days,
            "user_id": booking.customer_id,
        },
    )
    logger.info(f"Extension charge intent {intent.intent_id} created for booking {booking.pk}")
    return intent, outcome


def complete_extension(booking_id: int, user, intent_id: str) -> ExtensionOutcome:
    """Client callback once Stripe reports the payment; may raise PaymentGatewayError."""
    charge = retrieve_charge_status(intent_id)
    return complete_extension_for_charge(booking_id, user, charge)


def complete_extension_for_charge(booking_id: int, user, charge: ChargeStatus) -> ExtensionOutcome:
    """
    Commit the extension a verified charge paid for.

    Shared by the client callback and the Stripe webhook, so it runs at
    least twice for most charges; the charge id makes repeats return the
    first outcome. A charge whose extension is rejected is refunded.
    """
    try:
        new_end = verify_extension_charge(charge, booking_id)
    except BookingError as exc:
        logger.warning(f"Charge {charge.intent_id} rejected for booking {booking_id}: {exc.code}")
        return ExtensionOutcome.failed(booking_id, exc)

    outcome = ExtensionResolver().extend(booking_id, user, new_end, charge=charge)
    if not outcome.success and not isinstance(outcome.error, NotBookingOwner):
        _refund_unused_charge(booking_id, charge)
    return outcome


def _refund_unused_charge(booking_id: int, charge: ChargeStatus) -> None:
    charge_key = charge.charge_id or charge.intent_id
    with transaction.atomic():
        try:
            booking = lock_booking(booking_id)
        except BookingNotFound:
            logger.error(f"Charge {charge_key} paid for missing booking {booking_id}, refund it manually")
            return
        payment = record_external_charge(
            charge_key,
            charge.amount,
            booking.customer,
            payment_intent_id=charge.intent_id,
            purpose=Payment.Purpose.EXTENSION,
            metadata=charge.metadata,
        )
        if payment.status != Payment.Status.COMPLETED or payment.extensions.exists():
            return
        mark_payment_refunded(payment, charge.amount)
        transaction.on_commit(lambda: refund_charge.delay(payment.pk))
    logger.info(f"Unused extension charge {charge_key} for booking {booking_id} queued for refund")
