"""Extension resolver: conflicts, reassignment to a sibling box, idempotent charges."""

from __future__ import annotations

from decimal import Decimal
from unittest import mock

import pytest

from apps.bookings.application import extension
from apps.bookings.application.command_handlers import lock_booking, lock_bookings
from apps.bookings.application.extension import (
    EXTENSION_PAYMENT_TYPE,
    ExtensionResolver,
    complete_extension_for_charge,
)
from apps.bookings.domain.schedule import Occupancy
from apps.bookings.domain.status import BookingStatus
from apps.bookings.models import Booking, BookingExtension, BookingReassignment
from apps.bookings.services import lock_boxes
from apps.finances.gateway import ChargeStatus
from apps.finances.models import Payment
from apps.locations.models import Box
from shared.domain.value_objects import Money, TimeWindow

pytestmark = pytest.mark.django_db


@pytest.fixture
def resolver(at):
    return ExtensionResolver(now=at(3))


@pytest.fixture
def box_r(box_factory):
    return box_factory("R")


@pytest.fixture
def rental(booking_factory, box_r, at):
    """A = [Jan 1, Jan 5] on R, running."""
    return booking_factory(box_r, at(1), at(5), status=Booking.Status.ACTIVE)


@pytest.fixture
def next_rental(booking_factory, box_r, other_customer, at):
    """B = [Jan 6, Jan 10] on R, another customer."""
    return booking_factory(box_r, at(6), at(10), customer=other_customer)


def make_charge(booking, new_end, amount="300.00", charge_id="ch_1"):
    return ChargeStatus(
        intent_id="pi_1",
        status="succeeded",
        charge_id=charge_id,
        amount=Money(Decimal(amount)),
        metadata={
            "type": EXTENSION_PAYMENT_TYPE,
            "booking_id": str(booking.pk),
            "new_end": new_end.isoformat(),
        },
    )


def test_extends_when_the_added_span_is_free(resolver, rental, customer, box_r, at):
    outcome = resolver.extend(rental.pk, customer, at(8))

    assert outcome.success, outcome.reason
    assert outcome.additional_days == 3
    assert outcome.additional_cost == Money(Decimal("300.00"))
    assert outcome.reassigned == ()

    rental.refresh_from_db()
    assert rental.end_at == at(8)
    assert rental.extension_count == 1
    assert rental.extension_amount == Decimal("300.00")
    assert rental.is_extended
    extension = BookingExtension.objects.get(booking=rental)
    assert extension.previous_end == at(5)
    assert extension.new_end == at(8)
    box_r.refresh_from_db()
    assert box_r.score == 72


def test_moves_conflicting_booking_to_free_sibling(resolver, rental, next_rental, customer, box_factory, at):
    box_s = box_factory("S")

    outcome = resolver.extend(rental.pk, customer, at(8))

    assert outcome.success, outcome.reason
    [moved] = outcome.reassigned
    assert (moved.booking_id, moved.to_box_id) == (next_rental.pk, box_s.pk)
    next_rental.refresh_from_db()
    assert next_rental.box_id == box_s.pk
    assert (next_rental.start_at, next_rental.end_at) == (at(6), at(10))
    rental.refresh_from_db()
    assert rental.end_at == at(8)
    assert BookingReassignment.objects.filter(
        booking=next_rental, from_box=rental.box, to_box=box_s, extension_id=outcome.extension_id
    ).exists()
    box_s.refresh_from_db()
    assert box_s.score == 96


def test_fails_when_no_sibling_is_free(resolver, rental, next_rental, customer, box_factory, booking_factory, at):
    box_s = box_factory("S")
    booking_factory(box_s, at(7), at(9))

    outcome = resolver.extend(rental.pk, customer, at(8))

    assert not outcome.success
    assert outcome.code == "no_reassignment_available"
    rental.refresh_from_db()
    next_rental.refresh_from_db()
    assert rental.end_at == at(5)
    assert rental.extension_count == 0
    assert next_rental.box_id == rental.box_id
    assert not BookingExtension.objects.exists()


def test_fails_without_siblings(resolver, rental, next_rental, customer, at):
    outcome = resolver.extend(rental.pk, customer, at(8))

    assert outcome.code == "no_reassignment_available"


def test_ignores_boxes_of_other_models_and_inactive_boxes(resolver, rental, next_rental, customer, box_factory, at):
    box_factory("P", model=Box.ModelTier.PRO)
    box_factory("M", status=Box.Status.MAINTENANCE)

    outcome = resolver.extend(rental.pk, customer, at(8))

    assert outcome.code == "no_reassignment_available"


def test_prefers_lowest_score_then_lowest_id(resolver, rental, next_rental, customer, box_factory, at):
    box_factory("S1", score=50)
    preferred = box_factory("S2", score=10)
    box_factory("S3", score=10)

    outcome = resolver.extend(rental.pk, customer, at(8))

    assert outcome.reassigned[0].to_box_id == preferred.pk


def test_rejects_end_not_after_current_end(resolver, rental, customer, at):
    outcome = resolver.extend(rental.pk, customer, at(5))

    assert outcome.code == "invalid_extension_window"


def test_rejects_cancelled_booking(resolver, rental, customer, at):
    Booking.objects.filter(pk=rental.pk).update(status=Booking.Status.CANCELLED)

    outcome = resolver.extend(rental.pk, customer, at(8))

    assert outcome.code == "booking_not_extendable"


def test_rejects_other_customer(resolver, rental, other_customer, at):
    outcome = resolver.extend(rental.pk, other_customer, at(8))

    assert outcome.code == "not_booking_owner"


def test_preview_reports_required_reassignment_without_writing(resolver, rental, next_rental, customer, box_factory, at):
    box_factory("S")

    outcome = resolver.preview(rental, customer, at(8))

    assert outcome.success
    assert len(outcome.reassigned) == 1
    next_rental.refresh_from_db()
    assert next_rental.box_id == rental.box_id


def test_same_charge_is_applied_once(resolver, rental, customer, at):
    charge = make_charge(rental, at(8))

    first = resolver.extend(rental.pk, customer, at(8), charge=charge)
    second = resolver.extend(rental.pk, customer, at(8), charge=charge)

    assert first.success and second.success
    assert second.replayed
    assert second.extension_id == first.extension_id
    rental.refresh_from_db()
    assert rental.end_at == at(8)
    assert rental.extension_count == 1
    assert Payment.objects.filter(charge_id="ch_1").count() == 1
    assert BookingExtension.objects.get().payment.charge_id == "ch_1"


def test_rejects_charge_below_quote(resolver, rental, customer, at):
    outcome = resolver.extend(rental.pk, customer, at(8), charge=make_charge(rental, at(8), amount="100.00"))

    assert outcome.code == "payment_mismatch"


def test_rejects_refunded_charge(resolver, rental, customer, at):
    Payment.objects.create(
        user=customer,
        charge_id="ch_1",
        status=Payment.Status.REFUNDED,
        amount=Decimal("300.00"),
    )

    outcome = resolver.extend(rental.pk, customer, at(8), charge=make_charge(rental, at(8)))

    assert outcome.code == "payment_mismatch"
    rental.refresh_from_db()
    assert rental.end_at == at(5)


def test_charge_for_a_rejected_extension_is_refunded(
    rental, next_rental, customer, at, django_capture_on_commit_callbacks
):
    # no sibling box to move B to
    charge = make_charge(rental, at(8))

    with mock.patch("apps.bookings.application.extension.refund_charge") as refund_task:
        with django_capture_on_commit_callbacks(execute=True):
            outcome = complete_extension_for_charge(rental.pk, customer, charge)

    assert outcome.code == "no_reassignment_available"
    payment = Payment.objects.get(charge_id="ch_1")
    assert payment.status == Payment.Status.REFUNDED
    assert payment.refund_amount == Decimal("300.00")
    refund_task.delay.assert_called_once_with(payment.pk)


def test_charge_for_another_booking_is_rejected(rental, customer, booking_factory, box_factory, at):
    other = booking_factory(box_factory("S"), at(1), at(5))

    outcome = complete_extension_for_charge(other.pk, customer, make_charge(rental, at(8)))

    assert outcome.code == "payment_mismatch"
    assert not Payment.objects.exists()


def test_competing_charges_for_the_same_end_extend_once(resolver, rental, customer, at):
    first = resolver.extend(rental.pk, customer, at(8), charge=make_charge(rental, at(8), charge_id="ch_1"))
    second = resolver.extend(rental.pk, customer, at(8), charge=make_charge(rental, at(8), charge_id="ch_2"))

    assert first.success
    assert second.code == "invalid_extension_window"
    rental.refresh_from_db()
    assert rental.extension_count == 1
    assert not Payment.objects.filter(charge_id="ch_2").exists()


def test_booking_taken_after_planning_stops_the_extension(resolver, rental, customer, box_r, at):
    plan = ExtensionResolver._plan

    def plan_then_lose_the_span(self, booking, quote, boxes):
        staged = plan(self, booking, quote, boxes)
        staged.schedules[box_r.pk].occupancies.append(
            Occupancy(booking.pk + 1000, TimeWindow(at(6), at(7)), BookingStatus.UPCOMING)
        )
        return staged

    with mock.patch.object(ExtensionResolver, "_plan", autospec=True, side_effect=plan_then_lose_the_span):
        outcome = resolver.extend(rental.pk, customer, at(8), charge=make_charge(rental, at(8)))

    assert outcome.code == "booking_conflict"
    rental.refresh_from_db()
    assert rental.end_at == at(5)
    assert rental.extension_count == 0
    assert not BookingExtension.objects.exists()
    assert not Payment.objects.exists()
    box_r.refresh_from_db()
    assert box_r.score == 0


def test_locks_boxes_before_booking_rows(resolver, rental, next_rental, customer, box_factory, at):
    box_factory("S")
    calls = mock.Mock()

    with (
        mock.patch.object(extension, "lock_boxes", wraps=lock_boxes) as boxes_lock,
        mock.patch.object(extension, "lock_booking", wraps=lock_booking) as booking_lock,
        mock.patch.object(extension, "lock_bookings", wraps=lock_bookings) as moved_lock,
    ):
        calls.attach_mock(boxes_lock, "lock_boxes")
        calls.attach_mock(booking_lock, "lock_booking")
        calls.attach_mock(moved_lock, "lock_bookings")
        outcome = resolver.extend(rental.pk, customer, at(8))

    assert outcome.success, outcome.reason
    assert [name for name, _, _ in calls.mock_calls] == ["lock_boxes", "lock_booking", "lock_bookings"]


def test_booking_moved_before_its_row_is_locked_is_a_conflict(resolver, rental, customer, box_factory, at):
    elsewhere = box_factory("P", model=Box.ModelTier.PRO)

    def move_then_lock(booking_id):
        Booking.objects.filter(pk=booking_id).update(box=elsewhere)
        return lock_booking(booking_id)

    with mock.patch.object(extension, "lock_booking", side_effect=move_then_lock):
        outcome = resolver.extend(rental.pk, customer, at(8))

    assert outcome.code == "booking_conflict"
    assert not BookingExtension.objects.exists()


def test_conflicting_booking_that_left_the_box_aborts_the_move(resolver, rental, next_rental, customer, box_factory, at):
    box_s = box_factory("S")
    box_t = box_factory("T", score=500)

    def lock_and_move_away(booking_ids):
        locked = lock_bookings(booking_ids)
        Booking.objects.filter(pk=next_rental.pk).update(box=box_t)
        return locked

    with mock.patch.object(extension, "lock_bookings", side_effect=lock_and_move_away):
        outcome = resolver.extend(rental.pk, customer, at(8))

    assert outcome.code == "booking_conflict"
    assert not BookingReassignment.objects.exists()
    assert not BookingExtension.objects.exists()
    rental.refresh_from_db()
    assert rental.end_at == at(5)
    box_s.refresh_from_db()
    assert box_s.score == 0
