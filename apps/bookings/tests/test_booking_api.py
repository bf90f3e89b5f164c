"""Integration tests for booking API endpoints."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from unittest import mock

from django.contrib.auth import get_user_model
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from apps.bookings.application.command_handlers import BOOKING_PAYMENT_TYPE
from apps.bookings.application.extension import EXTENSION_PAYMENT_TYPE
from apps.bookings.models import Booking, BookingExtension
from apps.finances.gateway import ChargeIntent, ChargeStatus, PaymentGatewayError
from apps.finances.models import Payment
from apps.locations.models import Box, Location, Stand
from shared.domain.value_objects import Money

User = get_user_model()


class BookingAPITestCase(APITestCase):
    def setUp(self) -> None:
        self.customer = User.objects.create_user(
            username="customer",
            email="customer@example.com",
            password="BoxPass123",
        )
        self.other = User.objects.create_user(
            username="other",
            email="other@example.com",
            password="BoxPass123",
        )
        self.staff = User.objects.create_user(
            username="staff",
            email="staff@example.com",
            password="BoxPass123",
            is_staff=True,
        )
        location = Location.objects.create(name="Södermalm", address="Götgatan 1", city="Stockholm")
        self.stand = Stand.objects.create(location=location, name="Stand A")
        self.box = Box.objects.create(stand=self.stand, label="R")
        self.now = timezone.now().replace(microsecond=0)
        self.client.force_authenticate(self.customer)

    def _booking(self, start, end, box=None, customer=None, **extra) -> Booking:
        return Booking.objects.create(
            customer=customer or self.customer,
            box=box or self.box,
            start_at=start,
            end_at=end,
            status=extra.pop("status", Booking.Status.UPCOMING),
            total_price=extra.pop("total_price", Decimal("200.00")),
            **extra,
        )


class BookingCreateAPITests(BookingAPITestCase):
    """Создание брони и конфликты."""

    def _payload(self, start, end, **extra) -> dict:
        return {"box": self.box.pk, "start_at": start.isoformat(), "end_at": end.isoformat(), **extra}

    def test_customer_can_book_a_free_box(self) -> None:
        start = self.now + timedelta(days=1)

        response = self.client.post(reverse("booking-list"), self._payload(start, start + timedelta(days=3)), format="json")

        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        booking = Booking.objects.get()
        self.assertEqual(booking.customer, self.customer)
        self.assertEqual(booking.status, Booking.Status.UPCOMING)
        self.assertEqual(booking.total_price, Decimal("300.00"))
        self.box.refresh_from_db()
        self.assertEqual(self.box.score, 72)

    def test_overlapping_booking_is_rejected_with_next_free_time(self) -> None:
        start = self.now + timedelta(days=1)
        self._booking(start, start + timedelta(days=2))

        response = self.client.post(
            reverse("booking-list"),
            self._payload(start + timedelta(days=1), start + timedelta(days=3)),
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT, response.data)
        self.assertEqual(response.data["code"], "booking_conflict")
        self.assertIsNotNone(response.data["next_free_at"])
        self.assertEqual(Booking.objects.count(), 1)

    def test_booking_touching_an_existing_end_conflicts(self) -> None:
        start = self.now + timedelta(days=1)
        existing = self._booking(start, start + timedelta(days=2))

        response = self.client.post(
            reverse("booking-list"),
            self._payload(existing.end_at, existing.end_at + timedelta(days=1)),
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT, response.data)

    def test_start_in_the_past_is_rejected(self) -> None:
        start = self.now - timedelta(days=1)

        response = self.client.post(reverse("booking-list"), self._payload(start, start + timedelta(days=3)), format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST, response.data)
        self.assertEqual(response.data["code"], "invalid_booking_window")

    def test_box_in_maintenance_cannot_be_booked(self) -> None:
        self.box.status = Box.Status.MAINTENANCE
        self.box.save()
        start = self.now + timedelta(days=1)

        response = self.client.post(reverse("booking-list"), self._payload(start, start + timedelta(days=1)), format="json")

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT, response.data)
        self.assertEqual(response.data["code"], "box_not_active")


class BookingPaymentAPITests(BookingAPITestCase):
    """Оплата брони: intent, проверка через Stripe, одна бронь на платёж."""

    def setUp(self) -> None:
        super().setUp()
        self.start = self.now + timedelta(days=1)
        self.end = self.start + timedelta(days=2)

    def _payload(self, box=None, **extra) -> dict:
        return {
            "box": (box or self.box).pk,
            "start_at": self.start.isoformat(),
            "end_at": self.end.isoformat(),
            **extra,
        }

    def _charge(self, box=None, status_value: str = "succeeded", amount: str = "200.00", **metadata) -> ChargeStatus:
        return ChargeStatus(
            intent_id="pi_booking",
            status=status_value,
            charge_id="ch_booking",
            amount=Money(Decimal(amount)),
            metadata={
                "type": BOOKING_PAYMENT_TYPE,
                "box_id": str((box or self.box).pk),
                "start_at": self.start.isoformat(),
                "end_at": self.end.isoformat(),
                "user_id": str(self.customer.pk),
                **metadata,
            },
        )

    def _book(self, charge: ChargeStatus, box=None):
        with mock.patch(
            "apps.bookings.application.command_handlers.retrieve_charge_status",
            return_value=charge,
        ) as retrieve:
            response = self.client.post(
                reverse("booking-list"),
                self._payload(box, payment_intent_id="pi_booking"),
                format="json",
            )
        retrieve.assert_called_once_with("pi_booking")
        return response

    def test_payment_intent_pins_box_window_and_customer(self) -> None:
        intent = ChargeIntent(intent_id="pi_booking", client_secret="secret", amount=Money(Decimal("200.00")))

        with mock.patch("apps.bookings.application.command_handlers.create_charge_intent", return_value=intent) as create:
            response = self.client.post(reverse("booking-payment-intent"), self._payload(), format="json")

        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        self.assertEqual(response.data["charge_intent_id"], "pi_booking")
        self.assertEqual(response.data["amount"], "200.00")
        amount, = create.call_args.args
        self.assertEqual(amount, Money(Decimal("200.00")))
        metadata = create.call_args.kwargs["metadata"]
        self.assertEqual(metadata["type"], BOOKING_PAYMENT_TYPE)
        self.assertEqual(metadata["box_id"], self.box.pk)
        self.assertEqual(metadata["user_id"], self.customer.pk)
        self.assertFalse(Booking.objects.exists())

    def test_payment_intent_is_refused_for_taken_window(self) -> None:
        self._booking(self.start, self.end, customer=self.other)

        with mock.patch("apps.bookings.application.command_handlers.create_charge_intent") as create:
            response = self.client.post(reverse("booking-payment-intent"), self._payload(), format="json")

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT, response.data)
        create.assert_not_called()

    def test_verified_charge_is_linked_to_the_booking(self) -> None:
        response = self._book(self._charge())

        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        payment = Booking.objects.get().payment
        self.assertEqual(payment.charge_id, "ch_booking")
        self.assertEqual(payment.payment_intent_id, "pi_booking")
        self.assertEqual(payment.purpose, Payment.Purpose.BOOKING)
        self.assertEqual(payment.amount, Decimal("200.00"))

    def test_unpaid_charge_creates_nothing(self) -> None:
        response = self._book(self._charge(status_value="requires_payment_method"))

        self.assertEqual(response.status_code, status.HTTP_402_PAYMENT_REQUIRED, response.data)
        self.assertEqual(response.data["code"], "payment_not_succeeded")
        self.assertFalse(Booking.objects.exists())
        self.assertFalse(Payment.objects.exists())

    def test_charge_for_another_box_is_rejected(self) -> None:
        other_box = Box.objects.create(stand=self.stand, label="S")

        response = self._book(self._charge(box=other_box))

        self.assertEqual(response.status_code, status.HTTP_402_PAYMENT_REQUIRED, response.data)
        self.assertEqual(response.data["code"], "payment_mismatch")
        self.assertFalse(Payment.objects.exists())

    def test_charge_of_another_customer_is_rejected(self) -> None:
        response = self._book(self._charge(user_id=str(self.other.pk)))

        self.assertEqual(response.data["code"], "payment_mismatch")
        self.assertFalse(Booking.objects.exists())

    def test_extension_charge_cannot_pay_for_a_booking(self) -> None:
        response = self._book(self._charge(type=EXTENSION_PAYMENT_TYPE))

        self.assertEqual(response.data["code"], "payment_mismatch")
        self.assertFalse(Payment.objects.exists())

    def test_charge_below_price_is_rejected(self) -> None:
        response = self._book(self._charge(amount="150.00"))

        self.assertEqual(response.status_code, status.HTTP_402_PAYMENT_REQUIRED, response.data)
        self.assertEqual(response.data["code"], "payment_mismatch")
        self.assertFalse(Booking.objects.exists())
        self.assertFalse(Payment.objects.exists())

    def test_charge_pays_for_one_booking_only(self) -> None:
        first = self._book(self._charge())
        second_box = Box.objects.create(stand=self.stand, label="S")

        second = self._book(self._charge(box=second_box), box=second_box)

        self.assertEqual(first.status_code, status.HTTP_201_CREATED, first.data)
        self.assertEqual(second.status_code, status.HTTP_402_PAYMENT_REQUIRED, second.data)
        self.assertEqual(second.data["code"], "payment_mismatch")
        self.assertEqual(Booking.objects.count(), 1)
        self.assertEqual(Payment.objects.count(), 1)

    def test_charge_linked_to_an_extension_is_rejected(self) -> None:
        booking = self._booking(self.start - timedelta(hours=12), self.start - timedelta(hours=1))
        payment = Payment.objects.create(
            user=self.customer,
            charge_id="ch_booking",
            purpose=Payment.Purpose.EXTENSION,
            status=Payment.Status.COMPLETED,
            amount=Decimal("200.00"),
        )
        BookingExtension.objects.create(
            booking=booking,
            payment=payment,
            previous_end=booking.end_at,
            new_end=booking.end_at + timedelta(hours=1),
            additional_days=1,
            additional_cost=Decimal("100.00"),
        )

        response = self._book(self._charge())

        self.assertEqual(response.status_code, status.HTTP_402_PAYMENT_REQUIRED, response.data)
        self.assertEqual(Booking.objects.count(), 1)

    def test_gateway_failure_is_reported(self) -> None:
        with mock.patch(
            "apps.bookings.application.command_handlers.retrieve_charge_status",
            side_effect=PaymentGatewayError("Failed to verify payment: timeout"),
        ):
            response = self.client.post(
                reverse("booking-list"),
                self._payload(payment_intent_id="pi_booking"),
                format="json",
            )

        self.assertEqual(response.status_code, status.HTTP_502_BAD_GATEWAY, response.data)
        self.assertEqual(response.data["code"], "payment_gateway_error")
        self.assertFalse(Booking.objects.exists())


class BookingReadAPITests(BookingAPITestCase):
    def test_list_shows_own_bookings_with_current_status(self) -> None:
        running = self._booking(self.now - timedelta(hours=1), self.now + timedelta(days=1))
        self._booking(self.now + timedelta(days=5), self.now + timedelta(days=6), customer=self.other)

        response = self.client.get(reverse("booking-list"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([item["id"] for item in response.data], [running.pk])
        self.assertEqual(response.data[0]["status"], "active")
        running.refresh_from_db()
        self.assertEqual(running.status, Booking.Status.ACTIVE)

    def test_other_customers_booking_is_hidden(self) -> None:
        booking = self._booking(self.now + timedelta(days=1), self.now + timedelta(days=2), customer=self.other)

        response = self.client.get(reverse("booking-detail", args=[booking.pk]))

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_staff_can_sync_statuses(self) -> None:
        self._booking(self.now - timedelta(days=3), self.now - timedelta(days=1))
        self.client.force_authenticate(self.staff)

        response = self.client.post(reverse("booking-sync-statuses"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data, {"checked": 1, "updated": 1})
        self.assertEqual(Booking.objects.get().status, Booking.Status.COMPLETED)

    def test_customer_cannot_sync_statuses(self) -> None:
        response = self.client.post(reverse("booking-sync-statuses"))

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class BookingLifecycleAPITests(BookingAPITestCase):
    """Отмена, подтверждение и возврат бокса."""

    def test_early_cancel_refunds_everything_minus_fee(self) -> None:
        start = self.now + timedelta(days=10)
        payment = Payment.objects.create(
            user=self.customer,
            charge_id="ch_booking",
            status=Payment.Status.COMPLETED,
            amount=Decimal("300.00"),
        )
        booking = self._booking(start, start + timedelta(days=3), payment=payment)

        response = self.client.post(reverse("booking-cancel", args=[booking.pk]), {"reason": "plans changed"}, format="json")

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data["status"], "cancelled")
        self.assertEqual(response.data["refund_amount"], "271.00")
        self.assertEqual(response.data["refund_percentage"], 100)
        booking.refresh_from_db()
        self.assertEqual(booking.status, Booking.Status.CANCELLED)
        self.assertEqual(booking.cancellation_reason, "plans changed")
        payment.refresh_from_db()
        self.assertEqual(payment.status, Payment.Status.REFUNDED)

    def test_cancelled_booking_cannot_be_cancelled_again(self) -> None:
        booking = self._booking(
            self.now + timedelta(days=1),
            self.now + timedelta(days=2),
            status=Booking.Status.CANCELLED,
        )

        response = self.client.post(reverse("booking-cancel", args=[booking.pk]), {}, format="json")

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["code"], "booking_not_cancellable")

    def test_staff_confirms_booking(self) -> None:
        booking = self._booking(self.now + timedelta(days=1), self.now + timedelta(days=2))
        self.client.force_authenticate(self.staff)

        response = self.client.post(reverse("booking-confirm", args=[booking.pk]))

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        booking.refresh_from_db()
        self.assertEqual(booking.status, Booking.Status.CONFIRMED)

    def test_customer_cannot_confirm(self) -> None:
        booking = self._booking(self.now + timedelta(days=1), self.now + timedelta(days=2))

        response = self.client.post(reverse("booking-confirm", args=[booking.pk]))

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_return_running_rental(self) -> None:
        booking = self._booking(
            self.now - timedelta(hours=2),
            self.now + timedelta(days=1),
            status=Booking.Status.ACTIVE,
        )

        response = self.client.post(reverse("booking-return", args=[booking.pk]))

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        booking.refresh_from_db()
        self.assertEqual(booking.status, Booking.Status.COMPLETED)
        self.assertIsNotNone(booking.returned_at)

    def test_upcoming_rental_cannot_be_returned(self) -> None:
        booking = self._booking(self.now + timedelta(days=1), self.now + timedelta(days=2))

        response = self.client.post(reverse("booking-return", args=[booking.pk]))

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["code"], "booking_not_returnable")


class BookingExtensionAPITests(BookingAPITestCase):
    """Продление: расчёт, платёж, подтверждение."""

    def setUp(self) -> None:
        super().setUp()
        self.booking = self._booking(self.now + timedelta(days=1), self.now + timedelta(days=3))
        self.new_end = self.booking.end_at + timedelta(days=2)

    def _charge(self, status_value: str = "succeeded", amount: str = "200.00") -> ChargeStatus:
        return ChargeStatus(
            intent_id="pi_ext",
            status=status_value,
            charge_id="ch_ext",
            amount=Money(Decimal(amount)),
            metadata={
                "type": EXTENSION_PAYMENT_TYPE,
                "booking_id": str(self.booking.pk),
                "new_end": self.new_end.isoformat(),
            },
        )

    def test_quote_for_free_span(self) -> None:
        response = self.client.get(reverse("booking-extend", args=[self.booking.pk]), {"new_end": self.new_end.isoformat()})

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertTrue(response.data["can_extend"])
        self.assertEqual(response.data["additional_days"], 2)
        self.assertEqual(response.data["additional_cost"], "200.00")
        self.assertFalse(response.data["reassignment_required"])

    def test_quote_reports_blocked_extension(self) -> None:
        self._booking(self.booking.end_at + timedelta(days=1), self.new_end + timedelta(days=1), customer=self.other)

        response = self.client.get(reverse("booking-extend", args=[self.booking.pk]), {"new_end": self.new_end.isoformat()})

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertFalse(response.data["can_extend"])
        self.assertEqual(response.data["code"], "no_reassignment_available")

    def test_quote_flags_reassignment(self) -> None:
        Box.objects.create(stand=self.stand, label="S")
        self._booking(self.booking.end_at + timedelta(days=1), self.new_end + timedelta(days=1), customer=self.other)

        response = self.client.get(reverse("booking-extend", args=[self.booking.pk]), {"new_end": self.new_end.isoformat()})

        self.assertTrue(response.data["can_extend"])
        self.assertTrue(response.data["reassignment_required"])

    def test_start_payment_creates_charge_intent(self) -> None:
        intent = ChargeIntent(intent_id="pi_ext", client_secret="secret", amount=Money(Decimal("200.00")))

        with mock.patch("apps.bookings.application.extension.create_charge_intent", return_value=intent) as create:
            response = self.client.post(
                reverse("booking-extend", args=[self.booking.pk]),
                {"new_end": self.new_end.isoformat()},
                format="json",
            )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        self.assertEqual(response.data["charge_intent_id"], "pi_ext")
        self.assertEqual(response.data["client_secret"], "secret")
        amount, = create.call_args.args
        self.assertEqual(amount, Money(Decimal("200.00")))
        metadata = create.call_args.kwargs["metadata"]
        self.assertEqual(metadata["type"], EXTENSION_PAYMENT_TYPE)
        self.assertEqual(metadata["booking_id"], self.booking.pk)

    def test_start_payment_is_refused_when_extension_is_impossible(self) -> None:
        self._booking(self.booking.end_at + timedelta(days=1), self.new_end + timedelta(days=1), customer=self.other)

        with mock.patch("apps.bookings.application.extension.create_charge_intent") as create:
            response = self.client.post(
                reverse("booking-extend", args=[self.booking.pk]),
                {"new_end": self.new_end.isoformat()},
                format="json",
            )

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT, response.data)
        create.assert_not_called()

    def test_complete_extends_once_per_charge(self) -> None:
        url = reverse("booking-extend-complete", args=[self.booking.pk])

        with mock.patch("apps.bookings.application.extension.retrieve_charge_status", return_value=self._charge()):
            first = self.client.post(url, {"charge_intent_id": "pi_ext"}, format="json")
            second = self.client.post(url, {"charge_intent_id": "pi_ext"}, format="json")

        self.assertEqual(first.status_code, status.HTTP_200_OK, first.data)
        self.assertTrue(first.data["success"])
        self.assertEqual(second.status_code, status.HTTP_200_OK, second.data)
        self.assertTrue(second.data["replayed"])
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.end_at, self.new_end)
        self.assertEqual(self.booking.extension_count, 1)
        self.assertEqual(BookingExtension.objects.count(), 1)

        history = self.client.get(reverse("booking-extensions", args=[self.booking.pk]))
        self.assertEqual(history.status_code, status.HTTP_200_OK)
        self.assertEqual(history.data[0]["charge_id"], "ch_ext")

    def test_complete_rejects_unpaid_charge(self) -> None:
        url = reverse("booking-extend-complete", args=[self.booking.pk])

        with mock.patch(
            "apps.bookings.application.extension.retrieve_charge_status",
            return_value=self._charge(status_value="requires_payment_method"),
        ):
            response = self.client.post(url, {"charge_intent_id": "pi_ext"}, format="json")

        self.assertEqual(response.status_code, status.HTTP_402_PAYMENT_REQUIRED, response.data)
        self.assertEqual(response.data["code"], "payment_not_succeeded")
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.extension_count, 0)
