"""Booking domain models."""

from __future__ import annotations

import secrets
from decimal import Decimal

from django.conf import settings  # type: ignore
from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore

from shared.domain.value_objects import Money, TimeWindow

from .domain.schedule import Occupancy
from .domain.status import BookingStatus


class Booking(models.Model):
    """Аренда бокса клиентом на интервал [start_at, end_at]."""

    Status = BookingStatus

    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="bookings",
    )
    box = models.ForeignKey(
        "locations.Box",
        on_delete=models.PROTECT,
        related_name="bookings",
    )
    booking_code = models.CharField(max_length=12, unique=True, editable=False)
    start_at = models.DateTimeField()
    end_at = models.DateTimeField()
    status = models.CharField(
        max_length=20,
        choices=BookingStatus.choices,
        default=BookingStatus.UPCOMING,
    )
    total_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    currency = models.CharField(max_length=3, default="SEK")
    payment = models.OneToOneField(
        "finances.Payment",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="booking",
    )
    extension_count = models.PositiveIntegerField(default=0)
    extension_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    is_extended = models.BooleanField(default=False)
    returned_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.CharField(max_length=255, blank=True)
    refund_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Booking")
        verbose_name_plural = _("Bookings")
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(end_at__gt=models.F("start_at")),
                name="booking_valid_window",
            ),
        ]
        indexes = [
            models.Index(fields=["box", "start_at", "end_at"]),
            models.Index(fields=["status"]),
        ]

    def __str__(self) -> str:
        return f"Booking #{self.booking_code} for box {self.box_id}"

    def save(self, *args, **kwargs):  # type: ignore
        if self._state.adding and not self.booking_code:
            self.booking_code = self.generate_booking_code()
        super().save(*args, **kwargs)

    @staticmethod
    def generate_booking_code() -> str:
        return secrets.token_hex(4).upper()

    @property
    def window(self) -> TimeWindow:
        return TimeWindow(self.start_at, self.end_at)

    @property
    def price(self) -> Money:
        return Money(self.total_price, self.currency)

    def to_occupancy(self) -> Occupancy:
        return Occupancy(booking_id=self.pk, window=self.window, status=self.status)


class BookingExtension(models.Model):
    """История продлений: одна запись на каждое успешное продление."""

    booking = models.ForeignKey(Booking, on_delete=models.CASCADE, related_name="extensions")
    payment = models.ForeignKey(
        "finances.Payment",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="extensions",
    )
    previous_end = models.DateTimeField()
    new_end = models.DateTimeField()
    additional_days = models.PositiveIntegerField()
    additional_cost = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default="SEK")
    box_status_at_extension = models.CharField(max_length=20, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("Booking extension")
        verbose_name_plural = _("Booking extensions")
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(fields=["payment"], name="unique_extension_per_payment"),
            models.CheckConstraint(
                condition=models.Q(new_end__gt=models.F("previous_end")),
                name="extension_moves_end_forward",
            ),
        ]

    def __str__(self) -> str:
        return f"Extension of {self.booking_id} to {self.new_end:%Y-%m-%d %H:%M}"


class BookingReassignment(models.Model):
    """Перенос чужой будущей брони на равноценный бокс ради продления."""

    booking = models.ForeignKey(Booking, on_delete=models.CASCADE, related_name="reassignments")
    from_box = models.ForeignKey("locations.Box", on_delete=models.PROTECT, related_name="+")
    to_box = models.ForeignKey("locations.Box", on_delete=models.PROTECT, related_name="+")
    extension = models.ForeignKey(
        BookingExtension,
        on_delete=models.CASCADE,
        related_name="reassignments",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("Booking reassignment")
        verbose_name_plural = _("Booking reassignments")
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"Booking {self.booking_id}: box {self.from_box_id} -> {self.to_box_id}"
