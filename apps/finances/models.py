"""Financial domain models."""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings  # type: ignore
from django.db import models  # type: ignore
from django.utils import timezone  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore

from shared.domain.value_objects import Money


class Payment(models.Model):
    """Платёж по внешнему списанию (Stripe charge)."""

    class Status(models.TextChoices):
        PENDING = "pending", _("Pending")
        COMPLETED = "completed", _("Completed")
        FAILED = "failed", _("Failed")
        REFUNDED = "refunded", _("Refunded")

    class Purpose(models.TextChoices):
        BOOKING = "booking", _("Booking")
        EXTENSION = "extension", _("Booking extension")

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payments",
    )
    charge_id = models.CharField(
        max_length=255,
        unique=True,
        null=True,
        blank=True,
        help_text=_("External charge identifier; one record per charge."),
    )
    payment_intent_id = models.CharField(max_length=255, blank=True, db_index=True)
    purpose = models.CharField(max_length=20, choices=Purpose.choices, default=Purpose.BOOKING)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    currency = models.CharField(max_length=3, default="SEK")
    metadata = models.JSONField(default=dict, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)
    refund_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Payment")
        verbose_name_plural = _("Payments")
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"Payment {self.charge_id or self.pk} ({self.status})"

    @property
    def money(self) -> Money:
        return Money(self.amount, self.currency)

    def mark_refunded(self, amount: Decimal) -> None:
        self.status = self.Status.REFUNDED
        self.refund_amount = amount
        self.refunded_at = timezone.now()
        self.save(update_fields=["status", "refund_amount", "refunded_at", "updated_at"])


class PaymentTransaction(models.Model):
    """Журнал webhook-событий провайдера; event_id уникален, повторы игнорируются."""

    payment = models.ForeignKey(
        Payment,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="transactions",
    )
    event_id = models.CharField(max_length=255, unique=True)
    event = models.CharField(max_length=100)
    payload = models.JSONField(default=dict)
    status = models.CharField(max_length=20, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("Payment transaction")
        verbose_name_plural = _("Payment transactions")
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.event} ({self.event_id})"
