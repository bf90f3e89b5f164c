"""Physical inventory models: locations, stands and boxes."""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings  # type: ignore
from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore

from shared.domain.value_objects import Money


class Location(models.Model):
    """Пункт выдачи, на котором установлены стойки с боксами."""

    name = models.CharField(max_length=255)
    address = models.CharField(max_length=255, blank=True)
    city = models.CharField(max_length=100, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Location")
        verbose_name_plural = _("Locations")
        ordering = ["name"]

    def __str__(self) -> str:
        return self.name


class Stand(models.Model):
    """Стойка: группа боксов в одной точке, область поиска для переназначения."""

    location = models.ForeignKey(Location, on_delete=models.CASCADE, related_name="stands")
    name = models.CharField(max_length=100)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("Stand")
        verbose_name_plural = _("Stands")
        ordering = ["location", "name"]

    def __str__(self) -> str:
        return f"{self.location.name} / {self.name}"


class Box(models.Model):
    """Арендуемый бокс."""

    class ModelTier(models.TextChoices):
        CLASSIC = "classic", _("Classic")
        PRO = "pro", _("Pro")

    class Status(models.TextChoices):
        ACTIVE = "active", _("Active")
        MAINTENANCE = "maintenance", _("Maintenance")
        RETIRED = "retired", _("Retired")

    stand = models.ForeignKey(Stand, on_delete=models.CASCADE, related_name="boxes")
    label = models.CharField(max_length=50)
    model = models.CharField(max_length=20, choices=ModelTier.choices, default=ModelTier.CLASSIC)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.ACTIVE)
    score = models.PositiveBigIntegerField(
        default=0,
        help_text=_("Cumulative booked hours. Lower scores are preferred when picking a box."),
    )
    daily_rate = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        help_text=_("Overrides BOOKING_DEFAULT_DAILY_RATE when set."),
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Box")
        verbose_name_plural = _("Boxes")
        ordering = ["stand", "label"]
        indexes = [
            models.Index(fields=["stand", "model", "status", "score"]),
        ]

    def __str__(self) -> str:
        return f"Box {self.label} ({self.model})"

    @property
    def is_active(self) -> bool:
        return self.status == self.Status.ACTIVE

    @property
    def location_id(self) -> int:
        return self.stand.location_id

    def daily_rate_money(self) -> Money:
        rate = self.daily_rate if self.daily_rate is not None else Decimal(settings.BOOKING_DEFAULT_DAILY_RATE)
        return Money(rate, settings.BOOKING_CURRENCY)

    def price_multiplier(self) -> Decimal:
        multipliers = settings.BOOKING_MODEL_MULTIPLIERS
        return Decimal(str(multipliers.get(self.model, "1.0")))
