"""Shared pytest fixtures: users, a stand with boxes, bookings."""

from __future__ import annotations

from datetime import datetime, timezone as dt_timezone
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model

from apps.bookings.models import Booking
from apps.locations.models import Box, Location, Stand


def _at(day: int, hour: int = 10, month: int = 1, year: int = 2030) -> datetime:
    return datetime(year, month, day, hour, tzinfo=dt_timezone.utc)


@pytest.fixture
def at():
    """at(5) -> 2030-01-05 10:00 UTC."""
    return _at


@pytest.fixture
def user_factory(db):
    counter = {"n": 0}

    def create(**extra):
        counter["n"] += 1
        n = counter["n"]
        return get_user_model().objects.create_user(
            username=extra.pop("username", f"user{n}"),
            email=extra.pop("email", f"user{n}@example.com"),
            password="BoxPass123",
            **extra,
        )

    return create


@pytest.fixture
def customer(user_factory):
    return user_factory(username="customer")


@pytest.fixture
def other_customer(user_factory):
    return user_factory(username="other")


@pytest.fixture
def location(db):
    return Location.objects.create(name="Södermalm", address="Götgatan 1", city="Stockholm")


@pytest.fixture
def stand(location):
    return Stand.objects.create(location=location, name="Stand A")


@pytest.fixture
def box_factory(stand):
    def create(label: str, model: str = Box.ModelTier.CLASSIC, **extra):
        return Box.objects.create(stand=extra.pop("stand", stand), label=label, model=model, **extra)

    return create


@pytest.fixture
def booking_factory(customer):
    def create(box, start, end, status=Booking.Status.UPCOMING, **extra):
        return Booking.objects.create(
            customer=extra.pop("customer", customer),
            box=box,
            start_at=start,
            end_at=end,
            status=status,
            total_price=extra.pop("total_price", Decimal("400.00")),
            **extra,
        )

    return create
