"""
Common Value Objects

Value objects used across the scheduling and payment domains:
- Money: Monetary amount with currency
- TimeWindow: Instant-precision booking window, inclusive on both ends
- DateRange: Day-precision range used for blocked-range reporting
"""

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Tuple, Union

from shared.domain.base import ValueObject

SUPPORTED_CURRENCIES = ('SEK', 'EUR', 'USD', 'NOK', 'DKK')

ONE_DAY = timedelta(days=1)
ONE_HOUR = timedelta(hours=1)


@dataclass(frozen=True)
class Money(ValueObject):
    """
    Money value object

    Represents a monetary amount with currency.
    Immutable and supports arithmetic operations.
    """
    amount: Decimal
    currency: str = 'SEK'

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))
        if self.amount < 0:
            raise ValueError("Amount cannot be negative")
        if not self.currency:
            raise ValueError("Currency is required")
        if self.currency not in SUPPORTED_CURRENCIES:
            raise ValueError(f"Unsupported currency: {self.currency}")

    @classmethod
    def zero(cls, currency: str = 'SEK') -> 'Money':
        return cls(Decimal('0'), currency)

    @classmethod
    def from_minor_units(cls, value: int, currency: str = 'SEK') -> 'Money':
        """Build from the integer amount gateways use (öre, cents)."""
        return cls(Decimal(value) / 100, currency.upper())

    def to_minor_units(self) -> int:
        return int((self.amount * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))

    def quantized(self) -> 'Money':
        """Round to two decimals the way invoices show it."""
        return Money(self.amount.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP), self.currency)

    def __add__(self, other: 'Money') -> 'Money':
        if not isinstance(other, Money):
            raise TypeError("Can only add Money to Money")
        if self.currency != other.currency:
            raise ValueError(f"Cannot add different currencies: {self.currency} and {other.currency}")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        """Subtract, flooring at zero (fees never produce negative refunds)."""
        if not isinstance(other, Money):
            raise TypeError("Can only subtract Money from Money")
        if self.currency != other.currency:
            raise ValueError(f"Cannot subtract different currencies: {self.currency} and {other.currency}")
        return Money(max(self.amount - other.amount, Decimal('0')), self.currency)

    def __mul__(self, factor) -> 'Money':
        if not isinstance(factor, (int, float, Decimal)):
            raise TypeError("Can only multiply Money by number")
        return Money(self.amount * Decimal(str(factor)), self.currency)

    def __gt__(self, other: 'Money') -> bool:
        if self.currency != other.currency:
            raise ValueError(f"Cannot compare different currencies: {self.currency} and {other.currency}")
        return self.amount > other.amount

    def __bool__(self) -> bool:
        return self.amount > 0

    def __str__(self):
        return f"{self.amount:,.2f} {self.currency}"

    def __repr__(self):
        return f"Money({self.amount}, '{self.currency}')"


@dataclass(frozen=True)
class TimeWindow(ValueObject):
    """
    Time window value object

    A booking occupies its box over [start, end]. Both boundaries are
    inclusive, so a window ending at 10:00 and one starting at 10:00
    overlap.
    """
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start >= self.end:
            raise ValueError(f"Window start ({self.start}) must be before end ({self.end})")

    def overlaps(self, other: 'TimeWindow') -> bool:
        """
        Inclusive overlap: start1 <= end2 AND end1 >= start2

        Examples:
            - [1st 10:00, 5th 10:00] vs [5th 10:00, 8th 10:00] -> True (touching)
            - [1st, 5th] vs [6th, 8th] -> False
        """
        if not isinstance(other, TimeWindow):
            raise TypeError("Can only check overlap with another TimeWindow")
        return self.start <= other.end and self.end >= other.start

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def billable_days(self) -> int:
        """Whole days, rounded up, never less than one."""
        return max(1, math.ceil(self.duration / ONE_DAY))

    @property
    def billable_hours(self) -> int:
        """Whole hours, rounded up, never less than one."""
        return max(1, math.ceil(self.duration / ONE_HOUR))

    def as_date_range(self) -> 'DateRange':
        return DateRange(self.start.date(), self.end.date())

    def __str__(self):
        return f"{self.start.isoformat()} - {self.end.isoformat()}"


@dataclass(frozen=True)
class DateRange(ValueObject):
    """
    Date range value object

    Day-precision range, start and end both inclusive. A booking that
    starts and ends on the same day yields start_date == end_date.
    """
    start_date: date
    end_date: date

    def __post_init__(self):
        if self.start_date > self.end_date:
            raise ValueError(f"Start date ({self.start_date}) must not be after end date ({self.end_date})")

    def overlaps_with(self, other: 'DateRange') -> bool:
        if not isinstance(other, DateRange):
            raise TypeError("Can only check overlap with another DateRange")
        return self.start_date <= other.end_date and self.end_date >= other.start_date

    def contains(self, check_date: date) -> bool:
        return self.start_date <= check_date <= self.end_date

    def to_dict(self) -> dict:
        return {'start': self.start_date.isoformat(), 'end': self.end_date.isoformat()}

    def __str__(self):
        return f"{self.start_date.isoformat()} - {self.end_date.isoformat()}"

    def __repr__(self):
        return f"DateRange({self.start_date}, {self.end_date})"


def normalize_date(value: Union[date, datetime]) -> date:
    """Strip the time of day. Callers convert to local time first."""
    if isinstance(value, datetime):
        return value.date()
    return value


RangeLike = Union[DateRange, Tuple[Union[date, datetime], Union[date, datetime]]]


def merge_date_ranges(ranges: Iterable[RangeLike]) -> List[DateRange]:
    """
    Merge ranges into the minimal sorted set of disjoint ranges

    Ranges that overlap or touch (next start <= current end) collapse
    into one. The result is sorted by start and merging it again
    returns the same list.
    """
    normalized = []
    for item in ranges:
        if isinstance(item, DateRange):
            normalized.append(item)
        else:
            start, end = item
            normalized.append(DateRange(normalize_date(start), normalize_date(end)))

    if not normalized:
        return []

    normalized.sort(key=lambda r: (r.start_date, r.end_date))

    merged: List[DateRange] = []
    current = normalized[0]
    for candidate in normalized[1:]:
        if candidate.start_date <= current.end_date:
            if candidate.end_date > current.end_date:
                current = DateRange(current.start_date, candidate.end_date)
        else:
            merged.append(current)
            current = candidate
    merged.append(current)
    return merged
