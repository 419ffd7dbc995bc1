"""
Common Value Objects

Value objects used across the scheduling contexts:
- Money: Monetary amount in minor currency units
- TimeWindow: Half-open interval of time [start, end)
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP

from shared.domain.base import ValueObject


def round_half_up(value: Decimal) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(value.quantize(Decimal('1'), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class Money(ValueObject):
    """
    Money value object

    The amount is an integer number of minor units (kopecks, cents),
    so there is never a fractional part to carry around.
    """
    amount: int
    currency: str = 'RUB'

    def __post_init__(self):
        if not isinstance(self.amount, int):
            raise TypeError("Amount must be an integer number of minor units")
        if self.amount < 0:
            raise ValueError("Amount cannot be negative")
        if not self.currency or len(self.currency) != 3:
            raise ValueError(f"Invalid currency code: {self.currency!r}")

    def __add__(self, other: 'Money') -> 'Money':
        """Add two money objects"""
        if not isinstance(other, Money):
            raise TypeError("Can only add Money to Money")
        if self.currency != other.currency:
            raise ValueError(f"Cannot add different currencies: {self.currency} and {other.currency}")
        return Money(self.amount + other.amount, self.currency)

    def discounted(self, percent) -> 'Money':
        """
        Apply a percentage discount

        The result is rounded half-up to the minor unit:
        Money(4500).discounted(15) == Money(3825)
        """
        percent = Decimal(str(percent))
        if percent < 0 or percent > 100:
            raise ValueError(f"Discount must be between 0 and 100, got {percent}")
        factor = (Decimal(100) - percent) / Decimal(100)
        return Money(round_half_up(Decimal(self.amount) * factor), self.currency)

    def __str__(self):
        return f"{self.amount / 100:,.2f} {self.currency}"

    def __repr__(self):
        return f"Money({self.amount}, '{self.currency}')"


@dataclass(frozen=True)
class TimeWindow(ValueObject):
    """
    Time window value object

    Represents an interval from start (inclusive) to end (exclusive).
    Used for slots, hold allocations and booking windows.
    """
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start >= self.end:
            raise ValueError(f"Window start ({self.start}) must be before end ({self.end})")

    @classmethod
    def of(cls, start: datetime, minutes: int) -> 'TimeWindow':
        return cls(start, start + timedelta(minutes=minutes))

    def overlaps_with(self, other: 'TimeWindow') -> bool:
        """
        Check if this window overlaps with another

        The end is exclusive, so back-to-back windows don't overlap:
            - [10:00, 11:00) overlaps [10:30, 11:30) -> True
            - [10:00, 11:00) overlaps [11:00, 12:00) -> False
        """
        if not isinstance(other, TimeWindow):
            raise TypeError("Can only check overlap with another TimeWindow")
        return self.start < other.end and self.end > other.start

    def covers(self, other: 'TimeWindow') -> bool:
        """True if other lies completely inside this window"""
        return self.start <= other.start and other.end <= self.end

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def __str__(self):
        return f"{self.start.strftime('%d.%m.%Y %H:%M')} - {self.end.strftime('%H:%M')}"

    def __repr__(self):
        return f"TimeWindow({self.start.isoformat()}, {self.end.isoformat()})"
