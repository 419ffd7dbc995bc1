"""
Booking Domain Events

Events raised by the ledger. They are published after the transaction
commits; every event carries the resources and start time it touched so
cached availability of that day can be dropped.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple

from shared.domain.base import DomainEvent


@dataclass(kw_only=True)
class LedgerEvent(DomainEvent):
    resource_ids: Tuple[int, ...] = field(default_factory=tuple)
    start_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['resource_ids'] = list(self.resource_ids)
        data['start_at'] = self.start_at.isoformat() if self.start_at else None
        return data


# ===== Hold Events =====

@dataclass(kw_only=True)
class HoldCreated(LedgerEvent):
    """
    Event: A slot was held

    Triggers:
    - Drop cached availability of the held resources
    """
    hold_id: int
    offering: str


@dataclass(kw_only=True)
class HoldReleased(LedgerEvent):
    """Event: A pending hold was cancelled before confirm"""
    hold_id: int


@dataclass(kw_only=True)
class HoldExpired(LedgerEvent):
    """Event: A pending hold outlived its TTL"""
    hold_id: int


# ===== Booking Events =====

@dataclass(kw_only=True)
class BookingEvent(LedgerEvent):
    """Base of the events forwarded to the notification collaborator"""
    booking_id: int
    booking_code: str = ''

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['booking_id'] = self.booking_id
        data['booking_code'] = self.booking_code
        return data


@dataclass(kw_only=True)
class BookingCreated(BookingEvent):
    """
    Event: A hold was confirmed into a booking

    Triggers:
    - Send confirmation to the customer
    - Drop cached availability
    """
    hold_id: int
    price: int
    currency: str


@dataclass(kw_only=True)
class BookingCancelled(BookingEvent):
    reason: str = ''


@dataclass(kw_only=True)
class BookingRescheduled(BookingEvent):
    """Event: A booking moved; booking_id is the new booking"""
    previous_booking_id: int
    previous_start_at: Optional[datetime] = None


@dataclass(kw_only=True)
class BookingStatusChanged(BookingEvent):
    """Event: A booking was completed or marked as no-show"""
    old_status: str
    new_status: str
