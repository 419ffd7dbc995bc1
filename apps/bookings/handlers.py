"""
Event handlers of the booking ledger

Registered on the message bus when the app is ready:
- every ledger event drops cached availability of the day it touched
- booking events are forwarded to the notification task
"""

import logging

from shared.application.message_bus import message_bus

from .cache import invalidate_around
from .domain import events

logger = logging.getLogger(__name__)


def invalidate_availability(event: events.LedgerEvent):
    invalidate_around(event.start_at)
    previous_start = getattr(event, 'previous_start_at', None)
    if previous_start is not None:
        invalidate_around(previous_start)
    logger.debug(f"Availability cache dropped for resources {list(event.resource_ids)}")


def notify_customer(event: events.BookingEvent):
    from .tasks import notify_booking_event

    notify_booking_event.delay(type(event).__name__, event.to_dict())


def register_handlers(bus=message_bus):
    bus.register_event_handler(events.LedgerEvent, invalidate_availability)
    bus.register_event_handler(events.BookingEvent, notify_customer)
