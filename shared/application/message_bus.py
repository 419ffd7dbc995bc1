"""
Message Bus

Routes ledger events published after commit to their subscribers
(availability cache invalidation, notification dispatch).
"""

from typing import Callable, Dict, Iterable, List, Type
import logging

from shared.domain.base import DomainEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[DomainEvent], None]


class MessageBus:
    """
    In-process event dispatcher

    A handler subscribed to an event type also receives every subclass
    of it, so one subscription to a base event covers a whole family.
    """

    def __init__(self):
        self._subscribers: Dict[Type[DomainEvent], List[EventHandler]] = {}

    def register_event_handler(self, event_type: Type[DomainEvent], handler: EventHandler):
        """Subscribe a handler; subscribing the same handler twice is a no-op"""
        handlers = self._subscribers.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)
            logger.debug(f"Subscribed {handler.__name__} to {event_type.__name__}")

    def handlers_for(self, event: DomainEvent) -> List[EventHandler]:
        found: List[EventHandler] = []
        for event_type in type(event).__mro__:
            for handler in self._subscribers.get(event_type, ()):
                if handler not in found:
                    found.append(handler)
        return found

    def publish(self, event: DomainEvent):
        handlers = self.handlers_for(event)
        if not handlers:
            logger.debug(f"No subscribers for {event.event_type}")
            return

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                # The transaction is already committed, keep delivering
                logger.error(
                    f"{handler.__name__} failed on {event.event_type} ({event.event_id}): {e}",
                    exc_info=True,
                )

    def publish_events(self, events: Iterable[DomainEvent]):
        for event in events:
            self.publish(event)


message_bus = MessageBus()
