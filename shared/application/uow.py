"""
Unit of Work

One ledger operation = one database transaction. Events recorded
during the operation are handed to the message bus only after the
outermost transaction commits; a rollback drops them.
"""

from abc import ABC, abstractmethod
from typing import List
import logging

from django.conf import settings
from django.db import DatabaseError, OperationalError, connection, transaction

from shared.domain.base import DomainEvent
from shared.domain.exceptions import LockTimeout, StorageUnavailable

logger = logging.getLogger(__name__)


class AbstractUnitOfWork(ABC):
    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self.commit()
        else:
            self.rollback()

    @abstractmethod
    def commit(self):
        pass

    @abstractmethod
    def rollback(self):
        pass

    @abstractmethod
    def record(self, event: DomainEvent):
        """Queue an event for publishing after commit"""
        pass


class DjangoUnitOfWork(AbstractUnitOfWork):
    """
    Unit of work on top of transaction.atomic()

    With serializable=True the transaction runs at SERIALIZABLE isolation
    with a bounded lock wait (BOOKING_LOCK_TIMEOUT_MS) on PostgreSQL.
    Other backends serialize writers on their own (SQLite) and only get
    the atomic block. Nested units of work become savepoints.

    Usage:
        with DjangoUnitOfWork(serializable=True) as uow:
            schedules = ledger.snapshot(ids, day, lock=True)
            hold = Hold.objects.create(...)
            uow.record(HoldCreated(...))
        # HoldCreated is published once the transaction commits

    Lock timeouts and other operational failures surface as LockTimeout
    and StorageUnavailable, both retryable.
    """

    def __init__(self, serializable: bool = False):
        self._events: List[DomainEvent] = []
        self._atomic = None
        self.serializable = serializable

    def __enter__(self):
        self._atomic = transaction.atomic()
        self._atomic.__enter__()
        try:
            self._configure_transaction()
        except BaseException as exc:
            self._atomic.__exit__(type(exc), exc, exc.__traceback__)
            raise
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is None:
                self.commit()
            else:
                self.rollback()
        finally:
            try:
                self._atomic.__exit__(exc_type, exc_val, exc_tb)
            except OperationalError as exc:
                raise self._translate(exc) from exc
        if isinstance(exc_val, OperationalError):
            raise self._translate(exc_val) from exc_val
        return False

    def _configure_transaction(self):
        if not self.serializable or connection.vendor != 'postgresql':
            return
        timeout_ms = int(getattr(settings, 'BOOKING_LOCK_TIMEOUT_MS', 5000))
        with connection.cursor() as cursor:
            # Only valid as the first statement of the outermost block
            if not connection.savepoint_ids:
                cursor.execute('SET TRANSACTION ISOLATION LEVEL SERIALIZABLE')
            cursor.execute(f"SET LOCAL lock_timeout = '{timeout_ms}ms'")

    @staticmethod
    def _translate(exc: DatabaseError):
        message = str(exc).lower()
        if 'lock' in message or 'timeout' in message:
            logger.warning(f"Lock wait exceeded: {exc}")
            return LockTimeout()
        logger.error(f"Storage failure inside unit of work: {exc}")
        return StorageUnavailable(str(exc))

    def record(self, event: DomainEvent):
        self._events.append(event)

    def commit(self):
        events, self._events = self._events, []
        if events:
            logger.debug(f"Scheduling {len(events)} events for after commit")
            transaction.on_commit(lambda: self._publish(events))

    def rollback(self):
        if self._events:
            logger.warning(f"Rolling back, discarding {len(self._events)} events")
        self._events = []

    @staticmethod
    def _publish(events: List[DomainEvent]):
        from shared.application.message_bus import message_bus

        logger.info(f"Publishing {len(events)} domain events after commit")
        message_bus.publish_events(events)
