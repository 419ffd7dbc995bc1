"""
Domain Building Blocks

Shared by the resource, catalog and booking contexts:
- ValueObject: Immutable, compared by value
- Aggregate: Consistency boundary, compared by id
- DomainEvent: A fact about the ledger, published after commit
"""

from abc import ABC
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ValueObject(ABC):
    """Base class for immutable values; equality is field-wise"""
    pass


@dataclass(eq=False)
class Aggregate(ABC):
    """
    Base class for aggregate roots

    An aggregate is identified by the primary key of the row it was
    loaded from; two instances with the same id are the same aggregate.
    """
    id: Any = None

    def __eq__(self, other):
        if not isinstance(other, self.__class__):
            return False
        return self.id is not None and self.id == other.id

    def __hash__(self):
        return hash((self.__class__.__name__, self.id))


@dataclass(kw_only=True)
class DomainEvent:
    """
    Base class for domain events

    Subclasses declare their payload as keyword-only fields and extend
    to_dict() with it, so events can cross the Celery boundary as JSON.
    """
    event_id: UUID = field(default_factory=uuid4)
    occurred_at: datetime = field(default_factory=utc_now)
    aggregate_id: Any = None

    @property
    def event_type(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> dict:
        return {
            'event_id': str(self.event_id),
            'event_type': self.event_type,
            'occurred_at': self.occurred_at.isoformat(),
            'aggregate_id': None if self.aggregate_id is None else str(self.aggregate_id),
        }
