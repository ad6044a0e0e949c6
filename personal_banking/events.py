"""
Event System Module

Publish/subscribe dispatcher the presentation layer uses to refresh its view
of an account after a balance mutation, instead of polling.
"""

from enum import Enum
from typing import Callable, Dict, List, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
import uuid
import logging
from threading import RLock


class DomainEvent(Enum):
    """Domain events that can occur in the banking core"""

    TRANSACTION_APPLIED = "transaction.applied"
    TRANSACTION_REJECTED = "transaction.rejected"

    ACCOUNT_OPENED = "account.opened"
    ACCOUNT_UPDATED = "account.updated"

    RECONCILIATION_FAILED = "reconciliation.failed"


@dataclass
class EventPayload:
    """Payload for domain events"""
    event_type: DomainEvent
    owner_id: str
    entity_id: str
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            'event_type': self.event_type.value,
            'owner_id': self.owner_id,
            'entity_id': self.entity_id,
            'data': self.data,
            'timestamp': self.timestamp.isoformat(),
            'event_id': self.event_id
        }


def _handler_name(handler: Callable) -> str:
    return getattr(handler, "__name__", repr(handler))


class EventDispatcher:
    """Central event dispatcher - publish/subscribe pattern"""

    def __init__(self):
        self._handlers: Dict[DomainEvent, List[Callable]] = {}
        self._global_handlers: List[Callable] = []
        self._lock = RLock()
        self.logger = logging.getLogger("personal_banking.events")

    def subscribe(self, event_type: DomainEvent, handler: Callable) -> None:
        """Subscribe to a specific event type"""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
            self.logger.debug(f"Subscribed handler {_handler_name(handler)} to {event_type.value}")

    def subscribe_all(self, handler: Callable) -> None:
        """Subscribe to ALL events"""
        with self._lock:
            self._global_handlers.append(handler)

    def unsubscribe(self, event_type: DomainEvent, handler: Callable) -> None:
        """Unsubscribe from a specific event type"""
        with self._lock:
            try:
                self._handlers.get(event_type, []).remove(handler)
            except ValueError:
                self.logger.warning(f"Handler {_handler_name(handler)} was not subscribed to {event_type.value}")

    def publish(self, event: EventPayload) -> None:
        """Publish event to all subscribers"""
        with self._lock:
            handlers = list(self._handlers.get(event.event_type, [])) + list(self._global_handlers)

        self.logger.debug(f"Publishing event {event.event_type.value} for owner {event.owner_id}")
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                # A failing subscriber must not undo a committed mutation
                self.logger.error(f"Error in event handler {_handler_name(handler)} for {event.event_type.value}: {e}")

    def clear(self) -> None:
        """Clear all handlers"""
        with self._lock:
            self._handlers.clear()
            self._global_handlers.clear()

    def get_handler_count(self, event_type: Optional[DomainEvent] = None) -> int:
        """Get count of handlers for a specific event type or all"""
        with self._lock:
            if event_type:
                return len(self._handlers.get(event_type, []))
            total = sum(len(handlers) for handlers in self._handlers.values())
            return total + len(self._global_handlers)


def create_transaction_event(event_type: DomainEvent, record) -> EventPayload:
    """Create an event for an applied transaction record"""
    return EventPayload(
        event_type=event_type,
        owner_id=record.owner_id,
        entity_id=record.id,
        data={
            "kind": record.kind.value,
            "amount": str(record.amount),
            "memo": record.memo,
            "balance_after": str(record.balance_after),
            "sequence": record.sequence,
        }
    )


def create_account_event(event_type: DomainEvent, account) -> EventPayload:
    """Create an account-related event"""
    return EventPayload(
        event_type=event_type,
        owner_id=account.owner_id,
        entity_id=account.id,
        data={
            "name": account.name,
            "account_type": account.account_type.value,
            "balance": str(account.balance),
        }
    )
