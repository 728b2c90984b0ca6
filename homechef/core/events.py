"""
Process-local event bus for order lifecycle events.

Services build OrderEvents inside their transaction (webhook deliveries are
inserted in the same commit) and publish them only after the commit
succeeds. Subscribers must not block: the connection hub and the webhook
dispatcher hand work over to their own event loop.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable
from uuid import UUID

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderEvent:
    """A committed state change, addressed to the order's participants."""

    kind: str
    order_id: UUID
    sequence: int
    data: dict[str, Any]
    occurred_at: datetime
    customer_id: UUID | None = None
    chef_id: UUID | None = None
    delivery_partner_id: UUID | None = None
    delivery_ids: tuple[UUID, ...] = field(default=())

    @property
    def audience(self) -> set[UUID]:
        """Users that receive this event over WebSocket (admins are added by the hub)."""
        return {
            uid
            for uid in (self.customer_id, self.chef_id, self.delivery_partner_id)
            if uid is not None
        }

    def to_frame(self) -> dict[str, Any]:
        return {
            "type": "order_event",
            "event": self.kind,
            "sequence": self.sequence,
            "data": self.data,
            "timestamp": self.occurred_at.isoformat(),
        }


Subscriber = Callable[[OrderEvent], None]


class EventBus:
    """Fan committed events out to in-process subscribers, preserving order."""

    def __init__(self):
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            if subscriber not in self._subscribers:
                self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

    def clear(self) -> None:
        with self._lock:
            self._subscribers.clear()

    def publish(self, events: Iterable[OrderEvent]) -> None:
        """Deliver events in the given (commit) order to every subscriber."""
        with self._lock:
            subscribers = list(self._subscribers)
        for event in events:
            for subscriber in subscribers:
                try:
                    subscriber(event)
                except Exception:
                    # Already committed; remaining subscribers still run.
                    logger.exception(
                        "Event subscriber failed for %s order=%s", event.kind, event.order_id
                    )


# Singleton instance
event_bus = EventBus()
