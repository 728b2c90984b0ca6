"""Order event recording: sequence assignment, webhook staging, post-commit publish."""

from __future__ import annotations

from typing import Any, Sequence

from sqlalchemy.orm import Session

from homechef.core.clock import utcnow
from homechef.core.events import OrderEvent, event_bus
from homechef.db.models import Order
from homechef.services import delivery_service


def record_event(db: Session, order: Order, kind: str, data: dict[str, Any]) -> OrderEvent:
    """
    Assign the next per-order sequence and stage webhook deliveries.

    Must be called while the order row is locked; nothing leaves the process
    until commit_and_publish.
    """
    order.event_seq = (order.event_seq or 0) + 1
    occurred_at = utcnow()
    deliveries = delivery_service.stage_deliveries(
        db,
        kind,
        data,
        occurred_at,
        order_id=order.id,
        sequence=order.event_seq,
    )
    return OrderEvent(
        kind=kind,
        order_id=order.id,
        sequence=order.event_seq,
        data=data,
        occurred_at=occurred_at,
        customer_id=order.customer_id,
        chef_id=order.chef_id,
        delivery_partner_id=order.delivery_partner_id,
        delivery_ids=tuple(d.id for d in deliveries),
    )


def commit_and_publish(db: Session, events: Sequence[OrderEvent]) -> None:
    """Commit the transaction, then hand events to the bus in commit order."""
    db.commit()
    if events:
        event_bus.publish(events)
