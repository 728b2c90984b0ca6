"""Journey service - order timeline and milestone derivation from status history.

The frontend receives the milestone list from the API and does not carry its
own copy of the lifecycle.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from sqlalchemy.orm import Session

from homechef.core.clock import utcnow
from homechef.db.enums import OrderStatus, TERMINAL_STATUSES
from homechef.db.models import Order
from homechef.services import order_service, tip_service


@dataclass(frozen=True)
class MilestoneDefinition:
    """Static milestone definition."""

    slug: str
    label: str
    mapped_statuses: tuple[str, ...]


MILESTONES: tuple[MilestoneDefinition, ...] = (
    MilestoneDefinition("placed", "Order placed", (OrderStatus.PAYMENT_CONFIRMED.value,)),
    MilestoneDefinition("sent_to_chef", "Sent to chef", (OrderStatus.SENT_TO_CHEF.value,)),
    MilestoneDefinition("chef_accepted", "Chef accepted", (OrderStatus.CHEF_ACCEPTED.value,)),
    MilestoneDefinition("preparing", "Preparing", (OrderStatus.PREPARING.value,)),
    MilestoneDefinition(
        "awaiting_pickup",
        "Ready for pickup",
        (OrderStatus.READY_FOR_PICKUP.value, OrderStatus.ASSIGNED_TO_DELIVERY.value),
    ),
    MilestoneDefinition(
        "on_the_way",
        "On the way",
        (OrderStatus.PICKED_UP.value, OrderStatus.OUT_FOR_DELIVERY.value),
    ),
    MilestoneDefinition("delivered", "Delivered", (OrderStatus.DELIVERED.value,)),
)

MilestoneState = Literal["completed", "current", "upcoming", "skipped"]


def _milestone_index(status: str) -> int | None:
    for index, milestone in enumerate(MILESTONES):
        if status in milestone.mapped_statuses:
            return index
    return None


def derive_milestones(order: Order, reached: dict[str, datetime]) -> list[dict]:
    """
    Mark each milestone completed, current, upcoming or skipped.

    Terminal non-delivery states (cancelled, chef_declined) leave the
    remaining milestones skipped.
    """
    current_index = _milestone_index(order.status)
    ended_early = order.status in TERMINAL_STATUSES and current_index is None
    last_reached = max(
        (i for i, m in enumerate(MILESTONES) if m.slug in reached), default=-1
    )

    result = []
    for index, milestone in enumerate(MILESTONES):
        state: MilestoneState
        if current_index is not None and index == current_index:
            state = "completed" if order.status == OrderStatus.DELIVERED.value else "current"
        elif milestone.slug in reached or (current_index is not None and index < current_index):
            state = "completed"
        elif ended_early and index > last_reached:
            state = "skipped"
        else:
            state = "upcoming"
        at = reached.get(milestone.slug)
        result.append(
            {
                "slug": milestone.slug,
                "label": milestone.label,
                "state": state,
                "reached_at": at.isoformat() if at else None,
            }
        )
    return result


def get_order_journey(db: Session, order: Order) -> dict:
    """Timeline, milestones, participants, cancellation and tipping info."""
    now = utcnow()
    history = order_service.status_history(db, order.id)

    timeline = []
    reached: dict[str, datetime] = {}
    for entry in history:
        timeline.append(
            {
                "sequence": entry.sequence,
                "from_status": entry.from_status,
                "status": entry.status,
                "message": entry.message,
                "location": entry.location,
                "actor_id": str(entry.actor_id) if entry.actor_id else None,
                "actor_role": entry.actor_role,
                "timestamp": entry.created_at.isoformat(),
            }
        )
        index = _milestone_index(entry.status)
        if index is not None:
            reached.setdefault(MILESTONES[index].slug, entry.created_at)

    return {
        "order_id": str(order.id),
        "current_status": order.status,
        "timeline": timeline,
        "milestones": derive_milestones(order, reached),
        "participants": {
            "customer_id": str(order.customer_id),
            "chef_id": str(order.chef_id),
            "delivery_partner_id": str(order.delivery_partner_id)
            if order.delivery_partner_id
            else None,
        },
        "cancellation_info": order_service.cancellation_info(order, now),
        "tipping_info": tip_service.tipping_info(db, order, now),
    }
