"""
Order lifecycle state machine.

Every command locks the order row (SELECT ... FOR UPDATE), checks the
observed state, applies the transition, appends a status-history row and
stages exactly one event, all in one transaction. Events reach the bus only
after the commit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from homechef.core.clock import utcnow
from homechef.core.config import settings
from homechef.core.errors import Forbidden, InvalidRequest, InvalidTransition, NotFound
from homechef.core.events import OrderEvent
from homechef.db.enums import (
    CANCELLABLE_STATUSES,
    COUNTDOWN_STATUSES,
    TERMINAL_STATUSES,
    CancellationReason,
    DeclineReason,
    OrderStatus,
    PaymentStatus,
    RefundStatus,
    Role,
    WebhookEvent,
)
from homechef.db.models import CancellationPolicy, Order, OrderItem, OrderStatusHistory
from homechef.schemas.auth import Principal
from homechef.services import cancellation_service, collaborators, event_service
from homechef.services.cancellation_service import PenaltyQuote, money

logger = logging.getLogger(__name__)

REFUND_TIMELINE = "3-5 business days"
DELIVERY_ESTIMATE_MINUTES = 30

# Target status -> (required current status, role allowed to request it).
STATUS_UPDATE_RULES: dict[str, tuple[str, Role]] = {
    OrderStatus.PREPARING.value: (OrderStatus.CHEF_ACCEPTED.value, Role.CHEF),
    OrderStatus.READY_FOR_PICKUP.value: (OrderStatus.PREPARING.value, Role.CHEF),
    OrderStatus.PICKED_UP.value: (OrderStatus.ASSIGNED_TO_DELIVERY.value, Role.DELIVERY),
    OrderStatus.OUT_FOR_DELIVERY.value: (OrderStatus.PICKED_UP.value, Role.DELIVERY),
    OrderStatus.DELIVERED.value: (OrderStatus.OUT_FOR_DELIVERY.value, Role.DELIVERY),
}


@dataclass(frozen=True)
class PlacedItem:
    dish_id: str
    quantity: int
    unit_price: float
    dish_name: str | None = None
    special_instructions: str | None = None


@dataclass(frozen=True)
class CancellationResult:
    order: Order
    quote: PenaltyQuote
    refund_timeline: str = REFUND_TIMELINE


# =============================================================================
# Helpers
# =============================================================================


def _status_value(status: str | OrderStatus) -> str:
    return status.value if isinstance(status, OrderStatus) else status


def lock_order(db: Session, order_id: UUID) -> Order:
    """Load an order under a row lock, refreshing any stale identity-map copy."""
    order = db.execute(
        select(Order)
        .where(Order.id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not order:
        raise NotFound("Order not found")
    return order


def is_participant(order: Order, principal: Principal) -> bool:
    if principal.role == Role.CUSTOMER:
        return order.customer_id == principal.user_id
    if principal.role == Role.CHEF:
        return order.chef_id == principal.user_id
    if principal.role == Role.DELIVERY:
        return order.delivery_partner_id == principal.user_id
    return False


def ensure_participant(order: Order, principal: Principal) -> None:
    if principal.is_admin or is_participant(order, principal):
        return
    raise Forbidden("Not a participant of this order")


def ensure_state(order: Order, allowed: set[str] | frozenset[str], command: str) -> None:
    """Raise InvalidTransition unless the observed state allows the command."""
    if order.status in TERMINAL_STATUSES:
        raise InvalidTransition(
            f"Cannot {command}: order is already {order.status}", order.status
        )
    if order.status not in allowed:
        raise InvalidTransition(
            f"Cannot {command} from status {order.status}", order.status
        )


def _append_history(
    db: Session,
    order: Order,
    from_status: str | None,
    principal: Principal | None,
    message: str | None = None,
    location: dict | None = None,
) -> OrderStatusHistory:
    last = db.scalar(
        select(func.coalesce(func.max(OrderStatusHistory.sequence), 0)).where(
            OrderStatusHistory.order_id == order.id
        )
    )
    entry = OrderStatusHistory(
        order_id=order.id,
        sequence=(last or 0) + 1,
        from_status=from_status,
        status=order.status,
        message=message,
        location=location,
        actor_id=principal.user_id if principal else None,
        actor_role=principal.role.value if principal else None,
        created_at=utcnow(),
    )
    db.add(entry)
    return entry


def _move(
    db: Session,
    order: Order,
    to_status: OrderStatus,
    principal: Principal | None,
    message: str | None = None,
    location: dict | None = None,
) -> str:
    """Apply a transition and log it; returns the previous status."""
    previous = order.status
    order.status = to_status.value
    order.updated_at = utcnow()
    _append_history(db, order, previous, principal, message, location)
    return previous


# =============================================================================
# Place / SendToChef / countdown expiry
# =============================================================================


def price_items(items: list[PlacedItem]) -> tuple[float, float, float, float]:
    """Return (subtotal, delivery_fee, tax, total)."""
    subtotal = money(sum(item.quantity * item.unit_price for item in items))
    delivery_fee = money(settings.DELIVERY_FEE)
    tax = money(subtotal * settings.TAX_RATE)
    return subtotal, delivery_fee, tax, money(subtotal + delivery_fee + tax)


def place_order(
    db: Session,
    principal: Principal,
    *,
    chef_id: UUID,
    items: list[PlacedItem],
    delivery_address: str | None = None,
    special_instructions: str | None = None,
    payment_id: str | None = None,
    payment_method: str | None = None,
) -> Order:
    """Place: create the order in payment_confirmed and start its countdown."""
    if not items:
        raise InvalidRequest("Order must contain at least one item", {"items": "must not be empty"})

    subtotal, delivery_fee, tax, total = price_items(items)

    if not collaborators.get_chef_directory().is_available(chef_id):
        raise InvalidRequest("Chef is not available", {"chef_id": "chef unavailable"})
    if not collaborators.get_payment_gateway().is_authorized(payment_id, total):
        raise InvalidRequest("Payment is not authorised", {"payment_id": "payment not authorised"})

    policy = cancellation_service.get_active_policy(db)
    now = utcnow()
    order = Order(
        customer_id=principal.user_id,
        chef_id=chef_id,
        status=OrderStatus.PAYMENT_CONFIRMED.value,
        subtotal=subtotal,
        delivery_fee=delivery_fee,
        tax_amount=tax,
        total_amount=total,
        payment_id=payment_id,
        payment_method=payment_method,
        payment_status=PaymentStatus.AUTHORIZED.value,
        delivery_address=delivery_address,
        special_instructions=special_instructions,
        cancellation_policy_id=policy.id,
        countdown_expiry=now + timedelta(seconds=policy.free_window_seconds),
        can_cancel_free=policy.free_window_seconds > 0,
        event_seq=0,
        created_at=now,
        updated_at=now,
    )
    order.items = [
        OrderItem(
            dish_id=item.dish_id,
            dish_name=item.dish_name,
            quantity=item.quantity,
            unit_price=money(item.unit_price),
            special_instructions=item.special_instructions,
            created_at=now,
        )
        for item in items
    ]
    db.add(order)
    db.flush()

    _append_history(db, order, None, principal, "Order placed")
    cancellation_service.record_order_placed(db, now)
    event = event_service.record_event(
        db,
        order,
        WebhookEvent.ORDER_CREATED.value,
        {
            "order_id": str(order.id),
            "customer_id": str(order.customer_id),
            "chef_id": str(order.chef_id),
            "total_amount": order.total_amount,
            "countdown_expiry": order.countdown_expiry.isoformat(),
        },
    )
    event_service.commit_and_publish(db, [event])
    db.refresh(order)
    logger.info("Order %s placed by customer %s total=%s", order.id, order.customer_id, total)
    return order


def _send_to_chef(db: Session, order: Order, principal: Principal | None, message: str) -> OrderEvent:
    now = utcnow()
    order.can_cancel_free = False
    order.sent_to_chef_at = now
    _move(db, order, OrderStatus.SENT_TO_CHEF, principal, message)
    return event_service.record_event(
        db,
        order,
        WebhookEvent.ORDER_SENT_TO_CHEF.value,
        {"order_id": str(order.id), "chef_id": str(order.chef_id)},
    )


def confirm_order(db: Session, principal: Principal, order_id: UUID) -> Order:
    """SendToChef at the customer's request, waiving the rest of the free window."""
    order = lock_order(db, order_id)
    ensure_participant(order, principal)
    ensure_state(order, {OrderStatus.PAYMENT_CONFIRMED.value}, "send to chef")
    event = _send_to_chef(db, order, principal, "Confirmed by customer")
    event_service.commit_and_publish(db, [event])
    db.refresh(order)
    return order


def expire_countdown(db: Session, order_id: UUID) -> list[OrderEvent]:
    """
    Countdown expiry for one order.

    Clears can_cancel_free (emitting countdown.expired) and, if the order is
    still payment_confirmed, performs SendToChef. Does nothing when the
    window has not ended or the order has already moved on, so firing twice
    is harmless.
    """
    order = db.execute(
        select(Order)
        .where(Order.id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not order:
        logger.warning("Countdown fired for unknown order %s", order_id)
        return []

    now = utcnow()
    if now < order.countdown_expiry:
        db.rollback()
        return []

    events: list[OrderEvent] = []
    if order.can_cancel_free:
        order.can_cancel_free = False
        order.updated_at = now
        events.append(
            event_service.record_event(
                db, order, WebhookEvent.COUNTDOWN_EXPIRED.value, {"order_id": str(order.id)}
            )
        )
    if order.status == OrderStatus.PAYMENT_CONFIRMED.value:
        events.append(_send_to_chef(db, order, None, "Free-cancellation window ended"))

    if not events:
        db.rollback()
        return []
    event_service.commit_and_publish(db, events)
    return events


# =============================================================================
# Chef commands
# =============================================================================


def _ensure_chef_window(order: Order) -> None:
    if not order.sent_to_chef_at:
        return
    deadline = order.sent_to_chef_at + timedelta(seconds=settings.CHEF_RESPONSE_WINDOW_SEC)
    if utcnow() > deadline:
        raise InvalidTransition(
            "Chef response window has elapsed",
            order.status,
            {"response_deadline": deadline.isoformat()},
        )


def chef_accept(
    db: Session,
    principal: Principal,
    order_id: UUID,
    estimated_prep_time: int,
    notes: str | None = None,
) -> Order:
    order = lock_order(db, order_id)
    ensure_participant(order, principal)
    ensure_state(order, {OrderStatus.SENT_TO_CHEF.value}, "accept order")
    _ensure_chef_window(order)

    now = utcnow()
    order.chef_accepted_at = now
    order.estimated_prep_time = estimated_prep_time
    order.estimated_delivery_time = now + timedelta(
        minutes=estimated_prep_time + DELIVERY_ESTIMATE_MINUTES
    )
    order.can_cancel_free = False
    _move(db, order, OrderStatus.CHEF_ACCEPTED, principal, notes or "Accepted by chef")
    event = event_service.record_event(
        db,
        order,
        WebhookEvent.ORDER_CHEF_ACCEPTED.value,
        {"order_id": str(order.id), "estimated_prep_time": estimated_prep_time},
    )
    event_service.commit_and_publish(db, [event])
    db.refresh(order)
    return order


def chef_decline(
    db: Session,
    principal: Principal,
    order_id: UUID,
    reason: DeclineReason,
    notes: str | None = None,
) -> Order:
    """ChefDecline: terminal, always a full refund regardless of the countdown."""
    order = lock_order(db, order_id)
    ensure_participant(order, principal)
    ensure_state(order, {OrderStatus.SENT_TO_CHEF.value}, "decline order")

    now = utcnow()
    order.chef_declined_at = now
    order.decline_reason = reason.value
    order.can_cancel_free = False
    order.penalty_amount = 0.0
    order.refund_amount = money(order.total_amount)
    order.refund_status = RefundStatus.PENDING.value
    _move(db, order, OrderStatus.CHEF_DECLINED, principal, notes or f"Declined: {reason.value}")
    event = event_service.record_event(
        db,
        order,
        WebhookEvent.ORDER_CHEF_DECLINED.value,
        {"order_id": str(order.id), "reason": reason.value},
    )
    event_service.commit_and_publish(db, [event])
    db.refresh(order)
    logger.info("Order %s declined by chef (%s)", order.id, reason.value)
    return order


# =============================================================================
# Customer cancel
# =============================================================================


def customer_cancel(
    db: Session,
    principal: Principal,
    order_id: UUID,
    reason: CancellationReason = CancellationReason.CUSTOMER_REQUEST,
    notes: str | None = None,
) -> CancellationResult:
    """
    CustomerCancel from payment_confirmed, sent_to_chef or chef_accepted.

    Free iff can_cancel_free is still set under the row lock and the window
    has not ended; otherwise the captured policy's penalty applies.
    """
    order = lock_order(db, order_id)
    if not principal.is_admin and order.customer_id != principal.user_id:
        raise Forbidden("Only the ordering customer can cancel this order")
    ensure_state(order, CANCELLABLE_STATUSES, "cancel order")

    now = utcnow()
    free = order.can_cancel_free and now <= order.countdown_expiry
    quote = cancellation_service.quote_cancellation(order.total_amount, order.policy, free=free)

    order.cancelled_at = now
    order.cancelled_by = principal.user_id
    order.cancellation_reason = reason.value
    order.cancellation_notes = notes
    order.cancellation_type = quote.cancellation_type.value
    order.penalty_amount = quote.penalty
    order.refund_amount = quote.refund
    order.refund_status = RefundStatus.PENDING.value
    order.can_cancel_free = False
    _move(db, order, OrderStatus.CANCELLED, principal, notes or f"Cancelled: {reason.value}")

    cancellation_service.record_cancellation(
        db,
        now,
        quote.cancellation_type,
        quote.penalty,
        (now - order.created_at).total_seconds(),
    )
    event = event_service.record_event(
        db,
        order,
        WebhookEvent.ORDER_CANCELLED.value,
        {
            "order_id": str(order.id),
            "cancellation_type": quote.cancellation_type.value,
            "penalty": quote.penalty,
            "refund": quote.refund,
        },
    )
    event_service.commit_and_publish(db, [event])
    db.refresh(order)
    logger.info(
        "Order %s cancelled type=%s penalty=%s refund=%s",
        order.id,
        quote.cancellation_type.value,
        quote.penalty,
        quote.refund,
    )
    return CancellationResult(order=order, quote=quote)


# =============================================================================
# Preparation and delivery
# =============================================================================


def update_status(
    db: Session,
    principal: Principal,
    order_id: UUID,
    status: str | OrderStatus,
    *,
    message: str | None = None,
    location: dict | None = None,
    proof: str | None = None,
) -> Order:
    """StartPrep, MarkReady, MarkPickup, StartDelivery or MarkDelivered."""
    target = _status_value(status)
    rule = STATUS_UPDATE_RULES.get(target)
    if not rule:
        raise InvalidRequest(
            f"Status {target} cannot be set directly",
            {"status": f"must be one of {', '.join(STATUS_UPDATE_RULES)}"},
        )
    required_status, role = rule
    if not principal.is_admin and principal.role != role:
        raise Forbidden(f"Only a {role.value} can set status {target}")

    order = lock_order(db, order_id)
    ensure_participant(order, principal)
    ensure_state(order, {required_status}, f"move order to {target}")
    if target == OrderStatus.DELIVERED.value and not proof:
        raise InvalidRequest("Delivery proof is required", {"proof": "required for delivered"})

    now = utcnow()
    if target == OrderStatus.PICKED_UP.value:
        order.pickup_time = now
    elif target == OrderStatus.OUT_FOR_DELIVERY.value:
        order.delivery_started_at = now
    elif target == OrderStatus.DELIVERED.value:
        order.delivered_at = now
        order.delivery_proof = proof
        if order.payment_status == PaymentStatus.AUTHORIZED.value:
            order.payment_status = PaymentStatus.COMPLETED.value

    previous = _move(db, order, OrderStatus(target), principal, message, location)
    if target == OrderStatus.DELIVERED.value:
        event = event_service.record_event(
            db,
            order,
            WebhookEvent.ORDER_DELIVERED.value,
            {"order_id": str(order.id), "delivered_at": now.isoformat()},
        )
    else:
        event = event_service.record_event(
            db,
            order,
            WebhookEvent.ORDER_STATUS_CHANGED.value,
            {"order_id": str(order.id), "from": previous, "to": target, "at": now.isoformat()},
        )
    event_service.commit_and_publish(db, [event])
    db.refresh(order)
    return order


def accept_delivery(db: Session, principal: Principal, order_id: UUID) -> Order:
    """AssignDelivery: the accepting partner becomes the order's delivery partner."""
    order = lock_order(db, order_id)
    ensure_state(order, {OrderStatus.READY_FOR_PICKUP.value}, "assign delivery")

    now = utcnow()
    order.delivery_partner_id = principal.user_id
    order.delivery_accepted_at = now
    _move(db, order, OrderStatus.ASSIGNED_TO_DELIVERY, principal, "Delivery partner assigned")
    event = event_service.record_event(
        db,
        order,
        WebhookEvent.DELIVERY_ASSIGNED.value,
        {"order_id": str(order.id), "delivery_id": str(principal.user_id)},
    )
    event_service.commit_and_publish(db, [event])
    db.refresh(order)
    return order


# =============================================================================
# Payment collaborator callback
# =============================================================================


def apply_payment_result(
    db: Session,
    order_id: UUID,
    payment_id: str,
    succeeded: bool,
    amount: float | None = None,
    error_message: str | None = None,
) -> Order:
    order = lock_order(db, order_id)
    if order.payment_id and order.payment_id != payment_id:
        raise InvalidRequest("Payment does not belong to this order", {"payment_id": "mismatch"})

    order.payment_id = payment_id
    order.updated_at = utcnow()
    if succeeded:
        order.payment_status = PaymentStatus.COMPLETED.value
        kind = WebhookEvent.PAYMENT_SUCCESS.value
        data: dict[str, Any] = {
            "payment_id": payment_id,
            "order_id": str(order.id),
            "amount": money(amount if amount is not None else order.total_amount),
        }
    else:
        order.payment_status = PaymentStatus.FAILED.value
        kind = WebhookEvent.PAYMENT_FAILED.value
        data = {
            "payment_id": payment_id,
            "order_id": str(order.id),
            "error_message": error_message or "payment failed",
        }
    event = event_service.record_event(db, order, kind, data)
    event_service.commit_and_publish(db, [event])
    db.refresh(order)
    return order


# =============================================================================
# Queries
# =============================================================================


def get_order(db: Session, principal: Principal, order_id: UUID) -> Order:
    order = db.execute(
        select(Order).options(selectinload(Order.items)).where(Order.id == order_id)
    ).scalar_one_or_none()
    if not order:
        raise NotFound("Order not found")
    ensure_participant(order, principal)
    return order


def list_orders(
    db: Session,
    principal: Principal,
    *,
    status: OrderStatus | None = None,
    page: int = 1,
    per_page: int = 20,
) -> tuple[list[Order], int]:
    query = select(Order)
    if principal.role == Role.CUSTOMER:
        query = query.where(Order.customer_id == principal.user_id)
    elif principal.role == Role.CHEF:
        query = query.where(Order.chef_id == principal.user_id)
    elif principal.role == Role.DELIVERY:
        query = query.where(Order.delivery_partner_id == principal.user_id)
    if status:
        query = query.where(Order.status == status.value)

    total = db.scalar(select(func.count()).select_from(query.subquery())) or 0
    orders = db.execute(
        query.options(selectinload(Order.items))
        .order_by(Order.created_at.desc(), Order.id)
        .offset((page - 1) * per_page)
        .limit(per_page)
    ).scalars().all()
    return list(orders), total


def list_available_for_delivery(db: Session, limit: int = 50) -> list[Order]:
    return list(
        db.execute(
            select(Order)
            .options(selectinload(Order.items))
            .where(
                Order.status == OrderStatus.READY_FOR_PICKUP.value,
                Order.delivery_partner_id.is_(None),
            )
            .order_by(Order.updated_at)
            .limit(limit)
        ).scalars()
    )


def countdown_status(order: Order, now: datetime | None = None) -> dict[str, Any]:
    now = now or utcnow()
    policy: CancellationPolicy = order.policy
    window = (order.countdown_expiry - order.created_at).total_seconds()
    remaining = max((order.countdown_expiry - now).total_seconds(), 0.0)
    is_active = (
        order.can_cancel_free
        and order.status in COUNTDOWN_STATUSES
        and now <= order.countdown_expiry
    )
    if window > 0:
        progress = min(max((now - order.created_at).total_seconds() / window * 100, 0.0), 100.0)
    else:
        progress = 100.0
    return {
        "order_id": str(order.id),
        "is_active": is_active,
        "time_remaining": round(remaining, 3) if is_active else 0.0,
        "progress_pct": round(progress, 2),
        "can_cancel_free": is_active,
        "countdown_expiry": order.countdown_expiry.isoformat(),
        "penalty_after_expiry": cancellation_service.compute_penalty(
            order.total_amount, policy.penalty_rate, policy.min_penalty, policy.max_penalty
        ),
    }


def cancellation_info(order: Order, now: datetime | None = None) -> dict[str, Any]:
    now = now or utcnow()
    policy: CancellationPolicy = order.policy
    can_cancel = order.status in CANCELLABLE_STATUSES
    is_free = can_cancel and order.can_cancel_free and now <= order.countdown_expiry
    quote = cancellation_service.quote_cancellation(order.total_amount, policy, free=is_free)
    return {
        "order_id": str(order.id),
        "can_cancel": can_cancel,
        "is_free_cancellation": is_free,
        "time_since_placed": round((now - order.created_at).total_seconds(), 3),
        "free_cancellation_window": policy.free_window_seconds,
        "penalty_info": {
            "penalty_rate": policy.penalty_rate,
            "penalty_amount": quote.penalty,
            "refund_amount": quote.refund,
            "min_penalty": policy.min_penalty,
            "max_penalty": policy.max_penalty,
        },
    }


def status_history(db: Session, order_id: UUID) -> list[OrderStatusHistory]:
    return list(
        db.execute(
            select(OrderStatusHistory)
            .where(OrderStatusHistory.order_id == order_id)
            .order_by(OrderStatusHistory.sequence)
        ).scalars()
    )


def recoverable_countdowns(db: Session) -> list[tuple[datetime, UUID]]:
    """Orders whose countdown expiry still has work to do, earliest first."""
    rows = db.execute(
        select(Order.countdown_expiry, Order.id)
        .where(
            or_(
                Order.can_cancel_free.is_(True),
                Order.status == OrderStatus.PAYMENT_CONFIRMED.value,
            )
        )
        .order_by(Order.countdown_expiry, Order.id)
    ).all()
    return [(row[0], row[1]) for row in rows]
