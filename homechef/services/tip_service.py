"""Tips: AddTip (idempotent per recipient kind) and settlement."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from homechef.core.clock import utcnow
from homechef.core.config import settings
from homechef.core.errors import (
    AlreadySettled,
    Forbidden,
    InvalidRequest,
    InvalidTransition,
    NotFound,
)
from homechef.db.enums import OrderStatus, TIPPABLE_STATUSES, TipRecipient, TipStatus, WebhookEvent
from homechef.db.models import Order, Tip
from homechef.schemas.auth import Principal
from homechef.services import event_service, order_service
from homechef.services.cancellation_service import money

logger = logging.getLogger(__name__)

MIN_TIP = 10.0
MAX_TIP = 500.0


def tip_blocker(order: Order, recipient_type: TipRecipient, now: datetime) -> str | None:
    """Reason the order cannot receive this kind of tip now, or None."""
    if order.status not in TIPPABLE_STATUSES:
        return f"order is {order.status}"
    if order.status == OrderStatus.DELIVERED.value and order.delivered_at:
        closes = order.delivered_at + timedelta(hours=settings.TIP_WINDOW_AFTER_DELIVERY_HOURS)
        if now > closes:
            return "tipping window after delivery has closed"
    if recipient_type == TipRecipient.DELIVERY and not order.delivery_partner_id:
        return "no delivery partner assigned"
    return None


def _recipient_id(order: Order, recipient_type: TipRecipient) -> UUID:
    if recipient_type == TipRecipient.CHEF:
        return order.chef_id
    return order.delivery_partner_id


def _existing_tip(db: Session, order_id: UUID, recipient_type: TipRecipient) -> Tip | None:
    return db.execute(
        select(Tip)
        .where(Tip.order_id == order_id, Tip.recipient_type == recipient_type.value)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def add_tip(
    db: Session,
    principal: Principal,
    order_id: UUID,
    recipient_type: TipRecipient,
    amount: float,
    message: str | None = None,
) -> Tip:
    """
    AddTip for the chef or the delivery partner.

    A second tip for the same recipient kind replaces the first while it is
    still pending; once settled it raises AlreadySettled.
    """
    if amount < MIN_TIP or amount > MAX_TIP:
        raise InvalidRequest(
            "Tip amount out of range",
            {"amount": f"must be between {MIN_TIP:g} and {MAX_TIP:g}"},
        )
    if message is not None and len(message) > 200:
        raise InvalidRequest("Tip message too long", {"message": "at most 200 characters"})

    order = order_service.lock_order(db, order_id)
    if order.customer_id != principal.user_id:
        raise Forbidden("Only the ordering customer can tip")

    now = utcnow()
    blocker = tip_blocker(order, recipient_type, now)
    if blocker:
        raise InvalidTransition(f"Cannot tip {recipient_type.value}: {blocker}", order.status)

    tip = _existing_tip(db, order.id, recipient_type)
    if tip and tip.status != TipStatus.PENDING.value:
        raise AlreadySettled(
            f"A {recipient_type.value} tip for this order is already {tip.status}",
            {"tip_id": str(tip.id), "status": tip.status},
        )

    if tip:
        tip.amount = money(amount)
        tip.message = message
        tip.recipient_id = _recipient_id(order, recipient_type)
        tip.updated_at = now
    else:
        tip = Tip(
            order_id=order.id,
            customer_id=principal.user_id,
            recipient_id=_recipient_id(order, recipient_type),
            recipient_type=recipient_type.value,
            amount=money(amount),
            message=message,
            status=TipStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        db.add(tip)
    db.commit()
    db.refresh(tip)
    return tip


def settle_tip(
    db: Session,
    tip_id: UUID,
    completed: bool,
    transfer_id: str | None = None,
) -> Tip:
    """Apply the payment collaborator's settlement result to a pending tip."""
    order_id = db.execute(select(Tip.order_id).where(Tip.id == tip_id)).scalar_one_or_none()
    if not order_id:
        raise NotFound("Tip not found")

    # Order row first, then the tip, the same order add_tip takes them in.
    order = order_service.lock_order(db, order_id)
    tip = db.execute(
        select(Tip).where(Tip.id == tip_id).with_for_update().execution_options(populate_existing=True)
    ).scalar_one()
    if tip.status != TipStatus.PENDING.value:
        raise AlreadySettled(f"Tip is already {tip.status}", {"status": tip.status})

    now = utcnow()
    tip.transfer_id = transfer_id
    tip.processed_at = now
    tip.updated_at = now

    events = []
    if completed:
        tip.status = TipStatus.COMPLETED.value
        order.tip_amount = money((order.tip_amount or 0) + tip.amount)
        order.updated_at = now
        events.append(
            event_service.record_event(
                db,
                order,
                WebhookEvent.TIP_RECEIVED.value,
                {
                    "tip_id": str(tip.id),
                    "order_id": str(order.id),
                    "recipient_id": str(tip.recipient_id),
                    "amount": tip.amount,
                },
            )
        )
    else:
        tip.status = TipStatus.FAILED.value
        logger.warning("Tip %s settlement failed for order %s", tip.id, order.id)

    event_service.commit_and_publish(db, events)
    db.refresh(tip)
    return tip


def list_tips(db: Session, order_id: UUID) -> list[Tip]:
    return list(
        db.execute(select(Tip).where(Tip.order_id == order_id).order_by(Tip.created_at)).scalars()
    )


def tipping_info(db: Session, order: Order, now: datetime | None = None) -> dict[str, Any]:
    now = now or utcnow()
    tips = {tip.recipient_type: tip for tip in list_tips(db, order.id)}

    def can_tip(kind: TipRecipient) -> bool:
        existing = tips.get(kind.value)
        if existing and existing.status != TipStatus.PENDING.value:
            return False
        return tip_blocker(order, kind, now) is None

    chef_tip = tips.get(TipRecipient.CHEF.value)
    delivery_tip = tips.get(TipRecipient.DELIVERY.value)
    return {
        "chef_tip": chef_tip.amount if chef_tip else None,
        "delivery_tip": delivery_tip.amount if delivery_tip else None,
        "can_tip_chef": can_tip(TipRecipient.CHEF),
        "can_tip_delivery": can_tip(TipRecipient.DELIVERY),
    }
