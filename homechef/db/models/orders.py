"""Order lifecycle models: orders, items, status history, tips, policy, analytics."""

from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from homechef.core.clock import utcnow
from homechef.db.base import Base
from homechef.db.enums import OrderStatus, RefundStatus, TipStatus
from homechef.db.types import JSONType, Money


class CancellationPolicy(Base):
    """
    Versioned free-cancellation policy.

    Exactly one row is active. Updates insert a new version and deactivate
    the previous one, so orders keep pointing at the policy in force when
    they were placed.
    """

    __tablename__ = "cancellation_policies"
    __table_args__ = (
        Index(
            "uq_cancellation_policy_active",
            "is_active",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
        CheckConstraint(
            "free_window_seconds >= 0 AND free_window_seconds <= 300",
            name="ck_policy_window",
        ),
        CheckConstraint("penalty_rate >= 0 AND penalty_rate <= 1", name="ck_policy_rate"),
        CheckConstraint("min_penalty <= max_penalty", name="ck_policy_bounds"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    free_window_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    penalty_rate: Mapped[float] = mapped_column(Float, nullable=False)
    min_penalty: Mapped[float] = mapped_column(Money, nullable=False)
    max_penalty: Mapped[float] = mapped_column(Money, nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    updated_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class Order(Base):
    """A customer order moving through the lifecycle state machine."""

    __tablename__ = "orders"
    __table_args__ = (
        Index("idx_orders_customer", "customer_id", "created_at"),
        Index("idx_orders_chef", "chef_id", "created_at"),
        Index("idx_orders_delivery_partner", "delivery_partner_id"),
        Index("idx_orders_countdown", "can_cancel_free", "countdown_expiry"),
        Index("idx_orders_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    customer_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    chef_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    delivery_partner_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=OrderStatus.PAYMENT_CONFIRMED.value
    )

    # Money
    subtotal: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    delivery_fee: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    tax_amount: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    total_amount: Mapped[float] = mapped_column(Money, nullable=False)
    tip_amount: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    penalty_amount: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    refund_amount: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    refund_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RefundStatus.NONE.value
    )

    # Payment (authorised by the payment collaborator before placement)
    payment_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(30), nullable=True)
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False)

    delivery_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    special_instructions: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Free-cancellation countdown (policy captured at placement)
    cancellation_policy_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("cancellation_policies.id"), nullable=False
    )
    countdown_expiry: Mapped[datetime] = mapped_column(nullable=False)
    can_cancel_free: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Phase timestamps
    sent_to_chef_at: Mapped[datetime | None] = mapped_column(nullable=True)
    chef_accepted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    chef_declined_at: Mapped[datetime | None] = mapped_column(nullable=True)
    decline_reason: Mapped[str | None] = mapped_column(String(50), nullable=True)
    estimated_prep_time: Mapped[int | None] = mapped_column(Integer, nullable=True)
    estimated_delivery_time: Mapped[datetime | None] = mapped_column(nullable=True)
    delivery_accepted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    pickup_time: Mapped[datetime | None] = mapped_column(nullable=True)
    delivery_started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(nullable=True)
    delivery_proof: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Cancellation outcome
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String(50), nullable=True)
    cancellation_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancellation_type: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Per-order event sequence (monotonic, assigned inside the transaction)
    event_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.created_at"
    )
    policy: Mapped[CancellationPolicy] = relationship()

    def participant_ids(self) -> set[uuid.UUID]:
        ids = {self.customer_id, self.chef_id}
        if self.delivery_partner_id:
            ids.add(self.delivery_partner_id)
        return ids


class OrderItem(Base):
    """Line item, created with its order and never changed afterwards."""

    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_items_quantity"),
        CheckConstraint("unit_price >= 0", name="ck_order_items_price"),
        Index("idx_order_items_order", "order_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    dish_id: Mapped[str] = mapped_column(String(100), nullable=False)
    dish_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[float] = mapped_column(Money, nullable=False)
    special_instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    order: Mapped[Order] = relationship(back_populates="items")


class OrderStatusHistory(Base):
    """Append-only log of status transitions."""

    __tablename__ = "order_status_history"
    __table_args__ = (Index("idx_order_status_history_order", "order_id", "sequence"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    from_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    actor_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)  # None = system
    actor_role: Mapped[str | None] = mapped_column(String(20), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class Tip(Base):
    """Tip for the chef or the delivery partner; one per (order, recipient kind)."""

    __tablename__ = "tips"
    __table_args__ = (
        UniqueConstraint("order_id", "recipient_type", name="uq_tips_order_recipient"),
        CheckConstraint("amount >= 10 AND amount <= 500", name="ck_tips_amount"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    recipient_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    recipient_type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[float] = mapped_column(Money, nullable=False)
    message: Mapped[str | None] = mapped_column(String(200), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TipStatus.PENDING.value
    )
    transfer_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class CancellationAnalytics(Base):
    """Per-day cancellation counters, upserted incrementally."""

    __tablename__ = "cancellation_analytics"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    day: Mapped[date] = mapped_column(Date, nullable=False, unique=True)
    total_orders: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_cancellations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    free_cancellations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    penalty_cancellations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_penalty_collected: Mapped[float] = mapped_column(Money, nullable=False, default=0)
    total_seconds_to_cancel: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    avg_seconds_to_cancel: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
