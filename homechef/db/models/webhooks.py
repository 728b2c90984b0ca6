"""Webhook endpoint and delivery log models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from homechef.core.clock import utcnow
from homechef.db.base import Base
from homechef.db.enums import DeliveryStatus
from homechef.db.types import EncryptedString, JSONType


class WebhookEndpoint(Base):
    """
    Third-party subscriber for order events.

    The shared secret is Fernet-encrypted at rest so the dispatcher can
    recover the plaintext for signing.
    """

    __tablename__ = "webhook_endpoints"
    __table_args__ = (Index("idx_webhook_endpoints_owner", "owner_id", "created_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    events: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    secret: Mapped[str] = mapped_column(EncryptedString, nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False)
    base_delay_seconds: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    deliveries: Mapped[list["WebhookDelivery"]] = relationship(back_populates="endpoint")

    def subscribes_to(self, event_type: str) -> bool:
        return self.is_active and self.deleted_at is None and event_type in (self.events or [])


class WebhookDelivery(Base):
    """
    One event sent to one endpoint, with its retry state.

    next_retry_at is set exactly while the delivery is pending. claimed_by /
    claimed_at reserve the row for a single dispatcher worker.
    """

    __tablename__ = "webhook_deliveries"
    __table_args__ = (
        Index("idx_webhook_deliveries_due", "status", "next_retry_at"),
        Index("idx_webhook_deliveries_endpoint", "webhook_id", "created_at"),
        Index("idx_webhook_deliveries_order", "order_id", "sequence"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    webhook_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("webhook_endpoints.id", ondelete="CASCADE"), nullable=False
    )
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    order_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    sequence: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DeliveryStatus.PENDING.value
    )
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    response_status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    next_retry_at: Mapped[datetime | None] = mapped_column(nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    claimed_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    endpoint: Mapped[WebhookEndpoint] = relationship(back_populates="deliveries")
