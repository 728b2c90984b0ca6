"""Webhook delivery queue - staging, claiming, outcome recording and cleanup."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.orm import Session

from homechef.core.clock import utcnow
from homechef.core.config import settings
from homechef.db.enums import DeliveryStatus
from homechef.db.models import WebhookDelivery, WebhookEndpoint

logger = logging.getLogger(__name__)

RESPONSE_BODY_LIMIT = 1000


def build_payload(
    event_type: str,
    data: dict[str, Any],
    occurred_at: datetime,
    webhook_id: UUID,
    delivery_id: UUID,
) -> dict[str, Any]:
    """Wire payload shared by every attempt of a delivery."""
    return {
        "event": event_type,
        "data": data,
        "timestamp": occurred_at.isoformat(),
        "webhook_id": str(webhook_id),
        "delivery_id": str(delivery_id),
    }


def backoff_delay(base_delay_seconds: int, attempt_count: int) -> timedelta:
    """base * 2^(attempt-1), capped at WEBHOOK_MAX_DELAY_SEC."""
    exponent = max(attempt_count - 1, 0)
    seconds = min(base_delay_seconds * (2**exponent), settings.WEBHOOK_MAX_DELAY_SEC)
    return timedelta(seconds=seconds)


def subscribed_endpoints(db: Session, event_type: str) -> list[WebhookEndpoint]:
    endpoints = db.execute(
        select(WebhookEndpoint)
        .where(
            WebhookEndpoint.is_active.is_(True),
            WebhookEndpoint.deleted_at.is_(None),
        )
        .order_by(WebhookEndpoint.created_at, WebhookEndpoint.id)
    ).scalars()
    return [e for e in endpoints if e.subscribes_to(event_type)]


def stage_deliveries(
    db: Session,
    event_type: str,
    data: dict[str, Any],
    occurred_at: datetime,
    *,
    order_id: UUID | None = None,
    sequence: int | None = None,
) -> list[WebhookDelivery]:
    """
    Insert one pending delivery per subscribed endpoint.

    Runs inside the caller's transaction so deliveries commit together with
    the state change that produced the event.
    """
    deliveries = []
    for endpoint in subscribed_endpoints(db, event_type):
        deliveries.append(
            _new_delivery(db, endpoint, event_type, data, occurred_at, order_id, sequence)
        )
    return deliveries


def stage_test_delivery(db: Session, endpoint: WebhookEndpoint, data: dict[str, Any], event_type: str) -> WebhookDelivery:
    """Insert a delivery for one endpoint regardless of its subscriptions."""
    return _new_delivery(db, endpoint, event_type, data, utcnow(), None, None)


def _new_delivery(
    db: Session,
    endpoint: WebhookEndpoint,
    event_type: str,
    data: dict[str, Any],
    occurred_at: datetime,
    order_id: UUID | None,
    sequence: int | None,
) -> WebhookDelivery:
    now = utcnow()
    delivery_id = uuid.uuid4()
    delivery = WebhookDelivery(
        id=delivery_id,
        webhook_id=endpoint.id,
        event_type=event_type,
        order_id=order_id,
        sequence=sequence,
        payload=build_payload(event_type, data, occurred_at, endpoint.id, delivery_id),
        status=DeliveryStatus.PENDING.value,
        attempt_count=0,
        next_retry_at=now,
        created_at=now,
        updated_at=now,
    )
    db.add(delivery)
    return delivery


# =============================================================================
# Claims
# =============================================================================


def _claimable(now: datetime):
    cutoff = now - timedelta(seconds=settings.webhook_claim_ttl_sec)
    return and_(
        WebhookDelivery.status == DeliveryStatus.PENDING.value,
        WebhookDelivery.next_retry_at <= now,
        or_(WebhookDelivery.claimed_by.is_(None), WebhookDelivery.claimed_at < cutoff),
    )


def claim_delivery(db: Session, delivery_id: UUID, worker_id: str) -> bool:
    """
    Atomically reserve a due delivery for worker_id.

    Returns False when the delivery is not pending, not yet due, or held by
    another worker whose claim has not expired.
    """
    now = utcnow()
    result = db.execute(
        update(WebhookDelivery)
        .where(WebhookDelivery.id == delivery_id, _claimable(now))
        .values(claimed_by=worker_id, claimed_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def claim_due_deliveries(db: Session, worker_id: str, limit: int = 100) -> list[UUID]:
    """Claim up to limit due deliveries, oldest first."""
    now = utcnow()
    candidates = db.execute(
        select(WebhookDelivery.id)
        .where(_claimable(now))
        .order_by(WebhookDelivery.next_retry_at, WebhookDelivery.created_at)
        .limit(limit)
    ).scalars().all()

    claimed = []
    for delivery_id in candidates:
        result = db.execute(
            update(WebhookDelivery)
            .where(WebhookDelivery.id == delivery_id, _claimable(now))
            .values(claimed_by=worker_id, claimed_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            claimed.append(delivery_id)
    db.commit()
    return claimed


# =============================================================================
# Outcomes
# =============================================================================


def _truncate(body: str | None) -> str | None:
    if body is None:
        return None
    return body[:RESPONSE_BODY_LIMIT]


def mark_delivery_succeeded(
    db: Session,
    delivery: WebhookDelivery,
    status_code: int,
    body: str | None,
) -> WebhookDelivery:
    """Record a 2xx response: terminal success."""
    now = utcnow()
    delivery.attempt_count += 1
    delivery.status = DeliveryStatus.SUCCESS.value
    delivery.response_status = status_code
    delivery.response_body = _truncate(body)
    delivery.error_message = None
    delivery.delivered_at = now
    delivery.next_retry_at = None
    delivery.claimed_by = None
    delivery.claimed_at = None
    delivery.updated_at = now
    db.commit()
    db.refresh(delivery)
    return delivery


def mark_delivery_failed(
    db: Session,
    delivery: WebhookDelivery,
    error: str,
    *,
    max_attempts: int,
    base_delay_seconds: int,
    status_code: int | None = None,
    body: str | None = None,
) -> WebhookDelivery:
    """
    Record a failed attempt.

    If attempts remain, reschedule with exponential backoff and stay pending.
    """
    now = utcnow()
    delivery.attempt_count += 1
    delivery.response_status = status_code
    delivery.response_body = _truncate(body)
    delivery.error_message = error
    delivery.claimed_by = None
    delivery.claimed_at = None
    delivery.updated_at = now
    if delivery.attempt_count < max_attempts:
        delivery.next_retry_at = now + backoff_delay(base_delay_seconds, delivery.attempt_count)
    else:
        delivery.status = DeliveryStatus.FAILED.value
        delivery.next_retry_at = None
        delivery.failed_at = now
    db.commit()
    db.refresh(delivery)
    return delivery


def abandon_delivery(db: Session, delivery: WebhookDelivery, reason: str) -> WebhookDelivery:
    """Fail a pending delivery without attempting it."""
    now = utcnow()
    delivery.status = DeliveryStatus.FAILED.value
    delivery.error_message = reason
    delivery.next_retry_at = None
    delivery.failed_at = now
    delivery.claimed_by = None
    delivery.claimed_at = None
    delivery.updated_at = now
    db.commit()
    db.refresh(delivery)
    return delivery


def abandon_pending_for_endpoint(db: Session, webhook_id: UUID, reason: str) -> int:
    """Fail every pending delivery of an endpoint (caller commits)."""
    now = utcnow()
    result = db.execute(
        update(WebhookDelivery)
        .where(
            WebhookDelivery.webhook_id == webhook_id,
            WebhookDelivery.status == DeliveryStatus.PENDING.value,
        )
        .values(
            status=DeliveryStatus.FAILED.value,
            error_message=reason,
            next_retry_at=None,
            failed_at=now,
            claimed_by=None,
            claimed_at=None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def reset_for_retry(db: Session, delivery: WebhookDelivery) -> WebhookDelivery:
    """Operator retry: failed -> pending with a fresh attempt budget, due now."""
    now = utcnow()
    delivery.status = DeliveryStatus.PENDING.value
    delivery.attempt_count = 0
    delivery.next_retry_at = now
    delivery.failed_at = None
    delivery.error_message = None
    delivery.response_status = None
    delivery.response_body = None
    delivery.claimed_by = None
    delivery.claimed_at = None
    delivery.updated_at = now
    db.commit()
    db.refresh(delivery)
    return delivery


def purge_old_deliveries(db: Session, retention_days: int | None = None) -> int:
    """Delete terminal deliveries older than the retention window."""
    days = retention_days if retention_days is not None else settings.WEBHOOK_LOG_RETENTION_DAYS
    cutoff = utcnow() - timedelta(days=days)
    result = db.execute(
        delete(WebhookDelivery)
        .where(
            WebhookDelivery.status.in_(
                [DeliveryStatus.SUCCESS.value, DeliveryStatus.FAILED.value]
            ),
            WebhookDelivery.created_at < cutoff,
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount:
        logger.info("Purged %s webhook deliveries older than %s days", result.rowcount, days)
    return result.rowcount
