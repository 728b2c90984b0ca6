"""Webhook endpoint management and the owner-facing delivery log."""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from homechef.core.clock import utcnow
from homechef.core.config import settings
from homechef.core.errors import Conflict, InvalidRequest, NotFound
from homechef.core.signing import generate_secret
from homechef.core.url_validation import validate_outbound_webhook_url
from homechef.db.enums import EVENT_CATALOGUE, TEST_EVENT, DeliveryStatus, WebhookEvent
from homechef.db.models import WebhookDelivery, WebhookEndpoint
from homechef.jobs.utils import safe_url
from homechef.schemas.auth import Principal
from homechef.services import delivery_service

logger = logging.getLogger(__name__)


def list_event_catalogue() -> list[dict]:
    return [
        {"event": event.value, "description": description, "data_fields": list(fields)}
        for event, (description, fields) in EVENT_CATALOGUE.items()
    ]


def _validate_url(url: str) -> str:
    try:
        return validate_outbound_webhook_url(url)
    except ValueError as exc:
        raise InvalidRequest(str(exc), {"url": str(exc)})


def _validate_events(events: list[str]) -> list[str]:
    if not events:
        raise InvalidRequest("At least one event is required", {"events": "must not be empty"})
    unknown = [e for e in events if not WebhookEvent.has_value(e)]
    if unknown:
        raise InvalidRequest(
            f"Unknown events: {', '.join(unknown)}",
            {"events": f"unknown event(s): {', '.join(unknown)}"},
        )
    # Preserve the caller's order, drop duplicates.
    return list(dict.fromkeys(events))


def _validate_retry_policy(max_attempts: int | None, base_delay_seconds: int | None) -> None:
    if max_attempts is not None and not 1 <= max_attempts <= 10:
        raise InvalidRequest("max_attempts out of range", {"max_attempts": "must be 1-10"})
    if base_delay_seconds is not None and not 1 <= base_delay_seconds <= 3600:
        raise InvalidRequest(
            "base_delay_seconds out of range", {"base_delay_seconds": "must be 1-3600"}
        )


# =============================================================================
# Endpoints
# =============================================================================


def create_endpoint(
    db: Session,
    owner_id: UUID,
    *,
    url: str,
    events: list[str],
    description: str | None = None,
    max_attempts: int | None = None,
    base_delay_seconds: int | None = None,
) -> tuple[WebhookEndpoint, str]:
    """
    Create an endpoint with a fresh 256-bit secret.

    Returns (endpoint, plaintext_secret). The plaintext is only available
    here; it is stored Fernet-encrypted.
    """
    normalized = _validate_url(url)
    event_list = _validate_events(events)
    _validate_retry_policy(max_attempts, base_delay_seconds)

    secret = generate_secret()
    now = utcnow()
    endpoint = WebhookEndpoint(
        owner_id=owner_id,
        url=normalized,
        events=event_list,
        secret=secret,
        description=description,
        is_active=True,
        max_attempts=max_attempts if max_attempts is not None else settings.WEBHOOK_MAX_RETRIES,
        base_delay_seconds=base_delay_seconds
        if base_delay_seconds is not None
        else settings.WEBHOOK_BASE_DELAY_SEC,
        created_at=now,
        updated_at=now,
    )
    db.add(endpoint)
    db.commit()
    db.refresh(endpoint)
    logger.info("Webhook endpoint %s created for %s", endpoint.id, safe_url(normalized))
    return endpoint, secret


def list_endpoints(db: Session, principal: Principal) -> list[WebhookEndpoint]:
    query = select(WebhookEndpoint).where(WebhookEndpoint.deleted_at.is_(None))
    if not principal.is_admin:
        query = query.where(WebhookEndpoint.owner_id == principal.user_id)
    return list(db.execute(query.order_by(WebhookEndpoint.created_at.desc())).scalars())


def get_endpoint(db: Session, principal: Principal, webhook_id: UUID) -> WebhookEndpoint:
    endpoint = db.get(WebhookEndpoint, webhook_id)
    if not endpoint or endpoint.deleted_at is not None:
        raise NotFound("Webhook not found")
    if not principal.is_admin and endpoint.owner_id != principal.user_id:
        raise NotFound("Webhook not found")
    return endpoint


def update_endpoint(
    db: Session,
    principal: Principal,
    webhook_id: UUID,
    *,
    url: str | None = None,
    events: list[str] | None = None,
    description: str | None = None,
    is_active: bool | None = None,
    max_attempts: int | None = None,
    base_delay_seconds: int | None = None,
) -> WebhookEndpoint:
    endpoint = get_endpoint(db, principal, webhook_id)
    _validate_retry_policy(max_attempts, base_delay_seconds)

    if url is not None:
        endpoint.url = _validate_url(url)
    if events is not None:
        endpoint.events = _validate_events(events)
    if description is not None:
        endpoint.description = description
    if is_active is not None:
        endpoint.is_active = is_active
    if max_attempts is not None:
        endpoint.max_attempts = max_attempts
    if base_delay_seconds is not None:
        endpoint.base_delay_seconds = base_delay_seconds
    endpoint.updated_at = utcnow()
    db.commit()
    db.refresh(endpoint)
    return endpoint


def delete_endpoint(db: Session, principal: Principal, webhook_id: UUID) -> int:
    """Soft-delete; pending deliveries are abandoned. Returns how many."""
    endpoint = get_endpoint(db, principal, webhook_id)
    now = utcnow()
    endpoint.deleted_at = now
    endpoint.is_active = False
    endpoint.updated_at = now
    abandoned = delivery_service.abandon_pending_for_endpoint(
        db, endpoint.id, "Webhook endpoint deleted"
    )
    db.commit()
    logger.info("Webhook endpoint %s deleted, %s pending deliveries abandoned", endpoint.id, abandoned)
    return abandoned


# =============================================================================
# Deliveries
# =============================================================================


def list_deliveries(
    db: Session,
    principal: Principal,
    *,
    webhook_id: UUID | None = None,
    event_type: str | None = None,
    status: DeliveryStatus | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[WebhookDelivery], int]:
    query = select(WebhookDelivery).join(
        WebhookEndpoint, WebhookEndpoint.id == WebhookDelivery.webhook_id
    )
    if not principal.is_admin:
        query = query.where(WebhookEndpoint.owner_id == principal.user_id)
    if webhook_id:
        query = query.where(WebhookDelivery.webhook_id == webhook_id)
    if event_type:
        query = query.where(WebhookDelivery.event_type == event_type)
    if status:
        query = query.where(WebhookDelivery.status == status.value)

    total = db.scalar(select(func.count()).select_from(query.subquery())) or 0
    deliveries = db.execute(
        query.order_by(WebhookDelivery.created_at.desc(), WebhookDelivery.id)
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars().all()
    return list(deliveries), total


def get_delivery(db: Session, principal: Principal, delivery_id: UUID) -> WebhookDelivery:
    delivery = db.get(WebhookDelivery, delivery_id)
    if not delivery:
        raise NotFound("Delivery not found")
    endpoint = delivery.endpoint
    if not principal.is_admin and endpoint.owner_id != principal.user_id:
        raise NotFound("Delivery not found")
    return delivery


def retry_delivery(db: Session, principal: Principal, delivery_id: UUID) -> WebhookDelivery:
    """Operator retry of a failed delivery: back to pending with zero attempts."""
    delivery = get_delivery(db, principal, delivery_id)
    if delivery.status != DeliveryStatus.FAILED.value:
        raise Conflict(
            "Only failed deliveries can be retried", {"status": delivery.status}
        )
    if delivery.endpoint.deleted_at is not None:
        raise Conflict("Webhook endpoint has been deleted")
    delivery = delivery_service.reset_for_retry(db, delivery)
    logger.info("Delivery %s reset for retry by %s", delivery.id, principal.user_id)
    return delivery


def create_test_delivery(db: Session, principal: Principal, webhook_id: UUID) -> WebhookDelivery:
    endpoint = get_endpoint(db, principal, webhook_id)
    data = {
        "message": "This is a test delivery",
        "webhook_id": str(endpoint.id),
    }
    delivery = delivery_service.stage_test_delivery(db, endpoint, data, TEST_EVENT)
    db.commit()
    db.refresh(delivery)
    return delivery
