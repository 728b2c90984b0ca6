"""Webhooks router - endpoint management, delivery log, test-fire and retry."""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from homechef.core.deps import get_current_principal, get_db
from homechef.core.rate_limit import WRITE_LIMIT, limiter
from homechef.db.enums import DeliveryStatus
from homechef.jobs.dispatcher import dispatcher
from homechef.schemas.auth import Principal
from homechef.schemas.common import ok
from homechef.schemas.webhook import (
    DeliveryRead,
    EventCatalogueEntry,
    WebhookCreate,
    WebhookCreated,
    WebhookRead,
    WebhookUpdate,
)
from homechef.services import webhook_service
from homechef.utils.pagination import PaginatedResponse, PaginationParams, get_limit_pagination

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])
logger = logging.getLogger(__name__)


def _delivery_page(
    db: Session,
    principal: Principal,
    pagination: PaginationParams,
    *,
    webhook_id: UUID | None,
    event_type: str | None,
    status: DeliveryStatus | None,
) -> dict:
    deliveries, total = webhook_service.list_deliveries(
        db,
        principal,
        webhook_id=webhook_id,
        event_type=event_type,
        status=status,
        page=pagination.page,
        limit=pagination.per_page,
    )
    items = [DeliveryRead.model_validate(d).model_dump(mode="json") for d in deliveries]
    return PaginatedResponse.create(items, total, pagination).as_dict()


@router.get("/events")
def list_events():
    """Every event kind an endpoint can subscribe to, with its data fields."""
    return ok([EventCatalogueEntry(**e) for e in webhook_service.list_event_catalogue()])


# =============================================================================
# Delivery log (declared before /{webhook_id} so the paths do not collide)
# =============================================================================


@router.get("/deliveries")
def list_deliveries(
    webhook_id: UUID | None = None,
    event_type: str | None = None,
    status: DeliveryStatus | None = None,
    pagination: PaginationParams = Depends(get_limit_pagination),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return ok(
        _delivery_page(
            db,
            principal,
            pagination,
            webhook_id=webhook_id,
            event_type=event_type,
            status=status,
        )
    )


@router.get("/deliveries/{delivery_id}")
def get_delivery(
    delivery_id: UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    delivery = webhook_service.get_delivery(db, principal, delivery_id)
    return ok(DeliveryRead.model_validate(delivery))


@router.post("/deliveries/{delivery_id}/retry")
def retry_delivery(
    delivery_id: UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Put a failed delivery back in the queue with a fresh attempt budget."""
    delivery = webhook_service.retry_delivery(db, principal, delivery_id)
    if not dispatcher.enqueue(delivery.id):
        logger.info("Delivery %s will be picked up by the next sweep", delivery.id)
    return ok(DeliveryRead.model_validate(delivery), "Delivery queued for retry")


# =============================================================================
# Endpoints
# =============================================================================


@router.post("", status_code=201)
@limiter.limit(WRITE_LIMIT)
def create_webhook(
    request: Request,
    body: WebhookCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Register an endpoint. The signing secret is only ever returned here."""
    endpoint, secret = webhook_service.create_endpoint(
        db,
        principal.user_id,
        url=body.url,
        events=body.events,
        description=body.description,
        max_attempts=body.max_attempts,
        base_delay_seconds=body.base_delay_seconds,
    )
    created = WebhookCreated(
        **WebhookRead.model_validate(endpoint).model_dump(), secret=secret
    )
    return ok(created, "Webhook created")


@router.get("")
def list_webhooks(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    endpoints = webhook_service.list_endpoints(db, principal)
    return ok([WebhookRead.model_validate(e) for e in endpoints])


@router.get("/{webhook_id}")
def get_webhook(
    webhook_id: UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    endpoint = webhook_service.get_endpoint(db, principal, webhook_id)
    return ok(WebhookRead.model_validate(endpoint))


@router.put("/{webhook_id}")
def update_webhook(
    webhook_id: UUID,
    body: WebhookUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    endpoint = webhook_service.update_endpoint(
        db, principal, webhook_id, **body.model_dump(exclude_unset=True)
    )
    return ok(WebhookRead.model_validate(endpoint), "Webhook updated")


@router.delete("/{webhook_id}")
def delete_webhook(
    webhook_id: UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    abandoned = webhook_service.delete_endpoint(db, principal, webhook_id)
    return ok({"id": str(webhook_id), "abandoned_deliveries": abandoned}, "Webhook deleted")


@router.post("/{webhook_id}/test")
async def test_webhook(
    webhook_id: UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Fire a webhook.test event now and report how the receiver answered."""
    delivery = await run_in_threadpool(
        webhook_service.create_test_delivery, db, principal, webhook_id
    )
    delivery_id = delivery.id
    result = await dispatcher.dispatch(delivery_id)
    if result is None:
        db.expire_all()
        result = await run_in_threadpool(webhook_service.get_delivery, db, principal, delivery_id)
    return ok(DeliveryRead.model_validate(result), "Test delivery sent")


@router.get("/{webhook_id}/deliveries")
def list_webhook_deliveries(
    webhook_id: UUID,
    event_type: str | None = None,
    status: DeliveryStatus | None = None,
    pagination: PaginationParams = Depends(get_limit_pagination),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    webhook_service.get_endpoint(db, principal, webhook_id)
    return ok(
        _delivery_page(
            db,
            principal,
            pagination,
            webhook_id=webhook_id,
            event_type=event_type,
            status=status,
        )
    )
