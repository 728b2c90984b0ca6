"""Pydantic schemas for API request/response models."""

from homechef.schemas.auth import Principal
from homechef.schemas.common import Envelope, ok
from homechef.schemas.order import (
    CancelRequest,
    CancellationResponse,
    ChefAcceptRequest,
    ChefDeclineRequest,
    CountdownStatus,
    OrderCreate,
    OrderItemCreate,
    OrderRead,
    StatusUpdateRequest,
)
from homechef.schemas.payment import PaymentCallback, TipSettlement
from homechef.schemas.policy import AnalyticsDay, PolicyRead, PolicyUpdate
from homechef.schemas.tip import TipCreate, TipRead
from homechef.schemas.webhook import (
    DeliveryRead,
    EventCatalogueEntry,
    WebhookCreate,
    WebhookCreated,
    WebhookRead,
    WebhookUpdate,
)

__all__ = [
    "AnalyticsDay",
    "CancelRequest",
    "CancellationResponse",
    "ChefAcceptRequest",
    "ChefDeclineRequest",
    "CountdownStatus",
    "DeliveryRead",
    "Envelope",
    "EventCatalogueEntry",
    "OrderCreate",
    "OrderItemCreate",
    "OrderRead",
    "PaymentCallback",
    "PolicyRead",
    "PolicyUpdate",
    "Principal",
    "StatusUpdateRequest",
    "TipCreate",
    "TipRead",
    "TipSettlement",
    "WebhookCreate",
    "WebhookCreated",
    "WebhookRead",
    "WebhookUpdate",
    "ok",
]
