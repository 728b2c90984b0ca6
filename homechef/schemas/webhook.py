"""Pydantic schemas for webhook endpoints and deliveries."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class WebhookCreate(BaseModel):
    url: str = Field(..., min_length=1, max_length=2048)
    events: list[str] = Field(..., min_length=1)
    description: str | None = Field(None, max_length=500)
    max_attempts: int | None = Field(None, ge=1, le=10)
    base_delay_seconds: int | None = Field(None, ge=1, le=3600)


class WebhookUpdate(BaseModel):
    url: str | None = Field(None, min_length=1, max_length=2048)
    events: list[str] | None = Field(None, min_length=1)
    description: str | None = Field(None, max_length=500)
    is_active: bool | None = None
    max_attempts: int | None = Field(None, ge=1, le=10)
    base_delay_seconds: int | None = Field(None, ge=1, le=3600)


class WebhookRead(BaseModel):
    """Endpoint as listed to its owner; never includes the secret."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_id: UUID
    url: str
    events: list[str]
    description: str | None
    is_active: bool
    max_attempts: int
    base_delay_seconds: int
    created_at: datetime
    updated_at: datetime


class WebhookCreated(WebhookRead):
    """Create response: the only time the plaintext secret is shown."""
    secret: str


class DeliveryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    webhook_id: UUID
    event_type: str
    order_id: UUID | None
    sequence: int | None
    payload: dict
    status: str
    attempt_count: int
    response_status: int | None
    response_body: str | None
    error_message: str | None
    next_retry_at: datetime | None
    delivered_at: datetime | None
    failed_at: datetime | None
    created_at: datetime
    updated_at: datetime


class EventCatalogueEntry(BaseModel):
    event: str
    description: str
    data_fields: list[str]
