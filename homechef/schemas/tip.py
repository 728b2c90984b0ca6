"""Pydantic schemas for tips."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from homechef.db.enums import TipRecipient


class TipCreate(BaseModel):
    """Request to tip the chef or the delivery partner."""
    recipient_type: TipRecipient
    amount: float = Field(..., ge=10, le=500)
    message: str | None = Field(None, max_length=200)


class TipRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: UUID
    customer_id: UUID
    recipient_id: UUID
    recipient_type: str
    amount: float
    message: str | None
    status: str
    transfer_id: str | None
    processed_at: datetime | None
    created_at: datetime
    updated_at: datetime
