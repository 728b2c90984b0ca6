"""Pydantic schemas for payment collaborator callbacks."""

from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field


class PaymentCallback(BaseModel):
    payment_id: str = Field(..., min_length=1, max_length=100)
    order_id: UUID
    status: Literal["success", "failed"]
    amount: float | None = Field(None, ge=0)
    error_message: str | None = Field(None, max_length=500)


class TipSettlement(BaseModel):
    status: Literal["completed", "failed"]
    transfer_id: str | None = Field(None, max_length=100)
