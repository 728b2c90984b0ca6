"""Pydantic schemas for orders."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from homechef.db.enums import CancellationReason, DeclineReason, OrderStatus


class OrderItemCreate(BaseModel):
    dish_id: str = Field(..., min_length=1, max_length=100)
    dish_name: str | None = Field(None, max_length=255)
    quantity: int = Field(..., ge=1)
    unit_price: float = Field(..., ge=0)
    special_instructions: str | None = Field(None, max_length=500)


class OrderCreate(BaseModel):
    """Place an order (payment already authorised by the payment collaborator)."""
    chef_id: UUID
    items: list[OrderItemCreate] = Field(..., min_length=1)
    delivery_address: str | None = Field(None, max_length=1000)
    special_instructions: str | None = Field(None, max_length=1000)
    payment_id: str | None = Field(None, max_length=100)
    payment_method: str | None = Field(None, max_length=30)


class CancelRequest(BaseModel):
    reason: CancellationReason = CancellationReason.CUSTOMER_REQUEST
    notes: str | None = Field(None, max_length=500)


class ChefAcceptRequest(BaseModel):
    estimated_preparation_time: int = Field(..., ge=5, le=120, description="Minutes")
    notes: str | None = Field(None, max_length=200)


class ChefDeclineRequest(BaseModel):
    reason: DeclineReason
    notes: str | None = Field(None, max_length=200)


class Location(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class StatusUpdateRequest(BaseModel):
    status: OrderStatus
    message: str | None = Field(None, max_length=200)
    location: Location | None = None
    proof: str | None = Field(None, max_length=2000)


class OrderItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    dish_id: str
    dish_name: str | None
    quantity: int
    unit_price: float
    special_instructions: str | None


class OrderRead(BaseModel):
    """Full order response."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    customer_id: UUID
    chef_id: UUID
    delivery_partner_id: UUID | None
    status: OrderStatus

    subtotal: float
    delivery_fee: float
    tax_amount: float
    total_amount: float
    tip_amount: float
    penalty_amount: float
    refund_amount: float
    refund_status: str
    payment_status: str
    payment_method: str | None

    delivery_address: str | None
    special_instructions: str | None

    cancellation_policy_id: UUID
    countdown_expiry: datetime
    can_cancel_free: bool

    sent_to_chef_at: datetime | None
    chef_accepted_at: datetime | None
    chef_declined_at: datetime | None
    decline_reason: str | None
    estimated_prep_time: int | None
    estimated_delivery_time: datetime | None
    delivery_accepted_at: datetime | None
    pickup_time: datetime | None
    delivery_started_at: datetime | None
    delivered_at: datetime | None

    cancelled_at: datetime | None
    cancellation_reason: str | None
    cancellation_type: str | None

    event_seq: int
    created_at: datetime
    updated_at: datetime

    items: list[OrderItemRead] = []


class CancellationResponse(BaseModel):
    type: str
    penalty: float
    refund: float
    refund_timeline: str
    order: OrderRead


class CountdownStatus(BaseModel):
    order_id: UUID
    is_active: bool
    time_remaining: float
    progress_pct: float
    can_cancel_free: bool
    countdown_expiry: datetime
    penalty_after_expiry: float
