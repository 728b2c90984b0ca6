"""Pydantic schemas for the cancellation policy and analytics."""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


class PolicyRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    version: int
    free_window_seconds: int
    penalty_rate: float
    min_penalty: float
    max_penalty: float
    description: str | None
    is_active: bool
    updated_by: UUID | None
    created_at: datetime
    updated_at: datetime


class PolicyUpdate(BaseModel):
    """Partial update; omitted fields carry over from the active version."""
    free_window_seconds: int | None = Field(None, ge=0, le=300)
    penalty_rate: float | None = Field(None, ge=0, le=1)
    min_penalty: float | None = Field(None, ge=0)
    max_penalty: float | None = Field(None, ge=0)
    description: str | None = Field(None, max_length=500)

    @model_validator(mode="after")
    def _check_bounds(self):
        if (
            self.min_penalty is not None
            and self.max_penalty is not None
            and self.min_penalty > self.max_penalty
        ):
            raise ValueError("min_penalty must be less than or equal to max_penalty")
        return self


class AnalyticsDay(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    day: date
    total_orders: int
    total_cancellations: int
    free_cancellations: int
    penalty_cancellations: int
    total_penalty_collected: float
    avg_seconds_to_cancel: float
