"""Time slot Pydantic schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


class CreateTimeSlotRequest(BaseModel):
    """Request schema for creating a time slot."""

    tour_id: UUID = Field(..., description="Tour the slot belongs to")
    starts_at: datetime = Field(..., description="Start time (ISO 8601)")
    ends_at: datetime = Field(..., description="End time (ISO 8601)")
    capacity_total: int = Field(..., ge=0, le=10000, description="Total number of spots")

    @model_validator(mode="after")
    def check_times(self) -> "CreateTimeSlotRequest":
        if self.ends_at <= self.starts_at:
            raise ValueError("ends_at must be after starts_at")
        return self


class TimeSlotRequest(BaseModel):
    """Request schema for operations addressed to a single time slot."""

    time_slot_id: UUID = Field(..., description="Time slot to act on")


class TimeSlot(BaseModel):
    """Time slot response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tour_id: UUID
    starts_at: datetime
    ends_at: datetime
    capacity_total: int
    committed: int
    version: int

    @computed_field
    @property
    def available(self) -> int:
        return self.capacity_total - self.committed
