"""Tour-related Pydantic schemas."""

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .pricing import PricingConfiguration


class CreateTourRequest(BaseModel):
    """Request schema for creating a tour."""

    name: str = Field(..., min_length=1, max_length=255, description="Tour name")
    slug: str = Field(..., min_length=1, max_length=255, pattern=r"^[a-z0-9-]+$", description="URL-friendly slug")
    description: Optional[str] = Field(None, max_length=2000, description="Tour description")
    currency: Optional[str] = Field(None, pattern=r"^[A-Z]{3}$", description="ISO 4217 currency code")
    pricing: PricingConfiguration = Field(..., description="How bookings of this tour are priced")
    cancellation_policy_id: Optional[str] = Field(
        None, max_length=64, description="Named policy, e.g. flexible, strict or custom_48"
    )
    cancellation_window_hours: Optional[int] = Field(
        None, ge=0, description="Generates a window policy; overrides cancellation_policy_id"
    )
    provider_account_ref: Optional[str] = Field(
        None, max_length=255, description="Processor account receiving the provider's payouts"
    )


class GetTourRequest(BaseModel):
    """Request schema for getting a tour."""

    tour_id: UUID = Field(..., description="Tour to retrieve")


class Tour(BaseModel):
    """Tour response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(..., description="Unique tour ID")
    name: str = Field(..., description="Tour name")
    slug: str = Field(..., description="URL-friendly slug")
    description: Optional[str] = Field(None, description="Tour description")
    currency: str
    pricing: PricingConfiguration
    cancellation_policy_id: str
    cancellation_window_hours: Optional[int] = None
    provider_account_ref: Optional[str] = None
    cancellation_terms: list[str] = Field(default_factory=list, description="Customer-facing policy lines")
