"""Pricing configuration and price breakdown schemas."""

from decimal import Decimal
from typing import Annotated, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter, computed_field, model_validator


class ParticipantCategory(BaseModel):
    """A priced participant type such as adult, child or infant."""

    id: str = Field(..., min_length=1, max_length=64, description="Category identifier")
    label: str = Field(..., min_length=1, max_length=100, description="Display label")
    price: Decimal = Field(..., description="Unit price for one participant of this category")
    min_age: Optional[int] = Field(None, ge=0, description="Minimum age, inclusive")
    max_age: Optional[int] = Field(None, ge=0, description="Maximum age, inclusive")
    counts_toward_capacity: bool = Field(True, description="Whether this category occupies a spot")


class GroupPricingTier(BaseModel):
    """Flat price for a whole group whose size falls in [min, max]."""

    min_participants: int = Field(..., description="Smallest group size, inclusive")
    max_participants: int = Field(..., description="Largest group size, inclusive")
    price: Decimal = Field(..., description="Flat price for the group")


class GroupDiscountTier(BaseModel):
    """Discount applied to unit prices when the group size falls in [min, max]."""

    min_participants: int = Field(..., description="Smallest group size, inclusive")
    max_participants: int = Field(..., description="Largest group size, inclusive")
    discount_type: Literal["percentage", "fixed"] = Field(
        ..., description="percentage scales unit prices, fixed replaces them"
    )
    discount_value: Decimal = Field(..., description="Percentage off, or the replacement unit price")
    label: Optional[str] = Field(None, max_length=100)


class Addon(BaseModel):
    """Optional extra priced per participant."""

    id: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=100)
    price: Decimal = Field(..., description="Unit price per participant")
    required: bool = Field(False, description="Required add-ons are always included")


class PerPersonPricing(BaseModel):
    kind: Literal["per_person"] = "per_person"
    price_per_person: Decimal
    group_discounts: list[GroupDiscountTier] = Field(default_factory=list)
    addons: list[Addon] = Field(default_factory=list)


class ParticipantCategoryPricing(BaseModel):
    kind: Literal["participant_categories"] = "participant_categories"
    categories: list[ParticipantCategory] = Field(..., min_length=1)
    group_discounts: list[GroupDiscountTier] = Field(default_factory=list)
    addons: list[Addon] = Field(default_factory=list)


class GroupTierPricing(BaseModel):
    kind: Literal["group_tiers"] = "group_tiers"
    tiers: list[GroupPricingTier] = Field(..., min_length=1)
    addons: list[Addon] = Field(default_factory=list)


class PrivateTourPricing(BaseModel):
    kind: Literal["private_tour"] = "private_tour"
    price: Decimal
    min_group_size: Optional[int] = None
    max_group_size: Optional[int] = None
    addons: list[Addon] = Field(default_factory=list)


PricingConfiguration = Annotated[
    Union[PerPersonPricing, ParticipantCategoryPricing, GroupTierPricing, PrivateTourPricing],
    Field(discriminator="kind"),
]

pricing_adapter: TypeAdapter[PricingConfiguration] = TypeAdapter(PricingConfiguration)


class CategoryLine(BaseModel):
    """Priced line for one participant category."""

    category_id: str
    label: str
    count: int
    original_unit_price: Decimal
    unit_price: Decimal
    subtotal: Decimal
    counts_toward_capacity: bool


class AppliedAddon(BaseModel):
    addon_id: str
    name: str
    unit_price: Decimal
    quantity: int
    total: Decimal


class PriceBreakdown(BaseModel):
    """
    Itemized price of a booking.

    ``total_amount`` is what the customer pays: ``subtotal`` plus the
    processor fee. The provider receives the whole ``subtotal``.
    """

    currency: str
    participants: int
    counting_participants: int
    original_base_price: Decimal
    group_discount: Decimal
    base_price: Decimal
    addons_total: Decimal
    subtotal: Decimal
    processor_fee: Decimal
    total_amount: Decimal
    provider_amount: Decimal
    category_lines: list[CategoryLine] = Field(default_factory=list)
    applied_discount: Optional[GroupDiscountTier] = None
    applied_tier: Optional[GroupPricingTier] = None
    addons: list[AppliedAddon] = Field(default_factory=list)

    @computed_field
    @property
    def is_free(self) -> bool:
        return self.total_amount == 0


class PriceQuoteRequest(BaseModel):
    """Request schema for pricing a prospective booking."""

    tour_id: Optional[UUID] = Field(None, description="Price against a stored tour's configuration")
    pricing: Optional[PricingConfiguration] = Field(None, description="Inline pricing configuration")
    currency: Optional[str] = Field(None, pattern=r"^[A-Z]{3}$", description="ISO 4217 currency code")
    participants: int = Field(..., ge=1, description="Total number of participants")
    participants_by_category: Optional[dict[str, int]] = Field(None, description="Counts keyed by category id")
    addon_ids: list[str] = Field(default_factory=list, description="Selected add-on ids")

    @model_validator(mode="after")
    def check_source(self) -> "PriceQuoteRequest":
        if (self.tour_id is None) == (self.pricing is None):
            raise ValueError("Provide exactly one of tour_id or pricing")
        return self
