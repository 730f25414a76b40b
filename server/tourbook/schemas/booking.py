"""Booking-related Pydantic schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field

from ..models.booking import (
    BookingStatus,
    CancelledBy,
    PaymentStatus,
    PayoutState,
    RefundMethod,
    RefundStatus,
)
from .cancellation import RefundCalculation


def status_label(
    status: BookingStatus,
    payment_status: PaymentStatus,
    refund_status: Optional[RefundStatus],
    payout_state: PayoutState,
) -> str:
    """Display label combining booking, refund and payout state."""
    if status == BookingStatus.PENDING:
        return "Payment Failed" if payment_status == PaymentStatus.FAILED else "Pending Payment"
    if status == BookingStatus.CANCELLED:
        return {
            RefundStatus.SUCCEEDED: "Cancelled • Refunded",
            RefundStatus.PENDING: "Cancelled • Refund Pending",
            RefundStatus.FAILED: "Cancelled • Refund Failed",
        }.get(refund_status, "Cancelled")
    if status == BookingStatus.NO_SHOW:
        return "No Show"

    label = "Confirmed" if status == BookingStatus.CONFIRMED else "Completed"
    if payout_state == PayoutState.PAID_OUT:
        label += " • Transferred"
    return label


class CreateBookingRequest(BaseModel):
    """Request schema for creating a booking."""

    tour_id: UUID = Field(..., description="Tour to book")
    time_slot_id: UUID = Field(..., description="Time slot to reserve spots on")
    customer_ref: str = Field(..., min_length=1, max_length=128, description="Customer reference")
    participants: int = Field(..., ge=1, description="Total number of participants")
    participants_by_category: Optional[dict[str, int]] = Field(
        None, description="Participant counts keyed by category id"
    )
    addon_ids: list[str] = Field(default_factory=list, description="Selected add-on ids")


class PayBookingRequest(BaseModel):
    """Request schema for charging the customer for a pending booking."""

    booking_id: UUID = Field(..., description="Booking to pay for")
    payment_method_ref: Optional[str] = Field(None, max_length=255, description="Processor payment method")


class CancelBookingRequest(BaseModel):
    """Request schema for cancelling a booking."""

    booking_id: UUID = Field(..., description="Booking to cancel")
    cancelled_by: CancelledBy = Field(CancelledBy.CUSTOMER, description="Who is cancelling")
    reason: Optional[str] = Field(None, max_length=1000, description="Cancellation reason")


class BookingActionRequest(BaseModel):
    """Request schema for operations addressed to a single booking."""

    booking_id: UUID = Field(..., description="Booking to act on")


class RecordPayoutRequest(BaseModel):
    """Request schema for recording that the provider's share was paid out."""

    booking_id: UUID = Field(..., description="Booking that was paid out")
    payout_ref: str = Field(..., min_length=1, max_length=255, description="Processor transfer reference")


class Booking(BaseModel):
    """Booking response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    reference: str
    tour_id: UUID
    time_slot_id: UUID
    customer_ref: str

    participants: int
    participants_by_category: Optional[dict[str, int]] = None
    counting_participants: int
    addon_ids: list[str]

    original_base_price: Decimal
    group_discount: Decimal
    base_price: Decimal
    addons_total: Decimal
    subtotal: Decimal
    processor_fee: Decimal
    total_amount: Decimal
    provider_amount: Decimal
    currency: str

    status: BookingStatus
    payment_status: PaymentStatus
    charge_ref: Optional[str] = None
    payment_error: Optional[str] = None

    cancelled_by: Optional[CancelledBy] = None
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    refund_status: Optional[RefundStatus] = None
    refund_amount: Optional[Decimal] = None
    refund_percentage: Optional[int] = None
    refund_rule: Optional[str] = None
    refund_method: Optional[RefundMethod] = None
    refund_ref: Optional[str] = None
    reversal_ref: Optional[str] = None
    refund_error: Optional[str] = None

    payout_state: PayoutState
    payout_ref: Optional[str] = None
    paid_out_at: Optional[datetime] = None

    created_at: datetime

    @computed_field
    @property
    def status_label(self) -> str:
        return status_label(self.status, self.payment_status, self.refund_status, self.payout_state)


class CancellationResponse(BaseModel):
    """Outcome of a cancellation request."""

    booking: Booking
    refund: RefundCalculation
    refund_status: RefundStatus
    refund_method: Optional[RefundMethod] = None
    requires_manual_action: bool = Field(
        ..., description="The refund failed and has to be settled by hand"
    )
    already_cancelled: bool = Field(
        False, description="The booking was cancelled by an earlier request; nothing was changed"
    )
