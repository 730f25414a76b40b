"""Models module exporting all database models."""

from .booking import (
    Booking,
    BookingStatus,
    CancelledBy,
    PaymentStatus,
    PayoutState,
    RefundMethod,
    RefundStatus,
)
from .time_slot import TimeSlot
from .tour import Tour

__all__ = [
    # Catalogue entities
    "Tour",
    "TimeSlot",

    # Booking entity and its vocabularies
    "Booking",
    "BookingStatus",
    "PaymentStatus",
    "RefundStatus",
    "RefundMethod",
    "PayoutState",
    "CancelledBy",
]
