"""Service layer package."""

from .booking_service import BookingService, CancellationResult
from .capacity_service import CapacityLedger
from .refund_service import RefundOutcome, RefundRouter, select_refund_method
from .time_slot_service import TimeSlotService
from .tour_service import TourService

__all__ = [
    "BookingService",
    "CancellationResult",
    "CapacityLedger",
    "RefundOutcome",
    "RefundRouter",
    "TimeSlotService",
    "TourService",
    "select_refund_method",
]
