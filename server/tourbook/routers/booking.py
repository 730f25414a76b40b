"""Booking router for pricing, lifecycle and cancellation operations."""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ..core.config import settings
from ..core.dependencies import get_booking_service
from ..schemas.booking import (
    Booking,
    BookingActionRequest,
    CancelBookingRequest,
    CancellationResponse,
    CreateBookingRequest,
    PayBookingRequest,
    RecordPayoutRequest,
)
from ..schemas.common import PROBLEM_RESPONSES
from ..schemas.pricing import PriceBreakdown, PriceQuoteRequest
from ..services.booking_service import BookingService, CancellationResult
from ..services.pricing_service import calculate_price

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/booking", tags=["booking"], responses=PROBLEM_RESPONSES)

# Define dependencies to avoid B008 linting errors
SERVICE_DEPENDENCY = Depends(get_booking_service)


def _booking_response(booking_model, status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=Booking.model_validate(booking_model).model_dump(mode="json"),
    )


def _cancellation_response(result: CancellationResult) -> JSONResponse:
    response_data = CancellationResponse(
        booking=Booking.model_validate(result.booking),
        refund=result.calculation,
        refund_status=result.refund_status,
        refund_method=result.refund_method,
        requires_manual_action=result.requires_manual_action,
        already_cancelled=result.already_cancelled,
    )
    return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))


@router.post("/price", response_model=PriceBreakdown)
async def price_booking(
    request: PriceQuoteRequest,
    service: BookingService = SERVICE_DEPENDENCY,
) -> JSONResponse:
    """Quote a booking against a stored tour or an inline pricing configuration."""
    if request.pricing is not None:
        breakdown = calculate_price(
            request.pricing,
            request.participants,
            request.currency or settings.default_currency,
            participants_by_category=request.participants_by_category,
            addon_ids=request.addon_ids,
        )
    else:
        breakdown = await service.price_booking(
            request.tour_id,
            request.participants,
            participants_by_category=request.participants_by_category,
            addon_ids=request.addon_ids,
        )
    return JSONResponse(status_code=200, content=breakdown.model_dump(mode="json"))


@router.post("/create", response_model=Booking, status_code=201)
async def create_booking(
    request: CreateBookingRequest,
    service: BookingService = SERVICE_DEPENDENCY,
) -> JSONResponse:
    """Price the request, reserve spots and create a pending (or, if free, confirmed) booking."""
    booking = await service.create_booking(request)
    return _booking_response(booking, status_code=201)


@router.post("/pay", response_model=Booking)
async def pay_booking(
    request: PayBookingRequest,
    service: BookingService = SERVICE_DEPENDENCY,
) -> JSONResponse:
    """Charge the customer and confirm the booking."""
    booking = await service.pay_booking(request.booking_id, request.payment_method_ref)
    return _booking_response(booking)


@router.post("/cancel", response_model=CancellationResponse)
async def cancel_booking(
    request: CancelBookingRequest,
    service: BookingService = SERVICE_DEPENDENCY,
) -> JSONResponse:
    """
    Cancel a booking and settle its refund.

    Repeating the request returns the first outcome without refunding again.
    """
    result = await service.cancel_booking(request.booking_id, request.cancelled_by, request.reason)
    return _cancellation_response(result)


@router.post("/complete", response_model=Booking)
async def complete_booking(
    request: BookingActionRequest,
    service: BookingService = SERVICE_DEPENDENCY,
) -> JSONResponse:
    booking = await service.complete_booking(request.booking_id)
    return _booking_response(booking)


@router.post("/no-show", response_model=Booking)
async def mark_no_show(
    request: BookingActionRequest,
    service: BookingService = SERVICE_DEPENDENCY,
) -> JSONResponse:
    booking = await service.mark_no_show(request.booking_id)
    return _booking_response(booking)


@router.post("/payout", response_model=Booking)
async def record_payout(
    request: RecordPayoutRequest,
    service: BookingService = SERVICE_DEPENDENCY,
) -> JSONResponse:
    """Record that the provider's share of the booking was transferred."""
    booking = await service.record_payout(request.booking_id, request.payout_ref)
    return _booking_response(booking)


@router.post("/get", response_model=Booking)
async def get_booking(
    request: BookingActionRequest,
    service: BookingService = SERVICE_DEPENDENCY,
) -> JSONResponse:
    booking = await service.get_booking_or_raise(request.booking_id)
    return _booking_response(booking)
