"""Unit tests for the booking state machine."""

from datetime import timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from tourbook.core.clock import ensure_utc
from tourbook.core.exceptions import (
    CancellationNotAllowedError,
    CapacityFullError,
    ConflictError,
    InvalidTransitionError,
    PaymentError,
    ValidationError,
)
from tourbook.models.booking import (
    Booking,
    BookingStatus,
    CancelledBy,
    PaymentStatus,
    PayoutState,
    RefundMethod,
    RefundStatus,
)
from tourbook.schemas.booking import CreateBookingRequest, status_label
from tourbook.services.booking_service import BookingService

FREE_PRICING = {"kind": "per_person", "price_per_person": "0"}


def booking_request(tour, slot, participants=3, by_category=None, **extra) -> CreateBookingRequest:
    return CreateBookingRequest(
        tour_id=tour.id,
        time_slot_id=slot.id,
        customer_ref="cus_42",
        participants=participants,
        participants_by_category=by_category if by_category is not None else {"adult": 2, "child": 1},
        **extra,
    )


async def committed_of(session, slot) -> int:
    await session.refresh(slot)
    return slot.committed


def hours_before(slot, hours: float):
    return ensure_utc(slot.starts_at) - timedelta(hours=hours)


@pytest_asyncio.fixture
async def booked(booking_service, make_tour, make_slot):
    """A pending booking for 2 adults + 1 child on a fresh slot."""
    tour = await make_tour()
    slot = await make_slot(tour, capacity_total=10)
    booking = await booking_service.create_booking(booking_request(tour, slot))
    return tour, slot, booking


@pytest_asyncio.fixture
async def confirmed(booked, booking_service):
    tour, slot, booking = booked
    booking = await booking_service.pay_booking(booking.id)
    return tour, slot, booking


class TestCreateBooking:
    @pytest.mark.asyncio
    async def test_creates_priced_pending_booking(self, booked, test_session, notifier):
        _, slot, booking = booked

        assert booking.status == BookingStatus.PENDING
        assert booking.payment_status == PaymentStatus.PENDING
        assert booking.base_price == Decimal("88.00")
        assert booking.total_amount == Decimal("89.57")
        assert booking.provider_amount == Decimal("88.00")
        assert booking.reference.startswith("TB-") and len(booking.reference) == 11
        assert await committed_of(test_session, slot) == 3
        assert notifier.events[0][0] == "booking.created"

    @pytest.mark.asyncio
    async def test_non_counting_participants_do_not_take_spots(
        self, booking_service, make_tour, make_slot, test_session
    ):
        tour = await make_tour()
        slot = await make_slot(tour, capacity_total=2)

        booking = await booking_service.create_booking(
            booking_request(tour, slot, participants=3, by_category={"adult": 2, "infant": 1})
        )

        assert booking.counting_participants == 2
        assert await committed_of(test_session, slot) == 2

    @pytest.mark.asyncio
    async def test_free_booking_is_confirmed_and_paid(self, booking_service, make_tour, make_slot, gateway):
        tour = await make_tour(slug="free-walk", pricing=FREE_PRICING)
        slot = await make_slot(tour)

        booking = await booking_service.create_booking(booking_request(tour, slot, by_category={}))

        assert booking.status == BookingStatus.CONFIRMED
        assert booking.payment_status == PaymentStatus.PAID
        assert booking.processor_fee == Decimal("0.00")
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_full_slot_leaves_no_partial_state(self, booking_service, make_tour, make_slot, test_session):
        tour = await make_tour()
        slot = await make_slot(tour, capacity_total=10, committed=10)

        with pytest.raises(CapacityFullError):
            await booking_service.create_booking(booking_request(tour, slot))

        count = (await test_session.execute(select(func.count()).select_from(Booking))).scalar_one()
        assert count == 0
        assert await committed_of(test_session, slot) == 10

    @pytest.mark.asyncio
    async def test_invalid_participants_rejected_before_reserving(
        self, booking_service, make_tour, make_slot, test_session
    ):
        tour = await make_tour()
        slot = await make_slot(tour)

        with pytest.raises(ValidationError):
            await booking_service.create_booking(booking_request(tour, slot, participants=5))

        assert await committed_of(test_session, slot) == 0

    @pytest.mark.asyncio
    async def test_slot_of_another_tour_rejected(self, booking_service, make_tour, make_slot):
        tour = await make_tour()
        other_slot = await make_slot(await make_tour(slug="other-tour"))

        with pytest.raises(ValidationError):
            await booking_service.create_booking(booking_request(tour, other_slot))

    @pytest.mark.asyncio
    async def test_started_slot_rejected(self, booking_service, make_tour, make_slot):
        tour = await make_tour()
        slot = await make_slot(tour, starts_in=timedelta(hours=-1))

        with pytest.raises(ValidationError):
            await booking_service.create_booking(booking_request(tour, slot))


class TestPayment:
    @pytest.mark.asyncio
    async def test_successful_payment_confirms(self, booked, booking_service, gateway, notifier):
        _, _, booking = booked

        booking = await booking_service.pay_booking(booking.id)

        assert booking.status == BookingStatus.CONFIRMED
        assert booking.payment_status == PaymentStatus.PAID
        assert booking.charge_ref is not None
        assert gateway.calls_to("charge")[0]["amount"] == Decimal("89.57")
        assert notifier.events[-1][0] == "booking.confirmed"

    @pytest.mark.asyncio
    async def test_failed_payment_keeps_booking_pending_and_retry_succeeds(self, booked, booking_service, gateway):
        _, _, booking = booked
        gateway.fail_charge = "Your card was declined."

        with pytest.raises(PaymentError) as exc_info:
            await booking_service.pay_booking(booking.id)

        assert exc_info.value.problem_details["retryable"] is True
        booking = await booking_service.get_booking_or_raise(booking.id)
        assert booking.status == BookingStatus.PENDING
        assert booking.payment_status == PaymentStatus.FAILED
        assert booking.payment_error == "Your card was declined."

        gateway.fail_charge = None
        booking = await booking_service.pay_booking(booking.id)

        assert booking.status == BookingStatus.CONFIRMED
        keys = [call["idempotency_key"] for call in gateway.calls_to("charge")]
        assert len(set(keys)) == 2

    @pytest.mark.asyncio
    async def test_declined_charge_gets_a_new_key(self, booked, booking_service, gateway):
        _, _, booking = booked
        gateway.fail_charge = "Your card was declined."

        with pytest.raises(PaymentError):
            await booking_service.pay_booking(booking.id)

        booking = await booking_service.get_booking_or_raise(booking.id)
        assert booking.charge_idempotency_key is None
        assert booking.payment_attempts == 1

    @pytest.mark.asyncio
    async def test_charge_with_unknown_outcome_is_retried_under_the_same_key(self, booked, booking_service, gateway):
        _, _, booking = booked
        gateway.charge_outcome_unknown = True

        with pytest.raises(PaymentError):
            await booking_service.pay_booking(booking.id)

        booking = await booking_service.get_booking_or_raise(booking.id)
        assert booking.status == BookingStatus.PENDING
        assert booking.payment_status == PaymentStatus.FAILED
        assert booking.charge_idempotency_key == f"charge-{booking.id}-1"

        gateway.charge_outcome_unknown = False
        booking = await booking_service.pay_booking(booking.id)

        keys = [call["idempotency_key"] for call in gateway.calls_to("charge")]
        assert keys == [f"charge-{booking.id}-1", f"charge-{booking.id}-1"]
        assert len(gateway.charges) == 1
        assert booking.status == BookingStatus.CONFIRMED
        assert booking.charge_ref == gateway.charges[keys[0]]
        assert booking.payment_attempts == 1

    @pytest.mark.asyncio
    async def test_paying_twice_does_not_charge_twice(self, confirmed, booking_service, gateway):
        _, _, booking = confirmed

        await booking_service.pay_booking(booking.id)

        assert len(gateway.calls_to("charge")) == 1


class TestTransitions:
    @pytest.mark.asyncio
    async def test_complete_requires_confirmed(self, booked, booking_service):
        _, _, booking = booked

        with pytest.raises(InvalidTransitionError):
            await booking_service.complete_booking(booking.id)

    @pytest.mark.asyncio
    async def test_complete_confirmed_booking(self, confirmed, booking_service):
        _, _, booking = confirmed

        booking = await booking_service.complete_booking(booking.id)

        assert booking.status == BookingStatus.COMPLETED
        assert BookingService.has_consistent_state(booking)

    @pytest.mark.asyncio
    async def test_no_show_before_start_rejected(self, confirmed, booking_service):
        _, _, booking = confirmed

        with pytest.raises(InvalidTransitionError):
            await booking_service.mark_no_show(booking.id)

    @pytest.mark.asyncio
    async def test_no_show_after_start(self, confirmed, booking_service):
        _, slot, booking = confirmed

        booking = await booking_service.mark_no_show(booking.id, now=ensure_utc(slot.starts_at) + timedelta(hours=1))

        assert booking.status == BookingStatus.NO_SHOW
        assert booking.payment_status == PaymentStatus.PAID

    @pytest.mark.asyncio
    async def test_record_payout_is_idempotent(self, confirmed, booking_service):
        _, _, booking = confirmed

        await booking_service.record_payout(booking.id, "tr_1")
        booking = await booking_service.record_payout(booking.id, "tr_1")

        assert booking.payout_state == PayoutState.PAID_OUT
        with pytest.raises(ConflictError):
            await booking_service.record_payout(booking.id, "tr_2")

    @pytest.mark.asyncio
    async def test_unpaid_booking_cannot_be_paid_out(self, booked, booking_service):
        _, _, booking = booked

        with pytest.raises(ConflictError):
            await booking_service.record_payout(booking.id, "tr_1")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("operation", ["pay", "complete", "no_show", "payout"])
    async def test_cancelled_booking_rejects_further_changes(self, confirmed, booking_service, gateway, operation):
        _, slot, booking = confirmed
        await booking_service.cancel_booking(booking.id, now=hours_before(slot, 30))

        with pytest.raises(ConflictError):
            if operation == "pay":
                await booking_service.pay_booking(booking.id)
            elif operation == "complete":
                await booking_service.complete_booking(booking.id)
            elif operation == "no_show":
                await booking_service.mark_no_show(booking.id, now=ensure_utc(slot.starts_at) + timedelta(hours=1))
            else:
                await booking_service.record_payout(booking.id, "tr_1")

        booking = await booking_service.get_booking_or_raise(booking.id)
        assert booking.status == BookingStatus.CANCELLED
        assert booking.payment_status == PaymentStatus.REFUNDED
        assert booking.payout_state == PayoutState.NOT_PAID_OUT
        assert len(gateway.calls_to("charge")) == 1

    @pytest.mark.asyncio
    async def test_cancelled_unpaid_booking_cannot_be_paid(self, booked, booking_service, gateway):
        _, slot, booking = booked
        await booking_service.cancel_booking(booking.id, now=hours_before(slot, 30))

        with pytest.raises(InvalidTransitionError):
            await booking_service.pay_booking(booking.id)

        assert gateway.calls_to("charge") == []


class TestCancellation:
    @pytest.mark.asyncio
    async def test_early_cancellation_refunds_in_full(self, confirmed, booking_service, gateway, test_session):
        _, slot, booking = confirmed

        result = await booking_service.cancel_booking(booking.id, now=hours_before(slot, 30))

        assert result.calculation.refund_percentage == 100
        assert result.refund_status == RefundStatus.SUCCEEDED
        assert result.refund_method == RefundMethod.DIRECT_REFUND
        assert result.booking.status == BookingStatus.CANCELLED
        assert result.booking.payment_status == PaymentStatus.REFUNDED
        assert result.booking.refund_amount == Decimal("89.57")
        assert gateway.calls_to("refund")[0]["amount"] == Decimal("89.57")
        assert await committed_of(test_session, slot) == 0

    @pytest.mark.asyncio
    async def test_partial_refund_keeps_payment_paid(self, confirmed, booking_service):
        _, slot, booking = confirmed

        result = await booking_service.cancel_booking(booking.id, now=hours_before(slot, 18))

        assert result.booking.refund_amount == Decimal("44.79")
        assert result.booking.refund_percentage == 50
        assert result.booking.payment_status == PaymentStatus.PAID
        assert status_label(
            result.booking.status, result.booking.payment_status, result.booking.refund_status, result.booking.payout_state
        ) == "Cancelled • Refunded"

    @pytest.mark.asyncio
    async def test_late_cancellation_needs_no_refund(self, confirmed, booking_service, gateway, test_session):
        _, slot, booking = confirmed

        result = await booking_service.cancel_booking(booking.id, now=hours_before(slot, 2))

        assert result.refund_status == RefundStatus.NOT_REQUIRED
        assert result.calculation.can_cancel is True
        assert result.calculation.is_refundable is False
        assert gateway.calls_to("refund") == []
        assert await committed_of(test_session, slot) == 0

    @pytest.mark.asyncio
    async def test_unpaid_booking_cancels_without_refund(self, booked, booking_service, gateway):
        _, slot, booking = booked

        result = await booking_service.cancel_booking(booking.id, now=hours_before(slot, 30))

        assert result.refund_status == RefundStatus.NOT_REQUIRED
        assert result.booking.refund_amount == Decimal("0.00")
        assert gateway.calls_to("refund") == []

    @pytest.mark.asyncio
    async def test_provider_cancellation_refunds_in_full_late(self, confirmed, booking_service):
        _, slot, booking = confirmed

        result = await booking_service.cancel_booking(
            booking.id, CancelledBy.PROVIDER, "Storm warning", now=hours_before(slot, 1)
        )

        assert result.calculation.refund_percentage == 100
        assert result.booking.cancelled_by == CancelledBy.PROVIDER
        assert result.booking.cancellation_reason == "Storm warning"

    @pytest.mark.asyncio
    async def test_double_cancellation_refunds_once(self, confirmed, booking_service, gateway):
        _, slot, booking = confirmed

        first = await booking_service.cancel_booking(booking.id, now=hours_before(slot, 30))
        second = await booking_service.cancel_booking(booking.id, now=hours_before(slot, 5))

        assert second.already_cancelled is True
        assert second.refund_status == first.refund_status
        assert second.calculation.refund_amount == first.calculation.refund_amount
        assert len(gateway.calls_to("refund")) == 1

    @pytest.mark.asyncio
    async def test_cancel_started_tour_rejected(self, confirmed, booking_service):
        _, slot, booking = confirmed

        with pytest.raises(CancellationNotAllowedError):
            await booking_service.cancel_booking(booking.id, now=ensure_utc(slot.starts_at) + timedelta(minutes=5))

    @pytest.mark.asyncio
    async def test_completed_booking_cannot_be_cancelled(self, confirmed, booking_service):
        _, slot, booking = confirmed
        await booking_service.complete_booking(booking.id)

        with pytest.raises(InvalidTransitionError):
            await booking_service.cancel_booking(booking.id, now=hours_before(slot, 30))

    @pytest.mark.asyncio
    async def test_paid_out_booking_reverses_transfer(self, confirmed, booking_service, gateway):
        _, slot, booking = confirmed
        await booking_service.record_payout(booking.id, "tr_1")
        gateway.balances["acct_provider"] = Decimal("1000.00")

        result = await booking_service.cancel_booking(booking.id, now=hours_before(slot, 30))

        assert result.refund_method == RefundMethod.TRANSFER_REVERSAL
        assert result.refund_status == RefundStatus.SUCCEEDED
        assert result.booking.reversal_ref is not None
        assert gateway.calls_to("reverse_transfer")[0]["payout_ref"] == "tr_1"

    @pytest.mark.asyncio
    async def test_insufficient_balance_still_cancels(self, confirmed, booking_service, gateway, test_session):
        _, slot, booking = confirmed
        await booking_service.record_payout(booking.id, "tr_1")
        gateway.balances["acct_provider"] = Decimal("5.00")

        result = await booking_service.cancel_booking(booking.id, now=hours_before(slot, 30))

        assert result.booking.status == BookingStatus.CANCELLED
        assert result.refund_status == RefundStatus.FAILED
        assert result.requires_manual_action
        assert result.booking.payment_status == PaymentStatus.PAID
        assert "Insufficient provider balance" in result.booking.refund_error
        assert await committed_of(test_session, slot) == 0

        # A failed refund is not retried by repeating the cancellation
        again = await booking_service.cancel_booking(booking.id)
        assert again.refund_status == RefundStatus.FAILED
        assert gateway.calls_to("reverse_transfer") == []

    @pytest.mark.asyncio
    async def test_unexpected_refund_error_is_recorded_as_failed(self, confirmed, booking_service, gateway, test_session):
        _, slot, booking = confirmed
        gateway.refund_exception = RuntimeError("connection reset by peer")

        result = await booking_service.cancel_booking(booking.id, now=hours_before(slot, 30))

        assert result.booking.status == BookingStatus.CANCELLED
        assert result.refund_status == RefundStatus.FAILED
        assert result.refund_method == RefundMethod.DIRECT_REFUND
        assert result.requires_manual_action
        assert result.booking.payment_status == PaymentStatus.PAID
        assert "connection reset by peer" in result.booking.refund_error
        assert await committed_of(test_session, slot) == 0

    @pytest.mark.asyncio
    async def test_interrupted_refund_is_resumed(self, confirmed, booking_service, gateway, test_session):
        _, slot, booking = confirmed
        booking.status = BookingStatus.CANCELLED
        booking.refund_status = RefundStatus.PENDING
        booking.refund_amount = Decimal("89.57")
        booking.refund_percentage = 100
        booking.cancelled_at = hours_before(slot, 30)
        await test_session.commit()

        result = await booking_service.cancel_booking(booking.id)

        assert result.already_cancelled is True
        assert result.refund_status == RefundStatus.SUCCEEDED
        assert gateway.calls_to("refund")[0]["idempotency_key"] == f"refund-{booking.id}"

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_block(self, confirmed, booking_service, notifier):
        _, slot, booking = confirmed
        notifier.fail = True

        result = await booking_service.cancel_booking(booking.id, now=hours_before(slot, 30))

        assert result.booking.status == BookingStatus.CANCELLED
        assert notifier.events[-1][0] == "booking.cancelled"


@pytest.mark.parametrize(
    "status, payment_status, refund_status, payout_state, label",
    [
        (BookingStatus.PENDING, PaymentStatus.PENDING, None, PayoutState.NOT_PAID_OUT, "Pending Payment"),
        (BookingStatus.PENDING, PaymentStatus.FAILED, None, PayoutState.NOT_PAID_OUT, "Payment Failed"),
        (BookingStatus.CONFIRMED, PaymentStatus.PAID, None, PayoutState.NOT_PAID_OUT, "Confirmed"),
        (BookingStatus.COMPLETED, PaymentStatus.PAID, None, PayoutState.PAID_OUT, "Completed • Transferred"),
        (BookingStatus.CANCELLED, PaymentStatus.PAID, RefundStatus.FAILED, PayoutState.PAID_OUT, "Cancelled • Refund Failed"),
        (BookingStatus.CANCELLED, PaymentStatus.PENDING, RefundStatus.NOT_REQUIRED, PayoutState.NOT_PAID_OUT, "Cancelled"),
        (BookingStatus.NO_SHOW, PaymentStatus.PAID, None, PayoutState.NOT_PAID_OUT, "No Show"),
    ],
)
def test_status_label(status, payment_status, refund_status, payout_state, label):
    assert status_label(status, payment_status, refund_status, payout_state) == label


def test_consistency_check_flags_confirmed_without_payment():
    booking = Booking(status=BookingStatus.CONFIRMED, payment_status=PaymentStatus.PENDING)

    assert not BookingService.has_consistent_state(booking)
