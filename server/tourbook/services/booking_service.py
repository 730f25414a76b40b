"""Booking service: the booking state machine and its money movements."""

import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import ensure_utc, utcnow
from ..core.exceptions import (
    CancellationNotAllowedError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PaymentError,
    ValidationError,
)
from ..core.money import ZERO
from ..core.observability import metrics_collector
from ..integrations.notifications import Notifier
from ..integrations.payments import PaymentGateway, PaymentGatewayError
from ..models.booking import (
    TERMINAL_STATUSES,
    Booking,
    BookingStatus,
    CancelledBy,
    PaymentStatus,
    PayoutState,
    RefundMethod,
    RefundStatus,
    booking_snapshot,
)
from ..schemas.booking import CreateBookingRequest
from ..schemas.cancellation import RefundCalculation
from ..schemas.pricing import PriceBreakdown
from .cancellation_service import evaluate
from .capacity_service import CapacityLedger
from .pricing_service import calculate_price
from .refund_service import RefundOutcome, RefundRouter, select_refund_method
from .time_slot_service import TimeSlotService
from .tour_service import TourService, tour_policy, tour_pricing

logger = logging.getLogger(__name__)

REFERENCE_PREFIX = "TB-"

CANCEL_CLAIM_ATTEMPTS = 3

ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.NO_SHOW}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.NO_SHOW: frozenset(),
}

# Payment states each booking status may be paired with
VALID_PAYMENT_STATES: dict[BookingStatus, frozenset[PaymentStatus]] = {
    BookingStatus.PENDING: frozenset({PaymentStatus.PENDING, PaymentStatus.FAILED}),
    BookingStatus.CONFIRMED: frozenset({PaymentStatus.PAID}),
    BookingStatus.COMPLETED: frozenset({PaymentStatus.PAID}),
    BookingStatus.NO_SHOW: frozenset({PaymentStatus.PAID}),
    BookingStatus.CANCELLED: frozenset(PaymentStatus),
}


@dataclass
class CancellationResult:
    booking: Booking
    calculation: RefundCalculation
    refund_status: RefundStatus
    refund_method: Optional[RefundMethod]
    already_cancelled: bool = False

    @property
    def requires_manual_action(self) -> bool:
        return self.refund_status == RefundStatus.FAILED


def generate_reference(length: int = 8) -> str:
    """Customer-facing booking code, e.g. TB-7K2QX9AB."""
    alphabet = string.ascii_uppercase + string.digits
    return REFERENCE_PREFIX + "".join(secrets.choice(alphabet) for _ in range(length))


def check_transition(booking: Booking, target: BookingStatus) -> None:
    """
    Raise unless ``booking`` may move to ``target`` and the resulting
    status/payment pair is consistent.
    """
    current = booking.status
    if target not in ALLOWED_TRANSITIONS[current]:
        reason = "booking is in a terminal state" if current in TERMINAL_STATUSES else "transition not allowed"
        raise InvalidTransitionError(str(booking.id), current.value, target.value, reason)
    if target in (BookingStatus.CONFIRMED, BookingStatus.COMPLETED) and booking.payment_status != PaymentStatus.PAID:
        raise InvalidTransitionError(
            str(booking.id), current.value, target.value, "booking has not been paid"
        )


class BookingService:
    """Service for booking lifecycle operations."""

    def __init__(self, db: AsyncSession, gateway: PaymentGateway, notifier: Notifier):
        self.db = db
        self.gateway = gateway
        self.notifier = notifier
        self.tour_service = TourService(db)
        self.time_slot_service = TimeSlotService(db)
        self.ledger = CapacityLedger(db)
        self.refund_router = RefundRouter(gateway)

    async def _notify(self, event: str, booking: Booking) -> None:
        """Deliver a notification; failures are logged and never undo the booking change."""
        try:
            await self.notifier.notify(event, booking_snapshot(booking))
        except Exception as e:
            logger.warning(
                "Booking notification failed",
                extra={"event": event, "booking_id": str(booking.id), "error": str(e)},
                exc_info=True,
            )

    async def _unique_reference(self) -> str:
        reference = generate_reference()
        while await self.get_booking_by_reference(reference):
            reference = generate_reference()
        return reference

    async def price_booking(
        self,
        tour_id: UUID,
        participants: int,
        participants_by_category: Optional[dict[str, int]] = None,
        addon_ids: Optional[list[str]] = None,
    ) -> PriceBreakdown:
        """Quote a booking against a stored tour without reserving anything."""
        tour = await self.tour_service.get_tour_by_id_or_raise(tour_id)
        return calculate_price(
            tour_pricing(tour),
            participants,
            tour.currency,
            participants_by_category=participants_by_category,
            addon_ids=addon_ids or [],
        )

    async def create_booking(self, request: CreateBookingRequest) -> Booking:
        """
        Price the request, reserve spots and persist the booking.

        Free bookings are created confirmed and paid; everything else starts
        pending/pending and is confirmed by ``pay_booking``.

        Raises:
            NotFoundError: If the tour or time slot does not exist
            ValidationError: If the request cannot be priced or the slot is unusable
            CapacityFullError: If the slot does not have enough spots left
        """
        tour = await self.tour_service.get_tour_by_id_or_raise(request.tour_id)
        time_slot = await self.time_slot_service.get_time_slot_or_raise(request.time_slot_id)

        if time_slot.tour_id != tour.id:
            raise ValidationError(
                detail="Time slot does not belong to the tour",
                violations=[{"path": "time_slot_id", "message": "Time slot belongs to another tour"}],
            )
        if ensure_utc(time_slot.starts_at) <= utcnow():
            raise ValidationError(
                detail="Time slot has already started",
                violations=[{"path": "time_slot_id", "message": "Time slot is in the past"}],
            )

        breakdown = calculate_price(
            tour_pricing(tour),
            request.participants,
            tour.currency,
            participants_by_category=request.participants_by_category,
            addon_ids=request.addon_ids,
        )
        free = breakdown.is_free

        try:
            await self.ledger.reserve(time_slot.id, breakdown.counting_participants)

            booking = Booking(
                reference=await self._unique_reference(),
                tour_id=tour.id,
                time_slot_id=time_slot.id,
                customer_ref=request.customer_ref,
                participants=breakdown.participants,
                participants_by_category=request.participants_by_category,
                counting_participants=breakdown.counting_participants,
                addon_ids=[addon.addon_id for addon in breakdown.addons],
                original_base_price=breakdown.original_base_price,
                group_discount=breakdown.group_discount,
                base_price=breakdown.base_price,
                addons_total=breakdown.addons_total,
                subtotal=breakdown.subtotal,
                processor_fee=breakdown.processor_fee,
                total_amount=breakdown.total_amount,
                provider_amount=breakdown.provider_amount,
                currency=breakdown.currency,
                status=BookingStatus.CONFIRMED if free else BookingStatus.PENDING,
                payment_status=PaymentStatus.PAID if free else PaymentStatus.PENDING,
                payout_state=PayoutState.NOT_PAID_OUT,
                payment_attempts=0,
            )
            self.db.add(booking)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        metrics_collector.record_booking_created(str(tour.id), free)
        logger.info(
            "Booking created",
            extra={
                **booking_snapshot(booking),
                "tour_id": str(tour.id),
                "time_slot_id": str(time_slot.id),
                "participants": booking.participants,
                "counting_participants": booking.counting_participants,
                "total_amount": str(booking.total_amount),
                "currency": booking.currency,
            }
        )
        await self._notify("booking.created", booking)
        return booking

    async def pay_booking(self, booking_id: UUID, payment_method_ref: Optional[str] = None) -> Booking:
        """
        Charge the customer and confirm the booking.

        Paying an already confirmed booking returns it unchanged. A charge
        whose outcome is unknown (timeout, processor error) is retried under
        the same idempotency key, so the customer is never charged twice; a
        fresh key is used only after a definite decline.

        Raises:
            PaymentError: If the processor rejects the charge; the booking stays
                pending with payment_status failed and can be paid again
            InvalidTransitionError: If the booking is no longer payable, including
                when it was cancelled while the charge was in flight
        """
        booking = await self.get_booking_or_raise(booking_id)

        if booking.status != BookingStatus.PENDING:
            if booking.payment_status == PaymentStatus.PAID and booking.status != BookingStatus.CANCELLED:
                return booking
            raise InvalidTransitionError(
                str(booking.id), booking.status.value, BookingStatus.CONFIRMED.value, "booking is not awaiting payment"
            )

        attempt = booking.payment_attempts
        idempotency_key = booking.charge_idempotency_key
        if idempotency_key is None:
            attempt += 1
            idempotency_key = f"charge-{booking.id}-{attempt}"

        # The key is stored before the charge so a crashed request is retried under it
        started = await self.db.execute(
            update(Booking)
            .where(Booking.id == booking_id, Booking.status == BookingStatus.PENDING)
            .values(payment_attempts=attempt, charge_idempotency_key=idempotency_key, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if started.rowcount != 1:
            await self.db.rollback()
            booking = await self.get_booking_or_raise(booking_id)
            raise InvalidTransitionError(
                str(booking_id), booking.status.value, BookingStatus.CONFIRMED.value, "booking is not awaiting payment"
            )
        await self.db.commit()
        booking = await self.get_booking_or_raise(booking_id)

        try:
            charge_ref = await self.gateway.charge(
                booking.total_amount,
                booking.currency,
                booking.customer_ref,
                idempotency_key=idempotency_key,
                payment_method_ref=payment_method_ref,
                metadata={"booking_id": str(booking.id), "reference": booking.reference},
            )
        except PaymentGatewayError as e:
            await self._record_payment_failure(booking_id, e, attempt)
            raise PaymentError(str(booking_id), e.message) from e

        confirmed = await self.db.execute(
            update(Booking)
            .where(Booking.id == booking_id, Booking.status == BookingStatus.PENDING)
            .values(
                status=BookingStatus.CONFIRMED,
                payment_status=PaymentStatus.PAID,
                charge_ref=charge_ref,
                payment_error=None,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if confirmed.rowcount != 1:
            await self.db.rollback()
            return await self._resolve_late_charge(booking_id, charge_ref)
        await self.db.commit()
        booking = await self.get_booking_or_raise(booking_id)

        logger.info("Booking paid and confirmed", extra={**booking_snapshot(booking), "charge_ref": charge_ref})
        await self._notify("booking.confirmed", booking)
        return booking

    async def _record_payment_failure(self, booking_id: UUID, error: PaymentGatewayError, attempt: int) -> None:
        values = {"payment_status": PaymentStatus.FAILED, "payment_error": error.message, "updated_at": utcnow()}
        if not error.indeterminate:
            # A definite decline; the next attempt gets a new key
            values["charge_idempotency_key"] = None

        recorded = await self.db.execute(
            update(Booking)
            .where(Booking.id == booking_id, Booking.status == BookingStatus.PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        metrics_collector.record_payment_failure()
        log_extra = {
            "booking_id": str(booking_id),
            "error": error.message,
            "code": error.code,
            "indeterminate": error.indeterminate,
            "attempt": attempt,
        }
        if recorded.rowcount != 1 and error.indeterminate:
            logger.error("Charge outcome unknown for a booking that is no longer pending", extra=log_extra)
        else:
            logger.warning("Booking payment failed", extra=log_extra)

    async def _resolve_late_charge(self, booking_id: UUID, charge_ref: str) -> Booking:
        """
        Settle a charge that succeeded after the booking left the pending state.

        A concurrent payment under the same key resolves to the same charge and
        is returned as is. A booking cancelled while the charge was in flight
        keeps its cancellation and the charge is refunded in full.
        """
        booking = await self.get_booking_or_raise(booking_id)

        if booking.charge_ref == charge_ref:
            return booking

        if booking.status != BookingStatus.CANCELLED:
            logger.error(
                "Charge succeeded for a booking that was already paid",
                extra={**booking_snapshot(booking), "charge_ref": charge_ref},
            )
            raise ConflictError(
                detail=f"Booking {booking_id} was paid by another charge",
                conflicting_resource={"booking_id": str(booking_id), "charge_ref": booking.charge_ref},
            )

        now = utcnow()
        recorded = await self.db.execute(
            update(Booking)
            .where(
                Booking.id == booking_id,
                Booking.status == BookingStatus.CANCELLED,
                Booking.charge_ref.is_(None),
            )
            .values(
                payment_status=PaymentStatus.PAID,
                charge_ref=charge_ref,
                payment_error=None,
                refund_percentage=100,
                refund_amount=booking.total_amount,
                refund_rule="Charged after cancellation - full refund",
                refund_method=select_refund_method(booking.payout_state),
                refund_status=RefundStatus.PENDING,
                refund_error=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if recorded.rowcount != 1:
            await self.db.rollback()
            booking = await self.get_booking_or_raise(booking_id)
            if booking.charge_ref == charge_ref:
                return booking
            raise ConflictError(
                detail=f"Booking {booking_id} was paid by another charge",
                conflicting_resource={"booking_id": str(booking_id), "charge_ref": booking.charge_ref},
            )
        await self.db.commit()

        booking = await self.get_booking_or_raise(booking_id)
        tour = await self.tour_service.get_tour_by_id_or_raise(booking.tour_id)
        logger.warning(
            "Charge completed after cancellation - refunding in full",
            extra={**booking_snapshot(booking), "charge_ref": charge_ref},
        )
        await self._settle_refund(booking, tour.provider_account_ref)

        raise InvalidTransitionError(
            str(booking_id),
            BookingStatus.CANCELLED.value,
            BookingStatus.CONFIRMED.value,
            "booking was cancelled while the payment was processing; the charge is refunded in full",
        )

    async def _apply_transition(self, booking: Booking, target: BookingStatus) -> Booking:
        """Move ``booking`` to ``target`` unless another request changed it first."""
        check_transition(booking, target)
        booking_id = booking.id

        moved = await self.db.execute(
            update(Booking)
            .where(
                Booking.id == booking_id,
                Booking.status == booking.status,
                Booking.payment_status == booking.payment_status,
            )
            .values(status=target, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if moved.rowcount != 1:
            await self.db.rollback()
            current = await self.get_booking_or_raise(booking_id)
            check_transition(current, target)
            raise InvalidTransitionError(
                str(booking_id), current.status.value, target.value, "booking changed while the request was processed"
            )
        await self.db.commit()
        return await self.get_booking_or_raise(booking_id)

    async def complete_booking(self, booking_id: UUID) -> Booking:
        booking = await self.get_booking_or_raise(booking_id)
        booking = await self._apply_transition(booking, BookingStatus.COMPLETED)

        logger.info("Booking completed", extra=booking_snapshot(booking))
        await self._notify("booking.completed", booking)
        return booking

    async def mark_no_show(self, booking_id: UUID, now: Optional[datetime] = None) -> Booking:
        """
        Record that the customer did not turn up.

        Raises:
            InvalidTransitionError: Unless the booking is confirmed and its slot has started
        """
        booking = await self.get_booking_or_raise(booking_id)
        check_transition(booking, BookingStatus.NO_SHOW)

        time_slot = await self.time_slot_service.get_time_slot_or_raise(booking.time_slot_id)
        now = ensure_utc(now) if now is not None else utcnow()
        if ensure_utc(time_slot.starts_at) > now:
            raise InvalidTransitionError(
                str(booking.id), booking.status.value, BookingStatus.NO_SHOW.value, "the tour has not started yet"
            )

        booking = await self._apply_transition(booking, BookingStatus.NO_SHOW)
        logger.info("Booking marked as no-show", extra=booking_snapshot(booking))
        return booking

    async def record_payout(self, booking_id: UUID, payout_ref: str) -> Booking:
        """
        Record that the provider's share has been transferred out.

        Recording the same payout twice is a no-op.

        Raises:
            ConflictError: If the booking is unpaid, cancelled, or already paid out under another reference
        """
        booking = await self.get_booking_or_raise(booking_id)
        self._check_payout(booking, payout_ref)
        if booking.payout_state == PayoutState.PAID_OUT:
            return booking

        now = utcnow()
        recorded = await self.db.execute(
            update(Booking)
            .where(
                Booking.id == booking_id,
                Booking.status.in_([BookingStatus.CONFIRMED, BookingStatus.COMPLETED, BookingStatus.NO_SHOW]),
                Booking.payment_status == PaymentStatus.PAID,
                Booking.payout_state == PayoutState.NOT_PAID_OUT,
            )
            .values(payout_state=PayoutState.PAID_OUT, payout_ref=payout_ref, paid_out_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if recorded.rowcount != 1:
            await self.db.rollback()
            booking = await self.get_booking_or_raise(booking_id)
            self._check_payout(booking, payout_ref)
            if booking.payout_state != PayoutState.PAID_OUT:
                raise ConflictError(detail=f"Booking {booking_id} changed while the payout was recorded")
            return booking
        await self.db.commit()

        booking = await self.get_booking_or_raise(booking_id)
        logger.info("Booking payout recorded", extra={**booking_snapshot(booking), "payout_ref": payout_ref})
        return booking

    @staticmethod
    def _check_payout(booking: Booking, payout_ref: str) -> None:
        if booking.payout_state == PayoutState.PAID_OUT:
            if booking.payout_ref == payout_ref:
                return
            raise ConflictError(
                detail=f"Booking {booking.id} was already paid out",
                conflicting_resource={"booking_id": str(booking.id), "payout_ref": booking.payout_ref},
            )
        if booking.payment_status != PaymentStatus.PAID or booking.status == BookingStatus.CANCELLED:
            raise ConflictError(
                detail=f"Booking {booking.id} cannot be paid out in state {booking.status.value}/{booking.payment_status.value}"
            )

    async def cancel_booking(
        self,
        booking_id: UUID,
        cancelled_by: CancelledBy = CancelledBy.CUSTOMER,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CancellationResult:
        """
        Cancel a booking, release its spots and settle the refund.

        The cancellation is committed before the refund is attempted, so a
        failing processor never blocks it. Cancelling an already cancelled
        booking returns the stored outcome without another refund, unless the
        earlier refund was interrupted, in which case it is resumed under the
        same idempotency keys.

        Raises:
            InvalidTransitionError: If the booking is completed or a no-show
            CancellationNotAllowedError: If the tour has already started
            ConflictError: If the booking keeps changing underneath the request
        """
        now = ensure_utc(now) if now is not None else utcnow()

        for _ in range(CANCEL_CLAIM_ATTEMPTS):
            booking = await self.get_booking_or_raise(booking_id)
            if booking.status == BookingStatus.CANCELLED:
                return await self._replay_cancellation(booking)

            result = await self._claim_cancellation(booking, cancelled_by, reason, now)
            if result is not None:
                return result
            logger.info(
                "Booking changed before cancellation was claimed - re-evaluating",
                extra={"booking_id": str(booking_id)},
            )

        raise ConflictError(detail=f"Booking {booking_id} kept changing while being cancelled")

    async def _claim_cancellation(
        self,
        booking: Booking,
        cancelled_by: CancelledBy,
        reason: Optional[str],
        now: datetime,
    ) -> Optional[CancellationResult]:
        """Cancel ``booking`` as observed; None when another request changed it first."""
        check_transition(booking, BookingStatus.CANCELLED)
        booking_id = booking.id

        tour = await self.tour_service.get_tour_by_id_or_raise(booking.tour_id)
        time_slot = await self.time_slot_service.get_time_slot_or_raise(booking.time_slot_id)

        calculation = evaluate(booking.total_amount, time_slot.starts_at, tour_policy(tour), cancelled_by, now)
        if not calculation.can_cancel:
            logger.warning(
                "Cancellation rejected - tour already started",
                extra={**booking_snapshot(booking), "hours_until_start": calculation.hours_until_start},
            )
            raise CancellationNotAllowedError(str(booking.id), calculation.rule)

        needs_refund = booking.payment_status == PaymentStatus.PAID and calculation.refund_amount > 0
        refund_amount = calculation.refund_amount if needs_refund else ZERO
        refund_method = select_refund_method(booking.payout_state) if needs_refund else None

        try:
            # The refund decision holds only for the payment and payout state it was made on
            claimed = await self.db.execute(
                update(Booking)
                .where(
                    Booking.id == booking_id,
                    Booking.status == booking.status,
                    Booking.payment_status == booking.payment_status,
                    Booking.payout_state == booking.payout_state,
                )
                .values(
                    status=BookingStatus.CANCELLED,
                    cancelled_by=cancelled_by,
                    cancellation_reason=reason,
                    cancelled_at=now,
                    refund_percentage=calculation.refund_percentage,
                    refund_amount=refund_amount,
                    refund_rule=calculation.rule,
                    refund_method=refund_method,
                    refund_status=RefundStatus.PENDING if needs_refund else RefundStatus.NOT_REQUIRED,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                await self.db.rollback()
                return None

            await self.ledger.release(time_slot.id, booking.counting_participants)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        booking = await self.get_booking_or_raise(booking_id)
        metrics_collector.record_booking_cancelled(cancelled_by.value)
        logger.info(
            "Booking cancelled",
            extra={
                **booking_snapshot(booking),
                "cancelled_by": cancelled_by.value,
                "refund_percentage": calculation.refund_percentage,
                "refund_amount": str(refund_amount),
                "released_seats": booking.counting_participants,
            },
        )

        if needs_refund:
            await self._settle_refund(booking, tour.provider_account_ref)

        await self._notify("booking.cancelled", booking)
        return CancellationResult(
            booking=booking,
            calculation=calculation,
            refund_status=booking.refund_status,
            refund_method=booking.refund_method,
        )

    async def _settle_refund(self, booking: Booking, provider_account_ref: Optional[str]) -> RefundOutcome:
        try:
            outcome = await self.refund_router.settle(booking, booking.refund_amount, provider_account_ref)
        except Exception as e:
            method = booking.refund_method or select_refund_method(booking.payout_state)
            metrics_collector.record_refund(method.value, RefundStatus.FAILED.value)
            logger.exception("Refund settlement raised unexpectedly", extra=booking_snapshot(booking))
            outcome = RefundOutcome(
                status=RefundStatus.FAILED,
                amount=booking.refund_amount,
                method=method,
                reversal_ref=booking.reversal_ref,
                error=f"Refund failed: {e}",
            )

        booking.refund_status = outcome.status
        booking.refund_method = outcome.method
        booking.refund_ref = outcome.refund_ref
        booking.reversal_ref = outcome.reversal_ref
        booking.refund_error = outcome.error
        if outcome.status == RefundStatus.SUCCEEDED and booking.refund_amount >= booking.total_amount:
            booking.payment_status = PaymentStatus.REFUNDED
        await self.db.commit()
        return outcome

    async def _replay_cancellation(self, booking: Booking) -> CancellationResult:
        """Outcome of an earlier cancellation, resuming its refund if it was interrupted."""
        if booking.refund_status == RefundStatus.PENDING:
            tour = await self.tour_service.get_tour_by_id_or_raise(booking.tour_id)
            logger.info("Resuming interrupted refund", extra=booking_snapshot(booking))
            await self._settle_refund(booking, tour.provider_account_ref)
        else:
            logger.info("Booking already cancelled - returning stored outcome", extra=booking_snapshot(booking))

        time_slot = await self.time_slot_service.get_time_slot_or_raise(booking.time_slot_id)
        cancelled_at = ensure_utc(booking.cancelled_at) if booking.cancelled_at else utcnow()
        refund_amount = booking.refund_amount if booking.refund_amount is not None else ZERO
        calculation = RefundCalculation(
            is_refundable=refund_amount > 0,
            refund_percentage=booking.refund_percentage or 0,
            refund_amount=refund_amount,
            rule=booking.refund_rule or "",
            hours_until_start=(ensure_utc(time_slot.starts_at) - cancelled_at).total_seconds() / 3600,
            can_cancel=True,
        )
        return CancellationResult(
            booking=booking,
            calculation=calculation,
            refund_status=booking.refund_status or RefundStatus.NOT_REQUIRED,
            refund_method=booking.refund_method,
            already_cancelled=True,
        )


    async def get_booking(self, booking_id: UUID) -> Optional[Booking]:
        stmt = select(Booking).where(Booking.id == booking_id).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_booking_by_reference(self, reference: str) -> Optional[Booking]:
        stmt = select(Booking).where(Booking.reference == reference)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_booking_or_raise(self, booking_id: UUID) -> Booking:
        booking = await self.get_booking(booking_id)
        if not booking:
            logger.warning("Booking not found", extra={"booking_id": str(booking_id)})
            raise NotFoundError(resource_type="booking", resource_id=str(booking_id))
        return booking

    @staticmethod
    def has_consistent_state(booking: Booking) -> bool:
        """Whether the booking's status and payment status may coexist."""
        return booking.payment_status in VALID_PAYMENT_STATES[booking.status]
