"""Refund settlement router: direct refund or transfer reversal then refund."""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, assert_never

from ..core.observability import metrics_collector
from ..integrations.payments import PaymentGateway, PaymentGatewayError
from ..models.booking import Booking, PayoutState, RefundMethod, RefundStatus

logger = logging.getLogger(__name__)


@dataclass
class RefundOutcome:
    """Result of a settlement attempt. Failures are values, not exceptions."""

    status: RefundStatus
    amount: Decimal
    method: Optional[RefundMethod] = None
    refund_ref: Optional[str] = None
    reversal_ref: Optional[str] = None
    error: Optional[str] = None

    @property
    def requires_manual_action(self) -> bool:
        return self.status == RefundStatus.FAILED


def select_refund_method(payout_state: PayoutState) -> RefundMethod:
    """Funds still on the platform are refunded directly; paid-out funds are pulled back first."""
    match payout_state:
        case PayoutState.NOT_PAID_OUT:
            return RefundMethod.DIRECT_REFUND
        case PayoutState.PAID_OUT:
            return RefundMethod.TRANSFER_REVERSAL
        case _:
            assert_never(payout_state)


def refund_idempotency_key(booking: Booking) -> str:
    return f"refund-{booking.id}"


def reversal_idempotency_key(booking: Booking) -> str:
    return f"reversal-{booking.id}"


class RefundRouter:
    """Routes a cancellation refund through the payment gateway."""

    def __init__(self, gateway: PaymentGateway):
        self.gateway = gateway

    async def settle(
        self,
        booking: Booking,
        amount: Decimal,
        provider_account_ref: Optional[str],
    ) -> RefundOutcome:
        """
        Refund ``amount`` of the booking's charge.

        References already stored on the booking from an earlier attempt are
        reused, so a resumed settlement never pays out twice.
        """
        method = select_refund_method(booking.payout_state)

        if booking.refund_ref:
            return RefundOutcome(
                status=RefundStatus.SUCCEEDED,
                amount=amount,
                method=method,
                refund_ref=booking.refund_ref,
                reversal_ref=booking.reversal_ref,
            )

        if not booking.charge_ref:
            return self._failed(booking, amount, method, "Booking has no charge to refund")

        reversal_ref = booking.reversal_ref
        if method == RefundMethod.TRANSFER_REVERSAL and reversal_ref is None:
            outcome = await self._reverse_transfer(booking, amount, provider_account_ref)
            if isinstance(outcome, RefundOutcome):
                return outcome
            reversal_ref = outcome

        try:
            refund_ref = await self.gateway.refund(
                booking.charge_ref,
                amount,
                booking.currency,
                idempotency_key=refund_idempotency_key(booking),
            )
        except PaymentGatewayError as e:
            return self._failed(booking, amount, method, f"Refund failed: {e.message}", reversal_ref)

        metrics_collector.record_refund(method.value, RefundStatus.SUCCEEDED.value)
        logger.info(
            "Refund settled",
            extra={
                "booking_id": str(booking.id),
                "method": method.value,
                "amount": str(amount),
                "refund_ref": refund_ref,
                "reversal_ref": reversal_ref,
            },
        )
        return RefundOutcome(
            status=RefundStatus.SUCCEEDED,
            amount=amount,
            method=method,
            refund_ref=refund_ref,
            reversal_ref=reversal_ref,
        )

    async def _reverse_transfer(
        self,
        booking: Booking,
        amount: Decimal,
        provider_account_ref: Optional[str],
    ) -> str | RefundOutcome:
        """Reversal reference, or a failed outcome when the funds cannot be pulled back."""
        method = RefundMethod.TRANSFER_REVERSAL
        reversal_amount = min(amount, booking.provider_amount)

        if not booking.payout_ref:
            return self._failed(booking, amount, method, "Booking is marked paid out but has no payout reference")
        if not provider_account_ref:
            return self._failed(booking, amount, method, "Tour has no provider account to reverse from")

        try:
            balance = await self.gateway.get_available_balance(provider_account_ref, booking.currency)
        except PaymentGatewayError as e:
            return self._failed(booking, amount, method, f"Balance check failed: {e.message}")

        if balance < reversal_amount:
            return self._failed(
                booking,
                amount,
                method,
                f"Insufficient provider balance: {balance} available, {reversal_amount} needed",
            )

        try:
            return await self.gateway.reverse_transfer(
                booking.payout_ref,
                reversal_amount,
                booking.currency,
                idempotency_key=reversal_idempotency_key(booking),
            )
        except PaymentGatewayError as e:
            return self._failed(booking, amount, method, f"Transfer reversal failed: {e.message}")

    def _failed(
        self,
        booking: Booking,
        amount: Decimal,
        method: RefundMethod,
        error: str,
        reversal_ref: Optional[str] = None,
    ) -> RefundOutcome:
        metrics_collector.record_refund(method.value, RefundStatus.FAILED.value)
        logger.error(
            "Refund requires manual settlement",
            extra={
                "booking_id": str(booking.id),
                "method": method.value,
                "amount": str(amount),
                "error": error,
            },
        )
        return RefundOutcome(
            status=RefundStatus.FAILED,
            amount=amount,
            method=method,
            reversal_ref=reversal_ref,
            error=error,
        )
