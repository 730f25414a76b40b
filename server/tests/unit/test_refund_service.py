"""Unit tests for the refund settlement router."""

import uuid
from decimal import Decimal

import pytest

from tourbook.models.booking import Booking, PayoutState, RefundMethod, RefundStatus
from tourbook.services.refund_service import RefundRouter, select_refund_method


def paid_booking(**overrides) -> Booking:
    fields = dict(
        id=uuid.uuid4(),
        currency="EUR",
        total_amount=Decimal("89.57"),
        provider_amount=Decimal("88.00"),
        charge_ref="pi_123",
        payout_state=PayoutState.NOT_PAID_OUT,
    )
    fields.update(overrides)
    return Booking(**fields)


def test_select_refund_method():
    assert select_refund_method(PayoutState.NOT_PAID_OUT) == RefundMethod.DIRECT_REFUND
    assert select_refund_method(PayoutState.PAID_OUT) == RefundMethod.TRANSFER_REVERSAL


@pytest.mark.asyncio
async def test_direct_refund_against_original_charge(gateway):
    booking = paid_booking()

    outcome = await RefundRouter(gateway).settle(booking, Decimal("44.79"), "acct_provider")

    assert outcome.status == RefundStatus.SUCCEEDED
    assert outcome.method == RefundMethod.DIRECT_REFUND
    assert outcome.refund_ref is not None
    assert [name for name, _ in gateway.calls] == ["refund"]
    refund = gateway.calls_to("refund")[0]
    assert refund["charge_ref"] == "pi_123"
    assert refund["amount"] == Decimal("44.79")
    assert refund["idempotency_key"] == f"refund-{booking.id}"


@pytest.mark.asyncio
async def test_paid_out_booking_reverses_transfer_before_refund(gateway):
    gateway.balances["acct_provider"] = Decimal("500.00")
    booking = paid_booking(payout_state=PayoutState.PAID_OUT, payout_ref="tr_1")

    outcome = await RefundRouter(gateway).settle(booking, Decimal("89.57"), "acct_provider")

    assert outcome.status == RefundStatus.SUCCEEDED
    assert outcome.method == RefundMethod.TRANSFER_REVERSAL
    assert outcome.reversal_ref is not None
    assert [name for name, _ in gateway.calls] == ["get_available_balance", "reverse_transfer", "refund"]
    # The provider only ever received the subtotal
    assert gateway.calls_to("reverse_transfer")[0]["amount"] == Decimal("88.00")


@pytest.mark.asyncio
async def test_insufficient_provider_balance_fails_without_moving_money(gateway):
    gateway.balances["acct_provider"] = Decimal("10.00")
    booking = paid_booking(payout_state=PayoutState.PAID_OUT, payout_ref="tr_1")

    outcome = await RefundRouter(gateway).settle(booking, Decimal("89.57"), "acct_provider")

    assert outcome.status == RefundStatus.FAILED
    assert outcome.requires_manual_action
    assert "Insufficient provider balance" in outcome.error
    assert gateway.calls_to("reverse_transfer") == []
    assert gateway.calls_to("refund") == []


@pytest.mark.asyncio
async def test_balance_check_error_is_a_failed_outcome(gateway):
    gateway.fail_balance = "connection reset"
    booking = paid_booking(payout_state=PayoutState.PAID_OUT, payout_ref="tr_1")

    outcome = await RefundRouter(gateway).settle(booking, Decimal("89.57"), "acct_provider")

    assert outcome.status == RefundStatus.FAILED
    assert "Balance check failed" in outcome.error


@pytest.mark.asyncio
async def test_refund_failure_after_reversal_keeps_reversal_reference(gateway):
    gateway.balances["acct_provider"] = Decimal("500.00")
    gateway.fail_refund = "charge already refunded"
    booking = paid_booking(payout_state=PayoutState.PAID_OUT, payout_ref="tr_1")

    outcome = await RefundRouter(gateway).settle(booking, Decimal("89.57"), "acct_provider")

    assert outcome.status == RefundStatus.FAILED
    assert outcome.reversal_ref is not None


@pytest.mark.asyncio
async def test_resumed_settlement_skips_completed_reversal(gateway):
    booking = paid_booking(payout_state=PayoutState.PAID_OUT, payout_ref="tr_1", reversal_ref="trr_9")

    outcome = await RefundRouter(gateway).settle(booking, Decimal("89.57"), "acct_provider")

    assert outcome.status == RefundStatus.SUCCEEDED
    assert outcome.reversal_ref == "trr_9"
    assert [name for name, _ in gateway.calls] == ["refund"]


@pytest.mark.asyncio
async def test_existing_refund_reference_is_not_refunded_again(gateway):
    booking = paid_booking(refund_ref="re_1")

    outcome = await RefundRouter(gateway).settle(booking, Decimal("89.57"), "acct_provider")

    assert outcome.status == RefundStatus.SUCCEEDED
    assert outcome.refund_ref == "re_1"
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_missing_provider_account(gateway):
    booking = paid_booking(payout_state=PayoutState.PAID_OUT, payout_ref="tr_1")

    outcome = await RefundRouter(gateway).settle(booking, Decimal("89.57"), None)

    assert outcome.status == RefundStatus.FAILED
    assert gateway.calls == []
