"""Payment processor interface and its Stripe implementation."""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Callable, Optional, Protocol, TypeVar

import stripe

from ..core.money import ZERO, from_minor_units, to_minor_units

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PaymentGatewayError(Exception):
    """
    A payment processor call failed or was rejected.

    ``indeterminate`` marks failures where the processor may still have
    acted on the request, such as a timeout or a processor-side error.
    Such a call must be retried under the same idempotency key.
    """

    def __init__(self, message: str, code: Optional[str] = None, indeterminate: bool = False):
        super().__init__(message)
        self.message = message
        self.code = code
        self.indeterminate = indeterminate


class PaymentGateway(Protocol):
    """Narrow view of the payment processor and payout network."""

    async def charge(
        self,
        amount: Decimal,
        currency: str,
        customer_ref: str,
        *,
        idempotency_key: str,
        payment_method_ref: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> str:
        """Charge the customer and return the charge reference."""
        ...

    async def refund(self, charge_ref: str, amount: Decimal, currency: str, *, idempotency_key: str) -> str:
        """Refund part or all of a charge and return the refund reference."""
        ...

    async def reverse_transfer(self, payout_ref: str, amount: Decimal, currency: str, *, idempotency_key: str) -> str:
        """Pull funds back from a provider payout and return the reversal reference."""
        ...

    async def get_available_balance(self, account_ref: str, currency: str) -> Decimal:
        """Funds available on the provider's account in ``currency``."""
        ...


class StripePaymentGateway:
    """
    Payment gateway backed by Stripe.

    The Stripe SDK is blocking, so each call runs in a worker thread with a
    timeout. Idempotency keys are passed through so retried refunds and
    reversals are deduplicated by Stripe.
    """

    def __init__(self, api_key: str, timeout_seconds: float = 30.0):
        stripe.api_key = api_key
        self.timeout_seconds = timeout_seconds

    async def _call(self, operation: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args, **kwargs),
                timeout=self.timeout_seconds,
            )
        except stripe.StripeError as e:
            # Declines and rejected parameters are final; anything else may have gone through
            indeterminate = not isinstance(e, (stripe.CardError, stripe.InvalidRequestError))
            logger.error(
                "Stripe call failed",
                extra={
                    "operation": operation,
                    "error": str(e),
                    "code": getattr(e, "code", None),
                    "indeterminate": indeterminate,
                },
            )
            raise PaymentGatewayError(
                e.user_message or str(e), code=getattr(e, "code", None), indeterminate=indeterminate
            ) from e
        except asyncio.TimeoutError as e:
            logger.error("Stripe call timed out", extra={"operation": operation, "timeout": self.timeout_seconds})
            raise PaymentGatewayError(f"{operation} timed out", code="timeout", indeterminate=True) from e

    async def charge(
        self,
        amount: Decimal,
        currency: str,
        customer_ref: str,
        *,
        idempotency_key: str,
        payment_method_ref: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> str:
        params: dict[str, Any] = {
            "amount": to_minor_units(amount, currency),
            "currency": currency.lower(),
            "customer": customer_ref,
            "confirm": True,
            "off_session": True,
            "metadata": metadata or {},
        }
        if payment_method_ref:
            params["payment_method"] = payment_method_ref

        intent = await self._call(
            "charge", stripe.PaymentIntent.create, idempotency_key=idempotency_key, **params
        )
        if intent.status != "succeeded":
            raise PaymentGatewayError(
                f"Payment not completed (status: {intent.status})",
                code=intent.status,
                indeterminate=intent.status == "processing",
            )
        return intent.id

    async def refund(self, charge_ref: str, amount: Decimal, currency: str, *, idempotency_key: str) -> str:
        refund = await self._call(
            "refund",
            stripe.Refund.create,
            payment_intent=charge_ref,
            amount=to_minor_units(amount, currency),
            idempotency_key=idempotency_key,
        )
        if refund.status == "failed":
            raise PaymentGatewayError("Refund was rejected by the processor", code=refund.status)
        return refund.id

    async def reverse_transfer(self, payout_ref: str, amount: Decimal, currency: str, *, idempotency_key: str) -> str:
        # create_reversal takes the transfer id positionally
        reversal = await self._call(
            "reverse_transfer",
            stripe.Transfer.create_reversal,
            payout_ref,
            amount=to_minor_units(amount, currency),
            idempotency_key=idempotency_key,
        )
        return reversal.id

    async def get_available_balance(self, account_ref: str, currency: str) -> Decimal:
        balance = await self._call("get_available_balance", stripe.Balance.retrieve, stripe_account=account_ref)
        total = ZERO
        for funds in balance.available:
            if funds.currency.upper() == currency.upper():
                total += from_minor_units(funds.amount, currency)
        return total


class UnconfiguredPaymentGateway:
    """Gateway used when no processor credentials are set; every call fails."""

    async def _fail(self, operation: str):
        logger.warning("Payment processor not configured", extra={"operation": operation})
        raise PaymentGatewayError("Payment processing is not configured", code="not_configured")

    async def charge(self, amount, currency, customer_ref, *, idempotency_key, payment_method_ref=None, metadata=None):
        await self._fail("charge")

    async def refund(self, charge_ref, amount, currency, *, idempotency_key):
        await self._fail("refund")

    async def reverse_transfer(self, payout_ref, amount, currency, *, idempotency_key):
        await self._fail("reverse_transfer")

    async def get_available_balance(self, account_ref, currency):
        await self._fail("get_available_balance")
