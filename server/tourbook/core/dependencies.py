"""FastAPI dependencies for database sessions, collaborators and services."""

from functools import lru_cache
from typing import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..integrations.notifications import LoggingNotifier, Notifier
from ..integrations.payments import PaymentGateway, StripePaymentGateway, UnconfiguredPaymentGateway
from ..services.booking_service import BookingService
from .config import settings
from .database import get_async_session


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Database dependency that provides async database sessions.

    Yields:
        AsyncSession: Database session
    """
    async for session in get_async_session():
        yield session


@lru_cache
def get_payment_gateway() -> PaymentGateway:
    """Process-wide payment gateway; without credentials every payment call fails."""
    if settings.stripe_api_key:
        return StripePaymentGateway(settings.stripe_api_key, settings.payment_timeout_seconds)
    return UnconfiguredPaymentGateway()


@lru_cache
def get_notifier() -> Notifier:
    return LoggingNotifier()


def get_booking_service(
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: Notifier = Depends(get_notifier),
) -> BookingService:
    return BookingService(db, gateway, notifier)
