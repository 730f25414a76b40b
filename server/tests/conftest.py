"""Test configuration and fixtures."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")

from datetime import timedelta
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tourbook.core.clock import utcnow
from tourbook.core.database import Base
from tourbook.integrations.payments import PaymentGatewayError
from tourbook.models import *  # noqa: F403 - Import all models
from tourbook.models.tour import Tour
from tourbook.models.time_slot import TimeSlot
from tourbook.services.booking_service import BookingService

# Test database URL (in-memory SQLite for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

CATEGORY_PRICING = {
    "kind": "participant_categories",
    "categories": [
        {"id": "adult", "label": "Adult", "price": "35.00"},
        {"id": "child", "label": "Child", "price": "18.00", "max_age": 12},
        {"id": "infant", "label": "Infant", "price": "0.00", "max_age": 2, "counts_toward_capacity": False},
    ],
    "group_discounts": [
        {"min_participants": 6, "max_participants": 9, "discount_type": "percentage", "discount_value": "10"},
    ],
    "addons": [
        {"id": "lunch", "name": "Picnic lunch", "price": "12.50"},
    ],
}


class FakePaymentGateway:
    """In-memory payment gateway that records every call and honours idempotency keys."""

    def __init__(self):
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.balances: dict[str, Decimal] = {}
        self.charges: dict[str, str] = {}
        self.refunds: dict[str, str] = {}
        self.fail_charge: Optional[str] = None
        self.charge_outcome_unknown = False
        self.during_charge: Optional[Callable[[], Awaitable[None]]] = None
        self.fail_refund: Optional[str] = None
        self.refund_exception: Optional[Exception] = None
        self.fail_reversal: Optional[str] = None
        self.fail_balance: Optional[str] = None

    def calls_to(self, operation: str) -> list[dict[str, Any]]:
        return [params for name, params in self.calls if name == operation]

    async def charge(self, amount, currency, customer_ref, *, idempotency_key, payment_method_ref=None, metadata=None):
        self.calls.append(("charge", {"amount": amount, "currency": currency, "idempotency_key": idempotency_key}))
        if self.during_charge is not None:
            hook, self.during_charge = self.during_charge, None
            await hook()
        if self.fail_charge:
            raise PaymentGatewayError(self.fail_charge, code="card_declined")
        charge_ref = self.charges.setdefault(idempotency_key, f"pi_{len(self.charges) + 1}")
        if self.charge_outcome_unknown:
            raise PaymentGatewayError("charge timed out", code="timeout", indeterminate=True)
        return charge_ref

    async def refund(self, charge_ref, amount, currency, *, idempotency_key):
        self.calls.append(("refund", {"charge_ref": charge_ref, "amount": amount, "idempotency_key": idempotency_key}))
        if self.refund_exception is not None:
            raise self.refund_exception
        if self.fail_refund:
            raise PaymentGatewayError(self.fail_refund)
        return self.refunds.setdefault(idempotency_key, f"re_{len(self.refunds) + 1}")

    async def reverse_transfer(self, payout_ref, amount, currency, *, idempotency_key):
        self.calls.append(
            ("reverse_transfer", {"payout_ref": payout_ref, "amount": amount, "idempotency_key": idempotency_key})
        )
        if self.fail_reversal:
            raise PaymentGatewayError(self.fail_reversal)
        return f"trr_{len(self.calls)}"

    async def get_available_balance(self, account_ref, currency):
        self.calls.append(("get_available_balance", {"account_ref": account_ref, "currency": currency}))
        if self.fail_balance:
            raise PaymentGatewayError(self.fail_balance)
        return self.balances.get(account_ref, Decimal("0.00"))


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.events: list[tuple[str, dict[str, Any]]] = []
        self.fail = fail

    async def notify(self, event, payload):
        self.events.append((event, payload))
        if self.fail:
            raise RuntimeError("mail server unavailable")


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def test_session(test_engine):
    """Create a test database session."""
    async_session = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session() as session:
        yield session


@pytest.fixture
def gateway():
    return FakePaymentGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def booking_service(test_session, gateway, notifier):
    return BookingService(test_session, gateway, notifier)


@pytest.fixture
def make_tour(test_session):
    """Factory inserting a tour; pricing defaults to adult/child/infant categories."""

    async def _make_tour(
        slug: str = "fjord-kayak",
        pricing: Optional[dict[str, Any]] = None,
        currency: str = "EUR",
        cancellation_policy_id: str = "flexible",
        cancellation_window_hours: Optional[int] = None,
        provider_account_ref: Optional[str] = "acct_provider",
    ) -> Tour:
        tour = Tour(
            name=slug.replace("-", " ").title(),
            slug=slug,
            currency=currency,
            pricing=pricing or CATEGORY_PRICING,
            cancellation_policy_id=cancellation_policy_id,
            cancellation_window_hours=cancellation_window_hours,
            provider_account_ref=provider_account_ref,
        )
        test_session.add(tour)
        await test_session.commit()
        return tour

    return _make_tour


@pytest.fixture
def make_slot(test_session):
    """Factory inserting a time slot starting ``starts_in`` from now."""

    async def _make_slot(
        tour: Tour,
        capacity_total: int = 10,
        committed: int = 0,
        starts_in: timedelta = timedelta(days=3),
    ) -> TimeSlot:
        starts_at = utcnow() + starts_in
        time_slot = TimeSlot(
            tour_id=tour.id,
            starts_at=starts_at,
            ends_at=starts_at + timedelta(hours=3),
            capacity_total=capacity_total,
            committed=committed,
            version=0,
        )
        test_session.add(time_slot)
        await test_session.commit()
        return time_slot

    return _make_slot


@pytest_asyncio.fixture(scope="function")
async def test_app(test_session, gateway, notifier):
    """Application wired to the test session and fake collaborators."""
    from tourbook.core.dependencies import get_db, get_notifier, get_payment_gateway
    from tourbook.main import create_app

    app = create_app()

    async def override_get_db():
        yield test_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_notifier] = lambda: notifier

    yield app

    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def test_client(test_app):
    """Create a test HTTP client."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def sample_tour_data():
    """Tour creation payload with category pricing."""
    return {
        "name": "Fjord Kayak Morning",
        "slug": "fjord-kayak-morning",
        "description": "Three hours on the water with a local guide",
        "currency": "EUR",
        "pricing": CATEGORY_PRICING,
        "cancellation_policy_id": "flexible",
        "provider_account_ref": "acct_provider",
    }
