"""Shared test configuration and fixtures.

Each test gets a fresh schema in its own SQLite file (via aiosqlite) so that
the session-per-operation store sees commits made by other sessions. Set
``TEST_DATABASE_URL`` to run against PostgreSQL instead.
"""

import os
import uuid
from collections.abc import AsyncGenerator
from dataclasses import replace
from datetime import datetime

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from plansync.api.deps import get_db, get_services
from plansync.auth.jwt import create_access_token
from plansync.billing.fetcher import ExternalSubscriptionSnapshot
from plansync.billing.plans import PlanTier
from plansync.billing.states import ProviderStatus, SubscriptionStatus
from plansync.config import Settings
from plansync.database import Base
from plansync.main import app
from plansync.models import BillingAccount
from plansync.services.container import SyncServices

PRO_PRICE = "price_pro_monthly"
ENTERPRISE_PRICE = "price_enterprise_monthly"

PRICE_TABLE = {
    PRO_PRICE: PlanTier.PRO,
    ENTERPRISE_PRICE: PlanTier.ENTERPRISE,
}


def make_snapshot(
    external_id: str,
    price_id: str | None = PRO_PRICE,
    status: str = "active",
    period_end: datetime | None = None,
    cancel_at_period_end: bool = False,
) -> ExternalSubscriptionSnapshot:
    """Build a provider subscription snapshot."""
    return ExternalSubscriptionSnapshot(
        external_id=external_id,
        price_id=price_id,
        status=ProviderStatus.from_provider(status),
        current_period_end=period_end,
        cancel_at_period_end=cancel_at_period_end,
    )


class FakeBillingProvider:
    """In-memory BillingProvider that records every call."""

    def __init__(self) -> None:
        self.subscriptions: dict[str, list[ExternalSubscriptionSnapshot]] = {}
        self.list_calls: list[str] = []
        self.cancel_calls: list[str] = []
        self.list_errors: dict[str, Exception] = {}
        self.cancel_errors: dict[str, Exception] = {}

    def set_subscriptions(self, customer_id: str, *snapshots: ExternalSubscriptionSnapshot) -> None:
        self.subscriptions[customer_id] = list(snapshots)

    async def list_subscriptions(
        self, customer_id: str, limit: int = 100
    ) -> list[ExternalSubscriptionSnapshot]:
        self.list_calls.append(customer_id)
        if customer_id in self.list_errors:
            raise self.list_errors[customer_id]
        return list(self.subscriptions.get(customer_id, []))[:limit]

    async def cancel_subscription(self, subscription_id: str) -> None:
        self.cancel_calls.append(subscription_id)
        if subscription_id in self.cancel_errors:
            raise self.cancel_errors[subscription_id]
        for customer_id, snapshots in self.subscriptions.items():
            self.subscriptions[customer_id] = [
                replace(s, status=ProviderStatus.CANCELED) if s.external_id == subscription_id else s
                for s in snapshots
            ]


# ---------------------------------------------------------------------------
# Per-test database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Create a fresh schema for the test and drop it afterwards."""
    url = os.getenv("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'plansync_test.db'}"
    engine = create_async_engine(url, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """A session for assertions on what the services committed."""
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture
def provider() -> FakeBillingProvider:
    return FakeBillingProvider()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        sync_cooldown_seconds=300,
        subscription_list_limit=100,
        sweep_concurrency=2,
        sweep_limit=500,
        past_due_grants_access=True,
        sync_actor="system-sync",
    )


@pytest.fixture
def services(session_factory, provider, test_settings) -> SyncServices:
    return SyncServices(
        session_factory,
        provider,
        config=test_settings,
        price_table=PRICE_TABLE,
    )


@pytest.fixture
def make_account(session_factory):
    """Factory that commits a billing account and returns it (detached)."""

    async def _make(
        plan: PlanTier = PlanTier.FREE,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        customer_id: str | None = None,
        subscription_id: str | None = None,
        price_id: str | None = None,
        period_end: datetime | None = None,
        account_id: uuid.UUID | None = None,
    ) -> BillingAccount:
        account = BillingAccount(
            account_id=account_id or uuid.uuid4(),
            plan=plan,
            status=status,
            external_customer_id=customer_id,
            external_subscription_id=subscription_id,
            external_price_id=price_id,
            current_period_end=period_end,
        )
        async with session_factory() as db:
            async with db.begin():
                db.add(account)
        return account

    return _make


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def client(services, session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Provide an httpx AsyncClient wired to the test services and database."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_services] = lambda: services

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


def account_headers(account_id: uuid.UUID) -> dict[str, str]:
    """Authorization headers for an account-scoped access token."""
    token = create_access_token({"sub": str(account_id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers() -> dict[str, str]:
    token = create_access_token({"sub": "admin-42", "role": "admin"})
    return {"Authorization": f"Bearer {token}"}
