"""Tests for the access check endpoint."""

import uuid
from datetime import timedelta

from conftest import PRO_PRICE, account_headers, make_snapshot
from httpx import AsyncClient

from plansync.auth.jwt import create_access_token
from plansync.billing.plans import PlanTier
from plansync.billing.states import SubscriptionStatus
from plansync.exceptions import BillingProviderError
from plansync.services.reconciliation import utcnow


class TestAccessEndpoint:
    async def test_allowed(self, client: AsyncClient, provider, make_account):
        account = await make_account(
            plan=PlanTier.PRO, customer_id="cus_1", subscription_id="sub_1", price_id=PRO_PRICE
        )
        provider.set_subscriptions("cus_1", make_snapshot("sub_1", PRO_PRICE))

        response = await client.get(
            "/api/v1/access",
            params={"required_tier": "PRO"},
            headers=account_headers(account.account_id),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["allowed"] is True
        assert data["required_tier"] == "PRO"
        assert data["current_tier"] == "PRO"
        assert data["is_canceling"] is False
        assert data["degraded"] is False

    async def test_denied(self, client: AsyncClient, make_account):
        account = await make_account()

        response = await client.get(
            "/api/v1/access",
            params={"required_tier": "enterprise"},
            headers=account_headers(account.account_id),
        )

        assert response.status_code == 200
        assert response.json()["allowed"] is False

    async def test_grace_period(self, client: AsyncClient, provider, make_account):
        period_end = utcnow() + timedelta(days=3)
        account = await make_account(
            plan=PlanTier.PRO,
            status=SubscriptionStatus.CANCELING,
            customer_id="cus_1",
            subscription_id="sub_1",
            price_id=PRO_PRICE,
            period_end=period_end,
        )
        provider.set_subscriptions(
            "cus_1",
            make_snapshot("sub_1", PRO_PRICE, period_end=period_end, cancel_at_period_end=True),
        )

        response = await client.get(
            "/api/v1/access",
            params={"required_tier": "PRO"},
            headers=account_headers(account.account_id),
        )

        data = response.json()
        assert data["allowed"] is True
        assert data["is_canceling"] is True
        assert data["period_end"] is not None

    async def test_invalid_tier(self, client: AsyncClient, make_account):
        account = await make_account()

        response = await client.get(
            "/api/v1/access",
            params={"required_tier": "platinum"},
            headers=account_headers(account.account_id),
        )

        assert response.status_code == 422

    async def test_unknown_account(self, client: AsyncClient):
        response = await client.get(
            "/api/v1/access",
            params={"required_tier": "PRO"},
            headers=account_headers(uuid.uuid4()),
        )

        assert response.status_code == 404

    async def test_provider_rejection_fails_open(self, client: AsyncClient, provider, make_account):
        account = await make_account(
            plan=PlanTier.PRO, customer_id="cus_1", subscription_id="sub_1", price_id=PRO_PRICE
        )
        provider.list_errors["cus_1"] = BillingProviderError("invalid API key")

        response = await client.get(
            "/api/v1/access",
            params={"required_tier": "PRO"},
            headers=account_headers(account.account_id),
        )

        assert response.status_code == 200
        assert response.json()["allowed"] is True
        assert response.json()["degraded"] is True

    async def test_requires_token(self, client: AsyncClient):
        response = await client.get("/api/v1/access", params={"required_tier": "PRO"})
        assert response.status_code in (401, 403)

    async def test_non_uuid_subject_rejected(self, client: AsyncClient):
        token = create_access_token({"sub": "not-a-uuid"})
        response = await client.get(
            "/api/v1/access",
            params={"required_tier": "PRO"},
            headers={"Authorization": f"Bearer {token}"},
        )
        assert response.status_code == 401
