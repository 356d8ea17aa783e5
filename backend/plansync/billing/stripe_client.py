"""Async Stripe API wrapper used as the billing provider."""

import asyncio
import logging
from collections.abc import Awaitable
from datetime import datetime, timezone
from typing import TypeVar

import stripe
from stripe import StripeClient

from plansync.billing.fetcher import ExternalSubscriptionSnapshot
from plansync.billing.states import ProviderStatus
from plansync.config import settings
from plansync.exceptions import BillingProviderError, TransientProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Network, throttling and provider-side failures are safe to retry later.
_TRANSIENT_ERRORS = (
    stripe.APIConnectionError,
    stripe.RateLimitError,
    stripe.APIError,
)


def get_stripe_client() -> StripeClient:
    """Create a StripeClient instance with async HTTP support and a bounded timeout."""
    return StripeClient(
        settings.stripe_secret_key,
        http_client=stripe.HTTPXClient(timeout=settings.billing_provider_timeout_seconds),
    )


async def _call_provider(operation: str, call: Awaitable[T]) -> T:
    """Await a Stripe call, translating its failures into provider errors."""
    try:
        return await asyncio.wait_for(call, timeout=settings.billing_provider_timeout_seconds)
    except asyncio.TimeoutError as e:
        logger.warning("Stripe %s timed out", operation)
        raise TransientProviderError(f"Stripe {operation} timed out") from e
    except _TRANSIENT_ERRORS as e:
        logger.warning("Stripe %s failed transiently: %s", operation, e)
        raise TransientProviderError(f"Stripe {operation} failed: {e}") from e
    except stripe.StripeError as e:
        logger.error("Stripe %s rejected: %s", operation, e)
        raise BillingProviderError(f"Stripe {operation} rejected: {e}") from e


def _ts_to_naive(ts: int | None) -> datetime | None:
    """Convert Stripe Unix timestamp to naive UTC datetime."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)


def _get_first_item(stripe_sub: stripe.Subscription):
    """Get the first subscription item, using bracket notation to avoid
    collision with Python dict .items() in newer Stripe API versions.
    """
    sub_items = stripe_sub["items"]
    if sub_items and sub_items.data:
        return sub_items.data[0]
    return None


def _get_price_id_from_subscription(stripe_sub: stripe.Subscription) -> str | None:
    """Extract the first price ID from a Stripe subscription's items."""
    item = _get_first_item(stripe_sub)
    return item.price.id if item else None


def _get_period_end(stripe_sub: stripe.Subscription) -> datetime | None:
    """Extract the current period end.

    In Stripe API 2025-08-27 (basil), current_period_end moved from the
    subscription object to the subscription item.
    """
    item = _get_first_item(stripe_sub)
    period_end = getattr(item, "current_period_end", None) if item else None
    if period_end is None:
        period_end = getattr(stripe_sub, "current_period_end", None)
    return _ts_to_naive(period_end)


def snapshot_from_stripe(stripe_sub: stripe.Subscription) -> ExternalSubscriptionSnapshot:
    """Convert a Stripe subscription object into an immutable snapshot."""
    return ExternalSubscriptionSnapshot(
        external_id=stripe_sub.id,
        price_id=_get_price_id_from_subscription(stripe_sub),
        status=ProviderStatus.from_provider(stripe_sub.status),
        current_period_end=_get_period_end(stripe_sub),
        cancel_at_period_end=bool(getattr(stripe_sub, "cancel_at_period_end", False)),
    )


async def list_customer_subscriptions(
    customer_id: str, limit: int = 100
) -> list[stripe.Subscription]:
    """List every subscription of a customer regardless of status, in Stripe order."""
    client = get_stripe_client()
    result = await _call_provider(
        "subscriptions.list",
        client.v1.subscriptions.list_async(
            params={"customer": customer_id, "status": "all", "limit": limit}
        ),
    )
    return list(result.data)


async def cancel_subscription(subscription_id: str) -> stripe.Subscription:
    """Cancel a Stripe subscription immediately."""
    client = get_stripe_client()
    logger.info("Canceling Stripe subscription %s", subscription_id)
    return await _call_provider(
        "subscriptions.cancel",
        client.v1.subscriptions.cancel_async(subscription_id),
    )


class StripeBillingProvider:
    """BillingProvider backed by the Stripe API."""

    async def list_subscriptions(
        self, customer_id: str, limit: int = 100
    ) -> list[ExternalSubscriptionSnapshot]:
        subscriptions = await list_customer_subscriptions(customer_id, limit=limit)
        return [snapshot_from_stripe(sub) for sub in subscriptions]

    async def cancel_subscription(self, subscription_id: str) -> None:
        await cancel_subscription(subscription_id)
