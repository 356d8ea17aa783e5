"""External state fetcher: list every provider subscription for a customer and classify it."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from plansync.billing.plans import PlanTier, tier_for_price_id
from plansync.billing.states import ProviderStatus
from plansync.exceptions import UnmappablePriceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExternalSubscriptionSnapshot:
    """One provider subscription as observed at fetch time. Never persisted."""

    external_id: str
    price_id: str | None
    status: ProviderStatus
    current_period_end: datetime | None = None  # naive UTC
    cancel_at_period_end: bool = False


class BillingProvider(Protocol):
    """Operations the reconciliation core needs from the billing provider."""

    async def list_subscriptions(
        self, customer_id: str, limit: int = 100
    ) -> list[ExternalSubscriptionSnapshot]:
        ...

    async def cancel_subscription(self, subscription_id: str) -> None:
        ...


@dataclass
class FetchedState:
    """Snapshots in provider order, with their mapped tiers and classification."""

    customer_id: str
    snapshots: list[ExternalSubscriptionSnapshot]
    tiers: dict[str, PlanTier] = field(default_factory=dict)
    unmapped_price_ids: list[str | None] = field(default_factory=list)

    def tier_of(self, snapshot: ExternalSubscriptionSnapshot) -> PlanTier:
        return self.tiers.get(snapshot.external_id, PlanTier.FREE)

    @property
    def active_like(self) -> list[ExternalSubscriptionSnapshot]:
        return [s for s in self.snapshots if s.status.is_active_like]

    @property
    def past_due(self) -> list[ExternalSubscriptionSnapshot]:
        return [s for s in self.snapshots if s.status is ProviderStatus.PAST_DUE]

    @property
    def inactive(self) -> list[ExternalSubscriptionSnapshot]:
        return [
            s
            for s in self.snapshots
            if not s.status.is_active_like and s.status is not ProviderStatus.PAST_DUE
        ]


def map_snapshot_tiers(
    customer_id: str,
    snapshots: list[ExternalSubscriptionSnapshot],
    price_table: dict[str, PlanTier] | None = None,
) -> FetchedState:
    """Attach a tier to each snapshot; unknown prices degrade to FREE."""
    state = FetchedState(customer_id=customer_id, snapshots=list(snapshots))
    for snapshot in state.snapshots:
        try:
            tier = tier_for_price_id(snapshot.price_id, price_table)
        except UnmappablePriceError as e:
            logger.warning(
                "Subscription %s (customer %s) has unmappable price %r; treating as FREE",
                snapshot.external_id,
                customer_id,
                e.price_id,
            )
            state.unmapped_price_ids.append(e.price_id)
            tier = PlanTier.FREE
        state.tiers[snapshot.external_id] = tier
    return state


async def fetch_subscription_state(
    provider: BillingProvider,
    customer_id: str,
    limit: int = 100,
    price_table: dict[str, PlanTier] | None = None,
) -> FetchedState:
    """Fetch all subscriptions for a customer regardless of status.

    Raises:
        TransientProviderError: provider unreachable, timed out or rate-limited.
        BillingProviderError: provider rejected the request.
    """
    snapshots = await provider.list_subscriptions(customer_id, limit=limit)
    state = map_snapshot_tiers(customer_id, snapshots, price_table)
    logger.debug(
        "Fetched %d subscription(s) for customer %s: %d active-like, %d past_due",
        len(state.snapshots),
        customer_id,
        len(state.active_like),
        len(state.past_due),
    )
    return state
