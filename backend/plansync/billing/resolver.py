"""Tier resolver: reduce a customer's provider subscriptions to one canonical tier.

Pure function of its input; no I/O.
"""

from dataclasses import dataclass, field
from datetime import datetime

from plansync.billing.fetcher import ExternalSubscriptionSnapshot, FetchedState
from plansync.billing.plans import PlanTier, rank
from plansync.billing.states import SubscriptionStatus


@dataclass(frozen=True)
class ResolvedState:
    """The single authoritative view of a customer's billing state."""

    tier: PlanTier
    status: SubscriptionStatus
    canonical_external_id: str | None = None
    price_id: str | None = None
    period_end: datetime | None = None
    duplicate_ids: list[str] = field(default_factory=list)

    @property
    def has_duplicates(self) -> bool:
        return bool(self.duplicate_ids)


def _status_for_canonical(snapshot: ExternalSubscriptionSnapshot) -> SubscriptionStatus:
    if snapshot.cancel_at_period_end:
        return SubscriptionStatus.CANCELING
    return SubscriptionStatus.ACTIVE


def resolve_tier(fetched: FetchedState) -> ResolvedState:
    """Pick the canonical subscription and flag the rest of the active ones as duplicates.

    1. Any active/trialing subscription: the highest-ranked tier wins; on a
       rank tie the first one in provider order wins. Every other
       active-like subscription is a duplicate.
    2. Otherwise the first past_due subscription, resolved with status past_due.
    3. Otherwise FREE / canceled.
    """
    active_like = fetched.active_like
    if active_like:
        canonical = active_like[0]
        for snapshot in active_like[1:]:
            if rank(fetched.tier_of(snapshot)) > rank(fetched.tier_of(canonical)):
                canonical = snapshot
        return ResolvedState(
            tier=fetched.tier_of(canonical),
            status=_status_for_canonical(canonical),
            canonical_external_id=canonical.external_id,
            price_id=canonical.price_id,
            period_end=canonical.current_period_end,
            duplicate_ids=[
                s.external_id for s in active_like if s.external_id != canonical.external_id
            ],
        )

    past_due = fetched.past_due
    if past_due:
        snapshot = past_due[0]
        return ResolvedState(
            tier=fetched.tier_of(snapshot),
            status=SubscriptionStatus.PAST_DUE,
            canonical_external_id=snapshot.external_id,
            price_id=snapshot.price_id,
            period_end=snapshot.current_period_end,
        )

    return ResolvedState(tier=PlanTier.FREE, status=SubscriptionStatus.CANCELED)
