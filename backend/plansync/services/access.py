"""Grace period gate: plan-based access decisions that honour pending cancellations.

Reads the local record and only reaches the billing provider when the
cooldown has expired, or once per window when a scheduled cancellation's paid
period is over.
"""

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from plansync.billing.cooldown import InMemorySyncCooldownCache, SyncCooldownCache
from plansync.billing.plans import PlanTier, rank
from plansync.billing.states import SubscriptionStatus
from plansync.exceptions import BillingProviderError
from plansync.models.account import BillingAccount
from plansync.services.account_store import AccountStore
from plansync.services.reconciliation import SILENT_FIX, ReconciliationEngine, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    current_tier: PlanTier
    is_canceling: bool
    period_end: datetime | None
    was_fixed: bool = False
    degraded: bool = False  # provider unreachable, decided from last-known local state


def _decide(
    required: PlanTier,
    tier: PlanTier,
    *,
    is_canceling: bool,
    period_end: datetime | None,
    was_fixed: bool,
    degraded: bool,
) -> AccessDecision:
    return AccessDecision(
        allowed=rank(tier) >= rank(required),
        current_tier=tier,
        is_canceling=is_canceling,
        period_end=period_end,
        was_fixed=was_fixed,
        degraded=degraded,
    )


class AccessGate:
    def __init__(
        self,
        engine: ReconciliationEngine,
        store: AccountStore,
        past_due_grants_access: bool = True,
        clock: Callable[[], datetime] = utcnow,
        grace_rechecks: SyncCooldownCache | None = None,
    ) -> None:
        self.engine = engine
        self.store = store
        self.past_due_grants_access = past_due_grants_access
        self.clock = clock
        # At most one provider check per window for an account whose grace period ran out
        self.grace_rechecks = (
            grace_rechecks if grace_rechecks is not None else InMemorySyncCooldownCache(300)
        )

    async def has_access(
        self, account_id: uuid.UUID, required_tier: PlanTier | str
    ) -> AccessDecision:
        """Decide whether an account may use features of ``required_tier``.

        Raises:
            AccountNotFound: no billing record for the account.
        """
        required = PlanTier.parse(required_tier)
        was_fixed = False
        degraded = False
        fresh = False

        try:
            result = await self.engine.sync_if_stale(account_id)
            account = result.account
            was_fixed = result.fixed
            fresh = not result.skipped
        except BillingProviderError as e:
            # Fail open: a provider outage must not take paid features away.
            logger.warning(
                "Sync failed for account %s, using last-known plan: %s", account_id, e
            )
            account = await self.store.get(account_id)
            degraded = True

        now = self.clock()
        if account.status == SubscriptionStatus.CANCELING:
            period_end = account.current_period_end
            if period_end is not None and now < period_end:
                return _decide(
                    required,
                    account.plan,
                    is_canceling=True,
                    period_end=period_end,
                    was_fixed=was_fixed,
                    degraded=degraded,
                )

            if degraded:
                return self._expired(required, period_end, was_fixed, degraded=True)

            if fresh:
                self.grace_rechecks.mark_synced(account_id)
            elif self.grace_rechecks.should_sync(account_id):
                self.grace_rechecks.mark_synced(account_id)
                try:
                    result = await self.engine.force_sync(account_id, mode=SILENT_FIX)
                    account = result.account
                    was_fixed = was_fixed or result.fixed
                except BillingProviderError as e:
                    logger.warning(
                        "Grace period over for account %s and sync failed, denying paid access: %s",
                        account_id,
                        e,
                    )
                    return self._expired(required, period_end, was_fixed, degraded=True)

            if account.status == SubscriptionStatus.CANCELING and (
                account.current_period_end is None or now >= account.current_period_end
            ):
                logger.info(
                    "Account %s still canceling after period end %s, treating as FREE",
                    account_id,
                    account.current_period_end,
                )
                return self._expired(required, account.current_period_end, was_fixed)

        return _decide(
            required,
            self._effective_tier(account),
            is_canceling=account.status == SubscriptionStatus.CANCELING,
            period_end=account.current_period_end,
            was_fixed=was_fixed,
            degraded=degraded,
        )

    def _effective_tier(self, account: BillingAccount) -> PlanTier:
        if account.status == SubscriptionStatus.CANCELED:
            return PlanTier.FREE
        if account.status == SubscriptionStatus.PAST_DUE and not self.past_due_grants_access:
            return PlanTier.FREE
        return account.plan

    def _expired(
        self,
        required: PlanTier,
        period_end: datetime | None,
        was_fixed: bool,
        degraded: bool = False,
    ) -> AccessDecision:
        """Fail closed to FREE for this check only; the record is left alone."""
        return _decide(
            required,
            PlanTier.FREE,
            is_canceling=True,
            period_end=period_end,
            was_fixed=was_fixed,
            degraded=degraded,
        )
