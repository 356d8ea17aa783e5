"""Reconciliation engine: heal drift between local billing records and Stripe.

fetch -> resolve -> compare to local -> apply fix -> audit / notify.

A fetch failure propagates before anything is written, and the fix itself is
one atomic patch, so a record is never half-updated. Concurrent fixes for the
same account are last-write-wins: both writers resolve the same provider state.
"""

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from plansync.billing.cooldown import SyncCooldownCache
from plansync.billing.fetcher import BillingProvider, FetchedState, fetch_subscription_state
from plansync.billing.plans import PlanTier, rank
from plansync.billing.resolver import ResolvedState, resolve_tier
from plansync.billing.states import SubscriptionStatus, describe_transition
from plansync.models.account import BillingAccount
from plansync.models.audit import AuditAction
from plansync.services.account_store import AccountPatch, AccountStore
from plansync.services.audit import AuditSink, build_audit_entry
from plansync.services.duplicates import CleanupResult, DuplicateCanceller
from plansync.services.notifications import NotificationSink, plan_changed_message

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Current time as naive UTC, matching the DB columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class SyncMode:
    """What a reconciliation call is allowed to do.

    mutate: write the resolved state to the local record.
    emit_audit: append an audit entry for each applied fix.
    emit_notification: tell the user when their tier changed.
    respect_cooldown: skip the provider call if the account synced recently.
    cleanup_duplicates: cancel non-canonical active subscriptions afterwards.
    """

    mutate: bool = True
    emit_audit: bool = True
    emit_notification: bool = True
    respect_cooldown: bool = False
    cleanup_duplicates: bool = False


AUTO_FIX = SyncMode()
SILENT_FIX = SyncMode(emit_audit=False, emit_notification=False)
DRY_RUN = SyncMode(mutate=False, emit_audit=False, emit_notification=False)


@dataclass
class ReconcileResult:
    account_id: uuid.UUID
    in_sync: bool
    fixed: bool
    previous_tier: PlanTier
    current_tier: PlanTier
    message: str
    previous_status: SubscriptionStatus | None = None
    current_status: SubscriptionStatus | None = None
    duplicate_ids: list[str] = field(default_factory=list)
    skipped: bool = False
    account: BillingAccount | None = None
    cleanup: CleanupResult | None = None

    @property
    def had_duplicates(self) -> bool:
        return bool(self.duplicate_ids)


@dataclass
class Inspection:
    """Local record next to the provider view, for diagnostics."""

    account: BillingAccount
    fetched: FetchedState | None
    resolved: ResolvedState
    in_sync: bool


def _matches(account: BillingAccount, resolved: ResolvedState) -> bool:
    if account.plan != resolved.tier:
        return False
    if account.external_subscription_id != resolved.canonical_external_id:
        return False
    # A FREE record with no subscription has no meaningful status to heal.
    if resolved.tier is PlanTier.FREE and resolved.canonical_external_id is None:
        return True
    return account.status == resolved.status


def _details_moved(account: BillingAccount, resolved: ResolvedState) -> bool:
    """Period end or price changed while the drift key stayed the same."""
    if resolved.canonical_external_id is None:
        return False
    return (
        account.current_period_end != resolved.period_end
        or account.external_price_id != resolved.price_id
    )


class ReconciliationEngine:
    def __init__(
        self,
        store: AccountStore,
        provider: BillingProvider,
        audit_sink: AuditSink,
        notification_sink: NotificationSink,
        cooldown: SyncCooldownCache,
        canceller: DuplicateCanceller | None = None,
        actor: str = "system-sync",
        list_limit: int = 100,
        price_table: dict[str, PlanTier] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.provider = provider
        self.audit_sink = audit_sink
        self.notification_sink = notification_sink
        self.cooldown = cooldown
        self.canceller = canceller
        self.actor = actor
        self.list_limit = list_limit
        self.price_table = price_table
        self.clock = clock

    async def reconcile(
        self,
        account_id: uuid.UUID,
        mode: SyncMode = AUTO_FIX,
        actor: str | None = None,
    ) -> ReconcileResult:
        """Bring the local record in line with the provider.

        Raises:
            AccountNotFound: no billing record for the account.
            TransientProviderError: the provider call failed; nothing was written.
        """
        account = await self.store.get(account_id)

        if mode.respect_cooldown and not self.cooldown.should_sync(account_id):
            logger.debug("Skipping sync for account %s (cooldown)", account_id)
            return ReconcileResult(
                account_id=account_id,
                in_sync=True,
                fixed=False,
                previous_tier=account.plan,
                current_tier=account.plan,
                previous_status=account.status,
                current_status=account.status,
                message="Recently synced, using local state",
                skipped=True,
                account=account,
            )

        self.cooldown.mark_synced(account_id)

        if account.external_customer_id is None:
            return await self._reconcile_unbilled(account, mode, actor)

        fetched = await fetch_subscription_state(
            self.provider,
            account.external_customer_id,
            limit=self.list_limit,
            price_table=self.price_table,
        )
        resolved = resolve_tier(fetched)
        result = await self._apply(account, resolved, mode, actor)

        if mode.cleanup_duplicates and mode.mutate and resolved.has_duplicates:
            result.cleanup = await self._cleanup(account.account_id, resolved, fetched, actor)
        return result

    async def sync_if_stale(self, account_id: uuid.UUID) -> ReconcileResult:
        """Silent fix, at most once per cooldown window. Used by access checks."""
        return await self.reconcile(account_id, replace(SILENT_FIX, respect_cooldown=True))

    async def force_sync(
        self,
        account_id: uuid.UUID,
        actor: str | None = None,
        mode: SyncMode = AUTO_FIX,
    ) -> ReconcileResult:
        """Reconcile now, ignoring the cooldown."""
        self.cooldown.clear(account_id)
        return await self.reconcile(account_id, replace(mode, respect_cooldown=False), actor)

    def clear_cooldown(self, account_id: uuid.UUID) -> None:
        self.cooldown.clear(account_id)

    async def inspect(self, account_id: uuid.UUID) -> Inspection:
        """Fetch and resolve without touching the record or the cooldown."""
        account = await self.store.get(account_id)
        if account.external_customer_id is None:
            resolved = ResolvedState(tier=PlanTier.FREE, status=SubscriptionStatus.ACTIVE)
            return Inspection(
                account=account,
                fetched=None,
                resolved=resolved,
                in_sync=account.plan == PlanTier.FREE,
            )
        fetched = await fetch_subscription_state(
            self.provider,
            account.external_customer_id,
            limit=self.list_limit,
            price_table=self.price_table,
        )
        resolved = resolve_tier(fetched)
        return Inspection(
            account=account, fetched=fetched, resolved=resolved, in_sync=_matches(account, resolved)
        )

    async def _reconcile_unbilled(
        self, account: BillingAccount, mode: SyncMode, actor: str | None
    ) -> ReconcileResult:
        """An account without a Stripe customer must be FREE."""
        if account.plan == PlanTier.FREE:
            return ReconcileResult(
                account_id=account.account_id,
                in_sync=True,
                fixed=False,
                previous_tier=account.plan,
                current_tier=account.plan,
                previous_status=account.status,
                current_status=account.status,
                message="No billing customer, FREE plan correct",
                account=account,
            )

        resolved = ResolvedState(tier=PlanTier.FREE, status=SubscriptionStatus.ACTIVE)
        if not mode.mutate:
            return ReconcileResult(
                account_id=account.account_id,
                in_sync=False,
                fixed=False,
                previous_tier=account.plan,
                current_tier=PlanTier.FREE,
                previous_status=account.status,
                current_status=resolved.status,
                message=f"Mismatch detected: local={account.plan.value}, no billing customer",
                account=account,
            )

        return await self._fix(
            account,
            resolved,
            AccountPatch.free(last_synced_at=self.clock()),
            mode,
            actor,
            reason="No billing customer, reset to FREE",
        )

    async def _apply(
        self,
        account: BillingAccount,
        resolved: ResolvedState,
        mode: SyncMode,
        actor: str | None,
    ) -> ReconcileResult:
        if _matches(account, resolved):
            if mode.mutate and _details_moved(account, resolved):
                account = await self._refresh_details(account, resolved)
            return ReconcileResult(
                account_id=account.account_id,
                in_sync=True,
                fixed=False,
                previous_tier=account.plan,
                current_tier=account.plan,
                previous_status=account.status,
                current_status=account.status,
                message="Subscription in sync",
                duplicate_ids=list(resolved.duplicate_ids),
                account=account,
            )

        if not mode.mutate:
            return ReconcileResult(
                account_id=account.account_id,
                in_sync=False,
                fixed=False,
                previous_tier=account.plan,
                current_tier=resolved.tier,
                previous_status=account.status,
                current_status=resolved.status,
                message=(
                    f"Mismatch detected: local={account.plan.value}/{account.status.value}, "
                    f"provider={resolved.tier.value}/{resolved.status.value}"
                ),
                duplicate_ids=list(resolved.duplicate_ids),
                account=account,
            )

        return await self._fix(
            account,
            resolved,
            self._patch_for(resolved),
            mode,
            actor,
            reason="Synced from billing provider",
        )

    def _patch_for(self, resolved: ResolvedState) -> AccountPatch:
        return AccountPatch(
            plan=resolved.tier,
            status=resolved.status,
            external_subscription_id=resolved.canonical_external_id,
            external_price_id=resolved.price_id,
            current_period_end=resolved.period_end,
            last_synced_at=self.clock(),
        )

    async def _refresh_details(
        self, account: BillingAccount, resolved: ResolvedState
    ) -> BillingAccount:
        """Write a moved period end or price without auditing or notifying.

        The grace period gate reads ``current_period_end``, so it has to track
        the provider even when tier, subscription and status are unchanged.
        """
        logger.info(
            "Refreshing billing details for account %s: period_end %s -> %s, price %s -> %s",
            account.account_id,
            account.current_period_end,
            resolved.period_end,
            account.external_price_id,
            resolved.price_id,
        )
        return await self.store.apply_patch(account.account_id, self._patch_for(resolved))

    async def _fix(
        self,
        account: BillingAccount,
        resolved: ResolvedState,
        patch: AccountPatch,
        mode: SyncMode,
        actor: str | None,
        reason: str,
    ) -> ReconcileResult:
        previous_tier = account.plan
        previous_status = account.status
        previous_subscription_id = account.external_subscription_id

        updated = await self.store.apply_patch(account.account_id, patch)
        tier_changed = previous_tier != patch.plan
        transition = describe_transition(previous_status, patch.status)

        logger.info(
            "Reconciled account %s: %s/%s -> %s/%s (%s)",
            account.account_id,
            previous_tier.value,
            previous_status.value,
            patch.plan.value,
            patch.status.value,
            transition,
        )

        if mode.emit_audit:
            action = (
                AuditAction.PLAN_UPGRADE
                if rank(patch.plan) > rank(previous_tier)
                else AuditAction.PLAN_DOWNGRADE
            )
            await self._audit(
                build_audit_entry(
                    actor=actor or self.actor,
                    action=action,
                    account_id=account.account_id,
                    before_plan=previous_tier.value,
                    after_plan=patch.plan.value,
                    reason=f"{reason} ({transition})",
                    details={
                        "previous_status": previous_status.value,
                        "new_status": patch.status.value,
                        "previous_subscription_id": previous_subscription_id,
                        "new_subscription_id": patch.external_subscription_id,
                        "tier_changed": tier_changed,
                        "had_duplicates": resolved.has_duplicates,
                        "duplicate_ids": list(resolved.duplicate_ids),
                        "source": "reconciliation",
                    },
                )
            )

        if mode.emit_notification and tier_changed:
            await self._notify(account.account_id, patch.plan)

        return ReconcileResult(
            account_id=account.account_id,
            in_sync=False,
            fixed=True,
            previous_tier=previous_tier,
            current_tier=patch.plan,
            previous_status=previous_status,
            current_status=patch.status,
            message=f"Auto-fixed: {previous_tier.value} -> {patch.plan.value}",
            duplicate_ids=list(resolved.duplicate_ids),
            account=updated,
        )

    async def _cleanup(
        self,
        account_id: uuid.UUID,
        resolved: ResolvedState,
        fetched: FetchedState,
        actor: str | None,
    ) -> CleanupResult | None:
        if self.canceller is None:
            logger.warning(
                "Account %s has %d duplicate subscription(s) but no canceller is configured",
                account_id,
                len(resolved.duplicate_ids),
            )
            return None
        return await self.canceller.cancel_duplicates(
            account_id,
            resolved.canonical_external_id,
            resolved.duplicate_ids,
            tiers=fetched.tiers,
            actor=actor,
        )

    async def _audit(self, entry) -> None:
        try:
            await self.audit_sink.append(entry)
        except Exception:
            logger.exception("Failed to write audit entry for account %s", entry.account_id)

    async def _notify(self, account_id: uuid.UUID, tier: PlanTier) -> None:
        title, message = plan_changed_message(tier)
        try:
            await self.notification_sink.notify(account_id, title, message)
        except Exception:
            logger.exception("Failed to notify account %s of plan change", account_id)
