"""Wiring for the reconciliation services and the operations exposed to the rest of the product."""

import uuid
from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from plansync.billing.cooldown import InMemorySyncCooldownCache, SyncCooldownCache
from plansync.billing.fetcher import BillingProvider
from plansync.billing.plans import PlanTier
from plansync.billing.stripe_client import StripeBillingProvider
from plansync.config import Settings, settings
from plansync.database import async_session_factory
from plansync.services.access import AccessDecision, AccessGate
from plansync.services.account_store import AccountStore
from plansync.services.audit import AuditSink, DatabaseAuditSink
from plansync.services.duplicates import CleanupResult, DuplicateCanceller
from plansync.services.notifications import DatabaseNotificationSink, NotificationSink
from plansync.services.reconciliation import (
    AUTO_FIX,
    ReconcileResult,
    ReconciliationEngine,
    SyncMode,
)
from plansync.services.sweeper import BatchSweeper, SweepOptions, SweepSummary


class SyncServices:
    """One set of collaborating components sharing a store, provider and cooldown cache."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        provider: BillingProvider,
        cooldown: SyncCooldownCache | None = None,
        audit_sink: AuditSink | None = None,
        notification_sink: NotificationSink | None = None,
        config: Settings = settings,
        price_table: dict[str, PlanTier] | None = None,
    ) -> None:
        self.config = config
        self.store = AccountStore(session_factory)
        self.provider = provider
        self.cooldown = (
            cooldown
            if cooldown is not None
            else InMemorySyncCooldownCache(config.sync_cooldown_seconds)
        )
        self.audit_sink = audit_sink if audit_sink is not None else DatabaseAuditSink(session_factory)
        self.notification_sink = (
            notification_sink
            if notification_sink is not None
            else DatabaseNotificationSink(session_factory)
        )
        self.canceller = DuplicateCanceller(
            provider,
            self.store,
            self.audit_sink,
            actor=config.sync_actor,
            list_limit=config.subscription_list_limit,
            price_table=price_table,
        )
        self.engine = ReconciliationEngine(
            self.store,
            provider,
            self.audit_sink,
            self.notification_sink,
            self.cooldown,
            canceller=self.canceller,
            actor=config.sync_actor,
            list_limit=config.subscription_list_limit,
            price_table=price_table,
        )
        self.gate = AccessGate(
            self.engine,
            self.store,
            past_due_grants_access=config.past_due_grants_access,
            grace_rechecks=InMemorySyncCooldownCache(config.sync_cooldown_seconds),
        )
        self.sweeper = BatchSweeper(self.engine, self.store)

    async def reconcile(
        self, account_id: uuid.UUID, mode: SyncMode = AUTO_FIX, actor: str | None = None
    ) -> ReconcileResult:
        return await self.engine.reconcile(account_id, mode, actor)

    async def has_access(
        self, account_id: uuid.UUID, required_tier: PlanTier | str
    ) -> AccessDecision:
        return await self.gate.has_access(account_id, required_tier)

    async def run_batch_sweep(self, options: SweepOptions | None = None) -> SweepSummary:
        if options is None:
            options = SweepOptions(
                limit=self.config.sweep_limit, concurrency=self.config.sweep_concurrency
            )
        return await self.sweeper.run(options)

    async def cleanup_duplicates(self, customer_id: str, actor: str | None = None) -> CleanupResult:
        return await self.canceller.cleanup_duplicates(customer_id, actor)

    async def force_sync(
        self, account_id: uuid.UUID, actor: str | None = None, mode: SyncMode = AUTO_FIX
    ) -> ReconcileResult:
        return await self.engine.force_sync(account_id, actor, mode)

    def clear_cooldown(self, account_id: uuid.UUID) -> None:
        self.engine.clear_cooldown(account_id)


@lru_cache
def get_sync_services() -> SyncServices:
    """Process-wide services backed by Stripe and the application database.

    Cached so the cooldown cache lives as long as the process.
    """
    return SyncServices(async_session_factory, StripeBillingProvider())
