"""Batch sweeper: periodic reconciliation of every billed account.

Accounts are independent, so they are reconciled in parallel under a
semaphore sized for the billing provider's rate limits. A failure is
logged and counted; it never stops the sweep.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field, replace

from plansync.billing.plans import PlanTier
from plansync.services.account_store import AccountStore
from plansync.services.reconciliation import (
    AUTO_FIX,
    DRY_RUN,
    ReconcileResult,
    ReconciliationEngine,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SweepOptions:
    dry_run: bool = False
    limit: int = 500
    offset: int = 0
    concurrency: int = 5
    cleanup_duplicates: bool = False


@dataclass(frozen=True)
class SweepFix:
    account_id: uuid.UUID
    from_tier: PlanTier
    to_tier: PlanTier


@dataclass(frozen=True)
class SweepError:
    account_id: uuid.UUID
    error: str


@dataclass
class SweepSummary:
    checked: int = 0
    in_sync: int = 0
    fixed: int = 0
    errors: int = 0
    details: list[SweepFix] = field(default_factory=list)
    error_details: list[SweepError] = field(default_factory=list)
    duplicates_canceled: int = 0
    dry_run: bool = False


class BatchSweeper:
    def __init__(self, engine: ReconciliationEngine, store: AccountStore) -> None:
        self.engine = engine
        self.store = store

    async def run(self, options: SweepOptions | None = None) -> SweepSummary:
        options = options or SweepOptions()
        if options.concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        mode = DRY_RUN if options.dry_run else AUTO_FIX
        if options.cleanup_duplicates and not options.dry_run:
            mode = replace(AUTO_FIX, cleanup_duplicates=True)

        account_ids = await self.store.list_billed(options.limit, options.offset)
        logger.info(
            "Starting subscription sweep: %d account(s), dry_run=%s, concurrency=%d",
            len(account_ids),
            options.dry_run,
            options.concurrency,
        )

        semaphore = asyncio.Semaphore(options.concurrency)

        async def _reconcile_one(account_id: uuid.UUID) -> ReconcileResult | BaseException:
            async with semaphore:
                try:
                    return await self.engine.reconcile(account_id, mode)
                except Exception as e:
                    logger.exception("Failed to sync account %s", account_id)
                    return e

        outcomes = await asyncio.gather(*(_reconcile_one(a) for a in account_ids))

        summary = SweepSummary(dry_run=options.dry_run)
        for account_id, outcome in zip(account_ids, outcomes):
            summary.checked += 1
            if isinstance(outcome, BaseException):
                summary.errors += 1
                summary.error_details.append(SweepError(account_id=account_id, error=str(outcome)))
                continue
            if outcome.in_sync:
                summary.in_sync += 1
            elif outcome.fixed or options.dry_run:
                summary.fixed += 1
                summary.details.append(
                    SweepFix(
                        account_id=account_id,
                        from_tier=outcome.previous_tier,
                        to_tier=outcome.current_tier,
                    )
                )
            if outcome.cleanup is not None:
                summary.duplicates_canceled += len(outcome.cleanup.canceled)

        logger.info(
            "Subscription sweep complete: checked=%d in_sync=%d fixed=%d errors=%d",
            summary.checked,
            summary.in_sync,
            summary.fixed,
            summary.errors,
        )
        return summary
