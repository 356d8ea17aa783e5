"""Duplicate canceller: cancel non-canonical active subscriptions at the provider.

Runs separately from plan correction so a failing cancel never blocks a plan fix.
"""

import logging
import uuid
from dataclasses import dataclass, field

from plansync.billing.fetcher import BillingProvider, fetch_subscription_state
from plansync.billing.plans import PlanTier
from plansync.billing.resolver import resolve_tier
from plansync.exceptions import AccountNotFound, BillingProviderError, PartialCleanupFailure
from plansync.models.audit import AuditAction
from plansync.services.account_store import AccountStore
from plansync.services.audit import AuditSink, build_audit_entry

logger = logging.getLogger(__name__)


@dataclass
class CleanupResult:
    kept: str | None
    canceled: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)  # subscription id -> error

    @property
    def ok(self) -> bool:
        return not self.failed

    def raise_for_failures(self) -> None:
        if self.failed:
            raise PartialCleanupFailure(self)


class DuplicateCanceller:
    def __init__(
        self,
        provider: BillingProvider,
        store: AccountStore,
        audit_sink: AuditSink,
        actor: str,
        list_limit: int = 100,
        price_table: dict[str, PlanTier] | None = None,
    ) -> None:
        self.provider = provider
        self.store = store
        self.audit_sink = audit_sink
        self.actor = actor
        self.list_limit = list_limit
        self.price_table = price_table

    async def cancel_duplicates(
        self,
        account_id: uuid.UUID,
        canonical_id: str | None,
        duplicate_ids: list[str],
        tiers: dict[str, PlanTier] | None = None,
        actor: str | None = None,
    ) -> CleanupResult:
        """Cancel each duplicate independently; every attempt is audited."""
        result = CleanupResult(kept=canonical_id)
        tiers = tiers or {}
        kept_tier = tiers.get(canonical_id) if canonical_id else None

        for subscription_id in duplicate_ids:
            if subscription_id == canonical_id:
                continue
            error: str | None = None
            try:
                await self.provider.cancel_subscription(subscription_id)
                result.canceled.append(subscription_id)
            except BillingProviderError as e:
                error = str(e)
                result.failed[subscription_id] = error
                logger.warning(
                    "Failed to cancel duplicate subscription %s for account %s: %s",
                    subscription_id,
                    account_id,
                    e,
                )
            except Exception as e:
                error = str(e) or type(e).__name__
                result.failed[subscription_id] = error
                logger.exception(
                    "Unexpected error canceling duplicate subscription %s for account %s",
                    subscription_id,
                    account_id,
                )

            canceled_tier = tiers.get(subscription_id)
            await self._audit(
                build_audit_entry(
                    actor=actor or self.actor,
                    action=AuditAction.SUBSCRIPTION_CANCELED,
                    account_id=account_id,
                    before_plan=canceled_tier.value if canceled_tier else None,
                    after_plan=kept_tier.value if kept_tier else None,
                    reason="Duplicate subscription cleanup",
                    details={
                        "kept_subscription_id": canonical_id,
                        "canceled_subscription_id": subscription_id,
                        "outcome": "failed" if error else "canceled",
                        "error": error,
                    },
                )
            )

        if result.canceled or result.failed:
            logger.info(
                "Duplicate cleanup for account %s: kept %s, canceled %d, failed %d",
                account_id,
                canonical_id,
                len(result.canceled),
                len(result.failed),
            )
        return result

    async def cleanup_duplicates(
        self, customer_id: str, actor: str | None = None
    ) -> CleanupResult:
        """Re-fetch a customer's subscriptions and cancel every non-canonical active one.

        Raises:
            AccountNotFound: no billing record is linked to the customer.
            TransientProviderError: the listing call failed; nothing was canceled.
        """
        account = await self.store.get_by_customer(customer_id)
        if account is None:
            raise AccountNotFound(customer_id)

        fetched = await fetch_subscription_state(
            self.provider, customer_id, limit=self.list_limit, price_table=self.price_table
        )
        resolved = resolve_tier(fetched)
        if not resolved.duplicate_ids:
            return CleanupResult(kept=resolved.canonical_external_id)

        return await self.cancel_duplicates(
            account.account_id,
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
