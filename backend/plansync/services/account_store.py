"""Account store: reads and atomic multi-field updates of billing account records."""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from plansync.billing.plans import PlanTier
from plansync.billing.states import SubscriptionStatus
from plansync.exceptions import AccountNotFound
from plansync.models.account import BillingAccount

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountPatch:
    """Every field reconciliation writes, applied together or not at all."""

    plan: PlanTier
    status: SubscriptionStatus
    external_subscription_id: str | None
    external_price_id: str | None
    current_period_end: datetime | None
    last_synced_at: datetime | None = None

    @classmethod
    def free(cls, last_synced_at: datetime | None = None) -> "AccountPatch":
        """Patch for an account that has never entered billing."""
        return cls(
            plan=PlanTier.FREE,
            status=SubscriptionStatus.ACTIVE,
            external_subscription_id=None,
            external_price_id=None,
            current_period_end=None,
            last_synced_at=last_synced_at,
        )


async def get_account(
    db: AsyncSession, account_id: uuid.UUID, for_update: bool = False
) -> BillingAccount:
    """Load the billing record for an account. Raises AccountNotFound."""
    stmt = select(BillingAccount).where(BillingAccount.account_id == account_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    account = result.scalar_one_or_none()
    if account is None:
        raise AccountNotFound(account_id)
    return account


async def get_account_by_customer(
    db: AsyncSession, external_customer_id: str
) -> BillingAccount | None:
    """Look up a billing record by Stripe customer ID."""
    result = await db.execute(
        select(BillingAccount).where(
            BillingAccount.external_customer_id == external_customer_id
        )
    )
    return result.scalar_one_or_none()


async def list_billed_account_ids(
    db: AsyncSession, limit: int, offset: int = 0
) -> list[uuid.UUID]:
    """Account IDs that have a Stripe customer, in stable order for pagination."""
    result = await db.execute(
        select(BillingAccount.account_id)
        .where(BillingAccount.external_customer_id.is_not(None))
        .order_by(BillingAccount.account_id)
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


def apply_account_patch(account: BillingAccount, patch: AccountPatch) -> BillingAccount:
    """Copy every patch field onto the record (no flush)."""
    account.plan = patch.plan
    account.status = patch.status
    account.external_subscription_id = patch.external_subscription_id
    account.external_price_id = patch.external_price_id
    account.current_period_end = patch.current_period_end
    if patch.last_synced_at is not None:
        account.last_synced_at = patch.last_synced_at
    return account


class AccountStore:
    """Session-per-operation access to billing records.

    Each call opens and closes its own session so no transaction is held
    open across billing-provider calls.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, account_id: uuid.UUID) -> BillingAccount:
        async with self._session_factory() as db:
            return await get_account(db, account_id)

    async def get_by_customer(self, external_customer_id: str) -> BillingAccount | None:
        async with self._session_factory() as db:
            return await get_account_by_customer(db, external_customer_id)

    async def list_billed(self, limit: int, offset: int = 0) -> list[uuid.UUID]:
        async with self._session_factory() as db:
            return await list_billed_account_ids(db, limit, offset)

    async def apply_patch(self, account_id: uuid.UUID, patch: AccountPatch) -> BillingAccount:
        """Apply a patch in a single transaction. Raises AccountNotFound."""
        async with self._session_factory() as db:
            async with db.begin():
                account = await get_account(db, account_id, for_update=True)
                apply_account_patch(account, patch)
            logger.info(
                "Updated billing account %s: plan=%s, status=%s, subscription=%s",
                account_id,
                patch.plan.value,
                patch.status.value,
                patch.external_subscription_id,
            )
            return account
