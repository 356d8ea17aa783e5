"""Notification sink: best-effort user-facing plan change messages."""

import logging
import uuid
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from plansync.billing.plans import PlanTier
from plansync.models.notification import Notification

logger = logging.getLogger(__name__)

SUBSCRIPTION_UPDATED = "SUBSCRIPTION_UPDATED"


class NotificationSink(Protocol):
    async def notify(self, account_id: uuid.UUID, title: str, message: str) -> None:
        ...


def plan_changed_message(new_tier: PlanTier) -> tuple[str, str]:
    """Title and body for a plan change notification."""
    return (
        "Subscription Updated",
        f"Your subscription has been updated to {new_tier.value}. "
        "This reflects your current billing status.",
    )


class DatabaseNotificationSink:
    """Stores notifications in the account's alert feed."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def notify(self, account_id: uuid.UUID, title: str, message: str) -> None:
        async with self._session_factory() as db:
            async with db.begin():
                db.add(
                    Notification(
                        account_id=account_id,
                        type=SUBSCRIPTION_UPDATED,
                        title=title,
                        message=message,
                    )
                )
        logger.info("Queued %r notification for account %s", title, account_id)
