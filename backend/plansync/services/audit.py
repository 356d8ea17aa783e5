"""Audit sink: append-only storage of billing change records."""

import logging
import uuid
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from plansync.models.audit import AuditAction, AuditEntry

logger = logging.getLogger(__name__)


class AuditSink(Protocol):
    async def append(self, entry: AuditEntry) -> None:
        ...


def build_audit_entry(
    *,
    actor: str,
    action: AuditAction,
    account_id: uuid.UUID,
    before_plan: str | None,
    after_plan: str | None,
    reason: str,
    details: dict[str, Any] | None = None,
) -> AuditEntry:
    """Create an unsaved audit entry."""
    return AuditEntry(
        actor=actor,
        action=action,
        account_id=account_id,
        before_plan=before_plan,
        after_plan=after_plan,
        reason=reason,
        details=details or {},
    )


class DatabaseAuditSink:
    """Writes each entry in its own short transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def append(self, entry: AuditEntry) -> None:
        async with self._session_factory() as db:
            async with db.begin():
                db.add(entry)
        logger.info(
            "Audit %s by %s for account %s: %s -> %s (%s)",
            entry.action.value,
            entry.actor,
            entry.account_id,
            entry.before_plan,
            entry.after_plan,
            entry.reason,
        )


async def list_audit_entries(
    db: AsyncSession, account_id: uuid.UUID, limit: int = 50
) -> list[AuditEntry]:
    """Most recent audit entries for an account, newest first."""
    result = await db.execute(
        select(AuditEntry)
        .where(AuditEntry.account_id == account_id)
        .order_by(AuditEntry.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
