"""Audit entry model: append-only record of plan and subscription changes."""

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Enum, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from plansync.database import Base, UUIDPrimaryKeyMixin


class AuditAction(str, enum.Enum):
    PLAN_UPGRADE = "PLAN_UPGRADE"
    PLAN_DOWNGRADE = "PLAN_DOWNGRADE"
    SUBSCRIPTION_CANCELED = "SUBSCRIPTION_CANCELED"


class AuditEntry(UUIDPrimaryKeyMixin, Base):
    """A single change made to an account's billing state. Never updated or deleted."""

    __tablename__ = "audit_entries"

    actor: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[AuditAction] = mapped_column(
        Enum(AuditAction, native_enum=False, length=50), nullable=False, index=True
    )
    account_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    before_plan: Mapped[str | None] = mapped_column(String(20), nullable=True)
    after_plan: Mapped[str | None] = mapped_column(String(20), nullable=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())

    def __repr__(self) -> str:
        return (
            f"<AuditEntry(action={self.action.value}, account_id={self.account_id}, "
            f"{self.before_plan}->{self.after_plan})>"
        )
