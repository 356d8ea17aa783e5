"""Billing account model: the local record of an account's plan and provider state."""

import uuid
from datetime import datetime

from sqlalchemy import Enum, String
from sqlalchemy.orm import Mapped, mapped_column

from plansync.billing.plans import PlanTier
from plansync.billing.states import SubscriptionStatus
from plansync.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class BillingAccount(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Tracks an account's plan tier and its Stripe identifiers.

    The only entity mutated by reconciliation. An account without a Stripe
    customer has never entered billing and is implicitly FREE.
    """

    __tablename__ = "billing_accounts"
    __mapper_args__ = {"eager_defaults": True}

    # Account ID from the identity service (one billing record per account)
    account_id: Mapped[uuid.UUID] = mapped_column(unique=True, nullable=False, index=True)

    # Plan & status
    plan: Mapped[PlanTier] = mapped_column(
        Enum(PlanTier, native_enum=False, length=20, values_callable=_enum_values),
        nullable=False,
        default=PlanTier.FREE,
    )
    status: Mapped[SubscriptionStatus] = mapped_column(
        Enum(SubscriptionStatus, native_enum=False, length=20, values_callable=_enum_values),
        nullable=False,
        default=SubscriptionStatus.ACTIVE,
    )

    # Stripe identifiers
    external_customer_id: Mapped[str | None] = mapped_column(
        String(255), unique=True, nullable=True, index=True
    )
    external_subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    external_price_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Billing period
    current_period_end: Mapped[datetime | None] = mapped_column(nullable=True)

    # Last reconciliation that wrote this record
    last_synced_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<BillingAccount(account_id={self.account_id}, plan={self.plan.value}, "
            f"status={self.status.value})>"
        )
