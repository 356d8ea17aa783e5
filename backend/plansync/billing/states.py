"""Subscription status enumerations and the local status transition table."""

import enum


class SubscriptionStatus(str, enum.Enum):
    """Status of the local billing record."""

    ACTIVE = "active"
    CANCELING = "canceling"  # cancel_at_period_end set, paid through period end
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class ProviderStatus(str, enum.Enum):
    """Status of a subscription as reported by the billing provider.

    Stripe statuses without a meaning for access (``incomplete``,
    ``incomplete_expired``, ``unpaid``, ``paused``) collapse into ``OTHER``.
    """

    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    OTHER = "other"

    @classmethod
    def from_provider(cls, raw: str | None) -> "ProviderStatus":
        try:
            return cls(raw)
        except ValueError:
            return cls.OTHER

    @property
    def is_active_like(self) -> bool:
        return self in (ProviderStatus.ACTIVE, ProviderStatus.TRIALING)


_S = SubscriptionStatus

# Every (from, to) pair has an entry; the label becomes the audit reason suffix.
STATUS_TRANSITIONS: dict[tuple[SubscriptionStatus, SubscriptionStatus], str] = {
    (_S.ACTIVE, _S.ACTIVE): "plan_changed",
    (_S.ACTIVE, _S.CANCELING): "cancellation_scheduled",
    (_S.ACTIVE, _S.PAST_DUE): "payment_failed",
    (_S.ACTIVE, _S.CANCELED): "subscription_ended",
    (_S.CANCELING, _S.ACTIVE): "cancellation_reverted",
    (_S.CANCELING, _S.CANCELING): "plan_changed",
    (_S.CANCELING, _S.PAST_DUE): "payment_failed",
    (_S.CANCELING, _S.CANCELED): "grace_period_ended",
    (_S.PAST_DUE, _S.ACTIVE): "payment_recovered",
    (_S.PAST_DUE, _S.CANCELING): "cancellation_scheduled",
    (_S.PAST_DUE, _S.PAST_DUE): "plan_changed",
    (_S.PAST_DUE, _S.CANCELED): "subscription_ended",
    (_S.CANCELED, _S.ACTIVE): "subscription_started",
    (_S.CANCELED, _S.CANCELING): "subscription_started",
    (_S.CANCELED, _S.PAST_DUE): "subscription_started",
    (_S.CANCELED, _S.CANCELED): "plan_changed",
}


def describe_transition(old: SubscriptionStatus, new: SubscriptionStatus) -> str:
    """Return the label for a local status transition."""
    return STATUS_TRANSITIONS[(old, new)]
