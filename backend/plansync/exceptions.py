"""Error taxonomy for subscription reconciliation."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from plansync.services.duplicates import CleanupResult


class PlanSyncError(Exception):
    """Base class for all reconciliation errors."""


class BillingProviderError(PlanSyncError):
    """The billing provider rejected a request (bad request, auth, missing object)."""


class TransientProviderError(BillingProviderError):
    """Network failure, timeout, rate limit or provider-side 5xx.

    Retryable. Never accompanied by a local mutation.
    """


class UnmappablePriceError(PlanSyncError):
    """A provider price ID does not map to any known plan tier."""

    def __init__(self, price_id: str | None) -> None:
        self.price_id = price_id
        super().__init__(f"Unknown price ID: {price_id!r}")


class AccountNotFound(PlanSyncError):
    """No billing record exists for the requested account."""

    def __init__(self, account_id: object) -> None:
        self.account_id = account_id
        super().__init__(f"No billing account found for {account_id}")


class PartialCleanupFailure(PlanSyncError):
    """One or more duplicate subscription cancellations failed.

    The canonical plan fix has already been applied and is not rolled back.
    """

    def __init__(self, result: CleanupResult) -> None:
        self.result = result
        super().__init__(
            f"Failed to cancel {len(result.failed)} duplicate subscription(s) "
            f"(kept {result.kept})"
        )
