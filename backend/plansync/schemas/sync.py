"""Pydantic v2 request/response schemas for access, admin sync, and cron endpoints."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from plansync.billing.plans import PlanTier
from plansync.billing.states import SubscriptionStatus
from plansync.models.audit import AuditAction

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class ForceSyncRequest(BaseModel):
    """Options for an admin-triggered sync."""

    cleanup_duplicates: bool = False


class SweepRequest(BaseModel):
    """Options for a batch sweep run by the scheduler."""

    dry_run: bool = False
    limit: int = Field(500, ge=1, le=5000)
    offset: int = Field(0, ge=0)
    concurrency: int = Field(5, ge=1, le=50)
    cleanup_duplicates: bool = False


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class AccessResponse(BaseModel):
    """Result of a plan-based access check."""

    allowed: bool
    required_tier: PlanTier
    current_tier: PlanTier
    is_canceling: bool
    period_end: datetime | None
    was_fixed: bool
    degraded: bool


class AccountResponse(BaseModel):
    """Local billing record as stored."""

    account_id: uuid.UUID
    plan: PlanTier
    status: SubscriptionStatus
    external_customer_id: str | None
    external_subscription_id: str | None
    external_price_id: str | None
    current_period_end: datetime | None
    last_synced_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class SnapshotResponse(BaseModel):
    """One subscription as the billing provider reports it."""

    external_id: str
    price_id: str | None
    status: str
    tier: PlanTier
    current_period_end: datetime | None
    cancel_at_period_end: bool


class ResolvedResponse(BaseModel):
    """The canonical state the provider's subscriptions reduce to."""

    tier: PlanTier
    status: SubscriptionStatus
    canonical_external_id: str | None
    price_id: str | None
    period_end: datetime | None
    duplicate_ids: list[str]


class DiagnosticResponse(BaseModel):
    """Local record next to the provider view. Nothing is written."""

    account: AccountResponse
    snapshots: list[SnapshotResponse]
    unmapped_price_ids: list[str | None]
    resolved: ResolvedResponse
    in_sync: bool


class CleanupResponse(BaseModel):
    """Outcome of a duplicate subscription cleanup."""

    kept: str | None
    canceled: list[str]
    failed: dict[str, str]  # subscription id -> error


class SyncResponse(BaseModel):
    """Outcome of a single-account reconciliation."""

    account_id: uuid.UUID
    in_sync: bool
    fixed: bool
    previous_tier: PlanTier
    current_tier: PlanTier
    previous_status: SubscriptionStatus | None
    current_status: SubscriptionStatus | None
    message: str
    duplicate_ids: list[str]
    cleanup: CleanupResponse | None = None


class SweepFixResponse(BaseModel):
    account_id: uuid.UUID
    from_tier: PlanTier
    to_tier: PlanTier


class SweepErrorResponse(BaseModel):
    account_id: uuid.UUID
    error: str


class SweepResponse(BaseModel):
    """Aggregate counts for a batch sweep."""

    checked: int
    in_sync: int
    fixed: int
    errors: int
    duplicates_canceled: int
    dry_run: bool
    details: list[SweepFixResponse]
    error_details: list[SweepErrorResponse]
    timestamp: datetime


class AuditEntryResponse(BaseModel):
    """One append-only audit record."""

    id: uuid.UUID
    actor: str
    action: AuditAction
    account_id: uuid.UUID
    before_plan: str | None
    after_plan: str | None
    reason: str
    details: dict[str, Any]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str
