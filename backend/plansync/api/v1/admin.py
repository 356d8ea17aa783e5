"""Admin sync endpoints: diagnose and repair a single account's billing state.

All routes require an admin token; the admin's ID is recorded as the audit actor.
"""

import logging
import uuid
from dataclasses import replace

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from plansync.api.deps import get_db, get_services, http_error_for, require_admin
from plansync.exceptions import PlanSyncError
from plansync.schemas.sync import (
    AccountResponse,
    AuditEntryResponse,
    CleanupResponse,
    DiagnosticResponse,
    ForceSyncRequest,
    MessageResponse,
    ResolvedResponse,
    SnapshotResponse,
    SyncResponse,
)
from plansync.services.audit import list_audit_entries
from plansync.services.container import SyncServices
from plansync.services.duplicates import CleanupResult
from plansync.services.reconciliation import AUTO_FIX, ReconcileResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/admin/accounts", tags=["admin"])


def _cleanup_response(cleanup: CleanupResult | None) -> CleanupResponse | None:
    if cleanup is None:
        return None
    return CleanupResponse(kept=cleanup.kept, canceled=cleanup.canceled, failed=cleanup.failed)


def _sync_response(result: ReconcileResult) -> SyncResponse:
    return SyncResponse(
        account_id=result.account_id,
        in_sync=result.in_sync,
        fixed=result.fixed,
        previous_tier=result.previous_tier,
        current_tier=result.current_tier,
        previous_status=result.previous_status,
        current_status=result.current_status,
        message=result.message,
        duplicate_ids=result.duplicate_ids,
        cleanup=_cleanup_response(result.cleanup),
    )


@router.get("/{account_id}/sync", response_model=DiagnosticResponse)
async def diagnose_account(
    account_id: uuid.UUID,
    admin_id: str = Depends(require_admin),
    services: SyncServices = Depends(get_services),
) -> DiagnosticResponse:
    """Compare the local record with the billing provider without changing anything."""
    try:
        inspection = await services.engine.inspect(account_id)
    except PlanSyncError as e:
        raise http_error_for(e) from e

    fetched = inspection.fetched
    resolved = inspection.resolved
    snapshots = []
    if fetched is not None:
        snapshots = [
            SnapshotResponse(
                external_id=s.external_id,
                price_id=s.price_id,
                status=s.status.value,
                tier=fetched.tier_of(s),
                current_period_end=s.current_period_end,
                cancel_at_period_end=s.cancel_at_period_end,
            )
            for s in fetched.snapshots
        ]

    return DiagnosticResponse(
        account=AccountResponse.model_validate(inspection.account),
        snapshots=snapshots,
        unmapped_price_ids=fetched.unmapped_price_ids if fetched is not None else [],
        resolved=ResolvedResponse(
            tier=resolved.tier,
            status=resolved.status,
            canonical_external_id=resolved.canonical_external_id,
            price_id=resolved.price_id,
            period_end=resolved.period_end,
            duplicate_ids=resolved.duplicate_ids,
        ),
        in_sync=inspection.in_sync,
    )


@router.post("/{account_id}/sync", response_model=SyncResponse)
async def force_sync_account(
    account_id: uuid.UUID,
    body: ForceSyncRequest | None = None,
    admin_id: str = Depends(require_admin),
    services: SyncServices = Depends(get_services),
) -> SyncResponse:
    """Reconcile the account now, bypassing the cooldown."""
    options = body or ForceSyncRequest()
    mode = replace(AUTO_FIX, cleanup_duplicates=options.cleanup_duplicates)

    logger.info("Admin %s forcing sync for account %s", admin_id, account_id)
    try:
        result = await services.force_sync(account_id, actor=admin_id, mode=mode)
    except PlanSyncError as e:
        raise http_error_for(e) from e

    return _sync_response(result)


@router.delete("/{account_id}/cooldown", response_model=MessageResponse)
async def clear_account_cooldown(
    account_id: uuid.UUID,
    admin_id: str = Depends(require_admin),
    services: SyncServices = Depends(get_services),
) -> MessageResponse:
    """Let the next access check reach the billing provider."""
    services.clear_cooldown(account_id)
    logger.info("Admin %s cleared sync cooldown for account %s", admin_id, account_id)
    return MessageResponse(message=f"Sync cooldown cleared for account {account_id}")


@router.post("/{account_id}/cleanup-duplicates", response_model=CleanupResponse)
async def cleanup_account_duplicates(
    account_id: uuid.UUID,
    admin_id: str = Depends(require_admin),
    services: SyncServices = Depends(get_services),
) -> CleanupResponse:
    """Cancel every active subscription except the canonical one."""
    try:
        account = await services.store.get(account_id)
        if account.external_customer_id is None:
            return CleanupResponse(kept=None, canceled=[], failed={})
        result = await services.cleanup_duplicates(account.external_customer_id, actor=admin_id)
    except PlanSyncError as e:
        raise http_error_for(e) from e

    return _cleanup_response(result)


@router.get("/{account_id}/audit", response_model=list[AuditEntryResponse])
async def list_account_audit(
    account_id: uuid.UUID,
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    admin_id: str = Depends(require_admin),
) -> list[AuditEntryResponse]:
    """Most recent billing changes for the account, newest first."""
    entries = await list_audit_entries(db, account_id, limit=limit)
    return [AuditEntryResponse.model_validate(e) for e in entries]
