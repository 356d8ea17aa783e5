"""Scheduled sync endpoints: batch reconciliation of every billed account.

Called by the scheduler with ``Authorization: Bearer <CRON_SECRET>``.
"""

import logging

from fastapi import APIRouter, Depends

from plansync.api.deps import get_services, verify_cron_secret
from plansync.schemas.sync import (
    SweepErrorResponse,
    SweepFixResponse,
    SweepRequest,
    SweepResponse,
)
from plansync.services.container import SyncServices
from plansync.services.reconciliation import utcnow
from plansync.services.sweeper import SweepOptions, SweepSummary

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/cron",
    tags=["cron"],
    dependencies=[Depends(verify_cron_secret)],
)

PREVIEW_LIMIT = 100


def _sweep_response(summary: SweepSummary) -> SweepResponse:
    return SweepResponse(
        checked=summary.checked,
        in_sync=summary.in_sync,
        fixed=summary.fixed,
        errors=summary.errors,
        duplicates_canceled=summary.duplicates_canceled,
        dry_run=summary.dry_run,
        details=[
            SweepFixResponse(account_id=d.account_id, from_tier=d.from_tier, to_tier=d.to_tier)
            for d in summary.details
        ],
        error_details=[
            SweepErrorResponse(account_id=e.account_id, error=e.error)
            for e in summary.error_details
        ],
        timestamp=utcnow(),
    )


@router.post("/sync-subscriptions", response_model=SweepResponse)
async def sync_subscriptions(
    body: SweepRequest | None = None,
    services: SyncServices = Depends(get_services),
) -> SweepResponse:
    """Reconcile billed accounts and optionally cancel duplicate subscriptions."""
    if body is None:
        body = SweepRequest(
            limit=services.config.sweep_limit,
            concurrency=services.config.sweep_concurrency,
        )

    summary = await services.run_batch_sweep(
        SweepOptions(
            dry_run=body.dry_run,
            limit=body.limit,
            offset=body.offset,
            concurrency=body.concurrency,
            cleanup_duplicates=body.cleanup_duplicates,
        )
    )
    return _sweep_response(summary)


@router.get("/sync-subscriptions", response_model=SweepResponse)
async def preview_sync_subscriptions(
    services: SyncServices = Depends(get_services),
) -> SweepResponse:
    """Dry run over the first accounts: report drift without fixing it."""
    summary = await services.run_batch_sweep(
        SweepOptions(
            dry_run=True,
            limit=PREVIEW_LIMIT,
            concurrency=services.config.sweep_concurrency,
        )
    )
    return _sweep_response(summary)
