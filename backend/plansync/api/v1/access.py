"""Access check endpoint: plan-gated feature access for the authenticated account."""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status

from plansync.api.deps import get_current_account_id, get_services, http_error_for
from plansync.billing.plans import PlanTier
from plansync.exceptions import PlanSyncError
from plansync.schemas.sync import AccessResponse
from plansync.services.container import SyncServices

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/access", tags=["access"])


@router.get("", response_model=AccessResponse)
async def check_access(
    required_tier: str = Query(..., description="FREE, PRO or ENTERPRISE"),
    account_id: uuid.UUID = Depends(get_current_account_id),
    services: SyncServices = Depends(get_services),
) -> AccessResponse:
    """Whether the caller's plan covers ``required_tier``, honouring grace periods."""
    try:
        required = PlanTier.parse(required_tier)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)
        ) from e

    try:
        decision = await services.has_access(account_id, required)
    except PlanSyncError as e:
        raise http_error_for(e) from e

    return AccessResponse(
        allowed=decision.allowed,
        required_tier=required,
        current_tier=decision.current_tier,
        is_canceling=decision.is_canceling,
        period_end=decision.period_end,
        was_fixed=decision.was_fixed,
        degraded=decision.degraded,
    )
