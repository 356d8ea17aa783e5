"""Shared API dependencies: single import point for all routers.

Re-exports database session, authentication, and service dependencies so that
router modules can import everything they need from one place::

    from plansync.api.deps import get_db, get_services, require_admin
"""

import logging

from fastapi import HTTPException, status

from plansync.auth.dependencies import (
    get_current_account_id,
    require_admin,
    verify_cron_secret,
)
from plansync.database import get_db
from plansync.exceptions import (
    AccountNotFound,
    BillingProviderError,
    PlanSyncError,
    TransientProviderError,
)
from plansync.services.container import SyncServices, get_sync_services

logger = logging.getLogger(__name__)


def get_services() -> SyncServices:
    """Process-wide reconciliation services (overridden in tests)."""
    return get_sync_services()


def http_error_for(exc: PlanSyncError) -> HTTPException:
    """Translate a reconciliation error into the HTTP error a route should raise."""
    if isinstance(exc, AccountNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, TransientProviderError):
        logger.warning("Billing provider unavailable: %s", exc)
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Billing provider temporarily unavailable",
        )
    if isinstance(exc, BillingProviderError):
        logger.error("Billing provider error: %s", exc)
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    logger.error("Reconciliation error: %s", exc)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


__all__ = [
    "get_db",
    "get_current_account_id",
    "require_admin",
    "verify_cron_secret",
    "get_services",
    "http_error_for",
]
