"""SQLAlchemy models for PlanSync.

All models are imported here so that Alembic's autogenerate can discover
them via Base.metadata. If you add a new model, import it in this file.
"""

from plansync.models.account import BillingAccount
from plansync.models.audit import AuditAction, AuditEntry
from plansync.models.notification import Notification

__all__ = [
    "AuditAction",
    "AuditEntry",
    "BillingAccount",
    "Notification",
]
