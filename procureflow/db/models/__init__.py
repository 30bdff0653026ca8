"""Database models for ProcureFlow."""

from procureflow.db.models.org import Organisation, OrganisationSettings
from procureflow.db.models.user import User
from procureflow.db.models.workflow import ApprovalWorkflow, ApprovalWorkflowStep
from procureflow.db.models.artifact import PurchaseOrder, Invoice
from procureflow.db.models.progress import ApprovalProgress
from procureflow.db.models.delegation import ApprovalDelegation
from procureflow.db.models.approval_log import ApprovalLog
from procureflow.db.models.notification import (
    Notification,
    NotificationType,
    OutboxMessage,
    OutboxKind,
    OutboxStatus,
)

__all__ = [
    "Organisation",
    "OrganisationSettings",
    "User",
    "ApprovalWorkflow",
    "ApprovalWorkflowStep",
    "PurchaseOrder",
    "Invoice",
    "ApprovalProgress",
    "ApprovalDelegation",
    "ApprovalLog",
    "Notification",
    "NotificationType",
    "OutboxMessage",
    "OutboxKind",
    "OutboxStatus",
]
