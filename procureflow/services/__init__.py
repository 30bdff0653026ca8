"""Side-effect services for ProcureFlow."""

from procureflow.services.notifications import EmailService, NotificationService
from procureflow.services.documents import DocumentService
from procureflow.services.outbox import OutboxDispatcher, OutboxService

__all__ = [
    "EmailService",
    "NotificationService",
    "DocumentService",
    "OutboxDispatcher",
    "OutboxService",
]
