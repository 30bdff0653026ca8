"""Transactional outbox for side-effect requests.

State changes enqueue ``OutboxMessage`` rows in the same session before
commit. Once the commit lands, the dispatcher delivers them. Delivery
failures are recorded on the message and never roll back the transition
that produced it.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from procureflow.core.clock import utcnow
from procureflow.core.config import Settings, get_settings
from procureflow.db.models import OutboxKind, OutboxMessage, OutboxStatus, PurchaseOrder
from procureflow.services.documents import DocumentService
from procureflow.services.notifications import EmailService, NotificationService

logger = logging.getLogger(__name__)

# Emails that carry a link to the rendered PO document
DOCUMENT_EMAIL_TEMPLATES = frozenset({"po_approved_contractor", "po_approved_accounts"})


class OutboxService:
    """
    Enqueues side-effect requests on the caller's session.

    Ids of everything enqueued are collected in ``message_ids`` so the
    caller can hand them to the dispatcher once its commit succeeds.
    """

    def __init__(self, db: Session, org_id: UUID):
        self.db = db
        self.org_id = org_id
        self.message_ids: List[UUID] = []

    def _enqueue(
        self,
        kind: OutboxKind,
        payload: Dict[str, Any],
        artifact_type: Optional[str] = None,
        artifact_id: Optional[UUID] = None,
    ) -> OutboxMessage:
        message = OutboxMessage(
            id=uuid.uuid4(),
            organisation_id=self.org_id,
            kind=kind.value,
            payload=payload,
            artifact_type=artifact_type,
            artifact_id=artifact_id,
            status=OutboxStatus.PENDING.value,
            attempts=0,
            created_at=utcnow(),
        )
        self.db.add(message)
        self.message_ids.append(message.id)
        return message

    def enqueue_notification(
        self,
        user_id: UUID,
        title: str,
        message: str,
        type: str,
        link: Optional[str] = None,
        *,
        artifact_type: Optional[str] = None,
        artifact_id: Optional[UUID] = None,
    ) -> OutboxMessage:
        return self._enqueue(
            OutboxKind.NOTIFICATION,
            {
                "user_id": str(user_id),
                "title": title,
                "message": message,
                "type": type,
                "link": link,
            },
            artifact_type,
            artifact_id,
        )

    def enqueue_email(
        self,
        template_type: str,
        to: Iterable[str],
        context: Dict[str, Any],
        *,
        artifact_type: Optional[str] = None,
        artifact_id: Optional[UUID] = None,
    ) -> Optional[OutboxMessage]:
        """Enqueue an email; nothing is enqueued when there are no addresses."""
        recipients = sorted({address for address in to if address})
        if not recipients:
            return None
        return self._enqueue(
            OutboxKind.EMAIL,
            {"template": template_type, "to": recipients, "context": context},
            artifact_type,
            artifact_id,
        )

    def enqueue_document(self, artifact_type: str, artifact_id: UUID) -> OutboxMessage:
        return self._enqueue(
            OutboxKind.DOCUMENT,
            {"artifact_id": str(artifact_id)},
            artifact_type,
            artifact_id,
        )

    def drain(self) -> List[UUID]:
        """Return and forget the collected message ids."""
        ids, self.message_ids = self.message_ids, []
        return ids


@dataclass
class DispatchSummary:
    sent: int = 0
    failed: int = 0
    failed_ids: List[UUID] = field(default_factory=list)


class OutboxDispatcher:
    """
    Delivers outbox messages through the notification, email and document
    collaborators. One commit per message.

    Each message is claimed with a conditional update before delivery, so
    a message handed to several workers at once is delivered by one of them.
    """

    def __init__(
        self,
        db: Session,
        *,
        notifications: Optional[NotificationService] = None,
        emails: Optional[EmailService] = None,
        documents: Optional[DocumentService] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.notifications = notifications or NotificationService(db)
        self.emails = emails or EmailService(self.settings)
        self.documents = documents or DocumentService(db, self.settings)

    def dispatch(self, message_ids: Iterable[UUID]) -> DispatchSummary:
        """Deliver the given messages in the order they were enqueued."""
        summary = DispatchSummary()
        for message_id in message_ids:
            if not self._claim(message_id):
                continue
            message = self.db.query(OutboxMessage).filter(OutboxMessage.id == message_id).first()
            self._process(message, summary)
        return summary

    def dispatch_pending(self, limit: Optional[int] = None) -> DispatchSummary:
        """Retry undelivered messages that have attempts left."""
        limit = limit or self.settings.outbox_batch_size
        ids = [
            row.id
            for row in self.db.query(OutboxMessage.id)
            .filter(
                self._claimable(utcnow()),
                OutboxMessage.attempts < self.settings.outbox_max_attempts,
            )
            .order_by(OutboxMessage.created_at)
            .limit(limit)
            .all()
        ]
        if ids:
            logger.info(f"Dispatching {len(ids)} pending outbox message(s)")
        return self.dispatch(ids)

    def _claimable(self, now: datetime):
        stale = now - timedelta(seconds=self.settings.outbox_claim_timeout_seconds)
        return or_(
            OutboxMessage.status.in_([OutboxStatus.PENDING.value, OutboxStatus.FAILED.value]),
            and_(OutboxMessage.status == OutboxStatus.SENDING.value, OutboxMessage.claimed_at < stale),
        )

    def _claim(self, message_id: UUID) -> bool:
        """Move a message to SENDING; False when another worker holds it or it is sent."""
        now = utcnow()
        claimed = (
            self.db.query(OutboxMessage)
            .filter(OutboxMessage.id == message_id, self._claimable(now))
            .update(
                {"status": OutboxStatus.SENDING.value, "claimed_at": now},
                synchronize_session=False,
            )
        )
        self.db.commit()
        if claimed != 1:
            logger.debug(f"Outbox message {message_id} not claimable, skipping")
            return False
        return True

    def _process(self, message: OutboxMessage, summary: DispatchSummary) -> None:
        message_id = message.id
        try:
            self._deliver(message)
            message.status = OutboxStatus.SENT.value
            message.attempts = (message.attempts or 0) + 1
            message.sent_at = utcnow()
            message.last_error = None
            self.db.commit()
            summary.sent += 1
        except Exception as e:
            logger.exception(f"Outbox delivery failed for {message.kind} message {message_id}")
            self.db.rollback()
            self._mark_failed(message_id, str(e))
            summary.failed += 1
            summary.failed_ids.append(message_id)

    def _mark_failed(self, message_id: UUID, error: str) -> None:
        message = self.db.query(OutboxMessage).filter(OutboxMessage.id == message_id).first()
        if message is None:
            return
        message.status = OutboxStatus.FAILED.value
        message.attempts = (message.attempts or 0) + 1
        message.last_error = error[:2000]
        self.db.commit()

    def _deliver(self, message: OutboxMessage) -> None:
        payload = message.payload or {}
        kind = OutboxKind(message.kind)

        if kind == OutboxKind.NOTIFICATION:
            self.notifications.notify(
                user_id=UUID(payload["user_id"]),
                organisation_id=message.organisation_id,
                title=payload["title"],
                message=payload["message"],
                type=payload["type"],
                link=payload.get("link"),
            )
        elif kind == OutboxKind.EMAIL:
            if payload.get("template") in DOCUMENT_EMAIL_TEMPLATES and message.artifact_id is not None:
                payload = self._with_document_link(message.artifact_id, payload)
            asyncio.run(self.emails.send_email(payload["template"], payload))
        elif kind == OutboxKind.DOCUMENT:
            self.documents.render_and_store(UUID(payload["artifact_id"]))

    def _with_document_link(self, po_id: UUID, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Fill ``pdf_url`` from the PO as it is now, rendering the document
        first when it has not been stored yet.

        A render failure propagates so the email is retried rather than
        sent without its document.
        """
        po = self.db.query(PurchaseOrder).filter(PurchaseOrder.id == po_id).first()
        if po is None:
            return payload
        pdf_url = po.pdf_url or self.documents.render_and_store(po.id)
        return dict(payload, context=dict(payload.get("context") or {}, pdf_url=pdf_url))
