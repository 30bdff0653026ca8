"""In-app notifications and the side-effect outbox."""

import uuid
from enum import Enum
from sqlalchemy import Column, String, DateTime, JSON, ForeignKey, Boolean, Text, Integer
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from procureflow.core.clock import utcnow
from procureflow.db.base import Base


class OutboxKind(str, Enum):
    """Side effects the routing engine can request."""
    NOTIFICATION = "notification"
    EMAIL = "email"
    DOCUMENT = "document"


class OutboxStatus(str, Enum):
    PENDING = "pending"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"


class NotificationType(str, Enum):
    """In-app notification types."""
    PO_PENDING_APPROVAL = "po_pending_approval"
    PO_PENDING_CEO_APPROVAL = "po_pending_ceo_approval"
    PO_APPROVED = "po_approved"
    PO_APPROVED_FOR_INVOICE = "po_approved_for_invoice"
    PO_REJECTED = "po_rejected"
    INVOICE_PENDING_APPROVAL = "invoice_pending_approval"
    INVOICE_APPROVED = "invoice_approved"
    INVOICE_REJECTED = "invoice_rejected"
    DELEGATION_EXPIRED = "delegation_expired"


class Notification(Base):
    """
    In-app notification shown to a user.
    """
    __tablename__ = "notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    organisation_id = Column(UUID(as_uuid=True), ForeignKey("organisations.id", ondelete="CASCADE"), nullable=False, index=True)

    type = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    link = Column(String(512), nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=utcnow, index=True)

    user = relationship("User")

    def __repr__(self) -> str:
        return f"<Notification {self.type} to {self.user_id}>"


class OutboxMessage(Base):
    """
    A side-effect request written in the same transaction as the state
    change that caused it, delivered after commit.
    """
    __tablename__ = "outbox_messages"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organisation_id = Column(UUID(as_uuid=True), ForeignKey("organisations.id", ondelete="CASCADE"), nullable=False, index=True)

    kind = Column(String(20), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)

    # Originating artifact, when there is one
    artifact_type = Column(String(20), nullable=True)
    artifact_id = Column(UUID(as_uuid=True), nullable=True, index=True)

    # Delivery state
    status = Column(String(20), nullable=False, default=OutboxStatus.PENDING.value, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    claimed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)
    sent_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<OutboxMessage {self.kind} [{self.status}]>"
