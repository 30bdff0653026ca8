import uuid
from sqlalchemy import Column, String, DateTime, Text, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from procureflow.core.clock import utcnow
from procureflow.db.base import Base


class ApprovalLog(Base):
    """
    Append-only audit record of every approval action on an artifact.

    ``approved_on_behalf_of_user_id`` is set when the actor's authority
    came from a delegation.
    """
    __tablename__ = "approval_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organisation_id = Column(UUID(as_uuid=True), ForeignKey("organisations.id"), nullable=False, index=True)
    artifact_type = Column(String(20), nullable=False)
    artifact_id = Column(UUID(as_uuid=True), nullable=False, index=True)

    action = Column(String(50), nullable=False)
    action_by_user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_on_behalf_of_user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    comment = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)

    action_by = relationship("User", foreign_keys=[action_by_user_id])
    approved_on_behalf_of = relationship("User", foreign_keys=[approved_on_behalf_of_user_id])

    def __repr__(self) -> str:
        return f"<ApprovalLog {self.artifact_type}:{self.artifact_id} {self.action}>"
