import uuid
from sqlalchemy import Column, DateTime, Boolean, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from procureflow.core.clock import utcnow
from procureflow.db.base import Base


class ApprovalDelegation(Base):
    """
    Time-bounded grant of a delegator's approval authority to a delegate.

    Rows are never deleted: they are deactivated explicitly or by the
    expiry sweep and kept for audit.
    """
    __tablename__ = "approval_delegations"
    __table_args__ = (
        Index("ix_approval_delegations_active_delegator", "delegator_user_id", "organisation_id", "is_active"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organisation_id = Column(UUID(as_uuid=True), ForeignKey("organisations.id"), nullable=False, index=True)
    delegator_user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    delegate_user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    starts_at = Column(DateTime, nullable=False, default=utcnow)
    ends_at = Column(DateTime, nullable=True)  # NULL = indefinite
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    # Relationships
    delegator = relationship("User", foreign_keys=[delegator_user_id])
    delegate = relationship("User", foreign_keys=[delegate_user_id])

    def is_effective_at(self, at) -> bool:
        """Active, started, and not yet ended at ``at``."""
        if not self.is_active:
            return False
        if self.starts_at is not None and self.starts_at > at:
            return False
        return self.ends_at is None or self.ends_at > at

    def __repr__(self) -> str:
        return f"<ApprovalDelegation {self.delegator_user_id} -> {self.delegate_user_id} active={self.is_active}>"
