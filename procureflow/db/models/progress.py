"""Approval progress model.

One row per artifact, created on submission. ``version`` is bumped on
every write so updates can be conditioned on the version that was read.
"""

import uuid
from sqlalchemy import Column, String, DateTime, Integer, Numeric, JSON, ForeignKey, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from procureflow.core.clock import utcnow
from procureflow.db.base import Base


class ApprovalProgress(Base):
    __tablename__ = "approval_progress"
    __table_args__ = (
        UniqueConstraint("artifact_type", "artifact_id", name="uq_approval_progress_artifact"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organisation_id = Column(UUID(as_uuid=True), ForeignKey("organisations.id"), nullable=False, index=True)

    # Artifact reference (PO or invoice)
    artifact_type = Column(String(20), nullable=False)
    artifact_id = Column(UUID(as_uuid=True), nullable=False, index=True)

    # Plan inputs, frozen at submission
    workflow_id = Column(UUID(as_uuid=True), ForeignKey("approval_workflows.id", ondelete="SET NULL"), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    planned_steps = Column(JSON, nullable=False, default=list)

    # Progress
    current_step = Column(Integer, nullable=False, default=0)
    total_steps = Column(Integer, nullable=False, default=0)
    completed_steps = Column(JSON, nullable=False, default=list)
    status = Column(String(20), nullable=False, default="IN_PROGRESS", index=True)
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    workflow = relationship("ApprovalWorkflow")

    def __repr__(self) -> str:
        return (
            f"<ApprovalProgress {self.artifact_type}:{self.artifact_id} "
            f"{self.current_step}/{self.total_steps} [{self.status}]>"
        )
