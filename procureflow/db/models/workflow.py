"""Custom approval workflow models.

A workflow holds an ordered list of steps; step orders are unique and
contiguous from 1 within a workflow.
"""

import uuid
from sqlalchemy import Column, String, DateTime, Boolean, Integer, Numeric, ForeignKey, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from procureflow.core.clock import utcnow
from procureflow.db.base import Base


class ApprovalWorkflow(Base):
    __tablename__ = "approval_workflows"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organisation_id = Column(UUID(as_uuid=True), ForeignKey("organisations.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    workflow_type = Column(String(20), nullable=False)  # PO, INVOICE
    is_active = Column(Boolean, nullable=False, default=True)
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    organisation = relationship("Organisation", back_populates="workflows")
    steps = relationship(
        "ApprovalWorkflowStep",
        back_populates="workflow",
        order_by="ApprovalWorkflowStep.step_order",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<ApprovalWorkflow {self.name} [{self.workflow_type}]>"


class ApprovalWorkflowStep(Base):
    __tablename__ = "approval_workflow_steps"
    __table_args__ = (
        UniqueConstraint("workflow_id", "step_order", name="uq_workflow_step_order"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    workflow_id = Column(UUID(as_uuid=True), ForeignKey("approval_workflows.id", ondelete="CASCADE"), nullable=False, index=True)
    step_order = Column(Integer, nullable=False)
    approver_role = Column(String(50), nullable=False)
    min_amount = Column(Numeric(12, 2), nullable=True)
    max_amount = Column(Numeric(12, 2), nullable=True)
    skip_if_below_amount = Column(Numeric(12, 2), nullable=True)
    is_required = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)

    workflow = relationship("ApprovalWorkflow", back_populates="steps")

    def __repr__(self) -> str:
        return f"<ApprovalWorkflowStep {self.step_order}:{self.approver_role}>"
