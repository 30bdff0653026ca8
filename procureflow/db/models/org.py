import uuid
from sqlalchemy import Column, String, DateTime, Boolean, Numeric, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from procureflow.core.clock import utcnow
from procureflow.db.base import Base


class Organisation(Base):
    __tablename__ = "organisations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    accounts_email = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    users = relationship("User", back_populates="organisation")
    settings = relationship("OrganisationSettings", back_populates="organisation", uselist=False)
    workflows = relationship("ApprovalWorkflow", back_populates="organisation")


class OrganisationSettings(Base):
    """
    Per-organisation approval routing settings.

    When ``use_custom_workflows`` is off, plans are built from the two
    thresholds; a NULL threshold disables that rule.
    """
    __tablename__ = "organisation_settings"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organisation_id = Column(UUID(as_uuid=True), ForeignKey("organisations.id", ondelete="CASCADE"), nullable=False, unique=True)
    use_custom_workflows = Column(Boolean, nullable=False, default=False)
    auto_approve_below_amount = Column(Numeric(12, 2), nullable=True)
    require_ceo_above_amount = Column(Numeric(12, 2), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    organisation = relationship("Organisation", back_populates="settings")

    def __repr__(self) -> str:
        return (
            f"<OrganisationSettings custom={self.use_custom_workflows} "
            f"auto<{self.auto_approve_below_amount} ceo>{self.require_ceo_above_amount}>"
        )
