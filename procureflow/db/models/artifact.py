"""Purchase order and invoice models.

Only the fields the routing engine reads or writes are modelled here;
everything else about an artifact belongs to the view layer.
"""

import uuid
from sqlalchemy import Column, String, DateTime, Date, Numeric, Text, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from procureflow.core.clock import utcnow
from procureflow.db.base import Base


class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organisation_id = Column(UUID(as_uuid=True), ForeignKey("organisations.id"), nullable=False, index=True)
    po_number = Column(String(50), nullable=False)
    description = Column(Text, nullable=True)
    amount_inc_vat = Column(Numeric(12, 2), nullable=False)

    # Contractor receiving the approved PO
    contractor_name = Column(String(255), nullable=True)
    contractor_email = Column(String(255), nullable=True)

    status = Column(String(50), nullable=False, default="DRAFT", index=True)
    created_by_user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Approval tracking
    approved_by_user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approval_date = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    pdf_url = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    organisation = relationship("Organisation")
    created_by = relationship("User", foreign_keys=[created_by_user_id])
    approved_by = relationship("User", foreign_keys=[approved_by_user_id])

    @property
    def originator_id(self):
        return self.created_by_user_id

    @property
    def reference(self) -> str:
        return self.po_number

    def __repr__(self) -> str:
        return f"<PurchaseOrder {self.po_number} [{self.status}]>"


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organisation_id = Column(UUID(as_uuid=True), ForeignKey("organisations.id"), nullable=False, index=True)
    po_id = Column(UUID(as_uuid=True), ForeignKey("purchase_orders.id"), nullable=True, index=True)
    invoice_number = Column(String(100), nullable=False)
    amount_inc_vat = Column(Numeric(12, 2), nullable=False)

    status = Column(String(50), nullable=False, default="UPLOADED", index=True)
    uploaded_by_user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Approval and payment tracking
    approved_by_user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approval_date = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    payment_date = Column(Date, nullable=True)
    payment_reference = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    organisation = relationship("Organisation")
    purchase_order = relationship("PurchaseOrder")
    uploaded_by = relationship("User", foreign_keys=[uploaded_by_user_id])
    approved_by = relationship("User", foreign_keys=[approved_by_user_id])

    @property
    def originator_id(self):
        return self.uploaded_by_user_id

    @property
    def reference(self) -> str:
        return self.invoice_number

    def __repr__(self) -> str:
        return f"<Invoice {self.invoice_number} [{self.status}]>"
