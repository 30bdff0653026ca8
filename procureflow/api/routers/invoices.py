"""Invoice payment endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from procureflow.api.deps import get_db, require_capability
from procureflow.api.schemas import MarkPaidRequest, MarkPaidResponse
from procureflow.core.roles import Capability
from procureflow.core.routing import RoutingService
from procureflow.db.models import User

router = APIRouter(prefix="/invoices", tags=["invoices"])


@router.post("/{invoice_id}/mark-paid", response_model=MarkPaidResponse)
async def mark_invoice_paid(
    invoice_id: UUID,
    body: MarkPaidRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_capability(Capability.MARK_PAID)),
):
    """Record payment of an invoice approved for payment."""
    return RoutingService(db, current_user.organisation_id).mark_paid(
        invoice_id,
        acting_user_id=current_user.id,
        payment_date=body.payment_date,
        payment_reference=body.payment_reference,
    )
