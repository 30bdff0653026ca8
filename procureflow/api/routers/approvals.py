"""Approval plan preview."""

from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from procureflow.api.deps import get_current_user, get_db
from procureflow.api.schemas import PreviewResponse
from procureflow.core.routing import ArtifactType, RoutingService
from procureflow.core.routing.thresholds import needs_ceo
from procureflow.db.models import User

router = APIRouter(prefix="/approvals", tags=["approvals"])


@router.get("/preview", response_model=PreviewResponse)
async def preview_steps(
    amount: Decimal = Query(..., ge=0),
    artifact_type: ArtifactType = ArtifactType.PO,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Show which approvals an artifact of this amount would need."""
    steps = RoutingService(db, current_user.organisation_id).preview_steps(amount, artifact_type)
    return {
        "amount": amount,
        "artifact_type": artifact_type,
        "steps": [step.to_dict() for step in steps],
        "auto_approved": not steps,
        "needs_ceo": needs_ceo(steps),
    }
