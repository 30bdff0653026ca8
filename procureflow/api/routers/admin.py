"""Administrative endpoints for scheduled jobs."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from procureflow.api.deps import get_db, require_capability
from procureflow.api.schemas import SweepResponse
from procureflow.core.delegation.sweeper import DelegationExpirySweeper
from procureflow.core.roles import Capability
from procureflow.db.models import User

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/delegations/sweep", response_model=SweepResponse)
def run_delegation_sweep(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_capability(Capability.RUN_SWEEPS)),
):
    """
    Run the delegation expiry sweep now.

    Normally triggered by Celery beat; exposed for schedulers outside the
    worker and for operators.
    """
    return DelegationExpirySweeper(db).run().to_dict()
