"""Approval delegation endpoints."""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from procureflow.api.deps import get_current_user, get_db, require_capability
from procureflow.api.schemas import DelegationCreate, DelegationListResponse, DelegationResponse
from procureflow.core.clock import utcnow
from procureflow.core.delegation.registry import DelegationRegistry, delegation_to_dict
from procureflow.core.exceptions import UnauthorizedError
from procureflow.core.roles import Capability, has_capability
from procureflow.db.models import User

router = APIRouter(prefix="/delegations", tags=["delegations"])


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@router.get("", response_model=DelegationListResponse)
async def list_delegations(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Delegations the current user has granted or received."""
    now = utcnow()
    rows = DelegationRegistry(db, current_user.organisation_id).list_for_user(current_user.id)
    return {
        "granted": [delegation_to_dict(d, now) for d in rows["granted"]],
        "received": [delegation_to_dict(d, now) for d in rows["received"]],
    }


@router.post("", response_model=DelegationResponse, status_code=status.HTTP_201_CREATED)
async def create_delegation(
    body: DelegationCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_capability(Capability.DELEGATE)),
):
    """Delegate the current user's approval authority to another user."""
    delegation = DelegationRegistry(db, current_user.organisation_id).create(
        current_user.id,
        body.delegate_user_id,
        starts_at=_naive_utc(body.starts_at),
        ends_at=_naive_utc(body.ends_at),
    )
    return delegation_to_dict(delegation)


@router.post("/{delegation_id}/deactivate", response_model=DelegationResponse)
async def deactivate_delegation(
    delegation_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Revoke a delegation. Only its delegator or a workflow admin may do so."""
    registry = DelegationRegistry(db, current_user.organisation_id)
    delegation = registry.get(delegation_id)
    if delegation.delegator_user_id != current_user.id and not has_capability(
        current_user.role, Capability.MANAGE_WORKFLOWS
    ):
        raise UnauthorizedError("Only the delegator or an admin can deactivate this delegation")
    return delegation_to_dict(registry.deactivate(delegation_id))
