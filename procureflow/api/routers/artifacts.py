"""Approval routing endpoints for purchase orders and invoices."""

from typing import Callable, List
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from procureflow.api.deps import get_commit_hook, get_current_user, get_db
from procureflow.api.schemas import (
    ActionResponse,
    ApprovalLogResponse,
    ApproveRequest,
    ProgressResponse,
    RejectRequest,
    SubmitResponse,
)
from procureflow.core.routing import ArtifactType, RoutingService
from procureflow.db.models import User

router = APIRouter(prefix="/artifacts", tags=["routing"])


def _routing(db: Session, user: User, on_commit: Callable) -> RoutingService:
    return RoutingService(db, user.organisation_id, on_commit=on_commit)


@router.post("/{artifact_type}/{artifact_id}/submit", response_model=SubmitResponse)
async def submit_artifact(
    artifact_type: ArtifactType,
    artifact_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    on_commit: Callable = Depends(get_commit_hook),
):
    """Submit a draft PO or matched invoice for approval."""
    return _routing(db, current_user, on_commit).submit(
        artifact_type, artifact_id, user_id=current_user.id
    )


@router.post("/{artifact_type}/{artifact_id}/approve", response_model=ActionResponse)
async def approve_artifact(
    artifact_type: ArtifactType,
    artifact_id: UUID,
    body: ApproveRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    on_commit: Callable = Depends(get_commit_hook),
):
    """Approve the current step, directly or on behalf of a delegator."""
    return _routing(db, current_user, on_commit).approve(
        artifact_type,
        artifact_id,
        acting_user_id=current_user.id,
        on_behalf_of=body.on_behalf_of,
        expected_step=body.expected_step,
        comment=body.comment,
    )


@router.post("/{artifact_type}/{artifact_id}/reject", response_model=ActionResponse)
async def reject_artifact(
    artifact_type: ArtifactType,
    artifact_id: UUID,
    body: RejectRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    on_commit: Callable = Depends(get_commit_hook),
):
    return _routing(db, current_user, on_commit).reject(
        artifact_type,
        artifact_id,
        acting_user_id=current_user.id,
        reason=body.reason,
        on_behalf_of=body.on_behalf_of,
    )


@router.get("/{artifact_type}/{artifact_id}/progress", response_model=ProgressResponse)
async def get_progress(
    artifact_type: ArtifactType,
    artifact_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return RoutingService(db, current_user.organisation_id).get_progress(artifact_type, artifact_id)


@router.get("/{artifact_type}/{artifact_id}/logs", response_model=List[ApprovalLogResponse])
async def list_logs(
    artifact_type: ArtifactType,
    artifact_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Approval log for an artifact, oldest first."""
    return RoutingService(db, current_user.organisation_id).list_logs(artifact_type, artifact_id)
