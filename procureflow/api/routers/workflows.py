"""Approval workflow configuration endpoints."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from procureflow.api.deps import get_current_user, get_db, require_capability
from procureflow.api.schemas import (
    RoutingSettingsResponse,
    RoutingSettingsUpdate,
    WorkflowCreate,
    WorkflowResponse,
    WorkflowStepCreate,
)
from procureflow.core.roles import Capability
from procureflow.core.routing import ArtifactType, StepDefinition
from procureflow.core.routing.workflows import WorkflowService, workflow_to_dict
from procureflow.db.models import User

router = APIRouter(prefix="/workflows", tags=["workflows"])


def _step(body: WorkflowStepCreate) -> StepDefinition:
    return StepDefinition(
        step_order=body.step_order,
        approver_role=body.approver_role,
        min_amount=body.min_amount,
        max_amount=body.max_amount,
        skip_if_below_amount=body.skip_if_below_amount,
        is_required=body.is_required,
    )


@router.get("/settings", response_model=RoutingSettingsResponse)
async def get_routing_settings(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Organisation thresholds in effect, including configured defaults."""
    service = WorkflowService(db, current_user.organisation_id)
    org_settings = service.get_org_settings()
    fallback = service.fallback_thresholds()
    return {
        "use_custom_workflows": bool(org_settings and org_settings.use_custom_workflows),
        "auto_approve_below_amount": fallback.auto_approve_below,
        "require_ceo_above_amount": fallback.ceo_above,
    }


@router.put("/settings", response_model=RoutingSettingsResponse)
async def update_routing_settings(
    body: RoutingSettingsUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_capability(Capability.MANAGE_WORKFLOWS)),
):
    return WorkflowService(db, current_user.organisation_id).update_settings(
        use_custom_workflows=body.use_custom_workflows,
        auto_approve_below_amount=body.auto_approve_below_amount,
        require_ceo_above_amount=body.require_ceo_above_amount,
        clear_auto_approve=body.clear_auto_approve,
        clear_ceo_threshold=body.clear_ceo_threshold,
    )


@router.get("", response_model=List[WorkflowResponse])
async def list_workflows(
    workflow_type: Optional[ArtifactType] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    workflows = WorkflowService(db, current_user.organisation_id).list_workflows(workflow_type)
    return [workflow_to_dict(w) for w in workflows]


@router.post("", response_model=WorkflowResponse, status_code=status.HTTP_201_CREATED)
async def create_workflow(
    body: WorkflowCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_capability(Capability.MANAGE_WORKFLOWS)),
):
    workflow = WorkflowService(db, current_user.organisation_id).create_workflow(
        body.name,
        body.workflow_type,
        is_default=body.is_default,
        steps=[_step(s) for s in body.steps],
    )
    return workflow_to_dict(workflow)


@router.get("/{workflow_id}", response_model=WorkflowResponse)
async def get_workflow(
    workflow_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return workflow_to_dict(WorkflowService(db, current_user.organisation_id).get_workflow(workflow_id))


@router.post("/{workflow_id}/steps", response_model=WorkflowResponse, status_code=status.HTTP_201_CREATED)
async def add_workflow_step(
    workflow_id: UUID,
    body: WorkflowStepCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_capability(Capability.MANAGE_WORKFLOWS)),
):
    service = WorkflowService(db, current_user.organisation_id)
    service.add_step(workflow_id, _step(body))
    return workflow_to_dict(service.get_workflow(workflow_id))


@router.delete("/{workflow_id}/steps/{step_id}", response_model=WorkflowResponse)
async def remove_workflow_step(
    workflow_id: UUID,
    step_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_capability(Capability.MANAGE_WORKFLOWS)),
):
    """Remove a step; remaining steps are re-numbered from 1."""
    service = WorkflowService(db, current_user.organisation_id)
    service.remove_step(workflow_id, step_id)
    return workflow_to_dict(service.get_workflow(workflow_id))


@router.post("/{workflow_id}/default", response_model=WorkflowResponse)
async def set_default_workflow(
    workflow_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_capability(Capability.MANAGE_WORKFLOWS)),
):
    return workflow_to_dict(WorkflowService(db, current_user.organisation_id).set_default(workflow_id))
