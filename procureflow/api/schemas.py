"""Request and response schemas for the ProcureFlow API."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from procureflow.core.roles import UserRole
from procureflow.core.routing.states import ArtifactType


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[str] = None
    code: Optional[str] = None


# Routing

class ApproveRequest(BaseModel):
    expected_step: Optional[int] = Field(None, ge=1)
    on_behalf_of: Optional[UUID] = None
    comment: Optional[str] = None


class RejectRequest(BaseModel):
    reason: str
    on_behalf_of: Optional[UUID] = None


class ProgressResponse(BaseModel):
    id: UUID
    artifact_type: ArtifactType
    artifact_id: UUID
    workflow_id: Optional[UUID]
    amount: Decimal
    status: str
    current_step: int
    total_steps: int
    planned_steps: List[Dict[str, Any]]
    completed_steps: List[Dict[str, Any]]
    version: int
    updated_at: Optional[datetime]


class SubmitResponse(BaseModel):
    progress: ProgressResponse
    artifact_status: str
    auto_approved: bool
    needs_ceo: bool


class ActionResponse(BaseModel):
    progress: ProgressResponse
    artifact_status: str
    completed: bool
    approved_on_behalf_of_user_id: Optional[UUID] = None


class ApprovalLogResponse(BaseModel):
    id: UUID
    action: str
    action_by_user_id: Optional[UUID]
    approved_on_behalf_of_user_id: Optional[UUID]
    comment: Optional[str]
    created_at: Optional[datetime]


class PlannedStepResponse(BaseModel):
    position: int
    approver_role: UserRole
    step_order: Optional[int] = None
    is_required: bool = True


class PreviewResponse(BaseModel):
    amount: Decimal
    artifact_type: ArtifactType
    steps: List[PlannedStepResponse]
    auto_approved: bool
    needs_ceo: bool


class MarkPaidRequest(BaseModel):
    payment_date: date
    payment_reference: Optional[str] = None


class MarkPaidResponse(BaseModel):
    id: UUID
    invoice_number: str
    status: str
    payment_date: Optional[date]
    payment_reference: Optional[str]


# Delegations

class DelegationCreate(BaseModel):
    delegate_user_id: UUID
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None


class DelegationResponse(BaseModel):
    id: UUID
    delegator_user_id: UUID
    delegate_user_id: UUID
    starts_at: Optional[datetime]
    ends_at: Optional[datetime]
    is_active: bool
    is_effective: bool


class DelegationListResponse(BaseModel):
    granted: List[DelegationResponse]
    received: List[DelegationResponse]


class SweepResponse(BaseModel):
    deactivated: int
    deactivated_ids: List[UUID]
    notified: int
    failed: int


# Workflows

class WorkflowStepCreate(BaseModel):
    step_order: int = Field(..., ge=1)
    approver_role: UserRole
    min_amount: Optional[Decimal] = Field(None, ge=0)
    max_amount: Optional[Decimal] = Field(None, ge=0)
    skip_if_below_amount: Optional[Decimal] = Field(None, ge=0)
    is_required: bool = True


class WorkflowCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    workflow_type: ArtifactType
    is_default: bool = False
    steps: List[WorkflowStepCreate] = []


class WorkflowStepResponse(BaseModel):
    id: UUID
    step_order: int
    approver_role: str
    min_amount: Optional[Decimal]
    max_amount: Optional[Decimal]
    skip_if_below_amount: Optional[Decimal]
    is_required: bool


class WorkflowResponse(BaseModel):
    id: UUID
    name: str
    workflow_type: str
    is_active: bool
    is_default: bool
    steps: List[WorkflowStepResponse]


class RoutingSettingsUpdate(BaseModel):
    use_custom_workflows: Optional[bool] = None
    auto_approve_below_amount: Optional[Decimal] = Field(None, ge=0)
    require_ceo_above_amount: Optional[Decimal] = Field(None, ge=0)
    clear_auto_approve: bool = False
    clear_ceo_threshold: bool = False


class RoutingSettingsResponse(BaseModel):
    use_custom_workflows: bool
    auto_approve_below_amount: Optional[Decimal]
    require_ceo_above_amount: Optional[Decimal]

    class Config:
        from_attributes = True
