"""Approval workflow configuration.

Admins either keep the two organisation thresholds or switch to custom
workflows made of ordered, amount-bounded steps. This service owns those
writes and turns the stored configuration into evaluator inputs.
"""

import logging
import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from procureflow.core.clock import utcnow
from procureflow.core.config import Settings, get_settings
from procureflow.core.exceptions import NotFoundError, ValidationError
from procureflow.core.routing.states import ArtifactType
from procureflow.core.routing.thresholds import (
    FallbackThresholds,
    StepDefinition,
    validate_step,
    validate_step_orders,
    validate_thresholds,
)
from procureflow.core.roles import UserRole
from procureflow.db.models import ApprovalWorkflow, ApprovalWorkflowStep, OrganisationSettings

logger = logging.getLogger(__name__)


class WorkflowService:
    def __init__(self, db: Session, org_id: UUID, settings: Optional[Settings] = None):
        self.db = db
        self.org_id = org_id
        self.settings = settings or get_settings()

    # -- settings ---------------------------------------------------------

    def get_org_settings(self) -> Optional[OrganisationSettings]:
        return (
            self.db.query(OrganisationSettings)
            .filter(OrganisationSettings.organisation_id == self.org_id)
            .first()
        )

    def fallback_thresholds(self) -> FallbackThresholds:
        """Organisation thresholds, or the configured defaults when unset."""
        org_settings = self.get_org_settings()
        if org_settings is None:
            return FallbackThresholds(
                auto_approve_below=self.settings.default_auto_approve_below_amount,
                ceo_above=self.settings.default_ceo_above_amount,
            )
        return FallbackThresholds(
            auto_approve_below=org_settings.auto_approve_below_amount,
            ceo_above=org_settings.require_ceo_above_amount,
        )

    def update_settings(
        self,
        *,
        use_custom_workflows: Optional[bool] = None,
        auto_approve_below_amount: Optional[Decimal] = None,
        require_ceo_above_amount: Optional[Decimal] = None,
        clear_auto_approve: bool = False,
        clear_ceo_threshold: bool = False,
    ) -> OrganisationSettings:
        """
        Update routing settings, creating the row on first use.

        Thresholds are only changed when a value is given or the matching
        ``clear_*`` flag is set; a cleared threshold disables its rule.
        """
        org_settings = self.get_org_settings()
        if org_settings is None:
            org_settings = OrganisationSettings(
                id=uuid.uuid4(),
                organisation_id=self.org_id,
                use_custom_workflows=False,
                auto_approve_below_amount=self.settings.default_auto_approve_below_amount,
                require_ceo_above_amount=self.settings.default_ceo_above_amount,
            )
            self.db.add(org_settings)

        auto_below = org_settings.auto_approve_below_amount
        ceo_above = org_settings.require_ceo_above_amount
        if clear_auto_approve:
            auto_below = None
        elif auto_approve_below_amount is not None:
            auto_below = auto_approve_below_amount
        if clear_ceo_threshold:
            ceo_above = None
        elif require_ceo_above_amount is not None:
            ceo_above = require_ceo_above_amount

        try:
            validate_thresholds(auto_below, ceo_above)
        except ValidationError:
            self.db.rollback()
            raise

        org_settings.auto_approve_below_amount = auto_below
        org_settings.require_ceo_above_amount = ceo_above
        if use_custom_workflows is not None:
            org_settings.use_custom_workflows = use_custom_workflows
        org_settings.updated_at = utcnow()

        self.db.commit()
        logger.info(
            f"Routing settings updated for org {self.org_id}: custom={org_settings.use_custom_workflows} "
            f"auto<{auto_below} ceo>{ceo_above}"
        )
        return org_settings

    # -- workflows --------------------------------------------------------

    def list_workflows(self, workflow_type: Optional[ArtifactType] = None) -> List[ApprovalWorkflow]:
        query = self.db.query(ApprovalWorkflow).filter(ApprovalWorkflow.organisation_id == self.org_id)
        if workflow_type is not None:
            query = query.filter(ApprovalWorkflow.workflow_type == ArtifactType(workflow_type).value)
        return query.order_by(ApprovalWorkflow.created_at).all()

    def get_workflow(self, workflow_id: UUID) -> ApprovalWorkflow:
        workflow = (
            self.db.query(ApprovalWorkflow)
            .filter(
                ApprovalWorkflow.id == workflow_id,
                ApprovalWorkflow.organisation_id == self.org_id,
            )
            .first()
        )
        if workflow is None:
            raise NotFoundError(f"Workflow {workflow_id} not found")
        return workflow

    def create_workflow(
        self,
        name: str,
        workflow_type: ArtifactType,
        *,
        is_default: bool = False,
        steps: Optional[List[StepDefinition]] = None,
    ) -> ApprovalWorkflow:
        if not name or not name.strip():
            raise ValidationError("Workflow name is required")
        workflow_type = ArtifactType(workflow_type)

        steps = steps or []
        for step in steps:
            validate_step(step)
        validate_step_orders(step.step_order for step in steps)

        workflow = ApprovalWorkflow(
            id=uuid.uuid4(),
            organisation_id=self.org_id,
            name=name.strip(),
            workflow_type=workflow_type.value,
            is_active=True,
            is_default=False,
        )
        self.db.add(workflow)
        for step in steps:
            workflow.steps.append(self._step_row(step))

        if is_default:
            self._clear_default(workflow_type)
            workflow.is_default = True

        self.db.commit()
        logger.info(f"Created {workflow_type.value} workflow '{workflow.name}' with {len(steps)} step(s)")
        return workflow

    def add_step(self, workflow_id: UUID, step: StepDefinition) -> ApprovalWorkflowStep:
        """Append or insert a step; later steps shift down to keep orders contiguous."""
        workflow = self.get_workflow(workflow_id)
        validate_step(step)

        next_order = len(workflow.steps) + 1
        if step.step_order < 1 or step.step_order > next_order:
            raise ValidationError(f"step_order must be between 1 and {next_order}")

        # Shift in descending order so the unique (workflow, step_order) pair holds on every flush
        for existing in sorted(workflow.steps, key=lambda s: s.step_order, reverse=True):
            if existing.step_order >= step.step_order:
                existing.step_order += 1
                self.db.flush()

        row = self._step_row(step)
        workflow.steps.append(row)
        workflow.updated_at = utcnow()
        validate_step_orders(s.step_order for s in workflow.steps)
        self.db.commit()
        return row

    def remove_step(self, workflow_id: UUID, step_id: UUID) -> None:
        """Remove a step and re-number the remaining ones from 1."""
        workflow = self.get_workflow(workflow_id)
        target = next((s for s in workflow.steps if s.id == step_id), None)
        if target is None:
            raise NotFoundError(f"Step {step_id} not found in workflow {workflow_id}")

        workflow.steps.remove(target)
        self.db.flush()
        for order, step in enumerate(sorted(workflow.steps, key=lambda s: s.step_order), start=1):
            if step.step_order != order:
                step.step_order = order
                self.db.flush()
        workflow.updated_at = utcnow()
        self.db.commit()

    def set_default(self, workflow_id: UUID) -> ApprovalWorkflow:
        workflow = self.get_workflow(workflow_id)
        if not workflow.is_active:
            raise ValidationError("An inactive workflow cannot be the default")
        self._clear_default(ArtifactType(workflow.workflow_type))
        workflow.is_default = True
        workflow.updated_at = utcnow()
        self.db.commit()
        return workflow

    def set_active(self, workflow_id: UUID, is_active: bool) -> ApprovalWorkflow:
        workflow = self.get_workflow(workflow_id)
        workflow.is_active = is_active
        if not is_active:
            workflow.is_default = False
        workflow.updated_at = utcnow()
        self.db.commit()
        return workflow

    def default_workflow(self, workflow_type: ArtifactType) -> Optional[ApprovalWorkflow]:
        return (
            self.db.query(ApprovalWorkflow)
            .filter(
                ApprovalWorkflow.organisation_id == self.org_id,
                ApprovalWorkflow.workflow_type == ArtifactType(workflow_type).value,
                ApprovalWorkflow.is_active.is_(True),
                ApprovalWorkflow.is_default.is_(True),
            )
            .first()
        )

    # -- evaluator inputs -------------------------------------------------

    def resolve_plan_inputs(
        self, artifact_type: ArtifactType
    ) -> Tuple[Optional[List[StepDefinition]], Optional[UUID], FallbackThresholds]:
        """
        Inputs for ``applicable_steps``.

        Returns the default workflow's steps and id when custom workflows
        are enabled and such a workflow exists. With custom workflows enabled
        but no default for the type, the plan is a single MD step. Otherwise
        ``(None, None, thresholds)`` so the fallback thresholds apply.
        """
        fallback = self.fallback_thresholds()
        org_settings = self.get_org_settings()
        if org_settings is None or not org_settings.use_custom_workflows:
            return None, None, fallback

        workflow = self.default_workflow(artifact_type)
        if workflow is None:
            logger.warning(
                f"Custom workflows enabled for org {self.org_id} but no default "
                f"{ArtifactType(artifact_type).value} workflow; requiring MD approval"
            )
            return [StepDefinition(step_order=1, approver_role=UserRole.MD)], None, fallback

        steps = [
            StepDefinition(
                step_order=row.step_order,
                approver_role=UserRole(row.approver_role),
                min_amount=row.min_amount,
                max_amount=row.max_amount,
                skip_if_below_amount=row.skip_if_below_amount,
                is_required=row.is_required,
            )
            for row in workflow.steps
        ]
        return steps, workflow.id, fallback

    def _clear_default(self, workflow_type: ArtifactType) -> None:
        (
            self.db.query(ApprovalWorkflow)
            .filter(
                ApprovalWorkflow.organisation_id == self.org_id,
                ApprovalWorkflow.workflow_type == workflow_type.value,
                ApprovalWorkflow.is_default.is_(True),
            )
            .update({"is_default": False}, synchronize_session="fetch")
        )

    @staticmethod
    def _step_row(step: StepDefinition) -> ApprovalWorkflowStep:
        return ApprovalWorkflowStep(
            id=uuid.uuid4(),
            step_order=step.step_order,
            approver_role=UserRole(step.approver_role).value,
            min_amount=step.min_amount,
            max_amount=step.max_amount,
            skip_if_below_amount=step.skip_if_below_amount,
            is_required=step.is_required,
        )


def workflow_to_dict(workflow: ApprovalWorkflow) -> Dict[str, Any]:
    return {
        "id": str(workflow.id),
        "name": workflow.name,
        "workflow_type": workflow.workflow_type,
        "is_active": workflow.is_active,
        "is_default": workflow.is_default,
        "steps": [
            {
                "id": str(step.id),
                "step_order": step.step_order,
                "approver_role": step.approver_role,
                "min_amount": str(step.min_amount) if step.min_amount is not None else None,
                "max_amount": str(step.max_amount) if step.max_amount is not None else None,
                "skip_if_below_amount": str(step.skip_if_below_amount) if step.skip_if_below_amount is not None else None,
                "is_required": step.is_required,
            }
            for step in sorted(workflow.steps, key=lambda s: s.step_order)
        ],
    }
