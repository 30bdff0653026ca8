"""Tests for workflow and routing settings management."""

import pytest
from decimal import Decimal
from uuid import uuid4

from procureflow.core.config import Settings
from procureflow.core.exceptions import NotFoundError, ValidationError
from procureflow.core.roles import UserRole
from procureflow.core.routing.states import ArtifactType
from procureflow.core.routing.thresholds import StepDefinition, applicable_steps
from procureflow.core.routing.workflows import WorkflowService, workflow_to_dict

from tests.factories import create_organisation


def step(order, role, **kwargs):
    return StepDefinition(step_order=order, approver_role=role, **kwargs)


@pytest.fixture
def workflows(db_session, org):
    return WorkflowService(db_session, org.id)


class TestRoutingSettings:

    def test_fallback_from_org_settings(self, workflows):
        fallback = workflows.fallback_thresholds()
        assert fallback.auto_approve_below == Decimal("5000")
        assert fallback.ceo_above == Decimal("15000")

    def test_fallback_from_config_without_settings_row(self, db_session):
        org = create_organisation(db_session)
        db_session.commit()
        settings = Settings(_env_file=None, default_auto_approve_below_amount=Decimal("250"))

        fallback = WorkflowService(db_session, org.id, settings).fallback_thresholds()

        assert fallback.auto_approve_below == Decimal("250")
        assert fallback.ceo_above == Decimal("15000")

    def test_update_thresholds(self, workflows):
        updated = workflows.update_settings(require_ceo_above_amount=Decimal("25000"))

        assert updated.require_ceo_above_amount == Decimal("25000")
        assert updated.auto_approve_below_amount == Decimal("5000")

    def test_clear_threshold_disables_rule(self, workflows):
        workflows.update_settings(clear_ceo_threshold=True)
        assert workflows.fallback_thresholds().ceo_above is None

    def test_inverted_thresholds_rejected(self, workflows):
        with pytest.raises(ValidationError):
            workflows.update_settings(auto_approve_below_amount=Decimal("20000"))
        assert workflows.fallback_thresholds().auto_approve_below == Decimal("5000")

    def test_creates_settings_row_on_first_update(self, db_session):
        org = create_organisation(db_session)
        db_session.commit()
        service = WorkflowService(db_session, org.id)

        service.update_settings(use_custom_workflows=True)

        assert service.get_org_settings().use_custom_workflows is True


class TestWorkflowManagement:

    def test_create_with_steps(self, workflows):
        workflow = workflows.create_workflow(
            "High value", ArtifactType.PO, is_default=True,
            steps=[step(1, UserRole.MD), step(2, UserRole.CEO, min_amount=Decimal("15000"))],
        )

        data = workflow_to_dict(workflow)
        assert data["is_default"] is True
        assert [s["approver_role"] for s in data["steps"]] == ["MD", "CEO"]

    def test_create_rejects_gaps(self, workflows):
        with pytest.raises(ValidationError):
            workflows.create_workflow("Gappy", ArtifactType.PO, steps=[step(1, UserRole.MD), step(3, UserRole.CEO)])

    def test_create_rejects_non_approver_role(self, workflows):
        with pytest.raises(ValidationError):
            workflows.create_workflow("Bad", ArtifactType.PO, steps=[step(1, UserRole.ACCOUNTS)])

    def test_create_requires_name(self, workflows):
        with pytest.raises(ValidationError):
            workflows.create_workflow("  ", ArtifactType.PO)

    def test_single_default_per_type(self, workflows):
        first = workflows.create_workflow("First", ArtifactType.PO, is_default=True)
        second = workflows.create_workflow("Second", ArtifactType.PO, is_default=True)
        invoice = workflows.create_workflow("Invoices", ArtifactType.INVOICE, is_default=True)

        assert workflows.default_workflow(ArtifactType.PO).id == second.id
        assert workflows.get_workflow(first.id).is_default is False
        assert workflows.default_workflow(ArtifactType.INVOICE).id == invoice.id

        workflows.set_default(first.id)
        assert workflows.default_workflow(ArtifactType.PO).id == first.id

    def test_inactive_cannot_be_default(self, workflows):
        workflow = workflows.create_workflow("Retired", ArtifactType.PO, is_default=True)
        workflows.set_active(workflow.id, False)

        assert workflows.default_workflow(ArtifactType.PO) is None
        with pytest.raises(ValidationError):
            workflows.set_default(workflow.id)

    def test_insert_step_shifts_later_steps(self, workflows):
        workflow = workflows.create_workflow("Chain", ArtifactType.PO, steps=[step(1, UserRole.MD), step(2, UserRole.CEO)])

        workflows.add_step(workflow.id, step(1, UserRole.ADMIN))

        roles = [s.approver_role for s in workflows.get_workflow(workflow.id).steps]
        assert roles == ["ADMIN", "MD", "CEO"]

    def test_add_step_out_of_range(self, workflows):
        workflow = workflows.create_workflow("Chain", ArtifactType.PO, steps=[step(1, UserRole.MD)])
        with pytest.raises(ValidationError):
            workflows.add_step(workflow.id, step(3, UserRole.CEO))

    def test_remove_step_renumbers(self, workflows):
        workflow = workflows.create_workflow(
            "Chain", ArtifactType.PO,
            steps=[step(1, UserRole.ADMIN), step(2, UserRole.MD), step(3, UserRole.CEO)],
        )
        middle = next(s for s in workflow.steps if s.approver_role == "MD")

        workflows.remove_step(workflow.id, middle.id)

        remaining = workflows.get_workflow(workflow.id).steps
        assert [(s.step_order, s.approver_role) for s in remaining] == [(1, "ADMIN"), (2, "CEO")]

    def test_unknown_workflow(self, workflows):
        with pytest.raises(NotFoundError):
            workflows.get_workflow(uuid4())


class TestPlanInputs:

    def test_thresholds_when_custom_disabled(self, workflows):
        workflows.create_workflow("Ignored", ArtifactType.PO, is_default=True, steps=[step(1, UserRole.ADMIN)])

        steps, workflow_id, _ = workflows.resolve_plan_inputs(ArtifactType.PO)

        assert steps is None
        assert workflow_id is None

    def test_default_workflow_when_enabled(self, workflows):
        workflows.update_settings(use_custom_workflows=True)
        workflow = workflows.create_workflow("Live", ArtifactType.PO, is_default=True, steps=[step(1, UserRole.ADMIN)])

        steps, workflow_id, _ = workflows.resolve_plan_inputs(ArtifactType.PO)

        assert workflow_id == workflow.id
        assert [s.approver_role for s in steps] == [UserRole.ADMIN]

    def test_md_step_when_no_default_for_type(self, workflows):
        workflows.update_settings(use_custom_workflows=True)
        workflows.create_workflow("PO only", ArtifactType.PO, is_default=True, steps=[step(1, UserRole.ADMIN)])

        steps, workflow_id, _ = workflows.resolve_plan_inputs(ArtifactType.INVOICE)

        assert workflow_id is None
        assert [(s.step_order, s.approver_role) for s in steps] == [(1, UserRole.MD)]

    def test_small_amount_not_auto_approved_without_default(self, workflows):
        workflows.update_settings(use_custom_workflows=True)

        steps, _, fallback = workflows.resolve_plan_inputs(ArtifactType.PO)
        plan = applicable_steps(Decimal("3000"), steps, fallback)

        assert [s.approver_role for s in plan] == [UserRole.MD]
