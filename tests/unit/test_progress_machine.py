"""Tests for the approval progress state machine."""

import pytest
from uuid import uuid4
from datetime import datetime

from procureflow.core.exceptions import ConflictError
from procureflow.core.roles import UserRole
from procureflow.core.routing.states import (
    ArtifactType,
    ProgressState,
    ProgressTransition,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    can_transition,
    get_target_state,
    get_transition_rule,
    pending_status_for,
)
from procureflow.core.routing.machine import ApprovalProgressMachine, TransitionError
from procureflow.core.routing.thresholds import PlannedStep


AT = datetime(2026, 3, 1, 9, 30)
MD_STEP = PlannedStep(position=1, approver_role=UserRole.MD)
CEO_STEP = PlannedStep(position=2, approver_role=UserRole.CEO)


class TestProgressStates:
    """Test progress state definitions."""

    def test_terminal_states(self):
        assert ProgressState.COMPLETED in TERMINAL_STATES
        assert ProgressState.REJECTED in TERMINAL_STATES
        assert ProgressState.IN_PROGRESS not in TERMINAL_STATES

    def test_terminal_states_no_outgoing(self):
        for state in TERMINAL_STATES:
            assert state not in VALID_TRANSITIONS

    def test_not_started_transitions(self):
        assert can_transition(ProgressState.NOT_STARTED, ProgressTransition.SUBMIT)
        assert can_transition(ProgressState.NOT_STARTED, ProgressTransition.AUTO_APPROVE)
        assert not can_transition(ProgressState.NOT_STARTED, ProgressTransition.REJECT)

    def test_in_progress_transitions(self):
        assert can_transition(ProgressState.IN_PROGRESS, ProgressTransition.APPROVE_STEP)
        assert can_transition(ProgressState.IN_PROGRESS, ProgressTransition.APPROVE_FINAL)
        assert can_transition(ProgressState.IN_PROGRESS, ProgressTransition.REJECT)
        assert not can_transition(ProgressState.IN_PROGRESS, ProgressTransition.SUBMIT)

    def test_get_target_state(self):
        assert get_target_state(ProgressState.IN_PROGRESS, ProgressTransition.REJECT) == ProgressState.REJECTED
        assert get_target_state(ProgressState.COMPLETED, ProgressTransition.REJECT) is None

    def test_reject_requires_comment(self):
        rule = get_transition_rule(ProgressState.IN_PROGRESS, ProgressTransition.REJECT)
        assert rule.requires_comment is True

    def test_pending_status_for_roles(self):
        assert pending_status_for(UserRole.MD) == "PENDING_MD_APPROVAL"
        assert pending_status_for(UserRole.CEO) == "PENDING_CEO_APPROVAL"
        assert pending_status_for(UserRole.ADMIN) == "PENDING_ADMIN_APPROVAL"
        with pytest.raises(ValueError):
            pending_status_for(UserRole.ACCOUNTS)

    def test_artifact_types(self):
        assert ArtifactType("PO") == ArtifactType.PO
        assert ArtifactType("INVOICE") == ArtifactType.INVOICE


class TestApprovalProgressMachine:
    """Test state machine transitions."""

    def test_submit_with_steps(self):
        machine = ApprovalProgressMachine(uuid4())
        state = machine.submit(2)

        assert state == ProgressState.IN_PROGRESS
        assert machine.current_step == 1
        assert machine.total_steps == 2
        assert machine.completed_steps == []

    def test_submit_without_steps_completes(self):
        machine = ApprovalProgressMachine(uuid4())
        state = machine.submit(0)

        assert state == ProgressState.COMPLETED
        assert machine.is_terminal
        assert machine.completed_steps == []
        assert len(machine.completed_steps) == machine.current_step - 1

    def test_submit_twice_rejected(self):
        machine = ApprovalProgressMachine(uuid4())
        machine.submit(1)
        with pytest.raises(TransitionError):
            machine.submit(1)

    def test_negative_total_rejected(self):
        with pytest.raises(ValueError):
            ApprovalProgressMachine(uuid4()).submit(-1)

    def test_approvals_advance_to_completed(self):
        machine = ApprovalProgressMachine(uuid4())
        machine.submit(2)
        md_user, ceo_user = uuid4(), uuid4()

        assert machine.record_approval(MD_STEP, acting_user_id=md_user, at=AT) == ProgressState.IN_PROGRESS
        assert machine.current_step == 2
        assert len(machine.completed_steps) == machine.current_step - 1

        assert machine.record_approval(CEO_STEP, acting_user_id=ceo_user, at=AT) == ProgressState.COMPLETED
        completed = machine.completed_steps
        assert [c["approver_role"] for c in completed] == ["MD", "CEO"]
        assert [c["approved_by_user_id"] for c in completed] == [str(md_user), str(ceo_user)]
        assert completed[0]["approved_at"] == AT.isoformat()

    def test_records_delegation_linkage(self):
        machine = ApprovalProgressMachine(uuid4())
        machine.submit(1)
        delegate, delegator = uuid4(), uuid4()

        machine.record_approval(MD_STEP, acting_user_id=delegate, at=AT, on_behalf_of=delegator)

        step = machine.completed_steps[0]
        assert step["approved_by_user_id"] == str(delegate)
        assert step["approved_on_behalf_of_user_id"] == str(delegator)

    def test_duplicate_approval_conflicts(self):
        machine = ApprovalProgressMachine(uuid4())
        machine.submit(2)
        machine.record_approval(MD_STEP, acting_user_id=uuid4(), at=AT, expected_step=1)

        with pytest.raises(ConflictError):
            machine.record_approval(MD_STEP, acting_user_id=uuid4(), at=AT, expected_step=1)
        assert len(machine.completed_steps) == 1

    def test_wrong_step_conflicts(self):
        machine = ApprovalProgressMachine(uuid4())
        machine.submit(2)
        with pytest.raises(ConflictError):
            machine.record_approval(CEO_STEP, acting_user_id=uuid4(), at=AT)

    def test_approve_after_completion_conflicts(self):
        machine = ApprovalProgressMachine(uuid4())
        machine.submit(1)
        machine.record_approval(MD_STEP, acting_user_id=uuid4(), at=AT)

        with pytest.raises(TransitionError) as exc_info:
            machine.record_approval(MD_STEP, acting_user_id=uuid4(), at=AT)
        assert exc_info.value.from_state == ProgressState.COMPLETED
        assert exc_info.value.code == "CONFLICT"

    def test_same_user_cannot_approve_consecutive_steps(self):
        md_user = uuid4()
        second_md = PlannedStep(position=2, approver_role=UserRole.MD)
        machine = ApprovalProgressMachine(uuid4())
        machine.submit(2)
        machine.record_approval(MD_STEP, acting_user_id=md_user, at=AT)

        with pytest.raises(ConflictError):
            machine.record_approval(second_md, acting_user_id=md_user, at=AT)
        assert machine.state == ProgressState.IN_PROGRESS
        assert machine.current_step == 2
        assert len(machine.completed_steps) == 1

        assert machine.record_approval(second_md, acting_user_id=uuid4(), at=AT) == ProgressState.COMPLETED

    def test_reject_from_in_progress(self):
        machine = ApprovalProgressMachine(uuid4())
        machine.submit(2)
        machine.record_approval(MD_STEP, acting_user_id=uuid4(), at=AT)

        assert machine.reject(acting_user_id=uuid4(), reason="Budget reallocated") == ProgressState.REJECTED
        assert machine.current_step == 2
        assert len(machine.completed_steps) == 1

    def test_reject_requires_reason(self):
        machine = ApprovalProgressMachine(uuid4())
        machine.submit(1)
        with pytest.raises(TransitionError):
            machine.reject(acting_user_id=uuid4(), reason="   ")

    @pytest.mark.parametrize("total", [0, 1])
    def test_reject_terminal_conflicts(self, total):
        machine = ApprovalProgressMachine(uuid4())
        machine.submit(total)
        if total:
            machine.record_approval(MD_STEP, acting_user_id=uuid4(), at=AT)

        with pytest.raises(ConflictError):
            machine.reject(acting_user_id=uuid4(), reason="Too late to reject")
        assert machine.state == ProgressState.COMPLETED

    def test_history_tracking(self):
        entity_id = uuid4()
        user_id = uuid4()
        machine = ApprovalProgressMachine(entity_id)
        machine.submit(1, user_id=user_id)
        machine.record_approval(MD_STEP, acting_user_id=user_id, at=AT)

        history = machine.get_history()
        assert [h["transition"] for h in history] == ["submit", "approve_final"]
        assert history[0]["entity_id"] == entity_id
        assert history[1]["from_state"] == "IN_PROGRESS"
        assert history[1]["to_state"] == "COMPLETED"

    def test_from_progress_row(self):
        class Row:
            artifact_id = uuid4()
            status = "IN_PROGRESS"
            current_step = 2
            total_steps = 2
            completed_steps = [{"step": 1}]

        machine = ApprovalProgressMachine.from_progress(Row)
        assert machine.state == ProgressState.IN_PROGRESS
        assert machine.current_step == 2
        assert machine.completed_steps == [{"step": 1}]
