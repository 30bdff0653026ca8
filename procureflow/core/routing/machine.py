"""Approval progress state machine.

Tracks which step of an artifact's plan is current, which steps have been
completed and by whom, and the terminal outcome. Persistence is handled by
the routing service; the machine only validates and applies transitions to
an in-memory snapshot.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from procureflow.core.exceptions import ConflictError
from procureflow.core.routing.states import (
    ProgressState,
    ProgressTransition,
    TERMINAL_STATES,
    can_transition,
    get_transition_rule,
)
from procureflow.core.routing.thresholds import PlannedStep


class TransitionError(ConflictError):
    """Raised when a progress transition is not valid from the current state."""

    def __init__(self, message: str, from_state: ProgressState, transition: ProgressTransition):
        super().__init__(message, details={"from_state": from_state.value, "transition": transition.value})
        self.from_state = from_state
        self.transition = transition


class ApprovalProgressMachine:
    """
    State machine for one artifact's approval progress.

    ``current_step`` is the 1-based position of the step awaiting approval.
    It is 0 before submission and ``total_steps + 1`` once every step has
    been approved (including the zero-step, auto-approved case), so
    ``len(completed_steps) == current_step - 1`` holds in every state
    except REJECTED, where the position of the rejected step is kept.
    """

    def __init__(
        self,
        entity_id: UUID,
        *,
        state: ProgressState = ProgressState.NOT_STARTED,
        current_step: int = 0,
        total_steps: int = 0,
        completed_steps: Optional[list[Dict[str, Any]]] = None,
    ):
        self.entity_id = entity_id
        self._state = state
        self._current_step = current_step
        self._total_steps = total_steps
        self._completed_steps: list[Dict[str, Any]] = list(completed_steps or [])
        self._transition_history: list[Dict[str, Any]] = []

    @classmethod
    def from_progress(cls, progress) -> "ApprovalProgressMachine":
        """Build a machine from a persisted ``ApprovalProgress`` row."""
        return cls(
            progress.artifact_id,
            state=ProgressState(progress.status),
            current_step=progress.current_step,
            total_steps=progress.total_steps,
            completed_steps=progress.completed_steps,
        )

    @property
    def state(self) -> ProgressState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    @property
    def current_step(self) -> int:
        return self._current_step

    @property
    def total_steps(self) -> int:
        return self._total_steps

    @property
    def completed_steps(self) -> list[Dict[str, Any]]:
        return [dict(step) for step in self._completed_steps]

    def submit(self, total_steps: int, *, user_id: Optional[UUID] = None) -> ProgressState:
        """Start tracking with a plan of ``total_steps`` steps (0 = auto-approve)."""
        if total_steps < 0:
            raise ValueError("total_steps must not be negative")

        transition = ProgressTransition.SUBMIT if total_steps else ProgressTransition.AUTO_APPROVE
        self._check(transition)

        self._total_steps = total_steps
        self._current_step = 1 if total_steps else total_steps + 1
        return self._apply(transition, user_id=user_id, metadata={"total_steps": total_steps})

    def record_approval(
        self,
        step: PlannedStep,
        *,
        acting_user_id: UUID,
        at: datetime,
        on_behalf_of: Optional[UUID] = None,
        expected_step: Optional[int] = None,
    ) -> ProgressState:
        """
        Record approval of the current step.

        Args:
            step: The planned step being approved; must be the current one
            acting_user_id: User who performed the approval
            at: Approval timestamp
            on_behalf_of: Delegator whose authority was used, if any
            expected_step: Step the caller believes is current; a mismatch
                means the action is a duplicate or stale

        Raises:
            TransitionError: If progress is not IN_PROGRESS or already past the plan
            ConflictError: If the step does not match the current position, or
                the acting user already approved an earlier step
        """
        if self._state != ProgressState.IN_PROGRESS:
            raise TransitionError(
                f"Cannot approve from state {self._state.value}",
                self._state,
                ProgressTransition.APPROVE_STEP,
            )
        if self._current_step > self._total_steps:
            raise TransitionError(
                "All steps are already approved",
                self._state,
                ProgressTransition.APPROVE_STEP,
            )
        if expected_step is not None and expected_step != self._current_step:
            raise ConflictError(
                f"Step {expected_step} is no longer current (current step is {self._current_step})",
                details={"expected_step": expected_step, "current_step": self._current_step},
            )
        if step.position != self._current_step:
            raise ConflictError(
                f"Step {step.position} is not the current step {self._current_step}",
            )
        # One approval per user per artifact
        already = next(
            (done for done in self._completed_steps if done["approved_by_user_id"] == str(acting_user_id)),
            None,
        )
        if already is not None:
            raise ConflictError(
                f"User {acting_user_id} already approved step {already['step']}",
                details={"approved_step": already["step"], "current_step": self._current_step},
            )

        self._completed_steps.append({
            "step": step.position,
            "step_order": step.step_order,
            "approver_role": step.approver_role.value,
            "approved_by_user_id": str(acting_user_id),
            "approved_on_behalf_of_user_id": str(on_behalf_of) if on_behalf_of else None,
            "approved_at": at.isoformat(),
        })
        self._current_step += 1

        transition = (
            ProgressTransition.APPROVE_FINAL
            if self._current_step > self._total_steps
            else ProgressTransition.APPROVE_STEP
        )
        return self._apply(transition, user_id=acting_user_id, metadata={"step": step.position})

    def reject(self, *, acting_user_id: UUID, reason: str) -> ProgressState:
        """Terminate progress as REJECTED. Only valid while IN_PROGRESS."""
        self._check(ProgressTransition.REJECT)
        rule = get_transition_rule(self._state, ProgressTransition.REJECT)
        if rule.requires_comment and not (reason and reason.strip()):
            raise TransitionError(
                "Rejection requires a reason",
                self._state,
                ProgressTransition.REJECT,
            )
        return self._apply(
            ProgressTransition.REJECT,
            user_id=acting_user_id,
            comment=reason,
            metadata={"step": self._current_step},
        )

    def get_history(self) -> list[Dict[str, Any]]:
        """Get the transitions applied through this machine instance."""
        return self._transition_history.copy()

    def _check(self, transition: ProgressTransition) -> None:
        if not can_transition(self._state, transition):
            raise TransitionError(
                f"Cannot perform {transition.value} from state {self._state.value}",
                self._state,
                transition,
            )

    def _apply(
        self,
        transition: ProgressTransition,
        *,
        user_id: Optional[UUID] = None,
        comment: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ProgressState:
        rule = get_transition_rule(self._state, transition)
        from_state = self._state
        self._state = rule.to_state

        self._transition_history.append({
            "id": uuid.uuid4(),
            "entity_id": self.entity_id,
            "from_state": from_state.value,
            "to_state": self._state.value,
            "transition": transition.value,
            "user_id": user_id,
            "comment": comment,
            "metadata": metadata or {},
        })
        return self._state
