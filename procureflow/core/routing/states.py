"""Approval progress states, transitions and artifact status mapping.

Progress State Machine:

    ┌─────────────┐
    │ NOT_STARTED │ ← implicit: no progress row yet
    └──────┬──────┘
           │ submit
           ├──────────────────────────┐ (0 applicable steps)
    ┌──────▼──────┐            ┌──────▼─────┐
    │ IN_PROGRESS │───────────►│ COMPLETED  │
    └──┬───────┬──┘  approve   └────────────┘
       │       │     (last step)
       │  ◄────┘ approve (more steps remain)
       │
    ┌──▼───────┐
    │ REJECTED │
    └──────────┘

COMPLETED and REJECTED are terminal: ``current_step`` and
``completed_steps`` are frozen once reached.
"""

from enum import Enum
from typing import Dict, NamedTuple, Optional, Set, Tuple

from procureflow.core.roles import UserRole


class ArtifactType(str, Enum):
    """Kinds of artifact routed for approval."""

    PO = "PO"
    INVOICE = "INVOICE"


class ProgressState(str, Enum):
    """States of an artifact's approval progress."""

    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"


class ProgressTransition(str, Enum):
    """Actions that move approval progress between states."""

    SUBMIT = "submit"                  # NOT_STARTED → IN_PROGRESS
    AUTO_APPROVE = "auto_approve"      # NOT_STARTED → COMPLETED (no steps)
    APPROVE_STEP = "approve_step"      # IN_PROGRESS → IN_PROGRESS
    APPROVE_FINAL = "approve_final"    # IN_PROGRESS → COMPLETED
    REJECT = "reject"                  # IN_PROGRESS → REJECTED


class TransitionRule(NamedTuple):
    """Defines a valid progress transition."""
    from_state: ProgressState
    to_state: ProgressState
    transition: ProgressTransition
    requires_comment: bool = False


TRANSITION_RULES: list[TransitionRule] = [
    TransitionRule(ProgressState.NOT_STARTED, ProgressState.IN_PROGRESS, ProgressTransition.SUBMIT),
    TransitionRule(ProgressState.NOT_STARTED, ProgressState.COMPLETED, ProgressTransition.AUTO_APPROVE),
    TransitionRule(ProgressState.IN_PROGRESS, ProgressState.IN_PROGRESS, ProgressTransition.APPROVE_STEP),
    TransitionRule(ProgressState.IN_PROGRESS, ProgressState.COMPLETED, ProgressTransition.APPROVE_FINAL),
    TransitionRule(ProgressState.IN_PROGRESS, ProgressState.REJECTED, ProgressTransition.REJECT, requires_comment=True),
]

VALID_TRANSITIONS: Dict[ProgressState, Set[ProgressTransition]] = {}
TRANSITION_TARGETS: Dict[Tuple[ProgressState, ProgressTransition], TransitionRule] = {}
for _rule in TRANSITION_RULES:
    VALID_TRANSITIONS.setdefault(_rule.from_state, set()).add(_rule.transition)
    TRANSITION_TARGETS[(_rule.from_state, _rule.transition)] = _rule

TERMINAL_STATES: Set[ProgressState] = {
    ProgressState.COMPLETED,
    ProgressState.REJECTED,
}


def can_transition(from_state: ProgressState, transition: ProgressTransition) -> bool:
    """Check if a transition is valid from the given state."""
    return transition in VALID_TRANSITIONS.get(from_state, set())


def get_transition_rule(from_state: ProgressState, transition: ProgressTransition) -> Optional[TransitionRule]:
    """Get the transition rule for a state/action combination."""
    return TRANSITION_TARGETS.get((from_state, transition))


def get_target_state(from_state: ProgressState, transition: ProgressTransition) -> Optional[ProgressState]:
    """Get the target state for a transition."""
    rule = get_transition_rule(from_state, transition)
    return rule.to_state if rule else None


# ---------------------------------------------------------------------------
# Artifact statuses
# ---------------------------------------------------------------------------


class POStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING_MD_APPROVAL = "PENDING_MD_APPROVAL"
    PENDING_CEO_APPROVAL = "PENDING_CEO_APPROVAL"
    PENDING_ADMIN_APPROVAL = "PENDING_ADMIN_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class InvoiceStatus(str, Enum):
    UPLOADED = "UPLOADED"
    MATCHED = "MATCHED"
    PENDING_MD_APPROVAL = "PENDING_MD_APPROVAL"
    PENDING_CEO_APPROVAL = "PENDING_CEO_APPROVAL"
    PENDING_ADMIN_APPROVAL = "PENDING_ADMIN_APPROVAL"
    APPROVED_FOR_PAYMENT = "APPROVED_FOR_PAYMENT"
    PAID = "PAID"
    REJECTED = "REJECTED"


class LogAction(str, Enum):
    """Actions recorded in the approval log."""

    SENT_FOR_APPROVAL = "SENT_FOR_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    MARKED_PAID = "MARKED_PAID"


# Statuses from which an artifact may be submitted for approval
SUBMITTABLE_STATUSES: Dict[ArtifactType, Set[str]] = {
    ArtifactType.PO: {POStatus.DRAFT.value},
    ArtifactType.INVOICE: {InvoiceStatus.MATCHED.value},
}

_PENDING_BY_ROLE: Dict[UserRole, str] = {
    UserRole.MD: "PENDING_MD_APPROVAL",
    UserRole.CEO: "PENDING_CEO_APPROVAL",
    UserRole.ADMIN: "PENDING_ADMIN_APPROVAL",
}

COMPLETED_STATUS: Dict[ArtifactType, str] = {
    ArtifactType.PO: POStatus.APPROVED.value,
    ArtifactType.INVOICE: InvoiceStatus.APPROVED_FOR_PAYMENT.value,
}

REJECTED_STATUS: Dict[ArtifactType, str] = {
    ArtifactType.PO: POStatus.REJECTED.value,
    ArtifactType.INVOICE: InvoiceStatus.REJECTED.value,
}


def pending_status_for(role: UserRole) -> str:
    """Artifact status while waiting on a step held by ``role``.

    PO and invoice share the same pending status names.
    """
    try:
        return _PENDING_BY_ROLE[UserRole(role)]
    except KeyError:
        raise ValueError(f"Role {role} does not approve artifacts") from None
