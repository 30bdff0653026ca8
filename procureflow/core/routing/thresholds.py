"""Threshold evaluation: amount → ordered list of required approval steps.

The evaluator is a pure function. It is called when an artifact is
submitted and again whenever a plan has to be previewed or replayed, and
must produce the same answer for the same inputs every time.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional, Protocol, Sequence, Union

from procureflow.core.exceptions import ValidationError
from procureflow.core.roles import UserRole, can_approve

Amount = Union[Decimal, int, str]


class StepLike(Protocol):
    """Anything shaped like a workflow step row."""
    step_order: int
    approver_role: str
    min_amount: Optional[Decimal]
    max_amount: Optional[Decimal]
    skip_if_below_amount: Optional[Decimal]
    is_required: bool


@dataclass(frozen=True)
class StepDefinition:
    """A configured workflow step, detached from the database."""
    step_order: int
    approver_role: UserRole
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    skip_if_below_amount: Optional[Decimal] = None
    is_required: bool = True


@dataclass(frozen=True)
class FallbackThresholds:
    """Organisation thresholds used when no custom workflow applies.

    ``auto_approve_below`` of None means nothing is auto-approved;
    ``ceo_above`` of None means the CEO is never required.
    """
    auto_approve_below: Optional[Decimal] = None
    ceo_above: Optional[Decimal] = None


@dataclass(frozen=True)
class PlannedStep:
    """One applicable step in an artifact's approval plan."""
    position: int                      # 1-based index within the plan
    approver_role: UserRole
    step_order: Optional[int] = None   # source step_order; None for threshold plans
    is_required: bool = True

    def to_dict(self) -> dict:
        return {
            "position": self.position,
            "approver_role": self.approver_role.value,
            "step_order": self.step_order,
            "is_required": self.is_required,
        }


def _decimal(value: Optional[Amount]) -> Optional[Decimal]:
    if value is None:
        return None
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _step_applies(step: StepLike, amount: Decimal) -> bool:
    min_amount = _decimal(step.min_amount)
    max_amount = _decimal(step.max_amount)
    skip_below = _decimal(step.skip_if_below_amount)

    if min_amount is not None and amount < min_amount:
        return False
    if max_amount is not None and amount > max_amount:
        return False
    if skip_below is not None and amount < skip_below:
        return False
    return True


def applicable_steps(
    amount: Amount,
    workflow_steps: Optional[Sequence[StepLike]],
    fallback: FallbackThresholds,
) -> list[PlannedStep]:
    """
    Compute the ordered approval steps required for an amount.

    Args:
        amount: Artifact amount (inc. VAT)
        workflow_steps: Steps of the organisation's custom workflow, or None
            to plan from the fallback thresholds
        fallback: Auto-approve and CEO thresholds

    Returns:
        Ordered list of planned steps; empty means auto-approved
    """
    value = _decimal(amount)

    if workflow_steps is not None:
        selected = sorted(
            (step for step in workflow_steps if _step_applies(step, value)),
            key=lambda step: step.step_order,
        )
        return [
            PlannedStep(
                position=index,
                approver_role=UserRole(step.approver_role),
                step_order=step.step_order,
                is_required=bool(step.is_required),
            )
            for index, step in enumerate(selected, start=1)
        ]

    auto_below = _decimal(fallback.auto_approve_below)
    ceo_above = _decimal(fallback.ceo_above)

    if auto_below is not None and value < auto_below:
        return []

    roles = [UserRole.MD]
    if ceo_above is not None and value > ceo_above:
        roles.append(UserRole.CEO)

    return [PlannedStep(position=i, approver_role=role) for i, role in enumerate(roles, start=1)]


def needs_ceo(steps: Iterable[PlannedStep]) -> bool:
    return any(step.approver_role == UserRole.CEO for step in steps)


def validate_step_orders(orders: Iterable[int]) -> None:
    """Step orders within a workflow must be unique and contiguous from 1."""
    ordered = sorted(orders)
    if ordered != list(range(1, len(ordered) + 1)):
        raise ValidationError(
            f"Workflow step orders must be unique and contiguous from 1, got {ordered}"
        )


def validate_step(step: StepLike) -> None:
    """Validate a single step definition before it is stored."""
    try:
        role = UserRole(step.approver_role)
    except ValueError:
        raise ValidationError(f"Unknown approver role: {step.approver_role}") from None
    if not can_approve(role):
        raise ValidationError(f"Role {role.value} cannot approve workflow steps")

    min_amount = _decimal(step.min_amount)
    max_amount = _decimal(step.max_amount)
    if min_amount is not None and max_amount is not None and min_amount > max_amount:
        raise ValidationError("Step min_amount must not exceed max_amount")


def validate_thresholds(
    auto_approve_below: Optional[Amount],
    ceo_above: Optional[Amount],
) -> None:
    """Reject threshold settings where auto-approval would swallow CEO-level amounts.

    The evaluator itself applies thresholds literally; this check runs when
    an organisation saves its settings.
    """
    auto_below = _decimal(auto_approve_below)
    ceo = _decimal(ceo_above)

    for name, value in (("auto_approve_below_amount", auto_below), ("require_ceo_above_amount", ceo)):
        if value is not None and value < 0:
            raise ValidationError(f"{name} must not be negative")

    if auto_below is not None and ceo is not None and auto_below > ceo:
        raise ValidationError(
            "auto_approve_below_amount must not be greater than require_ceo_above_amount"
        )
