"""Approval routing for purchase orders and invoices.

Implements threshold evaluation, the approval progress state machine and
the routing coordinator.
"""

from .states import ArtifactType, ProgressState, ProgressTransition, VALID_TRANSITIONS
from .thresholds import FallbackThresholds, PlannedStep, StepDefinition, applicable_steps
from .machine import ApprovalProgressMachine, TransitionError
from .service import RoutingService

__all__ = [
    "ArtifactType",
    "ProgressState",
    "ProgressTransition",
    "VALID_TRANSITIONS",
    "FallbackThresholds",
    "PlannedStep",
    "StepDefinition",
    "applicable_steps",
    "ApprovalProgressMachine",
    "TransitionError",
    "RoutingService",
]
