"""Time-bounded approval delegation."""

from .registry import DelegationRegistry
from .sweeper import DelegationExpirySweeper, SweepResult

__all__ = [
    "DelegationRegistry",
    "DelegationExpirySweeper",
    "SweepResult",
]
