"""API routers for ProcureFlow."""

from . import admin
from . import approvals
from . import artifacts
from . import delegations
from . import health
from . import invoices
from . import workflows

__all__ = [
    "admin",
    "approvals",
    "artifacts",
    "delegations",
    "health",
    "invoices",
    "workflows",
]
