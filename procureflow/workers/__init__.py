"""Celery workers for ProcureFlow."""

from procureflow.workers.tasks import (
    celery_app,
    dispatch_side_effects,
    dispatch_outbox,
    run_expiry_sweep,
    enqueue_side_effects,
)

__all__ = [
    "celery_app",
    "dispatch_side_effects",
    "dispatch_outbox",
    "run_expiry_sweep",
    "enqueue_side_effects",
]
