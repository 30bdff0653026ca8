"""Celery tasks for ProcureFlow.

Provides background processing for:
- Side-effect delivery after a routing transition commits
- Periodic retry of undelivered outbox messages
- Periodic delegation expiry sweeps
"""

from typing import Any, Dict, List
from uuid import UUID
import logging

from celery import Celery, shared_task

from procureflow.core.config import get_settings
from procureflow.core.delegation.sweeper import DelegationExpirySweeper
from procureflow.core.logger import setup_logger
from procureflow.db.session import SessionLocal
from procureflow.services.outbox import OutboxDispatcher

logger = logging.getLogger(__name__)
settings = get_settings()

setup_logger("worker", settings)

# Initialize Celery
celery_app = Celery(
    'procureflow',
    broker=settings.celery_broker,
    backend=settings.celery_backend,
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    task_routes={
        'procureflow.workers.tasks.dispatch_side_effects': {'queue': 'side_effects'},
        'procureflow.workers.tasks.dispatch_outbox': {'queue': 'side_effects'},
    },
    task_default_queue='default',
    beat_schedule={
        'delegation-expiry-sweep': {
            'task': 'procureflow.workers.tasks.run_expiry_sweep',
            'schedule': float(settings.delegation_sweep_interval_seconds),
        },
        'outbox-retry': {
            'task': 'procureflow.workers.tasks.dispatch_outbox',
            'schedule': float(settings.outbox_dispatch_interval_seconds),
        },
    },
)


@shared_task
def dispatch_side_effects(message_ids: List[str]) -> Dict[str, Any]:
    """
    Deliver the outbox messages written by one committed transition.

    Args:
        message_ids: Outbox message ids, in the order they were enqueued

    Returns:
        Delivery summary
    """
    db = SessionLocal()
    try:
        summary = OutboxDispatcher(db).dispatch([UUID(mid) for mid in message_ids])
        logger.info(f"Delivered {summary.sent} side effect(s), {summary.failed} failed")
        return {"sent": summary.sent, "failed": summary.failed}
    finally:
        db.close()


@shared_task
def dispatch_outbox() -> Dict[str, Any]:
    """Retry pending and failed outbox messages that have attempts left."""
    db = SessionLocal()
    try:
        summary = OutboxDispatcher(db).dispatch_pending()
        if summary.sent or summary.failed:
            logger.info(f"Outbox retry: {summary.sent} sent, {summary.failed} failed")
        return {"sent": summary.sent, "failed": summary.failed}
    finally:
        db.close()


@celery_app.task
def run_expiry_sweep() -> Dict[str, Any]:
    """
    Deactivate expired delegations and notify their delegates.

    Scheduled by Celery beat every ``delegation_sweep_interval_seconds``.
    """
    db = SessionLocal()
    try:
        result = DelegationExpirySweeper(db).run()
        return result.to_dict()
    except Exception:
        logger.exception("Delegation expiry sweep failed")
        raise
    finally:
        db.close()


def enqueue_side_effects(message_ids: List[UUID]) -> None:
    """Commit hook handing outbox message ids to the worker."""
    dispatch_side_effects.delay([str(mid) for mid in message_ids])
