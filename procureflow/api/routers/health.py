"""Health endpoints.

- /health: process is up
- /health/ready: database and broker reachable, plus the side-effect backlog
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import func, text
from sqlalchemy.orm import Session
import redis

from procureflow import __version__
from procureflow.api.deps import get_db
from procureflow.core.clock import utcnow
from procureflow.core.config import get_settings
from procureflow.db.models import OutboxMessage, OutboxStatus

router = APIRouter(tags=["health"])


def check_database(db: Session) -> Dict[str, Any]:
    try:
        db.execute(text("SELECT 1")).fetchone()
        return {"status": "healthy"}
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}


def check_redis() -> Dict[str, Any]:
    """Ping the Redis instance Celery uses as its broker."""
    try:
        client = redis.from_url(get_settings().redis_url, socket_connect_timeout=2, socket_timeout=2)
        client.ping()
        client.close()
        return {"status": "healthy"}
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}


def check_outbox(db: Session) -> Dict[str, Any]:
    """
    Summarise undelivered side effects.

    Messages that used up their retries are reported as ``degraded``; they
    never fail readiness because approvals are already committed.
    """
    try:
        counts = dict(
            db.query(OutboxMessage.status, func.count(OutboxMessage.id))
            .filter(OutboxMessage.status != OutboxStatus.SENT.value)
            .group_by(OutboxMessage.status)
            .all()
        )
        exhausted = (
            db.query(func.count(OutboxMessage.id))
            .filter(
                OutboxMessage.status == OutboxStatus.FAILED.value,
                OutboxMessage.attempts >= get_settings().outbox_max_attempts,
            )
            .scalar()
        )
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}

    return {
        "status": "degraded" if exhausted else "healthy",
        "pending": counts.get(OutboxStatus.PENDING.value, 0),
        "sending": counts.get(OutboxStatus.SENDING.value, 0),
        "failed": counts.get(OutboxStatus.FAILED.value, 0),
        "exhausted": exhausted,
    }


@router.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "version": __version__,
        "timestamp": utcnow().isoformat(),
    }


@router.get("/health/ready")
def readiness_check(db: Session = Depends(get_db)):
    """Returns 503 when the database or the broker is unreachable."""
    checks = {
        "database": check_database(db),
        "redis": check_redis(),
        "outbox": check_outbox(db),
    }
    failed = [name for name, check in checks.items() if check["status"] == "unhealthy"]

    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE if failed else status.HTTP_200_OK,
        content={
            "status": "not_ready" if failed else "ready",
            "checks": checks,
            "failed": failed,
            "timestamp": utcnow().isoformat(),
        },
    )
