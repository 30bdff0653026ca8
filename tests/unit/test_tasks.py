"""Tests for Celery tasks."""

import pytest
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4
from unittest.mock import MagicMock

from sqlalchemy.orm import sessionmaker

from procureflow.core.clock import utcnow
from procureflow.core.roles import UserRole
from procureflow.core.routing import ArtifactType, RoutingService
from procureflow.db.models import ApprovalDelegation, Notification, OutboxMessage
from procureflow.workers import tasks

from tests.factories import create_delegation, create_purchase_order, create_user


@pytest.fixture
def worker_sessions(engine, monkeypatch):
    """Point the tasks at the test database."""
    monkeypatch.setattr(tasks, "SessionLocal", sessionmaker(bind=engine))


@pytest.fixture
def submitted_ids(db_session, org, pm, md):
    batches = []
    po = create_purchase_order(db_session, org=org, created_by=pm, amount=Decimal("8000"))
    db_session.commit()
    RoutingService(db_session, org.id, on_commit=batches.append).submit(ArtifactType.PO, po.id, user_id=pm.id)
    return batches[0]


class TestTasks:

    def test_enqueue_side_effects_sends_string_ids(self, monkeypatch):
        task = MagicMock()
        monkeypatch.setattr(tasks, "dispatch_side_effects", task)
        ids = [uuid4(), uuid4()]

        tasks.enqueue_side_effects(ids)

        task.delay.assert_called_once_with([str(i) for i in ids])

    def test_dispatch_side_effects(self, db_session, worker_sessions, submitted_ids, md):
        result = tasks.dispatch_side_effects([str(i) for i in submitted_ids])

        assert result == {"sent": len(submitted_ids), "failed": 0}
        db_session.expire_all()
        assert db_session.query(Notification).filter_by(user_id=md.id).count() == 1

    def test_dispatch_outbox_picks_up_pending(self, db_session, worker_sessions, submitted_ids):
        result = tasks.dispatch_outbox()

        assert result["sent"] == len(submitted_ids)
        db_session.expire_all()
        assert db_session.query(OutboxMessage).filter_by(status="pending").count() == 0

    def test_run_expiry_sweep(self, db_session, worker_sessions, org, md):
        deputy = create_user(db_session, org=org, role=UserRole.PROPERTY_MANAGER)
        now = utcnow()
        delegation = create_delegation(
            db_session, delegator=md, delegate=deputy,
            starts_at=now - timedelta(days=2), ends_at=now - timedelta(minutes=5),
        )
        db_session.commit()

        result = tasks.run_expiry_sweep()

        assert result["deactivated"] == 1
        assert result["notified"] == 1
        db_session.expire_all()
        assert db_session.get(ApprovalDelegation, delegation.id).is_active is False

    def test_beat_schedule(self):
        schedule = tasks.celery_app.conf.beat_schedule
        assert schedule["delegation-expiry-sweep"]["task"] == "procureflow.workers.tasks.run_expiry_sweep"
        assert schedule["outbox-retry"]["task"] == "procureflow.workers.tasks.dispatch_outbox"
