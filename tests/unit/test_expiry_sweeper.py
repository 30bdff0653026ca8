"""Tests for the delegation expiry sweep."""

import pytest
from datetime import timedelta

from procureflow.core.clock import utcnow
from procureflow.core.delegation.sweeper import (
    DelegationExpirySweeper,
    SweepResult,
    sweep_expired_delegations,
)
from procureflow.core.roles import UserRole
from procureflow.db.models import ApprovalDelegation, Notification, OutboxMessage
from procureflow.services.outbox import DispatchSummary

from tests.factories import create_delegation, create_user


@pytest.fixture
def deputy(db_session, org):
    user = create_user(db_session, org=org, role=UserRole.PROPERTY_MANAGER, name="Dana Deputy")
    db_session.commit()
    return user


@pytest.fixture
def expired(db_session, md, deputy):
    now = utcnow()
    delegation = create_delegation(
        db_session, delegator=md, delegate=deputy,
        starts_at=now - timedelta(days=7), ends_at=now - timedelta(hours=1),
    )
    db_session.commit()
    return delegation


class TestDelegationExpirySweeper:

    def test_deactivates_and_notifies(self, db_session, expired, deputy):
        result = sweep_expired_delegations(db_session)

        assert result.deactivated_ids == [expired.id]
        assert result.notified == 1
        assert result.failed == 0
        assert db_session.get(ApprovalDelegation, expired.id).is_active is False

        notification = db_session.query(Notification).filter_by(user_id=deputy.id).one()
        assert notification.title == "Delegation Period Ended"
        assert notification.type == "delegation_expired"
        assert notification.link == "/approvals"

    def test_notice_email_enqueued_for_delegate(self, db_session, expired, deputy):
        batches = []
        DelegationExpirySweeper(db_session, on_commit=batches.append).run()

        email = db_session.query(OutboxMessage).filter_by(kind="email").one()
        assert email.payload["template"] == "delegation_expired"
        assert email.payload["to"] == [deputy.email]
        assert email.payload["context"]["delegator_name"] == "Morgan Director"
        assert email.id in batches[0]

    def test_second_sweep_finds_nothing(self, db_session, expired):
        sweep_expired_delegations(db_session)
        second = sweep_expired_delegations(db_session)

        assert second.deactivated == 0
        assert db_session.query(Notification).count() == 1

    def test_open_ended_and_current_untouched(self, db_session, org, md, deputy):
        now = utcnow()
        open_ended = create_delegation(db_session, delegator=md, delegate=deputy)
        current = create_delegation(db_session, delegator=md, delegate=deputy, ends_at=now + timedelta(days=1))
        db_session.commit()

        result = sweep_expired_delegations(db_session, now)

        assert result.deactivated == 0
        assert db_session.get(ApprovalDelegation, open_ended.id).is_active is True
        assert db_session.get(ApprovalDelegation, current.id).is_active is True

    def test_already_inactive_not_renotified(self, db_session, md, deputy):
        now = utcnow()
        create_delegation(db_session, delegator=md, delegate=deputy, ends_at=now - timedelta(hours=1), is_active=False)
        db_session.commit()

        assert sweep_expired_delegations(db_session, now).deactivated == 0
        assert db_session.query(OutboxMessage).count() == 0

    def test_row_claimed_by_concurrent_sweep_skipped(self, db_session, expired, monkeypatch):
        sweeper = DelegationExpirySweeper(db_session, on_commit=lambda ids: DispatchSummary(sent=len(ids)))
        real_find = sweeper.find_expired

        def find_then_lose_race(now):
            rows = real_find(now)
            # Another sweep deactivates the row after we selected it
            db_session.query(ApprovalDelegation).update({"is_active": False}, synchronize_session=False)
            return rows

        monkeypatch.setattr(sweeper, "find_expired", find_then_lose_race)
        result = sweeper.run()

        assert result.deactivated == 0
        assert db_session.query(OutboxMessage).count() == 0

    def test_delivery_failure_counted_not_raised(self, db_session, expired):
        def failing_dispatch(ids):
            return DispatchSummary(failed=len(ids), failed_ids=list(ids))

        result = DelegationExpirySweeper(db_session, on_commit=failing_dispatch).run()

        assert result.deactivated == 1
        assert result.failed == 1
        assert result.notified == 0
        assert db_session.get(ApprovalDelegation, expired.id).is_active is False

    def test_dispatch_crash_keeps_deactivation(self, db_session, expired):
        def crashing_dispatch(ids):
            raise RuntimeError("dispatcher unavailable")

        result = DelegationExpirySweeper(db_session, on_commit=crashing_dispatch).run()

        assert result.deactivated == 1
        assert result.failed == 1
        assert db_session.get(ApprovalDelegation, expired.id).is_active is False

    def test_enqueue_error_rolls_back_whole_sweep(self, db_session, expired, ceo, deputy, monkeypatch):
        now = utcnow()
        second = create_delegation(
            db_session, delegator=ceo, delegate=deputy,
            starts_at=now - timedelta(days=7), ends_at=now - timedelta(minutes=30),
        )
        db_session.commit()
        sweeper = DelegationExpirySweeper(db_session, on_commit=lambda ids: DispatchSummary(sent=len(ids)))
        real_enqueue = sweeper._enqueue_notices
        calls = []

        def enqueue_then_fail(delegation):
            calls.append(delegation.id)
            if len(calls) == 2:
                raise RuntimeError("outbox insert failed")
            return real_enqueue(delegation)

        monkeypatch.setattr(sweeper, "_enqueue_notices", enqueue_then_fail)
        with pytest.raises(RuntimeError):
            sweeper.run(now)

        db_session.expire_all()
        assert db_session.get(ApprovalDelegation, expired.id).is_active is True
        assert db_session.get(ApprovalDelegation, second.id).is_active is True
        assert db_session.query(OutboxMessage).count() == 0

        # The next sweep picks both up again
        assert sweep_expired_delegations(db_session, now, on_commit=lambda ids: None).deactivated == 2

    def test_result_to_dict(self):
        result = SweepResult(notified=2, failed=1)
        assert result.to_dict() == {"deactivated": 0, "deactivated_ids": [], "notified": 2, "failed": 1}
