"""Delegation expiry sweep.

Periodically deactivates delegations whose end time has passed and tells
each delegate their authority has lapsed. Runs across all organisations.

Each row is flipped with a conditional update on ``is_active`` so two
overlapping sweeps never both claim, and never both notify for, the same
delegation.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from procureflow.core.clock import utcnow
from procureflow.db.models import ApprovalDelegation, NotificationType, User
from procureflow.services.outbox import DispatchSummary, OutboxDispatcher, OutboxService

logger = logging.getLogger(__name__)

DispatchHook = Callable[[List[UUID]], Optional[DispatchSummary]]


@dataclass
class SweepResult:
    deactivated_ids: List[UUID] = field(default_factory=list)
    notified: int = 0
    failed: int = 0

    @property
    def deactivated(self) -> int:
        return len(self.deactivated_ids)

    def to_dict(self) -> dict:
        return {
            "deactivated": self.deactivated,
            "deactivated_ids": [str(i) for i in self.deactivated_ids],
            "notified": self.notified,
            "failed": self.failed,
        }


class DelegationExpirySweeper:
    """
    Deactivates expired delegations and notifies their delegates.

    Args:
        db: Database session
        on_commit: Receives the ids of the enqueued notice messages once the
            deactivations are committed. Defaults to delivering them
            immediately through ``OutboxDispatcher``.
    """

    def __init__(self, db: Session, *, on_commit: Optional[DispatchHook] = None):
        self.db = db
        self.on_commit = on_commit or (lambda ids: OutboxDispatcher(db).dispatch(ids))

    def find_expired(self, now: datetime) -> List[ApprovalDelegation]:
        return (
            self.db.query(ApprovalDelegation)
            .filter(
                ApprovalDelegation.is_active.is_(True),
                ApprovalDelegation.ends_at.isnot(None),
                ApprovalDelegation.ends_at < now,
            )
            .order_by(ApprovalDelegation.ends_at)
            .all()
        )

    def run(self, now: Optional[datetime] = None) -> SweepResult:
        now = now or utcnow()
        result = SweepResult()

        expired = self.find_expired(now)
        logger.info(f"Found {len(expired)} expired delegation(s) to deactivate at {now.isoformat()}")
        if not expired:
            return result

        messages_by_delegation: Dict[UUID, List[UUID]] = {}
        try:
            for delegation in expired:
                claimed = (
                    self.db.query(ApprovalDelegation)
                    .filter(
                        ApprovalDelegation.id == delegation.id,
                        ApprovalDelegation.is_active.is_(True),
                    )
                    .update({"is_active": False, "updated_at": now}, synchronize_session=False)
                )
                if not claimed:
                    logger.info(f"Delegation {delegation.id} already deactivated by another sweep")
                    continue

                result.deactivated_ids.append(delegation.id)
                messages_by_delegation[delegation.id] = self._enqueue_notices(delegation)

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.expire_all()
        logger.info(f"Deactivated {result.deactivated} delegation(s)")

        message_ids = [mid for ids in messages_by_delegation.values() for mid in ids]
        if not message_ids:
            return result

        try:
            summary = self.on_commit(message_ids)
        except Exception:
            # Deactivations are already committed; notices stay in the outbox
            logger.exception("Failed to dispatch delegation expiry notices")
            result.failed = len(messages_by_delegation)
            return result

        if summary is not None:
            failed_ids = set(summary.failed_ids)
            for ids in messages_by_delegation.values():
                if failed_ids.intersection(ids):
                    result.failed += 1
                else:
                    result.notified += 1
        return result

    def _enqueue_notices(self, delegation: ApprovalDelegation) -> List[UUID]:
        outbox = OutboxService(self.db, delegation.organisation_id)
        outbox.enqueue_notification(
            delegation.delegate_user_id,
            title="Delegation Period Ended",
            message="Your approval delegation has expired. You can no longer approve on behalf of the delegator.",
            type=NotificationType.DELEGATION_EXPIRED.value,
            link="/approvals",
        )

        delegate = self.db.get(User, delegation.delegate_user_id)
        delegator = self.db.get(User, delegation.delegator_user_id)
        if delegate is not None:
            outbox.enqueue_email(
                "delegation_expired",
                [delegate.email],
                {
                    "delegate_name": delegate.display_name,
                    "delegator_name": delegator.display_name if delegator else "your delegator",
                    "ends_at": delegation.ends_at.strftime("%Y-%m-%d %H:%M"),
                },
            )
        return outbox.drain()


def sweep_expired_delegations(db: Session, now: Optional[datetime] = None, **kwargs) -> SweepResult:
    return DelegationExpirySweeper(db, **kwargs).run(now)
