"""Delegation registry.

Stores time-bounded grants of approval authority and answers which grant,
if any, is in force for a delegator at a given instant. Expiry is evaluated
against the supplied instant, so a lapsed grant stops conferring authority
whether or not the sweep has deactivated it yet.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from procureflow.core.clock import utcnow
from procureflow.core.config import get_settings
from procureflow.core.exceptions import ConflictError, NotFoundError, ValidationError
from procureflow.core.roles import NON_DELEGATE_ROLES, UserRole
from procureflow.db.models import ApprovalDelegation, User

logger = logging.getLogger(__name__)


def _effective_filter(at: datetime):
    return and_(
        ApprovalDelegation.is_active.is_(True),
        ApprovalDelegation.starts_at <= at,
        or_(ApprovalDelegation.ends_at.is_(None), ApprovalDelegation.ends_at > at),
    )


class DelegationRegistry:
    """
    Registry of approval delegations for one organisation.
    """

    def __init__(self, db: Session, org_id: UUID, *, policy: Optional[str] = None):
        self.db = db
        self.org_id = org_id
        self.policy = policy or get_settings().delegation_policy

    def active_delegation_for(
        self,
        delegator_user_id: UUID,
        at: Optional[datetime] = None,
    ) -> Optional[ApprovalDelegation]:
        """
        Find the delegation in force for a delegator.

        When several rows qualify, the one with the latest ``starts_at``
        wins.
        """
        at = at or utcnow()
        return (
            self.db.query(ApprovalDelegation)
            .filter(
                ApprovalDelegation.delegator_user_id == delegator_user_id,
                ApprovalDelegation.organisation_id == self.org_id,
                _effective_filter(at),
            )
            .order_by(ApprovalDelegation.starts_at.desc(), ApprovalDelegation.created_at.desc())
            .first()
        )

    def delegators_for(
        self,
        delegate_user_id: UUID,
        at: Optional[datetime] = None,
    ) -> List[UUID]:
        """Delegators whose authority ``delegate_user_id`` holds at ``at``.

        Only the winning delegation of each delegator counts, so a delegate
        superseded by a later grant is excluded.
        """
        at = at or utcnow()
        candidates = (
            self.db.query(ApprovalDelegation.delegator_user_id)
            .filter(
                ApprovalDelegation.delegate_user_id == delegate_user_id,
                ApprovalDelegation.organisation_id == self.org_id,
                _effective_filter(at),
            )
            .distinct()
            .all()
        )
        delegators = []
        for (delegator_id,) in candidates:
            winner = self.active_delegation_for(delegator_id, at)
            if winner is not None and winner.delegate_user_id == delegate_user_id:
                delegators.append(delegator_id)
        return delegators

    def create(
        self,
        delegator_user_id: UUID,
        delegate_user_id: UUID,
        *,
        starts_at: Optional[datetime] = None,
        ends_at: Optional[datetime] = None,
    ) -> ApprovalDelegation:
        """
        Grant the delegator's approval authority to a delegate.

        Raises:
            ValidationError: Self-delegation, a CEO delegate, unknown users
                or an empty time window
            ConflictError: The delegator already has a delegation in force
                and the organisation rejects overlaps
        """
        if delegator_user_id == delegate_user_id:
            raise ValidationError("Cannot delegate to yourself")

        now = utcnow()
        starts_at = starts_at or now
        if ends_at is not None and ends_at <= starts_at:
            raise ValidationError("Delegation must end after it starts")

        delegator = self._get_user(delegator_user_id, "Delegator")
        delegate = self._get_user(delegate_user_id, "Delegate")
        if UserRole(delegate.role) in NON_DELEGATE_ROLES:
            raise ValidationError(f"A {delegate.role} user cannot be a delegate")
        if not delegate.is_active:
            raise ValidationError("Delegate account is inactive")

        if self.policy == "reject_overlap":
            existing = self.active_delegation_for(delegator_user_id, starts_at)
            if existing is not None:
                raise ConflictError(
                    "Delegator already has an active delegation",
                    details={"delegation_id": str(existing.id)},
                )

        delegation = ApprovalDelegation(
            id=uuid.uuid4(),
            organisation_id=self.org_id,
            delegator_user_id=delegator.id,
            delegate_user_id=delegate.id,
            starts_at=starts_at,
            ends_at=ends_at,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        self.db.add(delegation)
        self.db.commit()

        logger.info(
            f"Delegation {delegation.id} created: {delegator.email} -> {delegate.email} "
            f"until {ends_at.isoformat() if ends_at else 'revoked'}"
        )
        return delegation

    def deactivate(self, delegation_id: UUID) -> ApprovalDelegation:
        """Deactivate a delegation. Deactivating an inactive one is a no-op."""
        delegation = self.get(delegation_id)
        if delegation.is_active:
            delegation.is_active = False
            delegation.updated_at = utcnow()
            self.db.commit()
            logger.info(f"Delegation {delegation_id} deactivated")
        return delegation

    def get(self, delegation_id: UUID) -> ApprovalDelegation:
        delegation = (
            self.db.query(ApprovalDelegation)
            .filter(
                ApprovalDelegation.id == delegation_id,
                ApprovalDelegation.organisation_id == self.org_id,
            )
            .first()
        )
        if delegation is None:
            raise NotFoundError(f"Delegation {delegation_id} not found")
        return delegation

    def list_for_user(self, user_id: UUID) -> Dict[str, List[ApprovalDelegation]]:
        """Delegations the user has granted and those granted to them."""
        rows = (
            self.db.query(ApprovalDelegation)
            .filter(
                ApprovalDelegation.organisation_id == self.org_id,
                or_(
                    ApprovalDelegation.delegator_user_id == user_id,
                    ApprovalDelegation.delegate_user_id == user_id,
                ),
            )
            .order_by(ApprovalDelegation.starts_at.desc())
            .all()
        )
        return {
            "granted": [row for row in rows if row.delegator_user_id == user_id],
            "received": [row for row in rows if row.delegate_user_id == user_id],
        }

    def _get_user(self, user_id: UUID, label: str) -> User:
        user = (
            self.db.query(User)
            .filter(User.id == user_id, User.organisation_id == self.org_id)
            .first()
        )
        if user is None:
            raise ValidationError(f"{label} {user_id} is not a member of this organisation")
        return user


def delegation_to_dict(delegation: ApprovalDelegation, at: Optional[datetime] = None) -> Dict[str, Any]:
    at = at or utcnow()
    return {
        "id": str(delegation.id),
        "delegator_user_id": str(delegation.delegator_user_id),
        "delegate_user_id": str(delegation.delegate_user_id),
        "starts_at": delegation.starts_at.isoformat() if delegation.starts_at else None,
        "ends_at": delegation.ends_at.isoformat() if delegation.ends_at else None,
        "is_active": delegation.is_active,
        "is_effective": delegation.is_effective_at(at),
    }
