"""Routing coordinator for purchase order and invoice approvals.

Orchestrates plan evaluation, authority resolution, progress transitions,
audit logging and side-effect requests. Every operation is one unit of
work: the progress row, the artifact status, the log entry and the outbox
messages are committed together or not at all.

Writes to shared state are conditional:

    approval_progress   ... WHERE version = :version_read
    purchase_orders /   ... WHERE status  = :status_read
    invoices

A conditional write that matches no row means another request got there
first; the unit of work is rolled back and ConflictError is raised.
"""

import logging
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Union
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from procureflow.core.clock import utcnow
from procureflow.core.config import Settings, get_settings
from procureflow.core.delegation.registry import DelegationRegistry
from procureflow.core.exceptions import (
    ConflictError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from procureflow.core.roles import Capability, UserRole, has_capability, roles_with
from procureflow.core.routing.machine import ApprovalProgressMachine
from procureflow.core.routing.states import (
    COMPLETED_STATUS,
    REJECTED_STATUS,
    SUBMITTABLE_STATUSES,
    ArtifactType,
    InvoiceStatus,
    LogAction,
    ProgressState,
    pending_status_for,
)
from procureflow.core.routing.thresholds import PlannedStep, applicable_steps, needs_ceo
from procureflow.core.routing.workflows import WorkflowService
from procureflow.db.models import (
    ApprovalLog,
    ApprovalProgress,
    Invoice,
    NotificationType,
    Organisation,
    PurchaseOrder,
    User,
)
from procureflow.services.outbox import OutboxService

logger = logging.getLogger(__name__)

Artifact = Union[PurchaseOrder, Invoice]
CommitHook = Callable[[List[UUID]], Any]

_ARTIFACT_MODELS = {
    ArtifactType.PO: PurchaseOrder,
    ArtifactType.INVOICE: Invoice,
}

AUTO_APPROVED_COMMENT = "Auto-approved: no approval steps required"


def format_amount(amount) -> str:
    return f"£{Decimal(str(amount)):,.2f}"


class RoutingService:
    """
    Approval routing for one organisation.

    Args:
        db: Database session
        org_id: Organisation the caller acts within
        clock: Source of "now"; authority and delegation expiry are judged
            against it
        on_commit: Called with the ids of the outbox messages written by a
            unit of work, after that unit has committed
    """

    def __init__(
        self,
        db: Session,
        org_id: UUID,
        *,
        clock: Callable[[], datetime] = utcnow,
        on_commit: Optional[CommitHook] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.org_id = org_id
        self.clock = clock
        self.on_commit = on_commit
        self.settings = settings or get_settings()
        self.workflows = WorkflowService(db, org_id, self.settings)
        self.delegations = DelegationRegistry(db, org_id, policy=self.settings.delegation_policy)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def preview_steps(self, amount: Decimal, artifact_type: ArtifactType = ArtifactType.PO) -> List[PlannedStep]:
        """Steps an artifact of this amount would need if submitted now."""
        steps, _, fallback = self.workflows.resolve_plan_inputs(ArtifactType(artifact_type))
        return applicable_steps(amount, steps, fallback)

    def get_progress(self, artifact_type: ArtifactType, artifact_id: UUID) -> Dict[str, Any]:
        self._get_artifact(artifact_type, artifact_id)
        progress = self._get_progress(artifact_type, artifact_id)
        if progress is None:
            raise NotFoundError(f"{ArtifactType(artifact_type).value} {artifact_id} has not been submitted")
        return self._progress_to_dict(progress)

    def list_logs(self, artifact_type: ArtifactType, artifact_id: UUID) -> List[Dict[str, Any]]:
        self._get_artifact(artifact_type, artifact_id)
        rows = (
            self.db.query(ApprovalLog)
            .filter(
                ApprovalLog.organisation_id == self.org_id,
                ApprovalLog.artifact_type == ArtifactType(artifact_type).value,
                ApprovalLog.artifact_id == artifact_id,
            )
            .order_by(ApprovalLog.created_at, ApprovalLog.id)
            .all()
        )
        return [self._log_to_dict(row) for row in rows]

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def submit(self, artifact_type: ArtifactType, artifact_id: UUID, *, user_id: UUID) -> Dict[str, Any]:
        """
        Submit an artifact for approval.

        The plan is evaluated once, here, against the amount at submission.
        An empty plan completes the artifact immediately.

        Raises:
            NotFoundError: Artifact does not exist in this organisation
            UnauthorizedError: Submitter is not an active member
            ConflictError: Artifact is not in a submittable status or has
                already been submitted
        """
        artifact_type = ArtifactType(artifact_type)
        now = self.clock()
        outbox = OutboxService(self.db, self.org_id)

        try:
            artifact = self._get_artifact(artifact_type, artifact_id)
            actor = self._get_actor(user_id)

            prior_status = artifact.status
            if prior_status not in SUBMITTABLE_STATUSES[artifact_type]:
                raise ConflictError(
                    f"{artifact_type.value} {artifact.reference} cannot be submitted from status {prior_status}",
                    details={"status": prior_status},
                )
            if self._get_progress(artifact_type, artifact_id) is not None:
                raise ConflictError(f"{artifact_type.value} {artifact.reference} has already been submitted")

            amount = Decimal(str(artifact.amount_inc_vat))
            steps, workflow_id, fallback = self.workflows.resolve_plan_inputs(artifact_type)
            plan = applicable_steps(amount, steps, fallback)

            machine = ApprovalProgressMachine(artifact_id)
            state = machine.submit(len(plan), user_id=actor.id)

            progress = ApprovalProgress(
                id=uuid.uuid4(),
                organisation_id=self.org_id,
                artifact_type=artifact_type.value,
                artifact_id=artifact_id,
                workflow_id=workflow_id,
                amount=amount,
                planned_steps=[step.to_dict() for step in plan],
                current_step=machine.current_step,
                total_steps=machine.total_steps,
                completed_steps=[],
                status=state.value,
                version=1,
                created_at=now,
                updated_at=now,
            )
            self.db.add(progress)
            try:
                self.db.flush()
            except IntegrityError:
                raise ConflictError(f"{artifact_type.value} {artifact.reference} has already been submitted") from None

            self._add_log(
                artifact_type, artifact_id, LogAction.SENT_FOR_APPROVAL, actor.id,
                comment=self._submission_comment(plan), at=now,
            )

            if state == ProgressState.COMPLETED:
                self._set_artifact_status(
                    artifact_type, artifact_id, prior_status,
                    self._completion_values(artifact_type, actor.id, now),
                )
                self._add_log(
                    artifact_type, artifact_id, LogAction.APPROVED, actor.id,
                    comment=AUTO_APPROVED_COMMENT, at=now,
                )
                self.db.refresh(artifact)
                self._request_completion_effects(outbox, artifact_type, artifact, actor)
            else:
                self._set_artifact_status(
                    artifact_type, artifact_id, prior_status,
                    {"status": pending_status_for(plan[0].approver_role)},
                )
                self._request_pending_effects(outbox, artifact_type, artifact, plan[0].approver_role)

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"{artifact_type.value} {artifact_id} submitted by {user_id}: "
            f"{len(plan)} step(s), state {state.value}"
        )
        self._after_commit(outbox)

        progress = self._get_progress(artifact_type, artifact_id)
        return {
            "progress": self._progress_to_dict(progress),
            "artifact_status": self._get_artifact(artifact_type, artifact_id).status,
            "auto_approved": state == ProgressState.COMPLETED,
            "needs_ceo": needs_ceo(plan),
        }

    def approve(
        self,
        artifact_type: ArtifactType,
        artifact_id: UUID,
        *,
        acting_user_id: UUID,
        on_behalf_of: Optional[UUID] = None,
        expected_step: Optional[int] = None,
        comment: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Approve the current step of an artifact.

        Args:
            artifact_type: PO or INVOICE
            artifact_id: Artifact being approved
            acting_user_id: User performing the approval
            on_behalf_of: Delegator whose authority the actor claims; when
                omitted, direct authority is tried first, then any
                delegation held by the actor
            expected_step: Step the actor saw as current; protects against
                duplicate or stale submissions of the same action
            comment: Optional log comment

        Raises:
            NotFoundError: Artifact missing or not yet submitted
            UnauthorizedError: Actor holds neither direct nor delegated authority
            ConflictError: Progress is terminal, the step already advanced,
                or a concurrent write won
        """
        artifact_type = ArtifactType(artifact_type)
        now = self.clock()
        outbox = OutboxService(self.db, self.org_id)

        try:
            artifact = self._get_artifact(artifact_type, artifact_id)
            progress = self._require_progress(artifact_type, artifact_id)
            machine = ApprovalProgressMachine.from_progress(progress)
            plan = self._plan(progress)
            expected_version = progress.version

            step = self._current_planned_step(machine, plan)
            actor = self._get_actor(acting_user_id)
            delegator = self._resolve_authority(actor, step.approver_role, on_behalf_of, now)

            state = machine.record_approval(
                step,
                acting_user_id=actor.id,
                at=now,
                on_behalf_of=delegator.id if delegator else None,
                expected_step=expected_step,
            )

            self._update_progress(progress.id, expected_version, machine, now)

            completed = state == ProgressState.COMPLETED
            next_step = None if completed else plan[machine.current_step - 1]
            prior_status = pending_status_for(step.approver_role)
            if completed:
                values = self._completion_values(artifact_type, actor.id, now)
            else:
                values = {"status": pending_status_for(next_step.approver_role)}
            self._set_artifact_status(artifact_type, artifact_id, prior_status, values)

            self._add_log(
                artifact_type, artifact_id, LogAction.APPROVED, actor.id,
                on_behalf_of=delegator.id if delegator else None,
                comment=comment or self._approval_comment(step, next_step, delegator),
                at=now,
            )

            self.db.refresh(artifact)
            if completed:
                self._request_completion_effects(outbox, artifact_type, artifact, actor)
            else:
                self._request_pending_effects(outbox, artifact_type, artifact, next_step.approver_role)

            self.db.commit()
        except ConflictError as e:
            self.db.rollback()
            logger.warning(f"Approval of {artifact_type.value} {artifact_id} by {acting_user_id} conflicted: {e}")
            raise
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"{artifact_type.value} {artifact_id} step {step.position} ({step.approver_role.value}) "
            f"approved by {acting_user_id}"
            + (f" on behalf of {delegator.id}" if delegator else "")
        )
        self._after_commit(outbox)

        return {
            "progress": self._progress_to_dict(self._get_progress(artifact_type, artifact_id)),
            "artifact_status": self._get_artifact(artifact_type, artifact_id).status,
            "completed": completed,
            "approved_on_behalf_of_user_id": str(delegator.id) if delegator else None,
        }

    def reject(
        self,
        artifact_type: ArtifactType,
        artifact_id: UUID,
        *,
        acting_user_id: UUID,
        reason: str,
        on_behalf_of: Optional[UUID] = None,
    ) -> Dict[str, Any]:
        """
        Reject an artifact at its current step.

        The reason is validated before anything is read or written.

        Raises:
            ValidationError: Reason shorter than the configured minimum
            NotFoundError: Artifact missing or not yet submitted
            UnauthorizedError: Actor lacks authority for the current step
            ConflictError: Progress is not IN_PROGRESS, or a concurrent write won
        """
        minimum = self.settings.min_rejection_reason_length
        if reason is None or len(reason.strip()) < minimum:
            raise ValidationError(f"Rejection reason must be at least {minimum} characters")
        reason = reason.strip()

        artifact_type = ArtifactType(artifact_type)
        now = self.clock()
        outbox = OutboxService(self.db, self.org_id)

        try:
            artifact = self._get_artifact(artifact_type, artifact_id)
            progress = self._require_progress(artifact_type, artifact_id)
            machine = ApprovalProgressMachine.from_progress(progress)
            plan = self._plan(progress)
            expected_version = progress.version

            step = self._current_planned_step(machine, plan)
            actor = self._get_actor(acting_user_id)
            delegator = self._resolve_authority(actor, step.approver_role, on_behalf_of, now)

            machine.reject(acting_user_id=actor.id, reason=reason)
            self._update_progress(progress.id, expected_version, machine, now)

            self._set_artifact_status(
                artifact_type, artifact_id, pending_status_for(step.approver_role),
                {"status": REJECTED_STATUS[artifact_type], "rejection_reason": reason},
            )
            self._add_log(
                artifact_type, artifact_id, LogAction.REJECTED, actor.id,
                on_behalf_of=delegator.id if delegator else None,
                comment=reason,
                at=now,
            )

            self.db.refresh(artifact)
            self._request_rejection_effects(outbox, artifact_type, artifact, actor, reason)
            self.db.commit()
        except ConflictError as e:
            self.db.rollback()
            logger.warning(f"Rejection of {artifact_type.value} {artifact_id} by {acting_user_id} conflicted: {e}")
            raise
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"{artifact_type.value} {artifact_id} rejected by {acting_user_id} at step {step.position}")
        self._after_commit(outbox)

        return {
            "progress": self._progress_to_dict(self._get_progress(artifact_type, artifact_id)),
            "artifact_status": self._get_artifact(artifact_type, artifact_id).status,
            "completed": False,
            "approved_on_behalf_of_user_id": str(delegator.id) if delegator else None,
        }

    def mark_paid(
        self,
        invoice_id: UUID,
        *,
        acting_user_id: UUID,
        payment_date: date,
        payment_reference: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Record payment of an invoice that has been approved for payment."""
        now = self.clock()
        try:
            invoice = self._get_artifact(ArtifactType.INVOICE, invoice_id)
            actor = self._get_actor(acting_user_id)
            if not has_capability(actor.role, Capability.MARK_PAID):
                raise UnauthorizedError(f"Role {actor.role} cannot mark invoices as paid")
            if invoice.status != InvoiceStatus.APPROVED_FOR_PAYMENT.value:
                raise ConflictError(
                    f"Invoice {invoice.invoice_number} is {invoice.status}, not approved for payment",
                    details={"status": invoice.status},
                )

            self._set_artifact_status(
                ArtifactType.INVOICE, invoice_id, InvoiceStatus.APPROVED_FOR_PAYMENT.value,
                {
                    "status": InvoiceStatus.PAID.value,
                    "payment_date": payment_date,
                    "payment_reference": payment_reference,
                },
            )
            self._add_log(
                ArtifactType.INVOICE, invoice_id, LogAction.MARKED_PAID, actor.id,
                comment=f"Paid on {payment_date.isoformat()}"
                + (f" (ref {payment_reference})" if payment_reference else ""),
                at=now,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Invoice {invoice_id} marked paid by {acting_user_id}")
        invoice = self._get_artifact(ArtifactType.INVOICE, invoice_id)
        return {
            "id": str(invoice.id),
            "invoice_number": invoice.invoice_number,
            "status": invoice.status,
            "payment_date": invoice.payment_date.isoformat() if invoice.payment_date else None,
            "payment_reference": invoice.payment_reference,
        }

    # ------------------------------------------------------------------
    # Authority
    # ------------------------------------------------------------------

    def _resolve_authority(
        self,
        actor: User,
        role: UserRole,
        on_behalf_of: Optional[UUID],
        at: datetime,
    ) -> Optional[User]:
        """
        Decide whose authority the actor is using for a step held by ``role``.

        Returns None for direct authority, or the delegator whose active
        delegation names the actor as delegate.
        """
        if on_behalf_of is None and actor.role == role.value:
            return None

        if on_behalf_of is not None:
            candidates = [on_behalf_of]
        else:
            candidates = sorted(self.delegations.delegators_for(actor.id, at), key=str)

        for delegator_id in candidates:
            delegator = self.db.get(User, delegator_id)
            if (
                delegator is None
                or delegator.organisation_id != self.org_id
                or delegator.role != role.value
            ):
                continue
            delegation = self.delegations.active_delegation_for(delegator_id, at)
            if delegation is not None and delegation.delegate_user_id == actor.id:
                return delegator

        raise UnauthorizedError(
            f"User {actor.id} holds neither {role.value} authority nor an active delegation for it",
            details={"required_role": role.value},
        )

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def _get_artifact(self, artifact_type: ArtifactType, artifact_id: UUID) -> Artifact:
        model = _ARTIFACT_MODELS[ArtifactType(artifact_type)]
        artifact = (
            self.db.query(model)
            .filter(model.id == artifact_id, model.organisation_id == self.org_id)
            .first()
        )
        if artifact is None:
            raise NotFoundError(f"{ArtifactType(artifact_type).value} {artifact_id} not found")
        return artifact

    def _get_progress(self, artifact_type: ArtifactType, artifact_id: UUID) -> Optional[ApprovalProgress]:
        return (
            self.db.query(ApprovalProgress)
            .filter(
                ApprovalProgress.organisation_id == self.org_id,
                ApprovalProgress.artifact_type == ArtifactType(artifact_type).value,
                ApprovalProgress.artifact_id == artifact_id,
            )
            .first()
        )

    def _require_progress(self, artifact_type: ArtifactType, artifact_id: UUID) -> ApprovalProgress:
        progress = self._get_progress(artifact_type, artifact_id)
        if progress is None:
            raise NotFoundError(f"{ArtifactType(artifact_type).value} {artifact_id} has not been submitted")
        return progress

    def _get_actor(self, user_id: UUID) -> User:
        user = self.db.get(User, user_id)
        if user is None or user.organisation_id != self.org_id or not user.is_active:
            raise UnauthorizedError(f"User {user_id} is not an active member of this organisation")
        return user

    @staticmethod
    def _plan(progress: ApprovalProgress) -> List[PlannedStep]:
        return [
            PlannedStep(
                position=item["position"],
                approver_role=UserRole(item["approver_role"]),
                step_order=item.get("step_order"),
                is_required=item.get("is_required", True),
            )
            for item in progress.planned_steps or []
        ]

    @staticmethod
    def _current_planned_step(machine: ApprovalProgressMachine, plan: List[PlannedStep]) -> PlannedStep:
        if machine.state != ProgressState.IN_PROGRESS or not 1 <= machine.current_step <= len(plan):
            raise ConflictError(
                f"Approval is {machine.state.value}; no step is awaiting action",
                details={"status": machine.state.value, "current_step": machine.current_step},
            )
        return plan[machine.current_step - 1]

    def _update_progress(
        self,
        progress_id: UUID,
        expected_version: int,
        machine: ApprovalProgressMachine,
        now: datetime,
    ) -> None:
        updated = (
            self.db.query(ApprovalProgress)
            .filter(
                ApprovalProgress.id == progress_id,
                ApprovalProgress.version == expected_version,
            )
            .update(
                {
                    "current_step": machine.current_step,
                    "completed_steps": machine.completed_steps,
                    "status": machine.state.value,
                    "version": expected_version + 1,
                    "updated_at": now,
                },
                synchronize_session=False,
            )
        )
        if updated != 1:
            raise ConflictError(
                "Approval progress was changed by another request",
                details={"expected_version": expected_version},
            )

    def _set_artifact_status(
        self,
        artifact_type: ArtifactType,
        artifact_id: UUID,
        expected_status: str,
        values: Dict[str, Any],
    ) -> None:
        model = _ARTIFACT_MODELS[artifact_type]
        updated = (
            self.db.query(model)
            .filter(model.id == artifact_id, model.status == expected_status)
            .update({**values, "updated_at": self.clock()}, synchronize_session=False)
        )
        if updated != 1:
            raise ConflictError(
                f"{artifact_type.value} {artifact_id} is no longer {expected_status}",
                details={"expected_status": expected_status},
            )

    def _completion_values(self, artifact_type: ArtifactType, actor_id: UUID, now: datetime) -> Dict[str, Any]:
        return {
            "status": COMPLETED_STATUS[artifact_type],
            "approved_by_user_id": actor_id,
            "approval_date": now,
        }

    def _add_log(
        self,
        artifact_type: ArtifactType,
        artifact_id: UUID,
        action: LogAction,
        actor_id: UUID,
        *,
        comment: Optional[str] = None,
        on_behalf_of: Optional[UUID] = None,
        at: Optional[datetime] = None,
    ) -> ApprovalLog:
        entry = ApprovalLog(
            id=uuid.uuid4(),
            organisation_id=self.org_id,
            artifact_type=artifact_type.value,
            artifact_id=artifact_id,
            action=action.value,
            action_by_user_id=actor_id,
            approved_on_behalf_of_user_id=on_behalf_of,
            comment=comment,
            created_at=at or self.clock(),
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def _after_commit(self, outbox: OutboxService) -> None:
        message_ids = outbox.drain()
        if not message_ids or self.on_commit is None:
            return
        try:
            self.on_commit(message_ids)
        except Exception:
            # State is committed; undelivered messages are picked up by the outbox retry task
            logger.exception(f"Failed to hand {len(message_ids)} outbox message(s) to dispatch")

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    @staticmethod
    def _submission_comment(plan: List[PlannedStep]) -> str:
        if not plan:
            return "Submitted for approval"
        return "Submitted for approval: " + " -> ".join(step.approver_role.value for step in plan)

    @staticmethod
    def _approval_comment(step: PlannedStep, next_step: Optional[PlannedStep], delegator: Optional[User]) -> Optional[str]:
        parts = []
        if delegator is not None:
            parts.append(f"Approved on behalf of {delegator.display_name}")
        if next_step is not None:
            parts.append(
                f"{step.approver_role.value} approved - routed to {next_step.approver_role.value} for approval"
            )
        return "; ".join(parts) or None

    # ------------------------------------------------------------------
    # Side-effect requests
    # ------------------------------------------------------------------

    def _active_users(self, roles: Iterable[UserRole], exclude: Optional[UUID] = None) -> List[User]:
        query = self.db.query(User).filter(
            User.organisation_id == self.org_id,
            User.role.in_([UserRole(role).value for role in roles]),
            User.is_active.is_(True),
        )
        if exclude is not None:
            query = query.filter(User.id != exclude)
        return query.order_by(User.email).all()

    def _link(self, artifact_type: ArtifactType, artifact_id: UUID) -> str:
        if artifact_type == ArtifactType.PO:
            return f"/purchase-orders/{artifact_id}"
        return f"/invoices/{artifact_id}"

    def _email_context(self, artifact_type: ArtifactType, artifact: Artifact, **extra) -> Dict[str, Any]:
        organisation = self.db.get(Organisation, self.org_id)
        originator = self.db.get(User, artifact.originator_id) if artifact.originator_id else None
        context = {
            "amount": format_amount(artifact.amount_inc_vat),
            "organisation_name": organisation.name if organisation else "",
            "originator_name": originator.display_name if originator else "",
            "link": self.settings.app_base_url.rstrip("/") + self._link(artifact_type, artifact.id),
        }
        if artifact_type == ArtifactType.PO:
            context.update(
                po_number=artifact.po_number,
                contractor_name=artifact.contractor_name or "",
                pdf_url=artifact.pdf_url,
            )
        else:
            context.update(invoice_number=artifact.invoice_number)
        context.update(extra)
        return context

    def _request_pending_effects(
        self,
        outbox: OutboxService,
        artifact_type: ArtifactType,
        artifact: Artifact,
        role: UserRole,
    ) -> None:
        approvers = self._active_users([role])
        amount = format_amount(artifact.amount_inc_vat)
        link = self._link(artifact_type, artifact.id)

        if artifact_type == ArtifactType.PO and role == UserRole.CEO:
            kind = NotificationType.PO_PENDING_CEO_APPROVAL
            title = "High-Value PO Requires CEO Approval"
            template = "po_ceo_approval_request"
        elif artifact_type == ArtifactType.PO:
            kind = NotificationType.PO_PENDING_APPROVAL
            title = "PO Requires Approval"
            template = "po_approval_request"
        else:
            kind = NotificationType.INVOICE_PENDING_APPROVAL
            title = "Invoice Requires Approval"
            template = "invoice_needs_approval"

        for user in approvers:
            outbox.enqueue_notification(
                user.id, title,
                f"{artifact_type.value} {artifact.reference} ({amount}) requires your approval",
                kind.value, link,
                artifact_type=artifact_type.value, artifact_id=artifact.id,
            )
        outbox.enqueue_email(
            template, [user.email for user in approvers],
            self._email_context(artifact_type, artifact),
            artifact_type=artifact_type.value, artifact_id=artifact.id,
        )

    def _request_completion_effects(
        self,
        outbox: OutboxService,
        artifact_type: ArtifactType,
        artifact: Artifact,
        actor: User,
    ) -> None:
        link = self._link(artifact_type, artifact.id)
        accounts_users = self._active_users(roles_with(Capability.RECEIVE_ACCOUNTS_NOTICES), exclude=actor.id)
        originator = self.db.get(User, artifact.originator_id) if artifact.originator_id else None
        context = self._email_context(artifact_type, artifact, approver_name=actor.display_name)
        refs = {"artifact_type": artifact_type.value, "artifact_id": artifact.id}

        if artifact_type == ArtifactType.PO:
            if originator is not None and originator.id != actor.id:
                outbox.enqueue_notification(
                    originator.id, "PO Approved",
                    f"Your Purchase Order {artifact.po_number} has been approved",
                    NotificationType.PO_APPROVED.value, link, **refs,
                )
            for user in accounts_users:
                if originator is not None and user.id == originator.id:
                    continue
                outbox.enqueue_notification(
                    user.id, "PO Ready for Invoice",
                    f"PO {artifact.po_number} approved. Ready for invoice matching.",
                    NotificationType.PO_APPROVED_FOR_INVOICE.value, link, **refs,
                )
            outbox.enqueue_document(artifact_type.value, artifact.id)
            outbox.enqueue_email("po_approved_contractor", [artifact.contractor_email], context, **refs)
            outbox.enqueue_email("po_approved_accounts", self._accounts_addresses(accounts_users), context, **refs)
            outbox.enqueue_email("po_approved_pm", [originator.email] if originator else [], context, **refs)
        else:
            if originator is not None and originator.id != actor.id:
                outbox.enqueue_notification(
                    originator.id, "Invoice Approved",
                    f"Invoice {artifact.invoice_number} has been approved for payment",
                    NotificationType.INVOICE_APPROVED.value, link, **refs,
                )
            for user in accounts_users:
                if originator is not None and user.id == originator.id:
                    continue
                outbox.enqueue_notification(
                    user.id, "Invoice Ready for Payment",
                    f"Invoice {artifact.invoice_number} approved for payment.",
                    NotificationType.INVOICE_APPROVED.value, link, **refs,
                )
            outbox.enqueue_email("invoice_approved_accounts", self._accounts_addresses(accounts_users), context, **refs)
            outbox.enqueue_email("invoice_approved_pm", [originator.email] if originator else [], context, **refs)

    def _request_rejection_effects(
        self,
        outbox: OutboxService,
        artifact_type: ArtifactType,
        artifact: Artifact,
        actor: User,
        reason: str,
    ) -> None:
        link = self._link(artifact_type, artifact.id)
        originator = self.db.get(User, artifact.originator_id) if artifact.originator_id else None
        context = self._email_context(
            artifact_type, artifact, rejecter_name=actor.display_name, rejection_reason=reason,
        )
        refs = {"artifact_type": artifact_type.value, "artifact_id": artifact.id}

        if artifact_type == ArtifactType.PO:
            kind, title, template = NotificationType.PO_REJECTED, "PO Rejected", "po_rejected"
            message = f"Your Purchase Order {artifact.po_number} has been rejected"
        else:
            kind, title, template = NotificationType.INVOICE_REJECTED, "Invoice Rejected", "invoice_rejected"
            message = f"Invoice {artifact.invoice_number} has been rejected"

        if originator is not None and originator.id != actor.id:
            outbox.enqueue_notification(originator.id, title, message, kind.value, link, **refs)

        recipients = [originator.email] if originator else []
        if artifact_type == ArtifactType.INVOICE:
            accounts_users = self._active_users(roles_with(Capability.RECEIVE_ACCOUNTS_NOTICES), exclude=actor.id)
            for user in accounts_users:
                if originator is not None and user.id == originator.id:
                    continue
                outbox.enqueue_notification(user.id, title, message, kind.value, link, **refs)
            recipients += self._accounts_addresses(accounts_users)
        outbox.enqueue_email(template, recipients, context, **refs)

    def _accounts_addresses(self, accounts_users: List[User]) -> List[str]:
        organisation = self.db.get(Organisation, self.org_id)
        addresses = [user.email for user in accounts_users]
        if organisation is not None and organisation.accounts_email:
            addresses.append(organisation.accounts_email)
        return addresses

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    @staticmethod
    def _progress_to_dict(progress: ApprovalProgress) -> Dict[str, Any]:
        return {
            "id": str(progress.id),
            "artifact_type": progress.artifact_type,
            "artifact_id": str(progress.artifact_id),
            "workflow_id": str(progress.workflow_id) if progress.workflow_id else None,
            "amount": str(progress.amount),
            "status": progress.status,
            "current_step": progress.current_step,
            "total_steps": progress.total_steps,
            "planned_steps": list(progress.planned_steps or []),
            "completed_steps": list(progress.completed_steps or []),
            "version": progress.version,
            "updated_at": progress.updated_at.isoformat() if progress.updated_at else None,
        }

    @staticmethod
    def _log_to_dict(entry: ApprovalLog) -> Dict[str, Any]:
        return {
            "id": str(entry.id),
            "action": entry.action,
            "action_by_user_id": str(entry.action_by_user_id) if entry.action_by_user_id else None,
            "approved_on_behalf_of_user_id": (
                str(entry.approved_on_behalf_of_user_id) if entry.approved_on_behalf_of_user_id else None
            ),
            "comment": entry.comment,
            "created_at": entry.created_at.isoformat() if entry.created_at else None,
        }
