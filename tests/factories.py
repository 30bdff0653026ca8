"""Factory functions for creating test database records.

Each factory creates a model instance, adds it to the session, and flushes
so that database-generated fields (id, created_at, etc.) are populated.
All fields have sensible defaults but can be overridden via keyword arguments.

Usage::

    from tests.factories import create_organisation, create_user

    def test_something(db_session):
        org = create_organisation(db_session, name="Acme Lettings")
        md = create_user(db_session, org=org, role=UserRole.MD)
        assert md.organisation.name == "Acme Lettings"
"""

import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from procureflow.core.clock import utcnow
from procureflow.core.roles import UserRole
from procureflow.core.routing.thresholds import StepDefinition
from procureflow.db.models import (
    ApprovalDelegation,
    ApprovalWorkflow,
    ApprovalWorkflowStep,
    Invoice,
    Organisation,
    OrganisationSettings,
    PurchaseOrder,
    User,
)


_counter = 0


def _next_id() -> int:
    """Return a monotonically increasing integer for unique default values."""
    global _counter
    _counter += 1
    return _counter


# ---------------------------------------------------------------------------
# Organisation
# ---------------------------------------------------------------------------


def create_organisation(
    session: Session,
    *,
    name: Optional[str] = None,
    accounts_email: Optional[str] = None,
) -> Organisation:
    n = _next_id()
    org = Organisation(
        name=name or f"Test Org {n}",
        accounts_email=accounts_email,
    )
    session.add(org)
    session.flush()
    return org


def create_org_settings(
    session: Session,
    *,
    org: Organisation,
    use_custom_workflows: bool = False,
    auto_approve_below_amount: Optional[Decimal] = Decimal("5000"),
    require_ceo_above_amount: Optional[Decimal] = Decimal("15000"),
) -> OrganisationSettings:
    settings = OrganisationSettings(
        organisation_id=org.id,
        use_custom_workflows=use_custom_workflows,
        auto_approve_below_amount=auto_approve_below_amount,
        require_ceo_above_amount=require_ceo_above_amount,
    )
    session.add(settings)
    session.flush()
    return settings


# ---------------------------------------------------------------------------
# User
# ---------------------------------------------------------------------------


def create_user(
    session: Session,
    *,
    org: Optional[Organisation] = None,
    role: UserRole = UserRole.PROPERTY_MANAGER,
    email: Optional[str] = None,
    name: Optional[str] = None,
    is_active: bool = True,
) -> User:
    n = _next_id()
    if org is None:
        org = create_organisation(session)
    user = User(
        email=email or f"{UserRole(role).value.lower()}{n}@example.com",
        full_name=name or f"Test {UserRole(role).value.title()} {n}",
        organisation_id=org.id,
        role=UserRole(role).value,
        is_active=is_active,
    )
    session.add(user)
    session.flush()
    return user


# ---------------------------------------------------------------------------
# Artifacts
# ---------------------------------------------------------------------------


def create_purchase_order(
    session: Session,
    *,
    org: Organisation,
    created_by: Optional[User] = None,
    amount: Decimal = Decimal("1000.00"),
    status: str = "DRAFT",
    po_number: Optional[str] = None,
    contractor_email: Optional[str] = "contractor@example.com",
) -> PurchaseOrder:
    n = _next_id()
    po = PurchaseOrder(
        organisation_id=org.id,
        po_number=po_number or f"PO-{n:05d}",
        description=f"Works order {n}",
        amount_inc_vat=Decimal(str(amount)),
        contractor_name=f"Contractor {n}",
        contractor_email=contractor_email,
        status=status,
        created_by_user_id=created_by.id if created_by else None,
    )
    session.add(po)
    session.flush()
    return po


def create_invoice(
    session: Session,
    *,
    org: Organisation,
    uploaded_by: Optional[User] = None,
    po: Optional[PurchaseOrder] = None,
    amount: Decimal = Decimal("1000.00"),
    status: str = "MATCHED",
    invoice_number: Optional[str] = None,
) -> Invoice:
    n = _next_id()
    invoice = Invoice(
        organisation_id=org.id,
        po_id=po.id if po else None,
        invoice_number=invoice_number or f"INV-{n:05d}",
        amount_inc_vat=Decimal(str(amount)),
        status=status,
        uploaded_by_user_id=uploaded_by.id if uploaded_by else None,
    )
    session.add(invoice)
    session.flush()
    return invoice


# ---------------------------------------------------------------------------
# Workflows
# ---------------------------------------------------------------------------


def create_workflow(
    session: Session,
    *,
    org: Organisation,
    workflow_type: str = "PO",
    steps: Sequence[StepDefinition] = (),
    name: Optional[str] = None,
    is_default: bool = True,
    is_active: bool = True,
) -> ApprovalWorkflow:
    n = _next_id()
    workflow = ApprovalWorkflow(
        organisation_id=org.id,
        name=name or f"Workflow {n}",
        workflow_type=workflow_type,
        is_active=is_active,
        is_default=is_default,
    )
    for step in steps:
        workflow.steps.append(
            ApprovalWorkflowStep(
                step_order=step.step_order,
                approver_role=UserRole(step.approver_role).value,
                min_amount=step.min_amount,
                max_amount=step.max_amount,
                skip_if_below_amount=step.skip_if_below_amount,
                is_required=step.is_required,
            )
        )
    session.add(workflow)
    session.flush()
    return workflow


# ---------------------------------------------------------------------------
# Delegation
# ---------------------------------------------------------------------------


def create_delegation(
    session: Session,
    *,
    delegator: User,
    delegate: User,
    starts_at: Optional[datetime] = None,
    ends_at: Optional[datetime] = None,
    is_active: bool = True,
) -> ApprovalDelegation:
    now = utcnow()
    delegation = ApprovalDelegation(
        id=uuid.uuid4(),
        organisation_id=delegator.organisation_id,
        delegator_user_id=delegator.id,
        delegate_user_id=delegate.id,
        starts_at=starts_at or now - timedelta(hours=1),
        ends_at=ends_at,
        is_active=is_active,
        created_at=now,
        updated_at=now,
    )
    session.add(delegation)
    session.flush()
    return delegation
