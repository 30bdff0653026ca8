"""End-to-end approval flows across routing, delegation and side effects.

Organisation thresholds: auto-approve below 5000, CEO above 15000.
"""

import pytest
from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import httpx

from procureflow.core.clock import utcnow
from procureflow.core.config import Settings
from procureflow.core.delegation.sweeper import sweep_expired_delegations
from procureflow.core.exceptions import DependencyFailure, UnauthorizedError, ValidationError
from procureflow.core.roles import UserRole
from procureflow.core.routing import ArtifactType, RoutingService
from procureflow.db.models import Notification, OutboxMessage, PurchaseOrder
from procureflow.services.documents import DocumentService
from procureflow.services.outbox import OutboxDispatcher

from tests.factories import create_delegation, create_invoice, create_purchase_order, create_user


@pytest.fixture
def dispatched(db_session):
    """Commit hook that delivers side effects immediately."""
    summaries = []

    def hook(ids):
        summaries.append(OutboxDispatcher(db_session).dispatch(ids))

    hook.summaries = summaries
    return hook


@pytest.fixture
def routing(db_session, org, dispatched):
    return RoutingService(db_session, org.id, on_commit=dispatched)


def _inbox(db_session, user):
    return [n.type for n in db_session.query(Notification).filter_by(user_id=user.id).order_by(Notification.created_at)]


class TestPurchaseOrderFlows:

    @pytest.mark.parametrize(
        "amount, expected_status, expected_roles",
        [
            ("3000", "APPROVED", []),
            ("8000", "PENDING_MD_APPROVAL", ["MD"]),
            ("20000", "PENDING_MD_APPROVAL", ["MD", "CEO"]),
        ],
    )
    def test_submission_routes_by_amount(self, db_session, org, routing, pm, md, ceo, amount, expected_status, expected_roles):
        po = create_purchase_order(db_session, org=org, created_by=pm, amount=Decimal(amount))
        db_session.commit()

        result = routing.submit(ArtifactType.PO, po.id, user_id=pm.id)

        assert result["artifact_status"] == expected_status
        assert [s["approver_role"] for s in result["progress"]["planned_steps"]] == expected_roles

    def test_high_value_po_full_chain(self, db_session, org, routing, dispatched, pm, md, ceo, accounts):
        po = create_purchase_order(db_session, org=org, created_by=pm, amount=Decimal("20000"))
        db_session.commit()

        routing.submit(ArtifactType.PO, po.id, user_id=pm.id)
        assert _inbox(db_session, md) == ["po_pending_approval"]
        assert _inbox(db_session, ceo) == []

        routing.approve(ArtifactType.PO, po.id, acting_user_id=md.id, expected_step=1)
        assert _inbox(db_session, ceo) == ["po_pending_ceo_approval"]

        result = routing.approve(ArtifactType.PO, po.id, acting_user_id=ceo.id, expected_step=2)

        assert result["artifact_status"] == "APPROVED"
        assert _inbox(db_session, pm) == ["po_approved"]
        assert _inbox(db_session, accounts) == ["po_approved_for_invoice"]
        assert all(summary.failed == 0 for summary in dispatched.summaries)
        assert db_session.query(OutboxMessage).filter(OutboxMessage.status != "sent").count() == 0

        logs = routing.list_logs(ArtifactType.PO, po.id)
        assert [entry["action"] for entry in logs] == ["SENT_FOR_APPROVAL", "APPROVED", "APPROVED"]

    def test_rejection_reason_rules(self, db_session, org, routing, pm, md):
        po = create_purchase_order(db_session, org=org, created_by=pm, amount=Decimal("8000"))
        db_session.commit()
        routing.submit(ArtifactType.PO, po.id, user_id=pm.id)

        with pytest.raises(ValidationError):
            routing.reject(ArtifactType.PO, po.id, acting_user_id=md.id, reason="too short")

        result = routing.reject(
            ArtifactType.PO, po.id, acting_user_id=md.id, reason="not compliant with contract terms",
        )
        assert result["artifact_status"] == "REJECTED"
        assert _inbox(db_session, pm) == ["po_rejected"]

    def test_contractor_email_links_rendered_document(self, db_session, org, pm, md):
        settings = Settings(_env_file=None, document_renderer_url="http://renderer.test")
        renderer = httpx.Client(transport=httpx.MockTransport(
            lambda request: httpx.Response(200, json={"path": "pos/PO.pdf"}),
        ))
        emails = MagicMock()
        emails.send_email = AsyncMock(return_value=True)
        routing = RoutingService(
            db_session, org.id,
            on_commit=lambda ids: OutboxDispatcher(
                db_session, emails=emails, documents=DocumentService(db_session, settings, renderer),
            ).dispatch(ids),
        )
        po = create_purchase_order(db_session, org=org, created_by=pm, amount=Decimal("8000"))
        db_session.commit()
        routing.submit(ArtifactType.PO, po.id, user_id=pm.id)

        routing.approve(ArtifactType.PO, po.id, acting_user_id=md.id)

        assert db_session.get(PurchaseOrder, po.id).pdf_url == "pos/PO.pdf"
        sent = {call.args[0]: call.args[1] for call in emails.send_email.await_args_list}
        assert sent["po_approved_contractor"]["context"]["pdf_url"] == "pos/PO.pdf"
        assert sent["po_approved_accounts"]["context"]["pdf_url"] == "pos/PO.pdf"

    def test_document_failure_does_not_undo_approval(self, db_session, org, pm, md):
        class BrokenRenderer:
            def render_and_store(self, artifact_id):
                raise DependencyFailure("renderer unavailable")

        summaries = []
        routing = RoutingService(
            db_session, org.id,
            on_commit=lambda ids: summaries.append(OutboxDispatcher(db_session, documents=BrokenRenderer()).dispatch(ids)),
        )
        po = create_purchase_order(db_session, org=org, created_by=pm, amount=Decimal("8000"))
        db_session.commit()
        routing.submit(ArtifactType.PO, po.id, user_id=pm.id)

        result = routing.approve(ArtifactType.PO, po.id, acting_user_id=md.id)

        assert result["artifact_status"] == "APPROVED"
        # Emails that link the document wait for it; the PM email does not
        assert summaries[-1].failed == 3
        failed = db_session.query(OutboxMessage).filter_by(status="failed").all()
        assert sorted(m.payload.get("template", m.kind) for m in failed) == [
            "document", "po_approved_accounts", "po_approved_contractor",
        ]
        pm_email = next(
            m for m in db_session.query(OutboxMessage).filter_by(kind="email")
            if m.payload["template"] == "po_approved_pm"
        )
        assert pm_email.status == "sent"
        assert db_session.get(PurchaseOrder, po.id).status == "APPROVED"


class TestDelegationFlow:

    def test_delegate_acts_until_expiry_then_sweep_notifies(self, db_session, org, pm, md):
        deputy = create_user(db_session, org=org, role=UserRole.PROPERTY_MANAGER, name="Dana Deputy")
        now = utcnow()
        create_delegation(
            db_session, delegator=md, delegate=deputy,
            starts_at=now - timedelta(days=1), ends_at=now + timedelta(hours=1),
        )
        first = create_purchase_order(db_session, org=org, created_by=pm, amount=Decimal("8000"))
        second = create_purchase_order(db_session, org=org, created_by=pm, amount=Decimal("9000"))
        db_session.commit()

        routing = RoutingService(db_session, org.id)
        routing.submit(ArtifactType.PO, first.id, user_id=pm.id)
        routing.submit(ArtifactType.PO, second.id, user_id=pm.id)

        result = routing.approve(ArtifactType.PO, first.id, acting_user_id=deputy.id)
        assert result["approved_on_behalf_of_user_id"] == str(md.id)

        later = now + timedelta(hours=2)
        expired_routing = RoutingService(db_session, org.id, clock=lambda: later)
        with pytest.raises(UnauthorizedError):
            expired_routing.approve(ArtifactType.PO, second.id, acting_user_id=deputy.id)

        sweep = sweep_expired_delegations(db_session, later)
        assert sweep.deactivated == 1
        assert sweep.notified == 1
        assert _inbox(db_session, deputy) == ["delegation_expired"]

        # MD retains direct authority throughout
        result = expired_routing.approve(ArtifactType.PO, second.id, acting_user_id=md.id)
        assert result["artifact_status"] == "APPROVED"


class TestInvoiceFlow:

    def test_invoice_to_paid(self, db_session, org, routing, pm, md, accounts):
        po = create_purchase_order(db_session, org=org, created_by=pm, amount=Decimal("8000"), status="APPROVED")
        invoice = create_invoice(db_session, org=org, uploaded_by=accounts, po=po, amount=Decimal("8000"))
        db_session.commit()

        routing.submit(ArtifactType.INVOICE, invoice.id, user_id=accounts.id)
        assert _inbox(db_session, md) == ["invoice_pending_approval"]

        result = routing.approve(ArtifactType.INVOICE, invoice.id, acting_user_id=md.id)
        assert result["artifact_status"] == "APPROVED_FOR_PAYMENT"
        assert _inbox(db_session, accounts) == ["invoice_approved"]

        paid = routing.mark_paid(invoice.id, acting_user_id=accounts.id, payment_date=date(2026, 3, 31))
        assert paid["status"] == "PAID"
