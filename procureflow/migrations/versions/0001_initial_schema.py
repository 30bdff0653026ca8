"""Initial schema: organisations, users, workflows, artifacts, approval progress, delegations, logs, outbox

Revision ID: 0001
Revises: None
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all routing tables."""

    # --- organisations (no FK deps) ---
    op.create_table(
        "organisations",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("accounts_email", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_organisations"),
    )

    # --- organisation_settings (FK -> organisations) ---
    op.create_table(
        "organisation_settings",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("organisation_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("use_custom_workflows", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("auto_approve_below_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("require_ceo_above_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_organisation_settings"),
        sa.ForeignKeyConstraint(
            ["organisation_id"],
            ["organisations.id"],
            name="fk_organisation_settings_organisation_id_organisations",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("organisation_id", name="uq_organisation_settings_organisation_id"),
    )

    # --- users (FK -> organisations) ---
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("organisation_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("role", sa.String(50), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default="true"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.ForeignKeyConstraint(
            ["organisation_id"],
            ["organisations.id"],
            name="fk_users_organisation_id_organisations",
        ),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.create_index("ix_users_email", "users", ["email"])
    op.create_index("ix_users_organisation_id", "users", ["organisation_id"])
    op.create_index("ix_users_role", "users", ["role"])

    # --- approval_workflows (FK -> organisations) ---
    op.create_table(
        "approval_workflows",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("organisation_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("workflow_type", sa.String(20), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_approval_workflows"),
        sa.ForeignKeyConstraint(
            ["organisation_id"],
            ["organisations.id"],
            name="fk_approval_workflows_organisation_id_organisations",
            ondelete="CASCADE",
        ),
    )
    op.create_index("ix_approval_workflows_organisation_id", "approval_workflows", ["organisation_id"])

    # --- approval_workflow_steps (FK -> approval_workflows) ---
    op.create_table(
        "approval_workflow_steps",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("workflow_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("step_order", sa.Integer(), nullable=False),
        sa.Column("approver_role", sa.String(50), nullable=False),
        sa.Column("min_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("max_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("skip_if_below_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_approval_workflow_steps"),
        sa.ForeignKeyConstraint(
            ["workflow_id"],
            ["approval_workflows.id"],
            name="fk_approval_workflow_steps_workflow_id_approval_workflows",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("workflow_id", "step_order", name="uq_workflow_step_order"),
    )
    op.create_index("ix_approval_workflow_steps_workflow_id", "approval_workflow_steps", ["workflow_id"])

    # --- purchase_orders (FK -> organisations, users) ---
    op.create_table(
        "purchase_orders",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("organisation_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("po_number", sa.String(50), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("amount_inc_vat", sa.Numeric(12, 2), nullable=False),
        sa.Column("contractor_name", sa.String(255), nullable=True),
        sa.Column("contractor_email", sa.String(255), nullable=True),
        sa.Column("status", sa.String(50), nullable=False, server_default="DRAFT"),
        sa.Column("created_by_user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("approved_by_user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("approval_date", sa.DateTime(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("pdf_url", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_purchase_orders"),
        sa.ForeignKeyConstraint(
            ["organisation_id"],
            ["organisations.id"],
            name="fk_purchase_orders_organisation_id_organisations",
        ),
        sa.ForeignKeyConstraint(
            ["created_by_user_id"],
            ["users.id"],
            name="fk_purchase_orders_created_by_user_id_users",
            ondelete="SET NULL",
        ),
        sa.ForeignKeyConstraint(
            ["approved_by_user_id"],
            ["users.id"],
            name="fk_purchase_orders_approved_by_user_id_users",
            ondelete="SET NULL",
        ),
    )
    op.create_index("ix_purchase_orders_organisation_id", "purchase_orders", ["organisation_id"])
    op.create_index("ix_purchase_orders_status", "purchase_orders", ["status"])

    # --- invoices (FK -> organisations, purchase_orders, users) ---
    op.create_table(
        "invoices",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("organisation_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("po_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("invoice_number", sa.String(100), nullable=False),
        sa.Column("amount_inc_vat", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(50), nullable=False, server_default="UPLOADED"),
        sa.Column("uploaded_by_user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("approved_by_user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("approval_date", sa.DateTime(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("payment_date", sa.Date(), nullable=True),
        sa.Column("payment_reference", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_invoices"),
        sa.ForeignKeyConstraint(
            ["organisation_id"],
            ["organisations.id"],
            name="fk_invoices_organisation_id_organisations",
        ),
        sa.ForeignKeyConstraint(
            ["po_id"],
            ["purchase_orders.id"],
            name="fk_invoices_po_id_purchase_orders",
        ),
        sa.ForeignKeyConstraint(
            ["uploaded_by_user_id"],
            ["users.id"],
            name="fk_invoices_uploaded_by_user_id_users",
            ondelete="SET NULL",
        ),
        sa.ForeignKeyConstraint(
            ["approved_by_user_id"],
            ["users.id"],
            name="fk_invoices_approved_by_user_id_users",
            ondelete="SET NULL",
        ),
    )
    op.create_index("ix_invoices_organisation_id", "invoices", ["organisation_id"])
    op.create_index("ix_invoices_po_id", "invoices", ["po_id"])
    op.create_index("ix_invoices_status", "invoices", ["status"])

    # --- approval_progress (FK -> organisations, approval_workflows) ---
    op.create_table(
        "approval_progress",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("organisation_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("artifact_type", sa.String(20), nullable=False),
        sa.Column("artifact_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("workflow_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("planned_steps", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column("current_step", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_steps", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed_steps", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column("status", sa.String(20), nullable=False, server_default="IN_PROGRESS"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_approval_progress"),
        sa.ForeignKeyConstraint(
            ["organisation_id"],
            ["organisations.id"],
            name="fk_approval_progress_organisation_id_organisations",
        ),
        sa.ForeignKeyConstraint(
            ["workflow_id"],
            ["approval_workflows.id"],
            name="fk_approval_progress_workflow_id_approval_workflows",
            ondelete="SET NULL",
        ),
        sa.UniqueConstraint("artifact_type", "artifact_id", name="uq_approval_progress_artifact"),
    )
    op.create_index("ix_approval_progress_organisation_id", "approval_progress", ["organisation_id"])
    op.create_index("ix_approval_progress_artifact_id", "approval_progress", ["artifact_id"])
    op.create_index("ix_approval_progress_status", "approval_progress", ["status"])

    # --- approval_delegations (FK -> organisations, users) ---
    op.create_table(
        "approval_delegations",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("organisation_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("delegator_user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("delegate_user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("starts_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")),
        sa.Column("ends_at", sa.DateTime(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_approval_delegations"),
        sa.ForeignKeyConstraint(
            ["organisation_id"],
            ["organisations.id"],
            name="fk_approval_delegations_organisation_id_organisations",
        ),
        sa.ForeignKeyConstraint(
            ["delegator_user_id"],
            ["users.id"],
            name="fk_approval_delegations_delegator_user_id_users",
        ),
        sa.ForeignKeyConstraint(
            ["delegate_user_id"],
            ["users.id"],
            name="fk_approval_delegations_delegate_user_id_users",
        ),
    )
    op.create_index("ix_approval_delegations_organisation_id", "approval_delegations", ["organisation_id"])
    op.create_index("ix_approval_delegations_delegate_user_id", "approval_delegations", ["delegate_user_id"])
    op.create_index("ix_approval_delegations_is_active", "approval_delegations", ["is_active"])
    op.create_index(
        "ix_approval_delegations_active_delegator",
        "approval_delegations",
        ["delegator_user_id", "organisation_id", "is_active"],
    )

    # --- approval_logs (FK -> organisations, users) ---
    op.create_table(
        "approval_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("organisation_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("artifact_type", sa.String(20), nullable=False),
        sa.Column("artifact_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("action_by_user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("approved_on_behalf_of_user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_approval_logs"),
        sa.ForeignKeyConstraint(
            ["organisation_id"],
            ["organisations.id"],
            name="fk_approval_logs_organisation_id_organisations",
        ),
        sa.ForeignKeyConstraint(
            ["action_by_user_id"],
            ["users.id"],
            name="fk_approval_logs_action_by_user_id_users",
            ondelete="SET NULL",
        ),
        sa.ForeignKeyConstraint(
            ["approved_on_behalf_of_user_id"],
            ["users.id"],
            name="fk_approval_logs_approved_on_behalf_of_user_id_users",
            ondelete="SET NULL",
        ),
    )
    op.create_index("ix_approval_logs_organisation_id", "approval_logs", ["organisation_id"])
    op.create_index("ix_approval_logs_artifact_id", "approval_logs", ["artifact_id"])
    op.create_index("ix_approval_logs_created_at", "approval_logs", ["created_at"])

    # --- notifications (FK -> users, organisations) ---
    op.create_table(
        "notifications",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("organisation_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("link", sa.String(512), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_notifications"),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            name="fk_notifications_user_id_users",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["organisation_id"],
            ["organisations.id"],
            name="fk_notifications_organisation_id_organisations",
            ondelete="CASCADE",
        ),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_organisation_id", "notifications", ["organisation_id"])
    op.create_index("ix_notifications_created_at", "notifications", ["created_at"])

    # --- outbox_messages (FK -> organisations) ---
    op.create_table(
        "outbox_messages",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("organisation_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False, server_default="{}"),
        sa.Column("artifact_type", sa.String(20), nullable=True),
        sa.Column("artifact_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("claimed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_outbox_messages"),
        sa.ForeignKeyConstraint(
            ["organisation_id"],
            ["organisations.id"],
            name="fk_outbox_messages_organisation_id_organisations",
            ondelete="CASCADE",
        ),
    )
    op.create_index("ix_outbox_messages_organisation_id", "outbox_messages", ["organisation_id"])
    op.create_index("ix_outbox_messages_artifact_id", "outbox_messages", ["artifact_id"])
    op.create_index("ix_outbox_messages_status", "outbox_messages", ["status"])
    op.create_index("ix_outbox_messages_created_at", "outbox_messages", ["created_at"])


def downgrade() -> None:
    """Drop all routing tables in reverse dependency order."""
    op.drop_table("outbox_messages")
    op.drop_table("notifications")
    op.drop_table("approval_logs")
    op.drop_table("approval_delegations")
    op.drop_table("approval_progress")
    op.drop_table("invoices")
    op.drop_table("purchase_orders")
    op.drop_table("approval_workflow_steps")
    op.drop_table("approval_workflows")
    op.drop_table("users")
    op.drop_table("organisation_settings")
    op.drop_table("organisations")
