"""initial schema: users, sessions, companies, invoices, saldo ledger, budget requests, notifications

Revision ID: 3f1c2a9b7d10
Revises:
Create Date: 2026-01-12

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "3f1c2a9b7d10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

user_role = sa.Enum("user", "accountant", "admin", name="user_role")
invoice_type = sa.Enum("einvoice", "receipt", "correction", name="invoice_type")
invoice_status = sa.Enum("pending", "in_review", "accepted", "rejected", "re_review", name="invoice_status")
budget_request_status = sa.Enum("pending", "approved", "rejected", name="budget_request_status")
notification_type = sa.Enum(
    "invoice_accepted",
    "invoice_rejected",
    "invoice_submitted",
    "invoice_re_review",
    "budget_request_submitted",
    "budget_request_approved",
    "budget_request_rejected",
    "saldo_adjusted",
    "password_changed",
    "system_message",
    name="notification_type",
)

NOTIFICATION_PREFERENCES = (
    "notification_invoice_accepted",
    "notification_invoice_rejected",
    "notification_invoice_submitted",
    "notification_invoice_re_review",
    "notification_budget_request_submitted",
    "notification_budget_request_approved",
    "notification_budget_request_rejected",
    "notification_saldo_adjusted",
    "notification_password_changed",
    "notification_system_message",
)


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.Text(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("role", user_role, nullable=False),
        sa.Column("saldo", sa.Numeric(12, 2), nullable=False, server_default="0"),
        *[sa.Column(name, sa.Boolean(), nullable=False, server_default=sa.true()) for name in NOTIFICATION_PREFERENCES],
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "sessions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_sessions_user_id", "sessions", ["user_id"])

    op.create_table(
        "login_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("ip_address", sa.String(64), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_login_logs_email", "login_logs", ["email"])
    op.create_index("ix_login_logs_created_at", "login_logs", ["created_at"])

    op.create_table(
        "login_attempts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("identifier", sa.String(255), nullable=False, unique=True),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("locked_until", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "companies",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("nip", sa.String(20), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "user_company_permissions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("company_id", sa.String(36), sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "company_id", name="uq_user_company_permission"),
    )
    op.create_index("ix_user_company_permissions_user_id", "user_company_permissions", ["user_id"])
    op.create_index("ix_user_company_permissions_company_id", "user_company_permissions", ["company_id"])

    op.create_table(
        "invoices",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("company_id", sa.String(36), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("invoice_type", invoice_type, nullable=False),
        sa.Column("invoice_number", sa.String(100), nullable=False),
        sa.Column("ksef_number", sa.String(100), nullable=True),
        sa.Column("kwota", sa.Numeric(12, 2), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("justification", sa.Text(), nullable=True),
        sa.Column("image_key", sa.String(500), nullable=True),
        sa.Column("status", invoice_status, nullable=False),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("reviewed_by", sa.String(36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_reviewer", sa.String(36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("review_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_review_ping", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_edited_by", sa.String(36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("last_edited_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("original_invoice_id", sa.String(36), sa.ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True),
        sa.Column("correction_amount", sa.Numeric(12, 2), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "(invoice_type = 'correction' AND original_invoice_id IS NOT NULL AND correction_amount IS NOT NULL)"
            " OR (invoice_type <> 'correction' AND original_invoice_id IS NULL AND correction_amount IS NULL)",
            name="ck_invoices_correction_fields",
        ),
        sa.CheckConstraint(
            "correction_amount IS NULL OR correction_amount > 0",
            name="ck_invoices_correction_amount_positive",
        ),
    )
    op.create_index("ix_invoices_user_id", "invoices", ["user_id"])
    op.create_index("ix_invoices_company_id", "invoices", ["company_id"])
    op.create_index("ix_invoices_status", "invoices", ["status"])
    op.create_index("ix_invoices_ksef_number", "invoices", ["ksef_number"])
    op.create_index("ix_invoices_original_invoice_id", "invoices", ["original_invoice_id"])
    op.create_index("ix_invoices_created_at", "invoices", ["created_at"])

    op.create_table(
        "invoice_edit_history",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("invoice_id", sa.String(36), sa.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False),
        sa.Column("edited_by", sa.String(36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("previous_invoice_number", sa.String(100), nullable=True),
        sa.Column("new_invoice_number", sa.String(100), nullable=True),
        sa.Column("previous_description", sa.Text(), nullable=True),
        sa.Column("new_description", sa.Text(), nullable=True),
        sa.Column("previous_kwota", sa.Numeric(12, 2), nullable=True),
        sa.Column("new_kwota", sa.Numeric(12, 2), nullable=True),
        sa.Column("edited_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_invoice_edit_history_invoice_id", "invoice_edit_history", ["invoice_id"])

    op.create_table(
        "saldo_transactions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("balance_before", sa.Numeric(12, 2), nullable=False),
        sa.Column("balance_after", sa.Numeric(12, 2), nullable=False),
        sa.Column("transaction_type", sa.String(50), nullable=False),
        sa.Column("reference_id", sa.String(36), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_saldo_transactions_user_id", "saldo_transactions", ["user_id"])
    op.create_index("ix_saldo_transactions_reference_id", "saldo_transactions", ["reference_id"])
    op.create_index("ix_saldo_transactions_created_at", "saldo_transactions", ["created_at"])

    op.create_table(
        "budget_requests",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("company_id", sa.String(36), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("requested_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("current_balance_at_request", sa.Numeric(12, 2), nullable=False),
        sa.Column("justification", sa.Text(), nullable=False),
        sa.Column("status", budget_request_status, nullable=False),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("reviewed_by", sa.String(36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("requested_amount > 0", name="ck_budget_requests_amount_positive"),
    )
    op.create_index("ix_budget_requests_user_id", "budget_requests", ["user_id"])
    op.create_index("ix_budget_requests_company_id", "budget_requests", ["company_id"])
    op.create_index("ix_budget_requests_status", "budget_requests", ["status"])
    op.create_index("ix_budget_requests_created_at", "budget_requests", ["created_at"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", notification_type, nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("invoice_id", sa.String(36), sa.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=True),
        sa.Column("company_id", sa.String(36), sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_created_at", "notifications", ["created_at"])


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("budget_requests")
    op.drop_table("saldo_transactions")
    op.drop_table("invoice_edit_history")
    op.drop_table("invoices")
    op.drop_table("user_company_permissions")
    op.drop_table("companies")
    op.drop_table("login_attempts")
    op.drop_table("login_logs")
    op.drop_table("sessions")
    op.drop_table("users")

    bind = op.get_bind()
    for enum_type in (notification_type, budget_request_status, invoice_status, invoice_type, user_role):
        enum_type.drop(bind, checkfirst=True)
