"""advances (zaliczki)

Revision ID: e91f3b5c0a47
Revises: c4e7a1d9b262
Create Date: 2026-03-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "e91f3b5c0a47"
down_revision: Union[str, Sequence[str], None] = "c4e7a1d9b262"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

advance_status = sa.Enum("pending", "transferred", "settled", name="advance_status")


def upgrade() -> None:
    op.create_table(
        "advances",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("company_id", sa.String(36), sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", advance_status, nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("created_by", sa.String(36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("transfer_number", sa.String(255), nullable=True),
        sa.Column("transferred_by", sa.String(36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("transferred_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("settled_by", sa.String(36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("amount > 0", name="ck_advances_amount_positive"),
    )
    op.create_index("ix_advances_user_id", "advances", ["user_id"])
    op.create_index("ix_advances_company_id", "advances", ["company_id"])
    op.create_index("ix_advances_status", "advances", ["status"])
    op.create_index("ix_advances_created_at", "advances", ["created_at"])


def downgrade() -> None:
    op.drop_table("advances")
    advance_status.drop(op.get_bind(), checkfirst=True)
