"""allow only one pending budget request per user and company

Revision ID: 8b2d4e6f1a35
Revises: 3f1c2a9b7d10
Create Date: 2026-02-03

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "8b2d4e6f1a35"
down_revision: Union[str, Sequence[str], None] = "3f1c2a9b7d10"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_index(
        "uq_budget_requests_pending_user_company",
        "budget_requests",
        ["user_id", "company_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )


def downgrade() -> None:
    op.drop_index("uq_budget_requests_pending_user_company", table_name="budget_requests")
