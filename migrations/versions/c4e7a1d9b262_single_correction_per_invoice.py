"""allow only one correction per invoice

Revision ID: c4e7a1d9b262
Revises: 8b2d4e6f1a35
Create Date: 2026-03-11

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "c4e7a1d9b262"
down_revision: Union[str, Sequence[str], None] = "8b2d4e6f1a35"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_index(
        "uq_invoices_single_correction",
        "invoices",
        ["original_invoice_id"],
        unique=True,
        postgresql_where=sa.text("invoice_type = 'correction'"),
        sqlite_where=sa.text("invoice_type = 'correction'"),
    )


def downgrade() -> None:
    op.drop_index("uq_invoices_single_correction", table_name="invoices")
