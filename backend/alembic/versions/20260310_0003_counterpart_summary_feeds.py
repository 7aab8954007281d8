"""Carry the RUT on releases and mirror processor settlements.

Revision ID: 20260310_0003
Revises: 20260302_0002
Create Date: 2026-03-10
"""

from __future__ import annotations

from typing import Sequence

import sqlalchemy as sa
from alembic import op

revision = "20260310_0003"
down_revision = "20260302_0002"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def _has_column(inspector, table: str, column: str) -> bool:
    return any(item["name"] == column for item in inspector.get_columns(table))


def upgrade() -> None:
    inspector = sa.inspect(op.get_bind())

    if not _has_column(inspector, "release_transactions", "identification_number"):
        op.add_column(
            "release_transactions",
            sa.Column("identification_number", sa.String(20), nullable=True),
        )
        op.create_index(
            "release_transactions_rut_idx", "release_transactions", ["identification_number"]
        )

    if not inspector.has_table("settlement_transactions"):
        op.create_table(
            "settlement_transactions",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("settlement_id", sa.String(120), nullable=False, unique=True),
            sa.Column("date", sa.Date(), nullable=False),
            sa.Column("amount", sa.Numeric(15, 2), nullable=True),
            sa.Column("identification_number", sa.String(20), nullable=True),
        )
        op.create_index(
            "settlement_transactions_rut_idx", "settlement_transactions", ["identification_number"]
        )


def downgrade() -> None:
    inspector = sa.inspect(op.get_bind())
    if inspector.has_table("settlement_transactions"):
        op.drop_index("settlement_transactions_rut_idx", table_name="settlement_transactions")
        op.drop_table("settlement_transactions")
    if _has_column(inspector, "release_transactions", "identification_number"):
        op.drop_index("release_transactions_rut_idx", table_name="release_transactions")
        with op.batch_alter_table("release_transactions") as batch_op:
            batch_op.drop_column("identification_number")
