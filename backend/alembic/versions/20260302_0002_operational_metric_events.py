"""Store outcomes of generation, payment and RUT attachment operations.

Revision ID: 20260302_0002
Revises: 20260216_0001
Create Date: 2026-03-02
"""

from __future__ import annotations

from typing import Sequence

import sqlalchemy as sa
from alembic import op

revision = "20260302_0002"
down_revision = "20260216_0001"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None

INDEXED_COLUMNS = ("event_type", "outcome", "created_at")


def upgrade() -> None:
    inspector = sa.inspect(op.get_bind())
    if inspector.has_table("operational_metric_events"):
        return

    op.create_table(
        "operational_metric_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_type", sa.String(length=120), nullable=False),
        sa.Column("outcome", sa.String(length=32), nullable=False),
        sa.Column("duration_ms", sa.Numeric(14, 3), nullable=True),
        sa.Column("labels", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    for column in INDEXED_COLUMNS:
        op.create_index(
            f"ix_operational_metric_events_{column}",
            "operational_metric_events",
            [column],
        )


def downgrade() -> None:
    for column in reversed(INDEXED_COLUMNS):
        op.drop_index(
            f"ix_operational_metric_events_{column}",
            table_name="operational_metric_events",
        )
    op.drop_table("operational_metric_events")
