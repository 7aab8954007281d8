"""Services, schedules, counterparts and the read-only feed mirrors.

Revision ID: 20260216_0001
Revises:
Create Date: 2026-02-16
"""

from __future__ import annotations

from typing import Sequence

import sqlalchemy as sa
from alembic import op

revision = "20260216_0001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None

ENUM_LENGTH = 32


def _timestamps(*, with_updated: bool = True) -> list[sa.Column]:
    columns = [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        )
    ]
    if with_updated:
        columns.append(
            sa.Column(
                "updated_at",
                sa.DateTime(timezone=True),
                server_default=sa.func.now(),
                nullable=False,
            )
        )
    return columns


def _create_counterparts(inspector: sa.Inspector) -> None:
    if not inspector.has_table("counterparts"):
        op.create_table(
            "counterparts",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("identification_number", sa.String(20), nullable=False, unique=True),
            sa.Column("bank_account_holder", sa.String(255), nullable=False),
            sa.Column("category", sa.String(ENUM_LENGTH), nullable=False, server_default="SUPPLIER"),
            sa.Column("notes", sa.Text(), nullable=True),
            *_timestamps(),
        )

    if not inspector.has_table("counterpart_accounts"):
        op.create_table(
            "counterpart_accounts",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column(
                "counterpart_id",
                sa.Integer(),
                sa.ForeignKey("counterparts.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("account_number", sa.String(64), nullable=False, unique=True),
            sa.Column("bank_name", sa.String(120), nullable=True),
            sa.Column("account_type", sa.String(60), nullable=True),
            *_timestamps(),
        )
        op.create_index(
            "ix_counterpart_accounts_counterpart_id",
            "counterpart_accounts",
            ["counterpart_id"],
        )


def _create_services(inspector: sa.Inspector) -> None:
    if inspector.has_table("services"):
        return

    op.create_table(
        "services",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("public_id", sa.String(40), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("detail", sa.String(500), nullable=True),
        sa.Column("category", sa.String(100), nullable=True),
        sa.Column("service_type", sa.String(ENUM_LENGTH), nullable=False),
        sa.Column("ownership", sa.String(ENUM_LENGTH), nullable=False),
        sa.Column("obligation_type", sa.String(ENUM_LENGTH), nullable=False),
        sa.Column("recurrence_type", sa.String(ENUM_LENGTH), nullable=False),
        sa.Column("frequency", sa.String(ENUM_LENGTH), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("due_day", sa.Integer(), nullable=True),
        sa.Column("emission_mode", sa.String(ENUM_LENGTH), nullable=False),
        sa.Column("emission_day", sa.Integer(), nullable=True),
        sa.Column("emission_start_day", sa.Integer(), nullable=True),
        sa.Column("emission_end_day", sa.Integer(), nullable=True),
        sa.Column("emission_exact_date", sa.Date(), nullable=True),
        sa.Column("default_amount", sa.Numeric(15, 2), nullable=False, server_default="0"),
        sa.Column("amount_indexation", sa.String(ENUM_LENGTH), nullable=False, server_default="NONE"),
        sa.Column("late_fee_mode", sa.String(ENUM_LENGTH), nullable=False, server_default="NONE"),
        sa.Column("late_fee_value", sa.Numeric(15, 2), nullable=True),
        sa.Column("late_fee_grace_days", sa.Integer(), nullable=True),
        sa.Column("next_generation_months", sa.Integer(), nullable=False, server_default="12"),
        sa.Column(
            "counterpart_id",
            sa.Integer(),
            sa.ForeignKey("counterparts.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "counterpart_account_id",
            sa.Integer(),
            sa.ForeignKey("counterpart_accounts.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("account_reference", sa.String(100), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "due_day IS NULL OR (due_day >= 1 AND due_day <= 31)",
            name="ck_services_due_day_range",
        ),
        sa.CheckConstraint(
            "emission_day IS NULL OR (emission_day >= 1 AND emission_day <= 31)",
            name="ck_services_emission_day_range",
        ),
        sa.CheckConstraint(
            "emission_start_day IS NULL OR (emission_start_day >= 1 AND emission_start_day <= 31)",
            name="ck_services_emission_start_day_range",
        ),
        sa.CheckConstraint(
            "emission_end_day IS NULL OR (emission_end_day >= 1 AND emission_end_day <= 31)",
            name="ck_services_emission_end_day_range",
        ),
        sa.CheckConstraint(
            "(emission_mode = 'FIXED_DAY' AND emission_day IS NOT NULL"
            " AND emission_start_day IS NULL AND emission_end_day IS NULL"
            " AND emission_exact_date IS NULL)"
            " OR (emission_mode = 'DATE_RANGE' AND emission_day IS NULL"
            " AND emission_start_day IS NOT NULL AND emission_end_day IS NOT NULL"
            " AND emission_exact_date IS NULL)"
            " OR (emission_mode = 'SPECIFIC_DATE' AND emission_day IS NULL"
            " AND emission_start_day IS NULL AND emission_end_day IS NULL"
            " AND emission_exact_date IS NOT NULL)",
            name="ck_services_emission_fields_match_mode",
        ),
        sa.CheckConstraint("default_amount >= 0", name="ck_services_default_amount_non_negative"),
        sa.CheckConstraint(
            "late_fee_value IS NULL OR late_fee_value >= 0",
            name="ck_services_late_fee_value_non_negative",
        ),
        sa.CheckConstraint(
            "late_fee_grace_days IS NULL OR late_fee_grace_days >= 0",
            name="ck_services_late_fee_grace_days_non_negative",
        ),
        sa.CheckConstraint(
            "next_generation_months > 0",
            name="ck_services_generation_months_positive",
        ),
    )
    op.create_index("ix_services_counterpart_id", "services", ["counterpart_id"])


def _create_service_schedules(inspector: sa.Inspector) -> None:
    if inspector.has_table("service_schedules"):
        return

    op.create_table(
        "service_schedules",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "service_id",
            sa.Integer(),
            sa.ForeignKey("services.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("emission_date", sa.Date(), nullable=True),
        sa.Column("expected_amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("settled_late_fee_amount", sa.Numeric(15, 2), nullable=True),
        sa.Column("status", sa.String(ENUM_LENGTH), nullable=False, server_default="PENDING"),
        sa.Column("paid_amount", sa.Numeric(15, 2), nullable=True),
        sa.Column("paid_date", sa.Date(), nullable=True),
        sa.Column("transaction_id", sa.Integer(), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "service_id", "period_start", name="uq_service_schedules_service_period_start"
        ),
        sa.CheckConstraint("period_end >= period_start", name="ck_service_schedules_period_order"),
        sa.CheckConstraint(
            "expected_amount >= 0", name="ck_service_schedules_expected_amount_non_negative"
        ),
        sa.CheckConstraint(
            "settled_late_fee_amount IS NULL OR settled_late_fee_amount >= 0",
            name="ck_service_schedules_late_fee_non_negative",
        ),
        sa.CheckConstraint(
            "paid_amount IS NULL OR paid_amount >= 0",
            name="ck_service_schedules_paid_amount_non_negative",
        ),
        sa.CheckConstraint(
            "status NOT IN ('PAID', 'PARTIAL')"
            " OR (paid_amount IS NOT NULL AND transaction_id IS NOT NULL)",
            name="ck_service_schedules_settlement_requires_payment",
        ),
        sa.CheckConstraint(
            "status <> 'SKIPPED' OR (note IS NOT NULL AND length(note) > 0)",
            name="ck_service_schedules_skip_requires_reason",
        ),
    )
    op.create_index(
        "service_schedules_service_due_idx", "service_schedules", ["service_id", "due_date"]
    )
    op.create_index(
        "service_schedules_status_due_idx", "service_schedules", ["status", "due_date"]
    )
    op.create_index(
        "service_schedules_transaction_idx", "service_schedules", ["transaction_id"]
    )


def _create_feeds(inspector: sa.Inspector) -> None:
    if not inspector.has_table("transactions"):
        op.create_table(
            "transactions",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("occurred_on", sa.Date(), nullable=False),
            sa.Column("amount", sa.Numeric(15, 2), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("direction", sa.String(ENUM_LENGTH), nullable=False, server_default="OUT"),
            sa.Column("bank_account_number", sa.String(64), nullable=True),
            sa.Column("source_id", sa.String(120), nullable=True),
            *_timestamps(with_updated=False),
        )
        op.create_index("transactions_occurred_on_idx", "transactions", ["occurred_on"])

    if not inspector.has_table("withdraw_transactions"):
        op.create_table(
            "withdraw_transactions",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("withdraw_id", sa.String(120), nullable=False, unique=True),
            sa.Column(
                "date_created",
                sa.DateTime(timezone=True),
                server_default=sa.func.now(),
                nullable=False,
            ),
            sa.Column("amount", sa.Numeric(15, 2), nullable=True),
            sa.Column("identification_number", sa.String(20), nullable=True),
            sa.Column("bank_account_holder", sa.String(255), nullable=True),
            sa.Column("bank_account_number", sa.String(64), nullable=True),
            sa.Column("bank_account_type", sa.String(60), nullable=True),
            sa.Column("bank_name", sa.String(120), nullable=True),
        )
        op.create_index(
            "withdraw_transactions_rut_idx", "withdraw_transactions", ["identification_number"]
        )

    if not inspector.has_table("release_transactions"):
        op.create_table(
            "release_transactions",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("date", sa.Date(), nullable=False),
            sa.Column("gross_amount", sa.Numeric(15, 2), nullable=True),
            sa.Column("payout_bank_account_number", sa.String(64), nullable=True),
        )
        op.create_index(
            "release_transactions_payout_account_idx",
            "release_transactions",
            ["payout_bank_account_number"],
        )


def upgrade() -> None:
    inspector = sa.inspect(op.get_bind())
    _create_counterparts(inspector)
    _create_services(inspector)
    _create_service_schedules(inspector)
    _create_feeds(inspector)


def downgrade() -> None:
    inspector = sa.inspect(op.get_bind())
    for table in (
        "service_schedules",
        "services",
        "counterpart_accounts",
        "counterparts",
        "release_transactions",
        "withdraw_transactions",
        "transactions",
    ):
        if inspector.has_table(table):
            op.drop_table(table)
