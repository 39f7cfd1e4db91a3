"""Introduce sheet audit log, cost center reference data, and built-in sheet tables."""

from __future__ import annotations

from typing import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "20241101_01"
down_revision: str | Sequence[str] | None = None
branch_labels = None
depends_on = None


def _attribution_columns() -> list[sa.Column]:
    return [
        sa.Column("modified_by", sa.String(length=256), nullable=True),
        sa.Column("modified_at", sa.DateTime(timezone=False), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "sheet_operation_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("sheet_id", sa.String(), nullable=False),
        sa.Column("session_id", sa.String(), nullable=True),
        sa.Column("operation_type", sa.String(), nullable=False),
        sa.Column("row_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("actor", sa.String(), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=False), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_sheet_operation_logs_sheet_processed",
        "sheet_operation_logs",
        ["sheet_id", "processed_at"],
    )

    op.create_table(
        "cost_centers",
        sa.Column("code", sa.String(length=6), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint("code"),
    )

    op.create_table(
        "financial_data",
        sa.Column("internal_order", sa.String(), nullable=False),
        sa.Column("item_id", sa.Integer(), nullable=False, autoincrement=False),
        sa.Column("amount", sa.Numeric(18, 4), nullable=True),
        sa.Column("cost_center", sa.String(), nullable=True),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("category", sa.String(), nullable=True),
        *_attribution_columns(),
        sa.PrimaryKeyConstraint("internal_order", "item_id"),
    )

    op.create_table(
        "budget_data",
        sa.Column("budget_year", sa.Integer(), nullable=False, autoincrement=False),
        sa.Column("cost_center", sa.String(), nullable=False),
        sa.Column("q1_budget", sa.Numeric(18, 4), nullable=True),
        sa.Column("q2_budget", sa.Numeric(18, 4), nullable=True),
        sa.Column("q3_budget", sa.Numeric(18, 4), nullable=True),
        sa.Column("q4_budget", sa.Numeric(18, 4), nullable=True),
        sa.Column(
            "total_budget",
            sa.Numeric(18, 4),
            sa.Computed(
                "coalesce(q1_budget, 0) + coalesce(q2_budget, 0)"
                " + coalesce(q3_budget, 0) + coalesce(q4_budget, 0)"
            ),
            nullable=True,
        ),
        *_attribution_columns(),
        sa.PrimaryKeyConstraint("budget_year", "cost_center"),
    )


def downgrade() -> None:
    op.drop_table("budget_data")
    op.drop_table("financial_data")
    op.drop_table("cost_centers")
    op.drop_index("ix_sheet_operation_logs_sheet_processed", table_name="sheet_operation_logs")
    op.drop_table("sheet_operation_logs")
