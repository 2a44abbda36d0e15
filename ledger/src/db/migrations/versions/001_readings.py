"""
Initial schema: create the readings table.

Composite primary key (site_id, captured_at, metric_kind, source) backs the
idempotent ON CONFLICT DO NOTHING appends. The secondary index serves
latest-by-kind and history queries.

Revision ID: 001
Revises: None
Create Date: 2026-10-15

CHANGELOG:
- 2026-10-15: Initial creation (STORY-013)
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "readings",
        sa.Column("site_id", sa.Text(), nullable=False),
        sa.Column("captured_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("metric_kind", sa.Text(), nullable=False),
        sa.Column("source", sa.Text(), nullable=False),
        sa.Column("value", sa.Numeric(14, 3), nullable=False),
        sa.Column(
            "received_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("site_id", "captured_at", "metric_kind", "source"),
        sa.CheckConstraint(
            "metric_kind IN ('production', 'consumption', 'lifetime_total')",
            name="readings_metric_kind_check",
        ),
        sa.CheckConstraint(
            "source IN ('automatic', 'manual')",
            name="readings_source_check",
        ),
    )
    op.create_index(
        "readings_site_kind_ts",
        "readings",
        ["site_id", "metric_kind", sa.text("captured_at DESC")],
    )


def downgrade() -> None:
    op.drop_index("readings_site_kind_ts", table_name="readings")
    op.drop_table("readings")
