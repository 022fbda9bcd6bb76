"""sync_runs

Creates the sync_runs table: one audit row per bulk deal-flow sync
(full or incremental) with progress counters and failed deal ids.

Created conditionally to stay idempotent with db.create_all() at startup.

Revision ID: b81e4c0f6a93
Revises: 7f3c9a1d2e45
Create Date: 2026-10-19 15:00:00.000000
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = 'b81e4c0f6a93'
down_revision = '7f3c9a1d2e45'
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    if "sync_runs" in inspector.get_table_names():
        return

    op.create_table(
        "sync_runs",
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("sync_type", sa.String(length=12), nullable=False),
        sa.Column("status", sa.String(length=10), nullable=False),
        sa.Column("triggered_by", sa.String(length=20), nullable=True),
        sa.Column("days_back", sa.Integer(), nullable=True),
        sa.Column("updated_since", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_deals", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("processed_deals", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("successful_deals", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_deal_ids", sa.JSON(), nullable=True),
        sa.Column("errors", sa.JSON(), nullable=True),
        sa.Column("removed_events", sa.Integer(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sync_runs_status", "sync_runs", ["status"])
    op.create_index("ix_sync_runs_started_at", "sync_runs", ["started_at"])


def downgrade():
    op.drop_table("sync_runs")
