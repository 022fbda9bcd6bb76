"""flow_metrics_initial

Creates the flow-metrics tables:
  - flow_metric_configs  — canonical-stage mappings (start/end Pipedrive stage)
  - deal_stage_events    — per-deal stage visits synced from Pipedrive

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via
db.create_all() at application startup.

Revision ID: 7f3c9a1d2e45
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '7f3c9a1d2e45'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Flow metric configs ───────────────────────────────────────────────
    if "flow_metric_configs" not in existing:
        op.create_table(
            "flow_metric_configs",
            sa.Column("id", sa.String(length=32), nullable=False),
            sa.Column("metric_key", sa.String(length=100), nullable=False),
            sa.Column("display_title", sa.String(length=200), nullable=False),
            sa.Column("canonical_stage", sa.String(length=200), nullable=False),
            sa.Column("start_stage_id", sa.BigInteger(), nullable=True),
            sa.Column("start_stage_name", sa.String(length=200), nullable=True),
            sa.Column("start_pipeline_id", sa.BigInteger(), nullable=True),
            sa.Column("start_pipeline_name", sa.String(length=200), nullable=True),
            sa.Column("end_stage_id", sa.BigInteger(), nullable=True),
            sa.Column("end_stage_name", sa.String(length=200), nullable=True),
            sa.Column("end_pipeline_id", sa.BigInteger(), nullable=True),
            sa.Column("end_pipeline_name", sa.String(length=200), nullable=True),
            sa.Column("avg_min_days", sa.Float(), nullable=True),
            sa.Column("avg_max_days", sa.Float(), nullable=True),
            sa.Column("comment", sa.Text(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("metric_key"),
        )
        op.create_index("ix_flow_metric_configs_canonical_stage", "flow_metric_configs",
                        ["canonical_stage"])
        op.create_index("ix_flow_metric_configs_active_sort", "flow_metric_configs",
                        ["is_active", "sort_order"])

    # ── Deal stage events ─────────────────────────────────────────────────
    if "deal_stage_events" not in existing:
        op.create_table(
            "deal_stage_events",
            sa.Column("id", sa.String(length=32), nullable=False),
            sa.Column("pipedrive_event_id", sa.BigInteger(), nullable=False),
            sa.Column("deal_id", sa.BigInteger(), nullable=False),
            sa.Column("pipeline_id", sa.BigInteger(), nullable=False),
            sa.Column("stage_id", sa.BigInteger(), nullable=False),
            sa.Column("stage_name", sa.String(length=200), nullable=False),
            sa.Column("entered_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("left_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("duration_seconds", sa.BigInteger(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("pipedrive_event_id"),
            sa.UniqueConstraint("deal_id", "stage_id", "entered_at", name="uq_deal_stage_entry"),
        )
        op.create_index("ix_deal_stage_events_deal_id", "deal_stage_events", ["deal_id"])
        op.create_index("ix_deal_stage_events_stage_id", "deal_stage_events", ["stage_id"])
        op.create_index("ix_deal_stage_events_stage_entered", "deal_stage_events",
                        ["stage_id", "entered_at"])


def downgrade():
    op.drop_table("deal_stage_events")
    op.drop_table("flow_metric_configs")
