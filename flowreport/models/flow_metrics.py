"""
Flow Metric Configuration Model.

One row per canonical stage: a user-defined milestone (e.g. "Manufacturing")
mapped onto the Pipedrive stage that starts it and the stage that ends it.
Start and end stages may live in different pipelines.

Optional ``avg_min_days`` / ``avg_max_days`` thresholds drive the
good / warning / critical colouring of dashboard cards.
"""

import uuid
from datetime import datetime, timezone

from flowreport.models import db


def _new_id():
    return uuid.uuid4().hex


class FlowMetricConfig(db.Model):
    """Canonical-stage mapping (StageMapping)."""
    __tablename__ = "flow_metric_configs"

    id = db.Column(db.String(32), primary_key=True, default=_new_id)
    metric_key = db.Column(db.String(100), unique=True, nullable=False)  # e.g. "manufacturing"
    display_title = db.Column(db.String(200), nullable=False)
    canonical_stage = db.Column(db.String(200), nullable=False, index=True)

    start_stage_id = db.Column(db.BigInteger)
    start_stage_name = db.Column(db.String(200))
    start_pipeline_id = db.Column(db.BigInteger)
    start_pipeline_name = db.Column(db.String(200))

    end_stage_id = db.Column(db.BigInteger)
    end_stage_name = db.Column(db.String(200))
    end_pipeline_id = db.Column(db.BigInteger)
    end_pipeline_name = db.Column(db.String(200))

    avg_min_days = db.Column(db.Float)
    avg_max_days = db.Column(db.Float)
    comment = db.Column(db.Text)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.Index("ix_flow_metric_configs_active_sort", "is_active", "sort_order"),
    )

    @property
    def is_cross_pipeline(self):
        if self.start_pipeline_id is None or self.end_pipeline_id is None:
            return False
        return self.start_pipeline_id != self.end_pipeline_id

    def to_dict(self):
        return {
            "id": self.id,
            "metric_key": self.metric_key,
            "display_title": self.display_title,
            "canonical_stage": self.canonical_stage,
            "start_stage": {
                "id": self.start_stage_id,
                "name": self.start_stage_name,
                "pipeline_id": self.start_pipeline_id,
                "pipeline_name": self.start_pipeline_name,
            },
            "end_stage": {
                "id": self.end_stage_id,
                "name": self.end_stage_name,
                "pipeline_id": self.end_pipeline_id,
                "pipeline_name": self.end_pipeline_name,
            },
            "avg_min_days": self.avg_min_days,
            "avg_max_days": self.avg_max_days,
            "comment": self.comment,
            "is_active": self.is_active,
            "sort_order": self.sort_order,
            "is_cross_pipeline": self.is_cross_pipeline,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
