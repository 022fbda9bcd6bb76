"""
Deal Stage-Event Model.

Append-mostly log of a deal entering (and later leaving) a Pipedrive stage.
Rows are written by deal-flow synchronisation; the open row of a deal
(``left_at IS NULL``) is closed exactly once when the deal moves on.
"""

import uuid
from datetime import datetime, timezone

from flowreport.models import db


class DealStageEvent(db.Model):
    """A deal's visit to one pipeline stage (StageEvent)."""
    __tablename__ = "deal_stage_events"

    id = db.Column(db.String(32), primary_key=True, default=lambda: uuid.uuid4().hex)
    pipedrive_event_id = db.Column(db.BigInteger, unique=True, nullable=False)
    deal_id = db.Column(db.BigInteger, nullable=False, index=True)
    pipeline_id = db.Column(db.BigInteger, nullable=False)
    stage_id = db.Column(db.BigInteger, nullable=False, index=True)
    stage_name = db.Column(db.String(200), nullable=False)
    entered_at = db.Column(db.DateTime(timezone=True), nullable=False)
    left_at = db.Column(db.DateTime(timezone=True))
    duration_seconds = db.Column(db.BigInteger)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("deal_id", "stage_id", "entered_at", name="uq_deal_stage_entry"),
        db.Index("ix_deal_stage_events_stage_entered", "stage_id", "entered_at"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "pipedrive_event_id": self.pipedrive_event_id,
            "deal_id": self.deal_id,
            "pipeline_id": self.pipeline_id,
            "stage_id": self.stage_id,
            "stage_name": self.stage_name,
            "entered_at": self.entered_at.isoformat() if self.entered_at else None,
            "left_at": self.left_at.isoformat() if self.left_at else None,
            "duration_seconds": self.duration_seconds,
        }
