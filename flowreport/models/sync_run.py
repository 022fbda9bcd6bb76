"""
Sync Run Model.

One row per bulk deal-flow synchronisation (full or incremental). A run is
written as ``running`` before any deal is fetched and finished as
``completed`` or ``failed``; progress counters are updated per batch.
"""

import uuid
from datetime import datetime, timezone

from flowreport.models import db

SYNC_MODES = ("full", "incremental")
SYNC_STATUSES = ("running", "completed", "failed")


def _utcnow():
    return datetime.now(timezone.utc)


class SyncRun(db.Model):
    """Audit record of a bulk deal-flow sync."""
    __tablename__ = "sync_runs"

    id = db.Column(db.String(32), primary_key=True, default=lambda: uuid.uuid4().hex)
    sync_type = db.Column(db.String(12), nullable=False, comment="full | incremental")
    status = db.Column(db.String(10), nullable=False, default="running", index=True,
                       comment="running | completed | failed")
    triggered_by = db.Column(db.String(20), nullable=True, comment="manual | scheduled")
    days_back = db.Column(db.Integer, nullable=True)
    updated_since = db.Column(db.DateTime(timezone=True), nullable=True,
                              comment="Lower bound of deal update_time fetched")
    started_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    total_deals = db.Column(db.Integer, nullable=False, default=0)
    processed_deals = db.Column(db.Integer, nullable=False, default=0)
    successful_deals = db.Column(db.Integer, nullable=False, default=0)
    failed_deal_ids = db.Column(db.JSON, nullable=True)
    errors = db.Column(db.JSON, nullable=True)
    removed_events = db.Column(db.Integer, nullable=True, comment="Old events purged by a full sync")
    duration_ms = db.Column(db.Integer, nullable=True)

    def to_dict(self):
        failed = self.failed_deal_ids or []
        return {
            "id": self.id,
            "sync_type": self.sync_type,
            "status": self.status,
            "triggered_by": self.triggered_by,
            "days_back": self.days_back,
            "updated_since": self.updated_since.isoformat() if self.updated_since else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "total_deals": self.total_deals,
            "processed_deals": self.processed_deals,
            "successful_deals": self.successful_deals,
            "failed_deals": len(failed),
            "failed_deal_ids": failed,
            "errors": self.errors or [],
            "removed_events": self.removed_events,
            "duration_ms": self.duration_ms,
        }
