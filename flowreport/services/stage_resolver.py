"""
Canonical-Stage Deal Resolver.

Turns a canonical stage name into one row per deal that has entered both
the mapped start stage and the mapped end stage:

    (deal_id, start_date, end_date, duration_seconds)

Pairing rules:
    - start_date = earliest entry into the start stage
    - end_date   = earliest entry into the end stage at or after start_date
    - duration_seconds = end_date - start_date in whole seconds; the stage
      event's own duration_seconds (single-stage dwell time) is never used.

Anomalies are excluded and counted, never raised:
    - an event whose left_at precedes its entered_at
    - a deal whose end-stage entries all precede its start

Store failures raise DataUnavailableError so callers can tell "no deals"
from "could not ask".
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from flowreport.core.exceptions import DataUnavailableError
from flowreport.models import db
from flowreport.models.deal_flow import DealStageEvent
from flowreport.models.flow_metrics import FlowMetricConfig
from flowreport.services.lead_time import CanonicalStageDeal
from flowreport.utils.helpers import as_utc

logger = logging.getLogger(__name__)

REASON_OK = "ok"
REASON_NO_MAPPING = "no_mapping"
REASON_INCOMPLETE_MAPPING = "incomplete_mapping"

NO_DEALS_MESSAGE = "No deals found for this canonical stage"


@dataclass
class ResolutionResult:
    deals: list = field(default_factory=list)
    reason: str = REASON_OK
    skipped_malformed: int = 0

    @property
    def message(self):
        if self.deals:
            return None
        return NO_DEALS_MESSAGE


# ── Mapping lookup ───────────────────────────────────────────────────────


def find_active_mapping(canonical_stage=None, metric_key=None):
    """Return the active FlowMetricConfig for a canonical stage or metric key."""
    stmt = select(FlowMetricConfig).where(FlowMetricConfig.is_active.is_(True))
    if metric_key is not None:
        stmt = stmt.where(FlowMetricConfig.metric_key == metric_key)
    else:
        stmt = stmt.where(FlowMetricConfig.canonical_stage == canonical_stage)
    try:
        return db.session.execute(stmt.limit(1)).scalars().first()
    except SQLAlchemyError as exc:
        logger.error("Mapping lookup failed for %r: %s", canonical_stage or metric_key, exc)
        raise DataUnavailableError("Stage mapping store unavailable", source="mapping") from exc


# ── Pairing (pure) ───────────────────────────────────────────────────────


def _is_malformed(event):
    return event.left_at is not None and as_utc(event.left_at) < as_utc(event.entered_at)


def pair_stage_events(start_events, end_events):
    """Pair start/end stage events per deal.

    Returns ``(deals, skipped_malformed)``; deals are ordered by end_date,
    most recent first.
    """
    skipped = 0

    earliest_start = {}
    for ev in start_events:
        if _is_malformed(ev):
            skipped += 1
            logger.warning(
                "Malformed stage event excluded: deal=%s stage=%s left_at < entered_at",
                ev.deal_id, ev.stage_id, extra={"deal_id": ev.deal_id},
            )
            continue
        entered = as_utc(ev.entered_at)
        current = earliest_start.get(ev.deal_id)
        if current is None or entered < current:
            earliest_start[ev.deal_id] = entered

    end_entries = {}
    for ev in end_events:
        if _is_malformed(ev):
            skipped += 1
            logger.warning(
                "Malformed stage event excluded: deal=%s stage=%s left_at < entered_at",
                ev.deal_id, ev.stage_id, extra={"deal_id": ev.deal_id},
            )
            continue
        end_entries.setdefault(ev.deal_id, []).append(as_utc(ev.entered_at))

    deals = []
    for deal_id, start in earliest_start.items():
        entries = end_entries.get(deal_id)
        if not entries:
            continue
        candidates = [e for e in entries if e >= start]
        if not candidates:
            skipped += 1
            logger.warning(
                "Deal %s reached end stage before start stage; excluded", deal_id,
                extra={"deal_id": deal_id},
            )
            continue
        end = min(candidates)
        deals.append(CanonicalStageDeal(
            deal_id=deal_id,
            start_date=start,
            end_date=end,
            duration_seconds=int((end - start).total_seconds()),
        ))

    deals.sort(key=lambda d: (d.end_date, d.deal_id), reverse=True)
    return deals, skipped


# ── Resolution ───────────────────────────────────────────────────────────


def resolve_stage_pair(start_stage_id, end_stage_id):
    """Resolve deals for an explicit start/end stage id pair."""
    if not start_stage_id or not end_stage_id or start_stage_id == end_stage_id:
        return ResolutionResult(reason=REASON_INCOMPLETE_MAPPING)

    stmt = select(DealStageEvent).where(
        DealStageEvent.stage_id.in_([start_stage_id, end_stage_id])
    )
    try:
        events = db.session.execute(stmt).scalars().all()
    except SQLAlchemyError as exc:
        logger.error("Stage event query failed (%s → %s): %s", start_stage_id, end_stage_id, exc)
        raise DataUnavailableError("Deal stage-event store unavailable", source="stage_events") from exc

    start_events = [e for e in events if e.stage_id == start_stage_id]
    end_events = [e for e in events if e.stage_id == end_stage_id]
    deals, skipped = pair_stage_events(start_events, end_events)
    return ResolutionResult(deals=deals, reason=REASON_OK, skipped_malformed=skipped)


def resolve_mapping(mapping):
    """Resolve deals for a FlowMetricConfig row (None → no_mapping)."""
    if mapping is None:
        return ResolutionResult(reason=REASON_NO_MAPPING)
    result = resolve_stage_pair(mapping.start_stage_id, mapping.end_stage_id)
    logger.info(
        "Resolved %d deals for %s (reason=%s, skipped=%d)",
        len(result.deals), mapping.canonical_stage, result.reason, result.skipped_malformed,
        extra={"metric_key": mapping.metric_key, "canonical_stage": mapping.canonical_stage},
    )
    return result


def resolve_with_reason(canonical_stage):
    """Resolve a canonical stage, keeping the reason for an empty result."""
    mapping = find_active_mapping(canonical_stage=canonical_stage)
    if mapping is None:
        logger.info("No active mapping for canonical stage %r", canonical_stage,
                    extra={"canonical_stage": canonical_stage})
    return resolve_mapping(mapping)


def resolve_for_metric(metric_key):
    """Resolve by metric key instead of canonical stage name."""
    return resolve_mapping(find_active_mapping(metric_key=metric_key))


def resolve(canonical_stage):
    """Return the CanonicalStageDeal list for *canonical_stage* (may be empty)."""
    return resolve_with_reason(canonical_stage).deals
