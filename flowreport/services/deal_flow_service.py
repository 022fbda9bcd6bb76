"""
Deal-flow synchronisation.

Pulls a deal's flow from Pipedrive and stores its stage visits as
DealStageEvent rows:

    stage changes (oldest first)  →  entered_at = change timestamp
                                     left_at    = next change's timestamp
                                     duration   = left_at - entered_at (s)

Re-running a sync is idempotent: rows are keyed by ``pipedrive_event_id``.
The only update ever applied to a stored row is closing it, i.e. setting
``left_at`` / ``duration_seconds`` on a row that was still open.

Bulk runs (``sync_deals``) apply the same per-deal sync to every deal
updated in a look-back window, in batches, and record a SyncRun:

    full         window = days_back (default 365); purges events older
                 than the window, never less than RETENTION_DAYS
    incremental  window = whole days since the last completed run
                 (7 days when there is none)
"""

import logging
import math
import time
from datetime import timedelta

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError

from flowreport.core.exceptions import (
    ConflictError,
    DataUnavailableError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from flowreport.integrations.pipedrive_adapter import extract_stage_changes
from flowreport.integrations.pipedrive_gateway import pipedrive_gateway
from flowreport.models import db
from flowreport.models.deal_flow import DealStageEvent
from flowreport.models.sync_run import SYNC_MODES, SyncRun
from flowreport.services import pipedrive_service
from flowreport.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)

FULL_SYNC_DAYS = 365
RETENTION_DAYS = 365
FIRST_INCREMENTAL_DAYS = 7
MAX_DAYS_BACK = 365
DEFAULT_BATCH_SIZE = 40
MAX_BATCH_SIZE = 40
BATCH_PAUSE_SECONDS = 2
STALE_RUN_AFTER = timedelta(hours=6)
_MAX_RECORDED_ERRORS = 100


def build_stage_visits(changes):
    """Turn ordered StageChangeDTOs into DealStageEvent column dicts."""
    visits = []
    for i, change in enumerate(changes):
        nxt = changes[i + 1] if i + 1 < len(changes) else None
        left_at = nxt.entered_at if nxt else None
        visits.append({
            "pipedrive_event_id": change.event_id,
            "deal_id": change.deal_id,
            "stage_id": change.stage_id,
            "stage_name": change.stage_name,
            "entered_at": change.entered_at,
            "left_at": left_at,
            "duration_seconds": (
                int((left_at - change.entered_at).total_seconds()) if left_at else None
            ),
        })
    return visits


def list_deal_events(deal_id):
    """Stored stage events of a deal, oldest first."""
    stmt = (
        select(DealStageEvent)
        .where(DealStageEvent.deal_id == deal_id)
        .order_by(DealStageEvent.entered_at)
    )
    try:
        return [e.to_dict() for e in db.session.execute(stmt).scalars().all()]
    except SQLAlchemyError as exc:
        logger.error("Stage event lookup failed for deal %s: %s", deal_id, exc)
        raise DataUnavailableError("Deal stage-event store unavailable", source="stage_events") from exc


def _store_visits(deal_id, visits, pipelines):
    """Insert new visits and close the open one; caller commits."""
    inserted = closed = unchanged = 0
    existing = {
        e.pipedrive_event_id: e
        for e in db.session.execute(
            select(DealStageEvent).where(DealStageEvent.deal_id == deal_id)
        ).scalars().all()
    }
    seen_entries = {(e.stage_id, as_utc(e.entered_at)) for e in existing.values()}

    for visit in visits:
        row = existing.get(visit["pipedrive_event_id"])
        if row is None:
            if (visit["stage_id"], visit["entered_at"]) in seen_entries:
                unchanged += 1
                continue
            pipeline_id = pipelines.get(visit["stage_id"])
            if pipeline_id is None:
                logger.warning("Stage %s not found in any pipeline", visit["stage_id"],
                               extra={"deal_id": deal_id})
                pipeline_id = 0
            db.session.add(DealStageEvent(pipeline_id=pipeline_id, **visit))
            seen_entries.add((visit["stage_id"], visit["entered_at"]))
            inserted += 1
        elif row.left_at is None and visit["left_at"] is not None:
            row.left_at = visit["left_at"]
            row.duration_seconds = visit["duration_seconds"]
            closed += 1
        else:
            unchanged += 1
    return {"inserted": inserted, "closed": closed, "unchanged": unchanged}


def _sync_one(deal_id, pipelines):
    """Fetch and store one deal's flow. None when it has no stage changes."""
    flow = pipedrive_gateway.get_deal_flow(deal_id)
    changes = [c for c in extract_stage_changes(flow) if c.deal_id == deal_id]
    if not changes:
        return None

    try:
        counts = _store_visits(deal_id, build_stage_visits(changes), pipelines)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Deal flow sync failed for deal %s: %s", deal_id, exc,
                     extra={"deal_id": deal_id})
        raise DataUnavailableError("Deal stage-event store unavailable", source="stage_events") from exc

    logger.info(
        "Synced deal %s: inserted=%d closed=%d unchanged=%d",
        deal_id, counts["inserted"], counts["closed"], counts["unchanged"],
        extra={"deal_id": deal_id},
    )
    return counts


def sync_deal(deal_id):
    """Fetch and store the stage history of *deal_id*.

    Returns ``{deal_id, inserted, closed, unchanged, events}``.

    Raises:
        NotFoundError: Pipedrive has no stage changes for the deal.
        ExternalServiceError: Pipedrive call failed.
        DataUnavailableError: the event store rejected the write.
    """
    counts = _sync_one(deal_id, pipedrive_service.stage_pipeline_index())
    if counts is None:
        raise NotFoundError("Deal flow", deal_id)
    return {"deal_id": deal_id, **counts, "events": list_deal_events(deal_id)}


# ── Bulk sync ────────────────────────────────────────────────────────────


def _validate_sync_request(mode, days_back, batch_size):
    errors = {}
    if mode not in SYNC_MODES:
        errors["mode"] = f"Must be one of: {', '.join(SYNC_MODES)}."
    if days_back is not None and (
        isinstance(days_back, bool) or not isinstance(days_back, int)
        or not 1 <= days_back <= MAX_DAYS_BACK
    ):
        errors["days_back"] = f"Must be an integer between 1 and {MAX_DAYS_BACK}."
    if (
        isinstance(batch_size, bool) or not isinstance(batch_size, int)
        or not 1 <= batch_size <= MAX_BATCH_SIZE
    ):
        errors["batch_size"] = f"Must be an integer between 1 and {MAX_BATCH_SIZE}."
    if errors:
        raise ValidationError("Invalid sync request", details=errors)


def _claim_run_slot(now):
    """Fail abandoned runs; raise ConflictError while a live run exists."""
    running = db.session.execute(
        select(SyncRun).where(SyncRun.status == "running")
    ).scalars().all()
    for run in running:
        if now - as_utc(run.started_at) <= STALE_RUN_AFTER:
            raise ConflictError("Sync run", "status", "running")
        run.status = "failed"
        run.completed_at = now
        run.errors = (run.errors or []) + ["Abandoned: no completion recorded"]
        logger.warning("Marked abandoned sync run %s as failed", run.id,
                       extra={"sync_run_id": run.id})


def _last_completed_run():
    return db.session.execute(
        select(SyncRun)
        .where(SyncRun.status == "completed")
        .order_by(SyncRun.started_at.desc())
        .limit(1)
    ).scalars().first()


def _window_days(mode, days_back, now):
    if mode == "full":
        return days_back or FULL_SYNC_DAYS
    last = _last_completed_run()
    if last is None:
        return days_back or FIRST_INCREMENTAL_DAYS
    hours = (now - as_utc(last.started_at)).total_seconds() / 3600
    return max(1, math.ceil(hours / 24))


def cleanup_old_events(days_back, now=None):
    """Delete stage events entered more than *days_back* days ago; caller commits."""
    cutoff = (now or utcnow()) - timedelta(days=days_back)
    result = db.session.execute(
        delete(DealStageEvent)
        .where(DealStageEvent.entered_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


def _finish(run, status, started, now, errors=None):
    run.status = status
    run.completed_at = now
    run.duration_ms = int((time.monotonic() - started) * 1000)
    if errors is not None:
        run.errors = errors[:_MAX_RECORDED_ERRORS]
    db.session.commit()


def sync_deals(
    mode="incremental",
    days_back=None,
    batch_size=DEFAULT_BATCH_SIZE,
    triggered_by="manual",
    now=None,
    pause_seconds=BATCH_PAUSE_SECONDS,
):
    """Sync every deal updated inside the look-back window.

    A deal whose sync fails is recorded in ``failed_deal_ids`` and the run
    continues; a failure to list deals fails the whole run.

    Returns:
        The finished SyncRun as a dict.

    Raises:
        ValidationError: bad mode / days_back / batch_size.
        ConflictError: another run is still in progress.
        ExternalServiceError: the deal listing failed (run recorded as failed).
        DataUnavailableError: the SyncRun table could not be written.
    """
    _validate_sync_request(mode, days_back, batch_size)
    now = now or utcnow()
    started = time.monotonic()

    try:
        _claim_run_slot(now)
        window = _window_days(mode, days_back, now)
        since = now - timedelta(days=window)
        run = SyncRun(
            sync_type=mode,
            status="running",
            triggered_by=triggered_by,
            days_back=window,
            updated_since=since,
            started_at=now,
        )
        db.session.add(run)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Could not record sync run: %s", exc)
        raise DataUnavailableError("Sync run store unavailable", source="sync_runs") from exc

    log_extra = {"sync_run_id": run.id, "sync_mode": mode}
    logger.info("Sync run started: window=%d days", window, extra=log_extra)

    try:
        deals = pipedrive_gateway.list_deals_updated_since(since)
        pipelines = pipedrive_service.stage_pipeline_index()
    except ExternalServiceError as exc:
        _finish(run, "failed", started, utcnow(), errors=[str(exc)])
        logger.error("Sync run failed: %s", exc, extra=log_extra)
        raise

    deal_ids = [d["id"] for d in deals if isinstance(d.get("id"), int)]
    run.total_deals = len(deal_ids)
    db.session.commit()

    processed = successful = 0
    failed, errors = [], []
    batches = [deal_ids[i:i + batch_size] for i in range(0, len(deal_ids), batch_size)]
    for index, batch in enumerate(batches):
        for deal_id in batch:
            try:
                _sync_one(deal_id, pipelines)
                successful += 1
            except (ExternalServiceError, DataUnavailableError) as exc:
                failed.append(deal_id)
                errors.append(f"Deal {deal_id}: {exc}")
                logger.warning("Deal %s failed in sync run: %s", deal_id, exc,
                               extra={**log_extra, "deal_id": deal_id})
            processed += 1

        run.processed_deals = processed
        run.successful_deals = successful
        run.failed_deal_ids = list(failed)
        db.session.commit()
        logger.info("Sync batch %d/%d done: processed=%d/%d", index + 1, len(batches),
                    run.processed_deals, run.total_deals, extra=log_extra)
        if pause_seconds and index + 1 < len(batches):
            time.sleep(pause_seconds)

    if mode == "full":
        try:
            run.removed_events = cleanup_old_events(max(window, RETENTION_DAYS), now)
        except SQLAlchemyError as exc:
            db.session.rollback()
            errors.append(f"Cleanup failed: {exc}")
            logger.warning("Old event cleanup failed: %s", exc, extra=log_extra)

    _finish(run, "completed", started, utcnow(), errors=errors)
    logger.info(
        "Sync run completed: total=%d successful=%d failed=%d",
        run.total_deals, run.successful_deals, len(failed), extra=log_extra,
    )
    return run.to_dict()


def get_sync_status(limit=10, now=None):
    """Recent sync runs plus stored-event statistics."""
    now = now or utcnow()
    try:
        runs = db.session.execute(
            select(SyncRun).order_by(SyncRun.started_at.desc()).limit(limit)
        ).scalars().all()
        last = _last_completed_run()
        total, oldest, newest = db.session.execute(
            select(
                func.count(DealStageEvent.id),
                func.min(DealStageEvent.entered_at),
                func.max(DealStageEvent.entered_at),
            )
        ).one()
    except SQLAlchemyError as exc:
        logger.error("Sync status lookup failed: %s", exc)
        raise DataUnavailableError("Sync run store unavailable", source="sync_runs") from exc

    last_time = as_utc(last.completed_at) if last and last.completed_at else None
    completed = sum(1 for r in runs if r.status == "completed")
    failed = sum(1 for r in runs if r.status == "failed")
    durations = [r.duration_ms for r in runs if r.duration_ms is not None]

    return {
        "current": {
            "is_running": any(r.status == "running" for r in runs),
            "last_sync_time": last_time.isoformat() if last_time else None,
            "data_age_hours": (
                int((now - last_time).total_seconds() // 3600) if last_time else None
            ),
        },
        "recent_runs": [r.to_dict() for r in runs],
        "data": {
            "total_records": total,
            "oldest_record": as_utc(oldest).isoformat() if oldest else None,
            "newest_record": as_utc(newest).isoformat() if newest else None,
        },
        "performance": {
            "total_runs": len(runs),
            "completed_runs": completed,
            "failed_runs": failed,
            "success_rate": round(completed / len(runs) * 100, 1) if runs else 0.0,
            "average_duration_ms": int(sum(durations) / len(durations)) if durations else None,
        },
    }
