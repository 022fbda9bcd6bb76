"""
Flow Metrics Service.

Two concerns:

1. Configuration CRUD for canonical-stage mappings (FlowMetricConfig):
   validation, uniqueness of metric_key and of active canonical_stage,
   reorder and comment edits. Every write invalidates the cached list of
   active configurations.

2. Dashboard read models:
   - ``compute_dashboard(period)``: one KPI card per active metric
   - ``get_canonical_stage_deals(...)``: the per-deal table behind a card,
     with best / worst flags

Cross-pipeline mappings (start in one pipeline, end in another) are valid;
they only produce a warning for the admin UI.
"""

import logging
import re

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from flowreport.core.exceptions import (
    ConflictError,
    DataUnavailableError,
    NotFoundError,
    ValidationError,
)
from flowreport.models import db
from flowreport.models.flow_metrics import FlowMetricConfig
from flowreport.services import cache_service, stage_resolver
from flowreport.services.lead_time import (
    aggregate,
    classify_deals,
    display_days,
    filter_by_period,
    threshold_status,
)

logger = logging.getLogger(__name__)

METRIC_KEY_RE = re.compile(r"^[a-z0-9-]+$")

_STAGE_SIDES = ("start", "end")


# ── Validation ───────────────────────────────────────────────────────────


def _stage_fields(data, side):
    """Flatten ``{side}_stage: {id, name, pipeline_id, pipeline_name}``."""
    stage = data.get(f"{side}_stage")
    out = {}
    if isinstance(stage, dict):
        out[f"{side}_stage_id"] = stage.get("id")
        out[f"{side}_stage_name"] = stage.get("name")
        out[f"{side}_pipeline_id"] = stage.get("pipeline_id")
        out[f"{side}_pipeline_name"] = stage.get("pipeline_name")
    elif f"{side}_stage_id" in data:
        out[f"{side}_stage_id"] = data.get(f"{side}_stage_id")
    return out


def _as_threshold(value, field_name, errors):
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        errors[field_name] = "Must be a number."
        return None
    if value < 0:
        errors[field_name] = "Cannot be negative."
        return None
    return value


def _as_stage_id(value, field_name, errors):
    if value is None:
        return None
    if isinstance(value, bool):
        errors[field_name] = "Must be an integer stage id."
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        errors[field_name] = "Must be an integer stage id."
        return None


def validate_config(data, existing=None):
    """Validate a create payload, or a PATCH payload merged over *existing*.

    Returns ``(fields, warnings)`` where *fields* are model column values.
    Raises ValidationError with field-level details.
    """
    errors: dict[str, str] = {}
    fields: dict = {}

    if existing is None:
        metric_key = (data.get("metric_key") or "").strip()
        if not metric_key:
            errors["metric_key"] = "Metric key is required."
        elif not METRIC_KEY_RE.match(metric_key):
            errors["metric_key"] = (
                "Metric key must contain only lowercase letters, numbers, and hyphens."
            )
        fields["metric_key"] = metric_key

    if existing is None or "display_title" in data:
        title = (data.get("display_title") or "").strip()
        if not title:
            errors["display_title"] = "Display title is required."
        fields["display_title"] = title

    if "canonical_stage" in data or existing is None:
        canonical = (data.get("canonical_stage") or "").strip()
        fields["canonical_stage"] = canonical or fields.get("metric_key")
        if existing is not None and not canonical:
            errors["canonical_stage"] = "Canonical stage cannot be empty."

    for side in _STAGE_SIDES:
        stage = _stage_fields(data, side)
        for column in (f"{side}_stage_id", f"{side}_pipeline_id"):
            if column in stage:
                stage[column] = _as_stage_id(stage[column], f"{side}_stage", errors)
        fields.update(stage)

    def merged(name):
        if name in fields:
            return fields[name]
        return getattr(existing, name, None) if existing is not None else None

    start_id, end_id = merged("start_stage_id"), merged("end_stage_id")
    if start_id is None and "start_stage" not in errors:
        errors["start_stage"] = "Start stage is required."
    if end_id is None and "end_stage" not in errors:
        errors["end_stage"] = "End stage is required."
    if start_id is not None and start_id == end_id:
        errors["end_stage"] = "Start and end stages cannot be the same stage."

    for name in ("avg_min_days", "avg_max_days"):
        if name in data:
            fields[name] = _as_threshold(data.get(name), name, errors)
    min_days, max_days = merged("avg_min_days"), merged("avg_max_days")
    if (
        min_days is not None and max_days is not None
        and "avg_min_days" not in errors and "avg_max_days" not in errors
        and min_days > max_days
    ):
        errors["avg_min_days"] = "Minimum days cannot be greater than maximum days."

    if "comment" in data:
        comment = data.get("comment")
        fields["comment"] = comment.strip() if isinstance(comment, str) and comment.strip() else None

    if "is_active" in data:
        fields["is_active"] = bool(data.get("is_active"))
    elif existing is None:
        fields["is_active"] = True

    if "sort_order" in data:
        sort_order = data.get("sort_order")
        if isinstance(sort_order, bool) or not isinstance(sort_order, int):
            errors["sort_order"] = "Must be an integer."
        fields["sort_order"] = sort_order
    elif existing is None:
        fields["sort_order"] = 0

    if errors:
        raise ValidationError("Flow metric configuration is invalid", details=errors)

    warnings = []
    start_pipe, end_pipe = merged("start_pipeline_id"), merged("end_pipeline_id")
    if start_pipe is not None and end_pipe is not None and start_pipe != end_pipe:
        warnings.append(
            f"This is a cross-pipeline metric ({merged('start_pipeline_name') or start_pipe} → "
            f"{merged('end_pipeline_name') or end_pipe}). Ensure deal flow data captures "
            "transitions between pipelines."
        )
    return fields, warnings


def _ensure_unique(fields, exclude_id=None):
    key = fields.get("metric_key")
    if key:
        stmt = select(FlowMetricConfig.id).where(FlowMetricConfig.metric_key == key)
        if db.session.execute(stmt).first():
            raise ConflictError("FlowMetricConfig", "metric_key", key)

    canonical = fields.get("canonical_stage")
    if canonical and fields.get("is_active"):
        stmt = select(FlowMetricConfig.id).where(
            FlowMetricConfig.canonical_stage == canonical,
            FlowMetricConfig.is_active.is_(True),
        )
        if exclude_id is not None:
            stmt = stmt.where(FlowMetricConfig.id != exclude_id)
        if db.session.execute(stmt).first():
            raise ConflictError("FlowMetricConfig", "canonical_stage", canonical)


# ── CRUD ─────────────────────────────────────────────────────────────────


def list_configs(include_inactive=True):
    """Return configurations ordered for display."""
    stmt = select(FlowMetricConfig).order_by(
        FlowMetricConfig.sort_order, FlowMetricConfig.display_title,
    )
    if not include_inactive:
        stmt = stmt.where(FlowMetricConfig.is_active.is_(True))
    return [c.to_dict() for c in db.session.execute(stmt).scalars().all()]


def list_active_configs():
    """Active configurations, served through the cache."""
    try:
        return cache_service.get_cached(
            cache_service.ACTIVE_CONFIGS_KEY,
            loader=lambda: list_configs(include_inactive=False),
        )
    except SQLAlchemyError as exc:
        logger.error("Active config lookup failed: %s", exc)
        raise DataUnavailableError("Stage mapping store unavailable", source="mapping") from exc


def get_config(config_id):
    cfg = db.session.get(FlowMetricConfig, config_id)
    if cfg is None:
        raise NotFoundError("FlowMetricConfig", config_id)
    return cfg


def create_config(data):
    """Create a mapping. Returns ``(config, warnings)``."""
    fields, warnings = validate_config(data)
    _ensure_unique(fields)
    cfg = FlowMetricConfig(**fields)
    db.session.add(cfg)
    db.session.commit()
    cache_service.invalidate_flow_configs()
    logger.info("Created flow metric config: %s", cfg.metric_key,
                extra={"metric_key": cfg.metric_key})
    return cfg, warnings


def update_config(config_id, data):
    """Partially update a mapping. ``metric_key`` is immutable and ignored."""
    cfg = get_config(config_id)
    fields, warnings = validate_config(data, existing=cfg)
    check = {
        "canonical_stage": fields.get("canonical_stage", cfg.canonical_stage),
        "is_active": fields.get("is_active", cfg.is_active),
    }
    _ensure_unique(check, exclude_id=cfg.id)
    for name, value in fields.items():
        setattr(cfg, name, value)
    db.session.commit()
    cache_service.invalidate_flow_configs()
    logger.info("Updated flow metric config: %s", cfg.metric_key,
                extra={"metric_key": cfg.metric_key})
    return cfg, warnings


def update_comment(config_id, comment):
    cfg = get_config(config_id)
    if comment is not None and not isinstance(comment, str):
        raise ValidationError("comment must be a string", details={"comment": "Must be a string."})
    cfg.comment = comment.strip() if comment and comment.strip() else None
    db.session.commit()
    cache_service.invalidate_flow_configs()
    return cfg


def delete_config(config_id):
    """Delete a mapping and return its last state."""
    cfg = get_config(config_id)
    snapshot = cfg.to_dict()
    db.session.delete(cfg)
    db.session.commit()
    cache_service.invalidate_flow_configs()
    logger.info("Deleted flow metric config: %s", snapshot["metric_key"],
                extra={"metric_key": snapshot["metric_key"]})
    return snapshot


def reorder_configs(items):
    """Apply ``[{id, sort_order}, ...]``. All ids must exist; nothing is written otherwise."""
    if not isinstance(items, list) or not items:
        raise ValidationError("reorder_data must be a non-empty array")
    for item in items:
        if (
            not isinstance(item, dict) or not item.get("id")
            or isinstance(item.get("sort_order"), bool)
            or not isinstance(item.get("sort_order"), int)
        ):
            raise ValidationError("Each item must have id and sort_order fields")

    configs = {}
    for item in items:
        cfg = db.session.get(FlowMetricConfig, item["id"])
        if cfg is None:
            raise NotFoundError("FlowMetricConfig", item["id"])
        configs[item["id"]] = cfg
    for item in items:
        configs[item["id"]].sort_order = item["sort_order"]
    db.session.commit()
    cache_service.invalidate_flow_configs()
    return list_configs()


# ── Dashboard read models ────────────────────────────────────────────────


def _card(cfg, result, period, now):
    deals = filter_by_period(result.deals, period, now)
    metrics = aggregate(deals)
    return {
        "id": cfg["id"],
        "title": cfg["display_title"],
        "metricKey": cfg["metric_key"],
        "canonicalStage": cfg["canonical_stage"],
        "mainMetric": f"{metrics.average:.2f}",
        "displayDays": display_days(metrics.average),
        "best": metrics.best,
        "worst": metrics.worst,
        "totalDeals": metrics.total_deals,
        "avgMinDays": cfg.get("avg_min_days"),
        "avgMaxDays": cfg.get("avg_max_days"),
        "comment": cfg.get("comment"),
        "status": threshold_status(metrics.average, cfg.get("avg_min_days"), cfg.get("avg_max_days")),
        "skippedMalformed": result.skipped_malformed,
    }


def compute_dashboard(period=None, now=None):
    """One KPI card per active metric, in sort order.

    Raises DataUnavailableError if any store query fails.
    """
    cards = []
    for cfg in list_active_configs() or []:
        result = stage_resolver.resolve_stage_pair(
            cfg["start_stage"]["id"], cfg["end_stage"]["id"],
        )
        cards.append(_card(cfg, result, period, now))
    logger.info("Calculated %d flow metric cards", len(cards), extra={"period": period})
    return cards


def get_canonical_stage_deals(canonical_stage=None, metric_key=None, period=None, now=None):
    """Per-deal table with best / worst flags plus the summary for the selection."""
    if metric_key:
        result = stage_resolver.resolve_for_metric(metric_key)
    else:
        result = stage_resolver.resolve_with_reason(canonical_stage)

    deals = filter_by_period(result.deals, period, now)
    metrics = aggregate(deals)
    return {
        "deals": classify_deals(deals, metrics),
        "metrics": metrics.to_dict(),
        "display": metrics.to_display(),
        "reason": result.reason,
        "skipped_malformed": result.skipped_malformed,
        "message": stage_resolver.NO_DEALS_MESSAGE if not deals else None,
    }
