"""
Flow metrics dashboard blueprint.

Endpoints:
    GET /api/v1/flow/metrics?period=7d
        One KPI card per active metric.
    GET /api/v1/flow/canonical-stage-deals?canonicalStage=...|metricKey=...&period=...
        Per-deal lead times with best / worst flags.
    GET /api/v1/flow/periods
        Selectable period codes.

Store failures surface as 503 ERR_DATA_UNAVAILABLE through the app-level
error handlers; an empty result is a normal 200.
"""

import logging

from flask import Blueprint, request

from flowreport.services import flow_metrics_service
from flowreport.services.periods import DEFAULT_PERIOD, TIME_PERIODS
from flowreport.utils.errors import E, api_error, api_ok

logger = logging.getLogger(__name__)

flow_bp = Blueprint("flow", __name__, url_prefix="/api/v1/flow")


@flow_bp.route("/metrics", methods=["GET"])
def flow_metrics():
    """Dashboard cards for the selected period (default 7d)."""
    period = request.args.get("period") or DEFAULT_PERIOD
    cards = flow_metrics_service.compute_dashboard(period)
    return api_ok(cards, period=period)


@flow_bp.route("/canonical-stage-deals", methods=["GET"])
def canonical_stage_deals():
    """Deals behind one card.

    Query params:
        canonicalStage or metricKey (one required)
        period (optional; omitted or unknown → all deals)
    """
    canonical_stage = (request.args.get("canonicalStage") or "").strip()
    metric_key = (request.args.get("metricKey") or "").strip()
    if not canonical_stage and not metric_key:
        return api_error(E.VALIDATION_REQUIRED, "canonicalStage or metricKey parameter is required")

    period = request.args.get("period") or None
    logger.info(
        "Fetching deals for %s", metric_key or canonical_stage,
        extra={"metric_key": metric_key or None, "canonical_stage": canonical_stage or None,
               "period": period},
    )
    result = flow_metrics_service.get_canonical_stage_deals(
        canonical_stage=canonical_stage or None,
        metric_key=metric_key or None,
        period=period,
    )
    return api_ok(
        result["deals"],
        metrics=result["metrics"],
        display=result["display"],
        reason=result["reason"],
        skipped_malformed=result["skipped_malformed"],
        message=result["message"],
    )


@flow_bp.route("/periods", methods=["GET"])
def periods():
    return api_ok(TIME_PERIODS, default=DEFAULT_PERIOD)
