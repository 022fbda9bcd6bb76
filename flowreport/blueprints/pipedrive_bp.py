"""
Pipedrive blueprint.

Endpoints:
    GET  /api/v1/pipedrive/pipelines                   cached pipeline list
    GET  /api/v1/pipedrive/stages?pipeline_id=         cached stage list
    GET  /api/v1/pipedrive/deal-flow/<deal_id>         stored stage events of a deal
    POST /api/v1/admin/deal-flow/<deal_id>/sync        pull the deal's flow from Pipedrive
    POST /api/v1/admin/deal-flow/sync                  bulk sync {mode, days_back, batch_size}
    GET  /api/v1/admin/sync-status                      recent sync runs + stored-event stats

Upstream failures become 502 ERR_EXTERNAL_SERVICE via the app-level handler.
"""

import logging

from flask import Blueprint, request

from flowreport.services import deal_flow_service, pipedrive_service
from flowreport.utils.errors import E, api_error, api_ok

logger = logging.getLogger(__name__)

pipedrive_bp = Blueprint("pipedrive", __name__, url_prefix="/api/v1")


@pipedrive_bp.route("/pipedrive/pipelines", methods=["GET"])
def pipelines():
    return api_ok(pipedrive_service.list_pipelines())


@pipedrive_bp.route("/pipedrive/stages", methods=["GET"])
def stages():
    raw = request.args.get("pipeline_id")
    pipeline_id = None
    if raw:
        try:
            pipeline_id = int(raw)
        except ValueError:
            return api_error(E.VALIDATION_INVALID, "pipeline_id must be an integer")
    return api_ok(pipedrive_service.list_stages(pipeline_id))


@pipedrive_bp.route("/pipedrive/deal-flow/<int:deal_id>", methods=["GET"])
def deal_flow(deal_id):
    return api_ok(deal_flow_service.list_deal_events(deal_id))


@pipedrive_bp.route("/admin/deal-flow/<int:deal_id>/sync", methods=["POST"])
def sync_deal_flow(deal_id):
    """Fetch and store a deal's stage history; safe to repeat."""
    result = deal_flow_service.sync_deal(deal_id)
    return api_ok(result, message=f"Successfully synced flow data for deal {deal_id}")


@pipedrive_bp.route("/admin/deal-flow/sync", methods=["POST"])
def sync_all_deal_flow():
    """Run a full or incremental bulk sync; 409 while another run is active."""
    data = request.get_json(silent=True) or {}
    run = deal_flow_service.sync_deals(
        mode=data.get("mode", "incremental"),
        days_back=data.get("days_back"),
        batch_size=data.get("batch_size", deal_flow_service.DEFAULT_BATCH_SIZE),
        triggered_by="manual",
    )
    return api_ok(run, message=f"Sync run {run['status']}: {run['successful_deals']}/{run['total_deals']} deals")


@pipedrive_bp.route("/admin/sync-status", methods=["GET"])
def sync_status():
    raw = request.args.get("limit", "10")
    try:
        limit = int(raw)
    except ValueError:
        return api_error(E.VALIDATION_INVALID, "limit must be an integer")
    return api_ok(deal_flow_service.get_sync_status(limit=max(1, min(limit, 50))))
