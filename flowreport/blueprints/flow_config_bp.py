"""
Flow metric configuration (admin) blueprint.

Endpoints:
    GET    /api/v1/admin/flow-metrics-config              list (?active=true for active only)
    POST   /api/v1/admin/flow-metrics-config              create
    GET    /api/v1/admin/flow-metrics-config/<id>         read
    PATCH  /api/v1/admin/flow-metrics-config/<id>         partial update
    DELETE /api/v1/admin/flow-metrics-config/<id>         delete
    PATCH  /api/v1/admin/flow-metrics-config/<id>/comment comment only
    POST   /api/v1/admin/flow-metrics-config/reorder      {reorder_data: [{id, sort_order}]}

Validation, uniqueness and cache invalidation live in flow_metrics_service;
its exceptions are mapped to HTTP by the app-level error handlers.
"""

import logging

from flask import Blueprint, request

from flowreport.services import flow_metrics_service
from flowreport.utils.errors import E, api_error, api_ok

logger = logging.getLogger(__name__)

flow_config_bp = Blueprint("flow_config", __name__, url_prefix="/api/v1/admin/flow-metrics-config")


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


@flow_config_bp.route("", methods=["GET"])
def list_configs():
    active_only = request.args.get("active", "").lower() in ("1", "true", "yes")
    return api_ok(flow_metrics_service.list_configs(include_inactive=not active_only))


@flow_config_bp.route("", methods=["POST"])
def create_config():
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    cfg, warnings = flow_metrics_service.create_config(data)
    return api_ok(cfg.to_dict(), status=201, warnings=warnings)


@flow_config_bp.route("/<config_id>", methods=["GET"])
def get_config(config_id):
    return api_ok(flow_metrics_service.get_config(config_id).to_dict())


@flow_config_bp.route("/<config_id>", methods=["PATCH"])
def update_config(config_id):
    data = _json_body()
    if not data:
        return api_error(E.VALIDATION_REQUIRED, "No fields to update")
    cfg, warnings = flow_metrics_service.update_config(config_id, data)
    return api_ok(cfg.to_dict(), warnings=warnings)


@flow_config_bp.route("/<config_id>", methods=["DELETE"])
def delete_config(config_id):
    deleted = flow_metrics_service.delete_config(config_id)
    return api_ok(deleted, message=f"Flow metric '{deleted['metric_key']}' deleted")


@flow_config_bp.route("/<config_id>/comment", methods=["PATCH"])
def update_comment(config_id):
    data = _json_body()
    if data is None or "comment" not in data:
        return api_error(E.VALIDATION_REQUIRED, "comment is required")
    cfg = flow_metrics_service.update_comment(config_id, data["comment"])
    return api_ok(cfg.to_dict())


@flow_config_bp.route("/reorder", methods=["POST"])
def reorder():
    data = _json_body() or {}
    logger.info("Reordering %d flow metrics", len(data.get("reorder_data") or []))
    return api_ok(flow_metrics_service.reorder_configs(data.get("reorder_data")))
