"""
Cache maintenance blueprint.

Endpoints:
    POST /api/v1/cache/refresh  drop cached Pipedrive listings and config lists
    GET  /api/v1/cache/health   backend type and reachability
"""

import logging

from flask import Blueprint

from flowreport.services import cache_service
from flowreport.utils.errors import E, api_error, api_ok

logger = logging.getLogger(__name__)

cache_bp = Blueprint("cache", __name__, url_prefix="/api/v1/cache")


@cache_bp.route("/refresh", methods=["POST"])
def refresh():
    removed = cache_service.refresh_all()
    return api_ok({"removed": removed}, message="Cache refreshed")


@cache_bp.route("/health", methods=["GET"])
def health():
    status = cache_service.health_check()
    if status["status"] != "ok":
        logger.error("Cache health check failed: %s", status.get("detail"))
        return api_error(E.DATA_UNAVAILABLE, "Cache backend unreachable", details=status)
    return api_ok(status)
