"""
QR-ID blueprint.

Endpoints:
    POST /api/v1/qr-ids/next          allocate the next QR-ID
    GET  /api/v1/qr-ids/current       last allocated number
    POST /api/v1/qr-ids/sync          {latest_id: "QR-123"}; never moves backwards
"""

from flask import Blueprint, current_app, request

from flowreport.services import cache_service
from flowreport.services.qr_counter import QRCounter, format_qr_id
from flowreport.utils.errors import E, api_error, api_ok

qr_bp = Blueprint("qr_ids", __name__, url_prefix="/api/v1/qr-ids")


def _counter():
    return QRCounter(cache_service.get_backend(), current_app.config["QR_COUNTER_ENV"])


@qr_bp.route("/next", methods=["POST"])
def next_id():
    counter = _counter()
    return api_ok({"qr_id": counter.next_id(), "environment": counter.environment}, status=201)


@qr_bp.route("/current", methods=["GET"])
def current():
    counter = _counter()
    value = counter.current()
    return api_ok({"value": value, "qr_id": format_qr_id(value), "environment": counter.environment})


@qr_bp.route("/sync", methods=["POST"])
def sync():
    data = request.get_json(silent=True) or {}
    latest_id = data.get("latest_id")
    if not latest_id:
        return api_error(E.VALIDATION_REQUIRED, "latest_id is required")
    try:
        value = _counter().sync_to(latest_id)
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))
    return api_ok({"value": value, "qr_id": format_qr_id(value)})
