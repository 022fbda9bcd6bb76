"""Tests for flowreport.middleware.logging_config."""

import json
import logging

from flask import Flask, g

from flowreport.middleware.logging_config import (
    JSONFormatter,
    ReadableFormatter,
    RequestIdFilter,
    configure_logging,
)


def _record(**extra):
    record = logging.LogRecord(
        "flowreport.services.deal_flow_service", logging.INFO, __file__, 1,
        "Sync run %s finished", ("r1",), None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_keeps_known_extra_fields():
    out = json.loads(JSONFormatter().format(_record(sync_run_id="r1", deal_id=77, colour="red")))
    assert out["message"] == "Sync run r1 finished"
    assert out["level"] == "INFO"
    assert out["sync_run_id"] == "r1"
    assert out["deal_id"] == 77
    assert "colour" not in out


def test_request_id_is_stamped_inside_a_request(app):
    record = _record()
    with app.test_request_context("/api/v1/flow/metrics"):
        g.request_id = "req-42"
        RequestIdFilter().filter(record)
    assert record.request_id == "req-42"
    assert "(req-42)" in ReadableFormatter().format(record)


def test_log_format_and_level_come_from_config(app):
    other = Flask(__name__)
    other.config.update(TESTING=True, LOG_FORMAT="json", LOG_LEVEL="warning")
    try:
        configure_logging(other)
        handler = logging.getLogger().handlers[-1]
        assert isinstance(handler.formatter, JSONFormatter)
        assert logging.getLogger().level == logging.WARNING
    finally:
        configure_logging(app)
