"""
Shared pytest fixtures for the Flow Metrics Report test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate, cache flush (autouse)
    - client: Flask test client (function-scoped)
    - make_config / make_event: ORM factories for mappings and stage events
"""

import pytest

from flowreport import create_app
from flowreport.models import db as _db
from flowreport.models.deal_flow import DealStageEvent
from flowreport.models.flow_metrics import FlowMetricConfig
from flowreport.services import cache_service


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        cache_service.clear_all()
        yield
        cache_service.clear_all()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── ORM factories ────────────────────────────────────────────────────────


_event_counter = 0


def _make_config(metric_key="manufacturing", start_stage_id=10, end_stage_id=20, **overrides):
    """Create and commit an active FlowMetricConfig."""
    fields = {
        "metric_key": metric_key,
        "display_title": metric_key.replace("-", " ").title(),
        "canonical_stage": metric_key,
        "start_stage_id": start_stage_id,
        "start_stage_name": f"Stage {start_stage_id}",
        "start_pipeline_id": 1,
        "start_pipeline_name": "Sales",
        "end_stage_id": end_stage_id,
        "end_stage_name": f"Stage {end_stage_id}",
        "end_pipeline_id": 1,
        "end_pipeline_name": "Sales",
        "is_active": True,
        "sort_order": 0,
    }
    fields.update(overrides)
    cfg = FlowMetricConfig(**fields)
    _db.session.add(cfg)
    _db.session.commit()
    return cfg


def _make_event(deal_id, stage_id, entered_at, left_at=None, pipeline_id=1):
    """Create and commit a DealStageEvent with a unique Pipedrive event id."""
    global _event_counter
    _event_counter += 1
    ev = DealStageEvent(
        pipedrive_event_id=_event_counter,
        deal_id=deal_id,
        pipeline_id=pipeline_id,
        stage_id=stage_id,
        stage_name=f"Stage {stage_id}",
        entered_at=entered_at,
        left_at=left_at,
        duration_seconds=(
            int((left_at - entered_at).total_seconds()) if left_at else None
        ),
    )
    _db.session.add(ev)
    _db.session.commit()
    return ev


@pytest.fixture()
def make_config():
    return _make_config


@pytest.fixture()
def make_event():
    return _make_event
