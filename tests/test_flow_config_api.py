"""API tests for /api/v1/admin/flow-metrics-config (mapping CRUD)."""

import pytest

from flowreport.services import cache_service, flow_metrics_service

BASE = "/api/v1/admin/flow-metrics-config"


def _payload(**overrides):
    data = {
        "metric_key": "manufacturing",
        "display_title": "Manufacturing",
        "start_stage": {"id": 10, "name": "Order Placed", "pipeline_id": 1, "pipeline_name": "Sales"},
        "end_stage": {"id": 20, "name": "Built", "pipeline_id": 1, "pipeline_name": "Sales"},
        "avg_min_days": 2,
        "avg_max_days": 5,
    }
    data.update(overrides)
    return data


def _create(client, **overrides):
    res = client.post(BASE, json=_payload(**overrides))
    assert res.status_code == 201, res.get_json()
    return res.get_json()["data"]


class TestCreate:
    def test_create_defaults_canonical_stage_to_metric_key(self, client):
        cfg = _create(client)
        assert cfg["metric_key"] == "manufacturing"
        assert cfg["canonical_stage"] == "manufacturing"
        assert cfg["start_stage"]["id"] == 10
        assert cfg["is_active"] is True

    @pytest.mark.parametrize("overrides,field", [
        ({"metric_key": ""}, "metric_key"),
        ({"metric_key": "Bad Key"}, "metric_key"),
        ({"display_title": "  "}, "display_title"),
        ({"start_stage": None}, "start_stage"),
        ({"end_stage": {"id": 10}}, "end_stage"),
        ({"avg_min_days": -1}, "avg_min_days"),
        ({"avg_min_days": 6, "avg_max_days": 5}, "avg_min_days"),
        ({"avg_max_days": "five"}, "avg_max_days"),
    ])
    def test_validation_errors(self, client, overrides, field):
        res = client.post(BASE, json=_payload(**overrides))
        assert res.status_code == 400
        body = res.get_json()
        assert body["success"] is False
        assert field in body["details"]

    def test_duplicate_metric_key_conflicts(self, client):
        _create(client)
        res = client.post(BASE, json=_payload(canonical_stage="other"))
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"

    def test_duplicate_active_canonical_stage_conflicts(self, client):
        _create(client, canonical_stage="Manufacturing")
        res = client.post(BASE, json=_payload(metric_key="manufacturing-2", canonical_stage="Manufacturing"))
        assert res.status_code == 409

    def test_inactive_duplicate_canonical_stage_allowed(self, client):
        _create(client, canonical_stage="Manufacturing")
        cfg = _create(client, metric_key="manufacturing-old", canonical_stage="Manufacturing", is_active=False)
        assert cfg["is_active"] is False

    def test_cross_pipeline_is_a_warning(self, client):
        res = client.post(BASE, json=_payload(
            end_stage={"id": 55, "name": "Shipped", "pipeline_id": 2, "pipeline_name": "Fulfilment"},
        ))
        assert res.status_code == 201
        body = res.get_json()
        assert body["data"]["is_cross_pipeline"] is True
        assert "cross-pipeline" in body["warnings"][0]

    def test_non_json_body_rejected(self, client):
        res = client.post(BASE, data="metric_key=x", content_type="text/plain")
        assert res.status_code == 415


class TestReadUpdateDelete:
    def test_list_and_get(self, client):
        cfg = _create(client)
        _create(client, metric_key="delivery", is_active=False,
                start_stage={"id": 30}, end_stage={"id": 40})

        listed = client.get(BASE).get_json()["data"]
        assert {c["metric_key"] for c in listed} == {"manufacturing", "delivery"}
        active = client.get(f"{BASE}?active=true").get_json()["data"]
        assert [c["metric_key"] for c in active] == ["manufacturing"]

        got = client.get(f"{BASE}/{cfg['id']}").get_json()["data"]
        assert got["display_title"] == "Manufacturing"

    def test_get_missing_is_404(self, client):
        res = client.get(f"{BASE}/nope")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_patch_merges_and_validates(self, client):
        cfg = _create(client)
        res = client.patch(f"{BASE}/{cfg['id']}", json={"display_title": "Build", "avg_max_days": 9})
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["display_title"] == "Build"
        assert data["avg_max_days"] == 9
        assert data["avg_min_days"] == 2

        res = client.patch(f"{BASE}/{cfg['id']}", json={"avg_min_days": 10})
        assert res.status_code == 400

        res = client.patch(f"{BASE}/{cfg['id']}", json={"end_stage": {"id": 10}})
        assert res.status_code == 400

    def test_patch_metric_key_is_ignored(self, client):
        cfg = _create(client)
        data = client.patch(f"{BASE}/{cfg['id']}", json={"metric_key": "renamed", "comment": "x"}).get_json()["data"]
        assert data["metric_key"] == "manufacturing"

    def test_reactivating_into_duplicate_canonical_stage_conflicts(self, client):
        _create(client, canonical_stage="Manufacturing")
        old = _create(client, metric_key="manufacturing-old", canonical_stage="Manufacturing", is_active=False)
        res = client.patch(f"{BASE}/{old['id']}", json={"is_active": True})
        assert res.status_code == 409

    def test_delete_returns_record(self, client):
        cfg = _create(client)
        res = client.delete(f"{BASE}/{cfg['id']}")
        assert res.status_code == 200
        assert res.get_json()["data"]["metric_key"] == "manufacturing"
        assert client.get(f"{BASE}/{cfg['id']}").status_code == 404

    def test_comment_update(self, client):
        cfg = _create(client)
        res = client.patch(f"{BASE}/{cfg['id']}/comment", json={"comment": "  Supplier delays in May  "})
        assert res.get_json()["data"]["comment"] == "Supplier delays in May"
        res = client.patch(f"{BASE}/{cfg['id']}/comment", json={"comment": ""})
        assert res.get_json()["data"]["comment"] is None
        assert client.patch(f"{BASE}/{cfg['id']}/comment", json={}).status_code == 400


class TestReorder:
    def test_reorder(self, client):
        a = _create(client)
        b = _create(client, metric_key="delivery", start_stage={"id": 30}, end_stage={"id": 40})
        res = client.post(f"{BASE}/reorder", json={"reorder_data": [
            {"id": a["id"], "sort_order": 2},
            {"id": b["id"], "sort_order": 1},
        ]})
        assert res.status_code == 200
        assert [c["metric_key"] for c in res.get_json()["data"]] == ["delivery", "manufacturing"]

    @pytest.mark.parametrize("body", [
        {},
        {"reorder_data": []},
        {"reorder_data": [{"id": "x"}]},
        {"reorder_data": [{"id": "x", "sort_order": "1"}]},
    ])
    def test_reorder_validation(self, client, body):
        assert client.post(f"{BASE}/reorder", json=body).status_code == 400

    def test_reorder_unknown_id_changes_nothing(self, client):
        a = _create(client)
        res = client.post(f"{BASE}/reorder", json={"reorder_data": [
            {"id": a["id"], "sort_order": 7},
            {"id": "missing", "sort_order": 1},
        ]})
        assert res.status_code == 404
        assert client.get(f"{BASE}/{a['id']}").get_json()["data"]["sort_order"] == 0


class TestCacheInvalidation:
    def test_writes_invalidate_active_list(self, client):
        assert flow_metrics_service.list_active_configs() == []
        cfg = _create(client)
        assert [c["metric_key"] for c in flow_metrics_service.list_active_configs()] == ["manufacturing"]

        client.patch(f"{BASE}/{cfg['id']}", json={"is_active": False})
        assert flow_metrics_service.list_active_configs() == []

    def test_active_list_served_from_cache(self, client):
        _create(client)
        flow_metrics_service.list_active_configs()
        assert cache_service.get_cached(cache_service.ACTIVE_CONFIGS_KEY) is not None
