"""Unit tests for flowreport.integrations.pipedrive_gateway and the payload adapter.

All HTTP goes through a MagicMock session injected into PipedriveGateway;
time.sleep is patched so retry backoff does not slow the suite.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
import requests

from flowreport.core.exceptions import ExternalServiceError
from flowreport.integrations import pipedrive_adapter
from flowreport.integrations.pipedrive_gateway import PipedriveGateway


def _response(status=200, body=None):
    resp = MagicMock()
    resp.status_code = status
    resp.ok = 200 <= status < 300
    resp.content = b"{}" if body is not None else b""
    resp.json.return_value = body
    resp.text = str(body)
    return resp


def _gateway(*responses):
    session = MagicMock()
    session.request.side_effect = list(responses)
    return PipedriveGateway(session=session, api_token="tok", base_url="https://pd.example/v1/"), session


class TestRequest:
    def test_token_and_url(self):
        gw, session = _gateway(_response(body={"success": True, "data": [{"id": 1}]}))
        assert gw.list_stages(pipeline_id=3) == [{"id": 1}]
        method, url = session.request.call_args.args
        assert (method, url) == ("GET", "https://pd.example/v1/stages")
        params = session.request.call_args.kwargs["params"]
        assert params == {"pipeline_id": 3, "api_token": "tok"}
        assert session.request.call_args.kwargs["timeout"] == 30

    @patch("flowreport.integrations.pipedrive_gateway.time.sleep")
    def test_retries_server_errors_then_succeeds(self, mock_sleep):
        gw, session = _gateway(
            _response(502, {"error": "bad gateway"}),
            _response(body={"success": True, "data": [{"id": 7, "name": "Sales"}]}),
        )
        assert gw.list_pipelines() == [{"id": 7, "name": "Sales"}]
        assert session.request.call_count == 2
        mock_sleep.assert_called_once_with(1)

    @patch("flowreport.integrations.pipedrive_gateway.time.sleep")
    def test_exhausted_retries_raise(self, mock_sleep):
        gw, session = _gateway(*[requests.ConnectionError("refused")] * 3)
        with pytest.raises(ExternalServiceError):
            gw.list_pipelines()
        assert session.request.call_count == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [1, 4]

    @patch("flowreport.integrations.pipedrive_gateway.time.sleep")
    def test_client_errors_are_not_retried(self, mock_sleep):
        gw, session = _gateway(_response(401, {"error": "unauthorized"}))
        with pytest.raises(ExternalServiceError) as exc_info:
            gw.list_pipelines()
        assert exc_info.value.status_code == 401
        assert session.request.call_count == 1
        mock_sleep.assert_not_called()

    def test_missing_token_fails_without_calling(self, monkeypatch):
        monkeypatch.delenv("PIPEDRIVE_API_TOKEN", raising=False)
        session = MagicMock()
        gw = PipedriveGateway(session=session)
        result = gw.request("GET", "/pipelines")
        assert not result.ok
        assert "PIPEDRIVE_API_TOKEN" in result.error
        session.request.assert_not_called()

    def test_unsuccessful_envelope_is_an_error(self):
        gw, _ = _gateway(_response(body={"success": False, "error": "nope"}))
        with pytest.raises(ExternalServiceError):
            gw.list_stages()

    def test_deal_flow_404_is_empty(self):
        gw, session = _gateway(_response(404, {"success": False}))
        assert gw.get_deal_flow(42) == []
        assert session.request.call_args.args[1].endswith("/deals/42/flow")


def _stage_change(event_id, deal_id, new_stage, ts, name=None):
    return {
        "object": "dealChange",
        "timestamp": ts,
        "data": {
            "id": event_id,
            "item_id": deal_id,
            "field_key": "stage_id",
            "old_value": "1",
            "new_value": str(new_stage),
            "additional_data": {"new_value_formatted": name} if name else {},
        },
    }


class TestAdapter:
    def test_only_stage_changes_are_extracted(self):
        flow = [
            {"object": "note", "timestamp": "2024-05-01 08:00:00", "data": {"id": 1}},
            {"object": "dealChange", "timestamp": "2024-05-01 08:00:00",
             "data": {"id": 2, "item_id": 5, "field_key": "value", "new_value": "100"}},
            _stage_change(3, 5, 20, "2024-05-03 10:00:00", "Built"),
            _stage_change(4, 5, 10, "2024-05-01 09:00:00"),
        ]
        changes = pipedrive_adapter.extract_stage_changes(flow)
        assert [c.event_id for c in changes] == [4, 3]  # oldest first
        assert changes[0].stage_name == "Stage 10"
        assert changes[1].stage_name == "Built"
        assert changes[0].entered_at == datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)

    def test_incomplete_change_is_skipped(self):
        bad = _stage_change(9, 5, 20, None)
        assert pipedrive_adapter.to_stage_change(bad) is None

    def test_stage_and_pipeline_dtos(self):
        stage = pipedrive_adapter.to_stage({"id": "12", "name": "Quote", "pipeline_id": 2, "order_nr": 3})
        assert stage.to_dict() == {"id": 12, "name": "Quote", "pipeline_id": 2,
                                   "pipeline_name": None, "order_nr": 3}
        pipeline = pipedrive_adapter.to_pipeline({"id": 2, "name": "Sales", "active": False})
        assert pipeline.active is False


def _page(data, more, next_start=None):
    pagination = {"more_items_in_collection": more}
    if next_start is not None:
        pagination["next_start"] = next_start
    return _response(body={"success": True, "data": data,
                           "additional_data": {"pagination": pagination}})


class TestPagination:
    def test_deal_flow_follows_next_start(self):
        gw, session = _gateway(
            _page([{"id": 1}, {"id": 2}], more=True, next_start=500),
            _page([{"id": 3}], more=False),
        )
        assert gw.get_deal_flow(42) == [{"id": 1}, {"id": 2}, {"id": 3}]
        params = [c.kwargs["params"] for c in session.request.call_args_list]
        assert [(p["start"], p["limit"]) for p in params] == [(0, 500), (500, 500)]

    def test_failure_on_later_page_raises(self):
        gw, _ = _gateway(
            _page([{"id": 1}], more=True, next_start=500),
            _response(403, {"error": "forbidden"}),
        )
        with pytest.raises(ExternalServiceError):
            gw.get_deal_flow(42)

    def test_missing_next_start_advances_by_page_size(self):
        gw, session = _gateway(
            _page([{"id": 1}], more=True),
            _page([], more=False),
        )
        gw.get_deal_flow(42)
        assert session.request.call_args_list[1].kwargs["params"]["start"] == 500

    def test_deals_updated_since_stops_at_cutoff(self):
        gw, session = _gateway(
            _page([
                {"id": 9, "update_time": "2024-05-09 08:00:00"},
                {"id": 8, "update_time": "2024-05-05 00:00:00"},
                {"id": 7, "update_time": "2024-05-01 10:00:00"},
            ], more=True, next_start=500),
        )
        since = datetime(2024, 5, 5, tzinfo=timezone.utc)
        assert [d["id"] for d in gw.list_deals_updated_since(since)] == [9, 8]
        assert session.request.call_count == 1
        method, url = session.request.call_args.args
        assert url.endswith("/deals")
        assert session.request.call_args.kwargs["params"]["sort"] == "update_time DESC"

    def test_deals_updated_since_reads_every_recent_page(self):
        gw, session = _gateway(
            _page([{"id": 9, "update_time": "2024-05-09 08:00:00"}], more=True, next_start=500),
            _page([{"id": 8, "update_time": "2024-05-08 08:00:00"}], more=False),
        )
        since = datetime(2024, 5, 1, tzinfo=timezone.utc)
        assert [d["id"] for d in gw.list_deals_updated_since(since)] == [9, 8]
        assert session.request.call_count == 2
