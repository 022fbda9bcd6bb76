"""Tests for flowreport.services.stage_resolver.

Stage events are created directly through the ORM (make_event fixture);
store failures are simulated by patching the session execute call.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from flowreport.core.exceptions import DataUnavailableError
from flowreport.models import db
from flowreport.services import stage_resolver
from flowreport.services.lead_time import aggregate

T0 = datetime(2024, 6, 1, 9, 0, 0, tzinfo=timezone.utc)
DAY = timedelta(days=1)


def test_no_mapping_returns_empty_with_reason():
    result = stage_resolver.resolve_with_reason("does-not-exist")
    assert result.deals == []
    assert result.reason == stage_resolver.REASON_NO_MAPPING
    assert result.message == stage_resolver.NO_DEALS_MESSAGE
    assert aggregate(result.deals).to_dict() == {
        "average": 0.0, "best": 0.0, "worst": 0.0, "total_deals": 0,
    }


def test_inactive_mapping_is_ignored(make_config, make_event):
    make_config("manufacturing", is_active=False)
    make_event(1, 10, T0)
    make_event(1, 20, T0 + DAY)
    assert stage_resolver.resolve("manufacturing") == []


def test_pairs_start_and_end_per_deal(make_config, make_event):
    make_config("manufacturing", start_stage_id=10, end_stage_id=20)
    make_event(1, 10, T0)
    make_event(1, 20, T0 + 3 * DAY)
    make_event(2, 10, T0 + DAY)
    make_event(2, 20, T0 + 2 * DAY)
    make_event(3, 10, T0)  # never reached the end stage

    deals = stage_resolver.resolve("manufacturing")
    assert [d.deal_id for d in deals] == [1, 2]  # most recent end_date first
    assert deals[0].duration_seconds == 3 * 86400
    assert deals[1].duration_seconds == 86400


def test_duration_is_end_minus_start_not_stage_dwell(make_config, make_event):
    make_config("manufacturing")
    # the start event's own dwell time is 1 hour; the canonical stage spans 5 days
    make_event(1, 10, T0, left_at=T0 + timedelta(hours=1))
    make_event(1, 20, T0 + 5 * DAY)

    (deal,) = stage_resolver.resolve("manufacturing")
    assert deal.duration_seconds == int((deal.end_date - deal.start_date).total_seconds())
    assert deal.duration_seconds == 5 * 86400


def test_repeated_stages_use_earliest_start_and_first_end_after_it(make_config, make_event):
    make_config("manufacturing")
    make_event(1, 10, T0 + 2 * DAY)
    make_event(1, 10, T0)            # earliest start wins
    make_event(1, 20, T0 + 4 * DAY)
    make_event(1, 20, T0 + 9 * DAY)

    (deal,) = stage_resolver.resolve("manufacturing")
    assert deal.start_date == T0
    assert deal.end_date == T0 + 4 * DAY


def test_unused_start_stage_id_yields_empty_list(make_config, make_event):
    make_config("manufacturing", start_stage_id=999)
    make_event(1, 10, T0)
    make_event(1, 20, T0 + DAY)

    result = stage_resolver.resolve_with_reason("manufacturing")
    assert result.deals == []
    assert result.reason == stage_resolver.REASON_OK


def test_malformed_event_is_excluded_and_counted(make_config, make_event, caplog):
    make_config("manufacturing")
    make_event(1, 10, T0, left_at=T0 - timedelta(hours=2))  # left before entering
    make_event(1, 20, T0 + DAY)
    make_event(2, 10, T0)
    make_event(2, 20, T0 + 2 * DAY)

    with caplog.at_level("WARNING", logger="flowreport.services.stage_resolver"):
        result = stage_resolver.resolve_with_reason("manufacturing")

    assert [d.deal_id for d in result.deals] == [2]
    assert result.skipped_malformed == 1
    assert "Malformed stage event" in caplog.text


def test_end_before_start_is_excluded(make_config, make_event):
    make_config("manufacturing")
    make_event(1, 20, T0)
    make_event(1, 10, T0 + DAY)

    result = stage_resolver.resolve_with_reason("manufacturing")
    assert result.deals == []
    assert result.skipped_malformed == 1


def test_zero_duration_deal_is_kept(make_config, make_event):
    make_config("manufacturing")
    make_event(1, 10, T0)
    make_event(1, 20, T0)

    (deal,) = stage_resolver.resolve("manufacturing")
    assert deal.duration_seconds == 0


def test_resolve_by_metric_key(make_config, make_event):
    make_config("order-to-cash", canonical_stage="Order to Cash")
    make_event(1, 10, T0)
    make_event(1, 20, T0 + DAY)

    assert len(stage_resolver.resolve_for_metric("order-to-cash").deals) == 1
    assert len(stage_resolver.resolve("Order to Cash")) == 1


@pytest.mark.parametrize("start_id,end_id", [(None, 20), (10, None), (10, 10)])
def test_incomplete_mapping(start_id, end_id):
    result = stage_resolver.resolve_stage_pair(start_id, end_id)
    assert result.deals == []
    assert result.reason == stage_resolver.REASON_INCOMPLETE_MAPPING


def test_store_failure_raises_data_unavailable(make_config):
    make_config("manufacturing")
    with patch.object(db.session, "execute", side_effect=OperationalError("SELECT", {}, Exception("down"))):
        with pytest.raises(DataUnavailableError):
            stage_resolver.resolve("manufacturing")


def test_event_query_failure_raises_data_unavailable():
    with patch.object(db.session, "execute", side_effect=OperationalError("SELECT", {}, Exception("down"))):
        with pytest.raises(DataUnavailableError) as exc_info:
            stage_resolver.resolve_stage_pair(10, 20)
    assert exc_info.value.source == "stage_events"
