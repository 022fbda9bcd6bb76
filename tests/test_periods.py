"""Tests for period window resolution."""

from datetime import datetime, timedelta, timezone

import pytest

from flowreport.services.periods import PERIOD_DAYS, in_window, window_for

NOW = datetime(2024, 6, 30, 12, 0, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("code,days", [("7d", 7), ("14d", 14), ("1m", 30), ("3m", 90)])
def test_known_codes(code, days):
    start, end = window_for(code, now=NOW)
    assert end == NOW
    assert end - start == timedelta(days=days)
    assert PERIOD_DAYS[code] == days


@pytest.mark.parametrize("code", ["all", "", None, "2y", "7D "])
def test_unknown_codes_mean_no_filter(code):
    if code == "7D ":
        # case and whitespace are tolerated
        assert window_for(code, now=NOW) is not None
    else:
        assert window_for(code, now=NOW) is None


def test_window_is_inclusive_on_both_ends():
    window = window_for("7d", now=NOW)
    assert in_window(NOW, window)
    assert in_window(NOW - timedelta(days=7), window)
    assert not in_window(NOW - timedelta(days=7, seconds=1), window)
    assert not in_window(NOW + timedelta(seconds=1), window)


def test_naive_values_are_treated_as_utc():
    window = window_for("7d", now=NOW)
    assert in_window(datetime(2024, 6, 29), window)


def test_no_window_accepts_everything():
    assert in_window(datetime(1999, 1, 1, tzinfo=timezone.utc), None)
