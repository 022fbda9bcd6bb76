"""
Period windows for dashboard filtering.

A period code names a trailing window ending "now":

    7d  → last 7 days        1m → last 30 days
    14d → last 14 days       3m → last 90 days

Anything else (including "all" and unknown codes) means "no filter".
"""

from datetime import timedelta

from flowreport.utils.helpers import as_utc, utcnow

PERIOD_DAYS: dict[str, int] = {
    "7d": 7,
    "14d": 14,
    "1m": 30,
    "3m": 90,
}

TIME_PERIODS: list[dict] = [
    {"value": "7d", "label": "7 days", "days": 7},
    {"value": "14d", "label": "14 days", "days": 14},
    {"value": "1m", "label": "1 month", "days": 30},
    {"value": "3m", "label": "3 months", "days": 90},
]

DEFAULT_PERIOD = "7d"


def window_for(period_code, now=None):
    """Return the inclusive ``(start, end)`` window for *period_code*.

    Returns None for unrecognised codes; callers treat that as "all deals".
    """
    days = PERIOD_DAYS.get((period_code or "").strip().lower())
    if days is None:
        return None
    end = as_utc(now) if now is not None else utcnow()
    return end - timedelta(days=days), end


def in_window(value, window):
    """True if *value* lies inside *window* (both ends inclusive)."""
    if window is None:
        return True
    start, end = window
    value = as_utc(value)
    return start <= value <= end
