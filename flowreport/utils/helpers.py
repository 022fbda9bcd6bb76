"""Shared utility functions for timestamps.

as_utc:          normalise naive / aware datetimes to aware UTC
parse_datetime:  ISO-8601 (incl. trailing "Z") or "YYYY-MM-DD HH:MM:SS" → aware UTC
"""
import logging
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


def utcnow():
    return datetime.now(timezone.utc)


def as_utc(value):
    """Return *value* as a timezone-aware UTC datetime.

    SQLite drops tzinfo on round-trip, so naive values read back from the
    store are treated as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value):
    """Parse a CRM timestamp string to an aware UTC datetime.

    Returns None for empty/invalid input. Supports:
    - 2024-05-01T08:30:00Z / 2024-05-01T08:30:00+02:00 (ISO)
    - 2024-05-01 08:30:00 (Pipedrive log_time, UTC)
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(text))
    except ValueError:
        pass
    try:
        return datetime.strptime(text, "%Y-%m-%d %H:%M:%S").replace(tzinfo=timezone.utc)
    except ValueError:
        logger.debug("Unparseable timestamp: %r", value)
        return None
