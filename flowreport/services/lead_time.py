"""
Lead-time aggregation.

Pure functions over resolved deals; nothing here touches the database.

Two named conversions are kept apart on purpose:

    precise_days(seconds)  → days rounded to 2 decimals. Used for the
                             average and for best / worst comparison.
    display_days(days)     → whole days (half-up). Applied only when a
                             figure is rendered on a summary card.

Best / worst comparison never uses display values.
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from flowreport.services.periods import in_window, window_for

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class CanonicalStageDeal:
    """One deal's passage through a canonical stage."""

    deal_id: int
    start_date: object  # aware UTC datetime
    end_date: object
    duration_seconds: int

    def to_dict(self):
        return {
            "deal_id": self.deal_id,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "duration_seconds": self.duration_seconds,
        }


@dataclass(frozen=True)
class CalculatedMetrics:
    """Summary figures in precise days."""

    average: float = 0.0
    best: float = 0.0
    worst: float = 0.0
    total_deals: int = 0

    def to_dict(self):
        return {
            "average": self.average,
            "best": self.best,
            "worst": self.worst,
            "total_deals": self.total_deals,
        }

    def to_display(self):
        """Whole-day figures for KPI cards."""
        return {
            "average": display_days(self.average),
            "best": display_days(self.best),
            "worst": display_days(self.worst),
            "total_deals": self.total_deals,
        }


EMPTY_METRICS = CalculatedMetrics()


# ── Rounding ─────────────────────────────────────────────────────────────


def round_half_up(value, places=2):
    """Round like a spreadsheet: 2.5 → 3, 1.125 → 1.13 (not banker's rounding)."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def precise_days(duration_seconds):
    """Seconds → days, rounded to two decimals."""
    return round_half_up(duration_seconds / SECONDS_PER_DAY, 2)


def display_days(days):
    """Days → nearest whole day for display."""
    return int(round_half_up(days, 0))


# ── Aggregation ──────────────────────────────────────────────────────────


def filter_by_period(deals, period=None, now=None):
    """Keep deals whose ``start_date`` falls inside the period window.

    Unknown or missing period codes keep every deal.
    """
    window = window_for(period, now) if period else None
    if window is None:
        if period and period != "all":
            logger.debug("Unknown period code %r, not filtering", period)
        return list(deals)
    return [d for d in deals if in_window(d.start_date, window)]


def aggregate(deals, period=None, now=None):
    """Compute CalculatedMetrics for *deals*, optionally limited to *period*.

    Deals outside the window are dropped entirely, not zero-weighted.
    """
    selected = filter_by_period(deals, period, now)
    if not selected:
        return EMPTY_METRICS

    days = [precise_days(d.duration_seconds) for d in selected]
    average = round_half_up(sum(days) / len(days), 2)
    return CalculatedMetrics(
        average=average,
        best=min(days),
        worst=max(days),
        total_deals=len(days),
    )


def classify_deals(deals, metrics):
    """Return row dicts flagged ``is_best`` / ``is_worst`` for highlighting.

    Every deal tying the best (or worst) precise value is flagged. With an
    empty metric set nothing is flagged.
    """
    rows = []
    for deal in deals:
        days = precise_days(deal.duration_seconds)
        row = deal.to_dict()
        row["precise_days"] = days
        row["display_days"] = display_days(days)
        row["is_best"] = metrics.total_deals > 0 and days == metrics.best
        row["is_worst"] = metrics.total_deals > 0 and days == metrics.worst
        rows.append(row)
    return rows


# ── Threshold status ─────────────────────────────────────────────────────

STATUS_NO_DATA = "no-data"
STATUS_GOOD = "good"
STATUS_WARNING = "warning"
STATUS_CRITICAL = "critical"


def threshold_status(average, avg_min_days=None, avg_max_days=None):
    """Classify an average against the configured healthy range.

    no-data  — average is 0
    good     — no thresholds, inside [min, max], or below min
    critical — above max
    warning  — anything else (e.g. above min with no max set)

    A threshold of 0 is a real bound; only None means unset.
    """
    if not average:
        return STATUS_NO_DATA
    has_min = avg_min_days is not None
    has_max = avg_max_days is not None
    if not has_min and not has_max:
        return STATUS_GOOD
    if has_min and has_max and avg_min_days <= average <= avg_max_days:
        return STATUS_GOOD
    if has_min and average < avg_min_days:
        return STATUS_GOOD
    if has_max and average > avg_max_days:
        return STATUS_CRITICAL
    return STATUS_WARNING
