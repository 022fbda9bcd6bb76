"""
Pipedrive payload adapter.

Maps raw Pipedrive JSON to small typed DTOs at the ingestion boundary, so
nothing downstream reaches into CRM field names.

A deal "flow" contains many kinds of events (notes, activities, field
changes). Only ``dealChange`` events whose ``data.field_key`` is
``"stage_id"`` are stage changes.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime

from flowreport.utils.helpers import parse_datetime

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineDTO:
    id: int
    name: str
    active: bool = True
    order_nr: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class StageDTO:
    id: int
    name: str
    pipeline_id: int | None = None
    pipeline_name: str | None = None
    order_nr: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class StageChangeDTO:
    event_id: int
    deal_id: int
    stage_id: int
    stage_name: str
    entered_at: datetime
    old_stage_id: int | None = None


def _to_int(value) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def to_pipeline(raw: dict) -> PipelineDTO:
    return PipelineDTO(
        id=int(raw["id"]),
        name=raw.get("name") or f"Pipeline {raw['id']}",
        active=bool(raw.get("active", True)),
        order_nr=_to_int(raw.get("order_nr")) or 0,
    )


def to_stage(raw: dict) -> StageDTO:
    return StageDTO(
        id=int(raw["id"]),
        name=raw.get("name") or f"Stage {raw['id']}",
        pipeline_id=_to_int(raw.get("pipeline_id")),
        pipeline_name=raw.get("pipeline_name"),
        order_nr=_to_int(raw.get("order_nr")) or 0,
    )


def is_stage_change(event: dict) -> bool:
    return (
        isinstance(event, dict)
        and event.get("object") == "dealChange"
        and (event.get("data") or {}).get("field_key") == "stage_id"
    )


def to_stage_change(event: dict) -> StageChangeDTO | None:
    """Map one flow event; None if it is not a usable stage change."""
    if not is_stage_change(event):
        return None
    data = event["data"]
    extra = data.get("additional_data") or {}

    stage_id = _to_int(data.get("new_value"))
    deal_id = _to_int(data.get("item_id"))
    entered_at = parse_datetime(event.get("timestamp") or data.get("log_time"))
    event_id = _to_int(data.get("id"))
    if stage_id is None or deal_id is None or entered_at is None or event_id is None:
        logger.warning("Skipping incomplete stage change event: %s", data.get("id"))
        return None

    return StageChangeDTO(
        event_id=event_id,
        deal_id=deal_id,
        stage_id=stage_id,
        stage_name=extra.get("new_value_formatted") or f"Stage {stage_id}",
        entered_at=entered_at,
        old_stage_id=_to_int(data.get("old_value")),
    )


def extract_stage_changes(flow: list[dict]) -> list[StageChangeDTO]:
    """Stage changes from a deal flow, oldest first."""
    changes = [c for c in (to_stage_change(e) for e in flow or []) if c is not None]
    changes.sort(key=lambda c: (c.entered_at, c.event_id))
    return changes
