"""
Pipedrive listing service.

Pipelines and stages change rarely and are slow to fetch, so both are read
through the cache (``PIPEDRIVE_TTL``). ``POST /cache/refresh`` drops them.
"""

import logging

from flowreport.integrations import pipedrive_adapter
from flowreport.integrations.pipedrive_gateway import pipedrive_gateway
from flowreport.services import cache_service

logger = logging.getLogger(__name__)


def list_pipelines():
    """Active and inactive pipelines, ordered as in Pipedrive."""
    def _load():
        pipelines = [pipedrive_adapter.to_pipeline(p) for p in pipedrive_gateway.list_pipelines()]
        pipelines.sort(key=lambda p: (p.order_nr, p.id))
        logger.info("Loaded %d pipelines from Pipedrive", len(pipelines))
        return [p.to_dict() for p in pipelines]

    return cache_service.get_cached(
        cache_service.PIPELINES_KEY, ttl=cache_service.PIPEDRIVE_TTL, loader=_load,
    )


def list_stages(pipeline_id=None):
    """Stages of one pipeline, or of all pipelines when *pipeline_id* is None."""
    def _load():
        stages = [pipedrive_adapter.to_stage(s) for s in pipedrive_gateway.list_stages(pipeline_id)]
        stages.sort(key=lambda s: (s.pipeline_id or 0, s.order_nr, s.id))
        logger.info("Loaded %d stages from Pipedrive (pipeline=%s)", len(stages), pipeline_id)
        return [s.to_dict() for s in stages]

    return cache_service.get_cached(
        cache_service.stages_key(pipeline_id), ttl=cache_service.PIPEDRIVE_TTL, loader=_load,
    )


def stage_pipeline_index():
    """``{stage_id: pipeline_id}`` across all pipelines."""
    return {s["id"]: s["pipeline_id"] for s in list_stages()}
