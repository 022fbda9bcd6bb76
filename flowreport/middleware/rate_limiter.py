"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in flowreport/__init__.py with no default
limits; this module applies granular limits per route category.

Usage:
    from flowreport.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

READ_LIMIT = "200/minute"
CRM_LIMIT = "30/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Admin config writes:  ADMIN_WRITE_RATE_LIMIT (default 60/minute)
        - Pipedrive passthrough and sync:  30/minute (upstream quota)
        - Dashboard reads:      200/minute
        - Health checks:        exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    write_limit = app.config.get("ADMIN_WRITE_RATE_LIMIT", "60/minute")
    for bp_name in ("flow_config", "cache", "qr_ids"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(write_limit)(bp)

    bp = app.blueprints.get("pipedrive")
    if bp:
        limiter.limit(CRM_LIMIT)(bp)

    bp = app.blueprints.get("flow")
    if bp:
        limiter.limit(READ_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured: admin writes %s, pipedrive %s, reads %s",
        write_limit, CRM_LIMIT, READ_LIMIT,
    )
