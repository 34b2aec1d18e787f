"""
Rate limiting configuration.

Applies per-route rate limits using Flask-Limiter.
The Limiter instance is created in stage_engine/__init__.py with no default
limits; this module applies granular limits per route category.

Usage:
    from stage_engine.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

# Round create/delete are the only expensive, user-triggered mutations
_ROUND_ENDPOINTS = ("stage_bp.start_round", "stage_bp.delete_round")

DEFAULT_WRITE_LIMIT = "120/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API routes.

    Limits (per remote IP):
        - Round create/delete:  ROUND_RATE_LIMIT (default 30/minute)
        - Other stage routes:   120/minute
        - Health check:         exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    round_limit = app.config.get("ROUND_RATE_LIMIT", "30/minute")
    for endpoint in _ROUND_ENDPOINTS:
        view = app.view_functions.get(endpoint)
        if view:
            limiter.limit(round_limit)(view)

    bp = app.blueprints.get("stage_bp")
    if bp:
        limiter.limit(DEFAULT_WRITE_LIMIT)(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured (rounds: %s, stage routes: %s)",
                    round_limit, DEFAULT_WRITE_LIMIT)
