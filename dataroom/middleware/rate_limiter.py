"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in dataroom/__init__.py with no default
limits; this module applies granular limits per route category.

Public share-link routes get the strictest limit (SHARE_LINK_RATE_LIMIT).

Usage:
    from dataroom.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Public share links:  SHARE_LINK_RATE_LIMIT (default 30/minute)
        - Management routes:   60/minute
        - Access log reads:    200/minute
        - Health check:        exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    share_limit = app.config.get("SHARE_LINK_RATE_LIMIT", "30/minute")
    bp = app.blueprints.get("share_link")
    if bp:
        limiter.limit(share_limit)(bp)

    for bp_name in ("documents", "share_sessions", "approval"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    bp = app.blueprints.get("audit")
    if bp:
        limiter.limit(READ_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured: share links: %s, management: %s, audit: %s",
        share_limit, WRITE_LIMIT, READ_LIMIT,
    )
