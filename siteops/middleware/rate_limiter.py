"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter. The Limiter
instance is created in siteops/__init__.py with no default limits; this
module applies limits per blueprint category.

Usage:
    from siteops.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"

# Blueprints whose traffic is mostly mutations.
WRITE_BLUEPRINTS = (
    "stock_orders", "purchasing", "proposals", "rams", "toolbox",
    "scheduler", "admin",
)
# Blueprints that are mostly lookups / list screens.
READ_BLUEPRINTS = ("core", "stock", "my_toolbox")


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints (keyed by remote IP).

        - Write blueprints: 60/minute
        - Read blueprints:  200/minute
        - Health check:     exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in WRITE_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    for bp_name in READ_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(READ_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured, write: %s, read: %s", WRITE_LIMIT, READ_LIMIT)
