"""
Rate limiting configuration.

The Limiter instance is created in maintrack/__init__.py with no default
limits.  This module applies the login throttle (LOGIN_RATE_LIMIT, per
remote IP) and exempts the health check.

Rate limiting is disabled in testing mode (RATELIMIT_ENABLED=False).

Usage:
    from maintrack.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

LOGIN_ENDPOINT = "auth.login"


def init_rate_limits(app, limiter):
    """Apply per-route limits once blueprints are registered."""
    login_limit = app.config.get("LOGIN_RATE_LIMIT", "10 per minute")

    view = app.view_functions.get(LOGIN_ENDPOINT)
    if view is not None:
        app.view_functions[LOGIN_ENDPOINT] = limiter.limit(login_limit)(view)

    # Health check is never throttled
    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    if not app.config.get("TESTING"):
        app.logger.info("Rate limiter configured — login: %s", login_limit)
