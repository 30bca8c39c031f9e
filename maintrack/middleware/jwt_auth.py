"""
JWT Auth Middleware — resolves the request credential into g.identity.

Runs before every /api/v1/* request (except the skip list) so that the
caller identity is available to request logging.  It never blocks: routes
declare their own role floor with maintrack.auth.require_role, which
returns 401 / 403 when g.identity is missing or too weak.
"""

from flask import g, request

from maintrack.auth import credential_from_request, resolve


# Paths that skip JWT resolution entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.identity = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        credential = credential_from_request()
        if not credential:
            return  # require_role decides

        identity, _err = resolve(credential)
        g.identity = identity
