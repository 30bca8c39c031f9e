"""
Maintenance Work Order Tracker
Authorization gate.

Provides:
    - Identity:          the resolved caller (user id, username, current role)
    - resolve():         credential → Identity, or UNAUTHENTICATED
    - authorize():       credential + minimum role → Identity, or UNAUTHENTICATED / FORBIDDEN
    - check_role():      role floor for an already-resolved Identity (used by services)
    - require_role():    route decorator; resolves g.identity once per request

Security model:
    - Credentials are HS256 JWT access tokens (maintrack.services.jwt_service).
    - Lookup order: Authorization: Bearer, X-Access-Token header, `token` cookie.
    - The role that counts is the user's CURRENT stored role, not the token
      claim, so demotions and deletions take effect immediately.
    - Role ordering: user(0) < admin(1) < superadmin(2).
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import Optional

import jwt as pyjwt
from flask import g, request

from maintrack.core.errors import Result, ServiceError, forbidden, unauthenticated
from maintrack.models import db
from maintrack.models.auth import Role, User
from maintrack.services.jwt_service import decode_access_token
from maintrack.utils.errors import api_error

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    user_id: int
    username: str
    role: Role

    def at_least(self, minimum: Role) -> bool:
        return role_at_least(self.role, minimum)


def role_at_least(role: Role, minimum: Role) -> bool:
    """Explicit ordering check: user < admin < superadmin."""
    return int(role) >= int(minimum)


# ── Credential resolution ────────────────────────────────────────────────────


def credential_from_request() -> Optional[str]:
    """Extract the bearer credential from the current request, if any."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[len("Bearer "):].strip()
        if token:
            return token
    token = request.headers.get("X-Access-Token", "").strip()
    if token:
        return token
    return request.cookies.get("token") or None


def resolve(credential: Optional[str]) -> Result[Identity]:
    """Resolve a credential to the caller's Identity.

    Returns:
        (Identity, None) on success.
        (None, UNAUTHENTICATED) when the credential is absent, malformed,
        expired, or names a user that no longer exists.
    """
    if not credential:
        return None, unauthenticated()
    try:
        payload = decode_access_token(credential)
    except pyjwt.ExpiredSignatureError:
        return None, unauthenticated("Token expired")
    except pyjwt.InvalidTokenError:
        return None, unauthenticated()

    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        return None, unauthenticated()

    user = db.session.get(User, user_id)
    if user is None:
        return None, unauthenticated()
    return Identity(user_id=user.id, username=user.username, role=user.role), None


def check_role(identity: Identity, minimum: Role, operation: str = "") -> ServiceError | None:
    """Return FORBIDDEN when *identity* is below *minimum*, else None."""
    if identity.at_least(minimum):
        return None
    logger.warning(
        "User %s denied: role '%s' below '%s' for %s",
        identity.user_id, identity.role.label, minimum.label, operation or "operation",
    )
    return forbidden(required_role=minimum.label)


def authorize(credential: Optional[str], minimum: Role) -> Result[Identity]:
    """Resolve *credential* and enforce *minimum* role in one step."""
    identity, err = resolve(credential)
    if err:
        return None, err
    err = check_role(identity, minimum)
    if err:
        return None, err
    return identity, None


# ── Route protection ─────────────────────────────────────────────────────────


def current_identity() -> Identity:
    """Identity stored by require_role(); only valid inside a protected view."""
    return g.identity


def require_role(minimum: Role):
    """
    Decorator: require an authenticated caller with at least *minimum* role.

    Usage:
        @bp.route("/work-orders/<int:wo_id>/approve", methods=["PUT"])
        @require_role(Role.ADMIN)
        def approve(wo_id):
            identity = current_identity()
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            identity = getattr(g, "identity", None)
            if identity is None:
                identity, err = resolve(credential_from_request())
                if err:
                    return api_error(err)
                g.identity = identity
            err = check_role(identity, minimum, f.__name__)
            if err:
                return api_error(err)
            return f(*args, **kwargs)
        return decorated
    return decorator
