"""
User Service — login, password change, superadmin user administration.
"""

from __future__ import annotations

import logging

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError

from maintrack.auth import Identity, check_role
from maintrack.core.errors import Result, conflict, forbidden, not_found, unauthenticated, validation
from maintrack.models import db
from maintrack.models.auth import ROLE_NAMES, Role, User
from maintrack.utils.crypto import hash_password, verify_password

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


def _hash(plain: str) -> str:
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12) if has_app_context() else 12
    return hash_password(plain, rounds=rounds)


def _find_by_username(username: str) -> User | None:
    return User.query.filter_by(username=username).first()


def _check_password(password) -> str | None:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        return f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
    return None


# ═══════════════════════════════════════════════════════════════
# Authentication
# ═══════════════════════════════════════════════════════════════
def authenticate(username: str, password: str) -> Result[User]:
    """Check credentials.  Unknown user and wrong password look the same."""
    username = (username or "").strip()
    if not username or not password:
        return None, validation("Username and password are required")
    user = _find_by_username(username)
    if user is None or not verify_password(password, user.password_hash):
        logger.warning("Failed login for username %r", username)
        return None, unauthenticated("Invalid username or password")
    logger.info("User logged in", extra={"user_id": user.id})
    return user, None


def get_user(identity: Identity) -> Result[dict]:
    user = db.session.get(User, identity.user_id)
    if user is None:
        return None, not_found("User", identity.user_id)
    return user.to_dict(), None


def change_password(identity: Identity, current_password: str, new_password: str) -> Result[dict]:
    """Change the caller's own password; clears first_login."""
    user = db.session.get(User, identity.user_id)
    if user is None:
        return None, not_found("User", identity.user_id)
    if not current_password or not new_password:
        return None, validation("Current password and new password are required")
    msg = _check_password(new_password)
    if msg:
        return None, validation(msg)
    if not verify_password(current_password, user.password_hash):
        return None, validation("Current password is incorrect")

    user.password_hash = _hash(new_password)
    user.first_login = False
    db.session.commit()
    logger.info("Password changed", extra={"user_id": user.id})
    return user.to_dict(), None


# ═══════════════════════════════════════════════════════════════
# User administration (superadmin)
# ═══════════════════════════════════════════════════════════════
def list_users(identity: Identity) -> Result[list[dict]]:
    err = check_role(identity, Role.SUPERADMIN, "list_users")
    if err:
        return None, err
    users = User.query.order_by(User.created_at.desc(), User.id.desc()).all()
    return [u.to_dict() for u in users], None


def create_user(identity: Identity, data: dict) -> Result[dict]:
    err = check_role(identity, Role.SUPERADMIN, "create_user")
    if err:
        return None, err

    username = (data.get("username") or "").strip()
    first_name = (data.get("first_name") or "").strip()
    last_name = (data.get("last_name") or "").strip()
    password = data.get("password")
    if not username or not first_name or not last_name or not password:
        return None, validation("username, first_name, last_name and password are required")
    msg = _check_password(password)
    if msg:
        return None, validation(msg)
    role = Role.parse(data.get("role") or Role.USER.label)
    if role is None:
        return None, validation(f"Invalid role. Must be one of: {', '.join(ROLE_NAMES)}")
    if _find_by_username(username):
        return None, conflict("Username already exists", username=username)

    user = User(
        username=username,
        first_name=first_name,
        last_name=last_name,
        password_hash=_hash(password),
        first_login=True,
    )
    user.role = role
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return None, conflict("Username already exists", username=username)

    logger.info("User %s created with role %s", username, role.label, extra={"user_id": identity.user_id})
    return user.to_dict(), None


def update_user(identity: Identity, user_id: int, data: dict) -> Result[dict]:
    """Update names, role and/or password.  A new password re-arms first_login."""
    err = check_role(identity, Role.SUPERADMIN, "update_user")
    if err:
        return None, err
    user = db.session.get(User, user_id)
    if user is None:
        return None, not_found("User", user_id)

    changes = {}
    for field in ("first_name", "last_name"):
        if field in data:
            value = (data.get(field) or "").strip()
            if not value:
                return None, validation(f"{field} cannot be empty")
            changes[field] = value
    if "role" in data:
        role = Role.parse(data.get("role"))
        if role is None:
            return None, validation(f"Invalid role. Must be one of: {', '.join(ROLE_NAMES)}")
        changes["role"] = role
    if data.get("password"):
        msg = _check_password(data["password"])
        if msg:
            return None, validation(msg)
        changes["password_hash"] = _hash(data["password"])
        changes["first_login"] = True

    for key, value in changes.items():
        setattr(user, key, value)
    db.session.commit()
    logger.info("User %s updated", user.username, extra={"user_id": identity.user_id})
    return user.to_dict(), None


def delete_user(identity: Identity, user_id: int) -> Result[dict]:
    err = check_role(identity, Role.SUPERADMIN, "delete_user")
    if err:
        return None, err
    if user_id == identity.user_id:
        return None, forbidden("You cannot delete your own account")
    user = db.session.get(User, user_id)
    if user is None:
        return None, not_found("User", user_id)
    username = user.username
    db.session.delete(user)
    db.session.commit()
    logger.info("User %s deleted", username, extra={"user_id": identity.user_id})
    return {"id": user_id, "username": username}, None


def seed_superadmin(username: str, password: str, first_name="Super", last_name="Admin") -> User:
    """Create the bootstrap superadmin, or reset its password and role."""
    user = _find_by_username(username)
    if user is None:
        user = User(username=username, first_name=first_name, last_name=last_name)
        db.session.add(user)
    user.password_hash = _hash(password)
    user.role = Role.SUPERADMIN
    db.session.commit()
    return user
