"""
Auth Blueprint — login, current user, password change.

Endpoints:
    POST /api/v1/auth/login            — username + password → access token (rate-limited)
    GET  /api/v1/auth/me               — current user
    PUT  /api/v1/auth/change-password  — change own password, clears first_login
"""

import logging

from flask import Blueprint

from maintrack.auth import current_identity, require_role
from maintrack.models.auth import Role
from maintrack.services import user_service
from maintrack.services.jwt_service import token_response
from maintrack.utils.errors import api_error, api_ok
from maintrack.utils.helpers import json_body

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")


@auth_bp.route("/login", methods=["POST"])
def login():
    data = json_body()
    user, err = user_service.authenticate(data.get("username"), data.get("password"))
    if err:
        return api_error(err)
    return api_ok(token_response(user))


@auth_bp.route("/me", methods=["GET"])
@require_role(Role.USER)
def me():
    user, err = user_service.get_user(current_identity())
    if err:
        return api_error(err)
    return api_ok(user)


@auth_bp.route("/change-password", methods=["PUT"])
@require_role(Role.USER)
def change_password():
    data = json_body()
    result, err = user_service.change_password(
        current_identity(), data.get("current_password"), data.get("new_password"),
    )
    if err:
        return api_error(err)
    return api_ok(result, message="Password changed successfully")
