"""
User administration blueprint (superadmin only).

Endpoints:
    GET    /api/v1/users
    POST   /api/v1/users
    PUT    /api/v1/users/<id>
    DELETE /api/v1/users/<id>
"""

from flask import Blueprint

from maintrack.auth import current_identity, require_role
from maintrack.models.auth import Role
from maintrack.services import user_service
from maintrack.utils.errors import api_error, api_ok
from maintrack.utils.helpers import json_body

user_bp = Blueprint("users", __name__, url_prefix="/api/v1/users")


@user_bp.route("", methods=["GET"])
@require_role(Role.SUPERADMIN)
def list_users():
    users, err = user_service.list_users(current_identity())
    if err:
        return api_error(err)
    return api_ok(users)


@user_bp.route("", methods=["POST"])
@require_role(Role.SUPERADMIN)
def create_user():
    user, err = user_service.create_user(current_identity(), json_body())
    if err:
        return api_error(err)
    return api_ok(user, status=201, message="User created successfully")


@user_bp.route("/<int:user_id>", methods=["PUT"])
@require_role(Role.SUPERADMIN)
def update_user(user_id):
    user, err = user_service.update_user(current_identity(), user_id, json_body())
    if err:
        return api_error(err)
    return api_ok(user, message="User updated successfully")


@user_bp.route("/<int:user_id>", methods=["DELETE"])
@require_role(Role.SUPERADMIN)
def delete_user(user_id):
    result, err = user_service.delete_user(current_identity(), user_id)
    if err:
        return api_error(err)
    return api_ok(result, message="User deleted successfully")
