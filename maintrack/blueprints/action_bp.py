"""
Action and session (ActionDate) endpoints.

Endpoints:
    POST   /api/v1/actions                               — action + first session (admin)
    PUT    /api/v1/actions/<id>                          — description / remarks (admin)
    DELETE /api/v1/actions/<id>                          — cascades to sessions and parts (admin)

    GET    /api/v1/actions/<id>/dates                    — sessions, newest first (user)
    POST   /api/v1/actions/<id>/dates                    — start again (user)
    PUT    /api/v1/actions/<id>/dates/<date_id>          — edit; reverting completion needs admin
    PUT    /api/v1/actions/<id>/dates/<date_id>/complete — mark latest completed (user)
    PUT    /api/v1/actions/<id>/dates/<date_id>/revert   — revert completion (admin)
    DELETE /api/v1/actions/<id>/dates/<date_id>          — delete session (admin)

A date_id that does not belong to the action in the URL is a 404.
"""

from flask import Blueprint

from maintrack.auth import current_identity, require_role
from maintrack.blueprints import parse_bool, parse_fields, parse_int
from maintrack.core.errors import validation
from maintrack.models.auth import Role
from maintrack.services.session_ledger import SessionLedger
from maintrack.services.work_order_aggregate import WorkOrderAggregate
from maintrack.utils.errors import api_error, api_ok
from maintrack.utils.helpers import json_body, parse_date, parse_time

action_bp = Blueprint("actions", __name__, url_prefix="/api/v1/actions")

_SESSION_PARSERS = {
    "action_date": parse_date,
    "start_time": parse_time,
    "end_time": parse_time,
    "is_completed": parse_bool,
}


# ── Actions ──────────────────────────────────────────────────────────────────


@action_bp.route("", methods=["POST"])
@require_role(Role.ADMIN)
def create_action():
    data = json_body()
    fields, err = parse_fields(data, {"finding_id": parse_int, **_SESSION_PARSERS})
    if err:
        return api_error(err)
    if not fields.get("finding_id"):
        return api_error(validation("A valid finding_id is required"))
    if not fields.get("action_date") or not fields.get("start_time"):
        return api_error(validation("finding_id, description, action_date and start_time are required"))

    action, err = WorkOrderAggregate().create_action(
        current_identity(),
        fields["finding_id"],
        data.get("description"),
        fields["action_date"],
        fields["start_time"],
        end_time=fields.get("end_time"),
        is_completed=fields.get("is_completed", False),
        remarks=data.get("remarks"),
    )
    if err:
        return api_error(err)
    return api_ok(action, status=201)


@action_bp.route("/<int:action_id>", methods=["PUT"])
@require_role(Role.ADMIN)
def update_action(action_id):
    action, err = WorkOrderAggregate().update_action(current_identity(), action_id, json_body())
    if err:
        return api_error(err)
    return api_ok(action)


@action_bp.route("/<int:action_id>", methods=["DELETE"])
@require_role(Role.ADMIN)
def delete_action(action_id):
    result, err = WorkOrderAggregate().delete_action(current_identity(), action_id)
    if err:
        return api_error(err)
    return api_ok(result, message="Action deleted successfully")


# ── Sessions ─────────────────────────────────────────────────────────────────


@action_bp.route("/<int:action_id>/dates", methods=["GET"])
@require_role(Role.USER)
def list_sessions(action_id):
    sessions, err = SessionLedger().list_sessions(current_identity(), action_id)
    if err:
        return api_error(err)
    return api_ok(sessions)


@action_bp.route("/<int:action_id>/dates", methods=["POST"])
@require_role(Role.USER)
def add_session(action_id):
    fields, err = parse_fields(json_body(), _SESSION_PARSERS)
    if err:
        return api_error(err)
    if not fields.get("action_date") or not fields.get("start_time"):
        return api_error(validation("Missing required fields: action_date, start_time"))

    session, err = SessionLedger().add_session(
        current_identity(),
        action_id,
        fields["action_date"],
        fields["start_time"],
        end_time=fields.get("end_time"),
        is_completed=fields.get("is_completed", False),
    )
    if err:
        return api_error(err)
    return api_ok(session, status=201)


@action_bp.route("/<int:action_id>/dates/<int:date_id>", methods=["PUT"])
@require_role(Role.USER)
def edit_session(action_id, date_id):
    fields, err = parse_fields(json_body(), _SESSION_PARSERS)
    if err:
        return api_error(err)
    session, err = SessionLedger().edit_session(current_identity(), date_id, fields, action_id=action_id)
    if err:
        return api_error(err)
    return api_ok(session)


@action_bp.route("/<int:action_id>/dates/<int:date_id>/complete", methods=["PUT"])
@require_role(Role.USER)
def mark_session_completed(action_id, date_id):
    session, err = SessionLedger().mark_latest_completed(current_identity(), date_id, action_id=action_id)
    if err:
        return api_error(err)
    return api_ok(session)


@action_bp.route("/<int:action_id>/dates/<int:date_id>/revert", methods=["PUT"])
@require_role(Role.ADMIN)
def revert_session_completion(action_id, date_id):
    session, err = SessionLedger().revert_completion(current_identity(), date_id, action_id=action_id)
    if err:
        return api_error(err)
    return api_ok(session)


@action_bp.route("/<int:action_id>/dates/<int:date_id>", methods=["DELETE"])
@require_role(Role.ADMIN)
def delete_session(action_id, date_id):
    result, err = SessionLedger().delete_session(current_identity(), date_id, action_id=action_id)
    if err:
        return api_error(err)
    return api_ok(result, message="Action date deleted successfully")
