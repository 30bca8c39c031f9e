"""
Finding and spare-part endpoints (admin).

Endpoints:
    POST   /api/v1/findings          — body {work_order_id, description, reference_image?}
    PUT    /api/v1/findings/<id>     — body {description?, reference_image?}
    DELETE /api/v1/findings/<id>     — cascades to actions, sessions and spare parts

    POST   /api/v1/spare-parts       — body {action_id, part_name, part_number, quantity}
    DELETE /api/v1/spare-parts/<id>
"""

from flask import Blueprint

from maintrack.auth import current_identity, require_role
from maintrack.blueprints import parse_fields, parse_int
from maintrack.core.errors import validation
from maintrack.models.auth import Role
from maintrack.services.work_order_aggregate import WorkOrderAggregate
from maintrack.utils.errors import api_error, api_ok
from maintrack.utils.helpers import json_body

finding_bp = Blueprint("findings", __name__, url_prefix="/api/v1")


def _required_id(body: dict, field: str):
    ids, err = parse_fields(body, {field: parse_int})
    if err:
        return None, err
    value = ids.get(field)
    if not value or value <= 0:
        return None, validation(f"A valid {field} is required")
    return value, None


@finding_bp.route("/findings", methods=["POST"])
@require_role(Role.ADMIN)
def create_finding():
    data = json_body()
    work_order_id, err = _required_id(data, "work_order_id")
    if err:
        return api_error(err)
    finding, err = WorkOrderAggregate().create_finding(
        current_identity(), work_order_id, data.get("description"), data.get("reference_image"),
    )
    if err:
        return api_error(err)
    return api_ok(finding, status=201)


@finding_bp.route("/findings/<int:finding_id>", methods=["PUT"])
@require_role(Role.ADMIN)
def update_finding(finding_id):
    finding, err = WorkOrderAggregate().update_finding(current_identity(), finding_id, json_body())
    if err:
        return api_error(err)
    return api_ok(finding)


@finding_bp.route("/findings/<int:finding_id>", methods=["DELETE"])
@require_role(Role.ADMIN)
def delete_finding(finding_id):
    result, err = WorkOrderAggregate().delete_finding(current_identity(), finding_id)
    if err:
        return api_error(err)
    return api_ok(result, message="Finding deleted successfully")


# ── Spare parts ──────────────────────────────────────────────────────────────


@finding_bp.route("/spare-parts", methods=["POST"])
@require_role(Role.ADMIN)
def add_spare_part():
    data = json_body()
    action_id, err = _required_id(data, "action_id")
    if err:
        return api_error(err)
    part, err = WorkOrderAggregate().add_spare_part(
        current_identity(), action_id,
        data.get("part_name"), data.get("part_number"), data.get("quantity"),
    )
    if err:
        return api_error(err)
    return api_ok(part, status=201)


@finding_bp.route("/spare-parts/<int:part_id>", methods=["DELETE"])
@require_role(Role.ADMIN)
def delete_spare_part(part_id):
    result, err = WorkOrderAggregate().delete_spare_part(current_identity(), part_id)
    if err:
        return api_error(err)
    return api_ok(result, message="Spare part deleted successfully")
