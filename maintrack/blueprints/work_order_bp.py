"""
Work Order Blueprint — CRUD and lifecycle transitions.

Endpoints:
    POST   /api/v1/work-orders                             — create (user)
    GET    /api/v1/work-orders?status=pending,ongoing|all  — list (user)
    GET    /api/v1/work-orders/completion-requests         — pending completion approvals (admin)
    GET    /api/v1/work-orders/stats                       — counts per status + total (user)
    GET    /api/v1/work-orders/<id>                        — nested detail (user)
    PUT    /api/v1/work-orders/<id>                        — header edit (admin)
    DELETE /api/v1/work-orders/<id>                        — delete with children (admin)

    PUT    /api/v1/work-orders/<id>/approve                — pending → ongoing (admin)
    PUT    /api/v1/work-orders/<id>/reject                 — pending → rejected, body {reason} (admin)
    PUT    /api/v1/work-orders/<id>/resubmit               — rejected → pending (creator)
    PUT    /api/v1/work-orders/<id>/complete               — body {work_completed_date} (user)
    PUT    /api/v1/work-orders/<id>/approve-completion     — body {approved, rejection_reason?}
                                                             approved=true needs superadmin,
                                                             approved=false needs admin
"""

import logging

from flask import Blueprint, request

from maintrack.auth import current_identity, require_role
from maintrack.blueprints import parse_fields, parse_int
from maintrack.core.errors import validation
from maintrack.models.auth import Role
from maintrack.models.work_order import WorkOrderStatus
from maintrack.services.work_order_lifecycle import WorkOrderLifecycle
from maintrack.utils.errors import api_error, api_ok
from maintrack.utils.helpers import json_body, parse_date, parse_datetime

logger = logging.getLogger(__name__)

work_order_bp = Blueprint("work_orders", __name__, url_prefix="/api/v1/work-orders")

_HEADER_PARSERS = {
    "work_order_no": None,
    "work_order_date": parse_date,
    "equipment_number": None,
    "km_hrs": parse_int,
    "requested_by": None,
    "work_type": None,
    "job_allocation_time": parse_datetime,
    "description": None,
    "reference_document": None,
}


def _lifecycle():
    return WorkOrderLifecycle()


def _parse_statuses(raw):
    """'pending,ongoing' → [WorkOrderStatus, ...]; '' / 'all' → None."""
    if not raw or raw.strip().lower() == "all":
        return None, None
    statuses = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        status = WorkOrderStatus.parse(part)
        if status is None:
            return None, validation(
                f"Invalid status '{part}'",
                allowed=[s.value for s in WorkOrderStatus],
            )
        statuses.append(status)
    return statuses or None, None


# ── CRUD ─────────────────────────────────────────────────────────────────────


@work_order_bp.route("", methods=["POST"])
@require_role(Role.USER)
def create_work_order():
    fields, err = parse_fields(json_body(), _HEADER_PARSERS)
    if err:
        return api_error(err)
    wo, err = _lifecycle().create(current_identity(), fields)
    if err:
        return api_error(err)
    return api_ok(wo, status=201, message="Work order created successfully")


@work_order_bp.route("", methods=["GET"])
@require_role(Role.USER)
def list_work_orders():
    statuses, err = _parse_statuses(request.args.get("status", ""))
    if err:
        return api_error(err)
    items, err = _lifecycle().list_work_orders(current_identity(), statuses)
    if err:
        return api_error(err)
    return api_ok(items)


@work_order_bp.route("/completion-requests", methods=["GET"])
@require_role(Role.ADMIN)
def list_completion_requests():
    items, err = _lifecycle().list_completion_requests(current_identity())
    if err:
        return api_error(err)
    return api_ok(items)


@work_order_bp.route("/stats", methods=["GET"])
@require_role(Role.USER)
def work_order_stats():
    counts, err = _lifecycle().stats(current_identity())
    if err:
        return api_error(err)
    return api_ok(counts)


@work_order_bp.route("/<int:wo_id>", methods=["GET"])
@require_role(Role.USER)
def get_work_order(wo_id):
    detail, err = _lifecycle().get(current_identity(), wo_id)
    if err:
        return api_error(err)
    return api_ok(detail)


@work_order_bp.route("/<int:wo_id>", methods=["PUT"])
@require_role(Role.ADMIN)
def update_work_order(wo_id):
    body = json_body()
    fields, err = parse_fields(body, _HEADER_PARSERS)
    if err:
        return api_error(err)
    if "status" in body:
        fields["status"] = body["status"]
    wo, err = _lifecycle().update(current_identity(), wo_id, fields)
    if err:
        return api_error(err)
    return api_ok(wo, message="Work order updated successfully")


@work_order_bp.route("/<int:wo_id>", methods=["DELETE"])
@require_role(Role.ADMIN)
def delete_work_order(wo_id):
    result, err = _lifecycle().delete(current_identity(), wo_id)
    if err:
        return api_error(err)
    return api_ok(result, message="Work order deleted successfully")


# ── Lifecycle transitions ────────────────────────────────────────────────────


@work_order_bp.route("/<int:wo_id>/approve", methods=["PUT"])
@require_role(Role.ADMIN)
def approve_work_order(wo_id):
    wo, err = _lifecycle().approve(current_identity(), wo_id)
    if err:
        return api_error(err)
    return api_ok(wo, message="Work order approved successfully")


@work_order_bp.route("/<int:wo_id>/reject", methods=["PUT"])
@require_role(Role.ADMIN)
def reject_work_order(wo_id):
    data = json_body()
    reason = data.get("reason", data.get("rejection_reason"))
    wo, err = _lifecycle().reject(current_identity(), wo_id, reason)
    if err:
        return api_error(err)
    return api_ok(wo, message="Work order rejected successfully")


@work_order_bp.route("/<int:wo_id>/resubmit", methods=["PUT"])
@require_role(Role.USER)
def resubmit_work_order(wo_id):
    wo, err = _lifecycle().resubmit(current_identity(), wo_id)
    if err:
        return api_error(err)
    return api_ok(wo, message="Work order resubmitted successfully")


@work_order_bp.route("/<int:wo_id>/complete", methods=["PUT"])
@require_role(Role.USER)
def request_completion(wo_id):
    fields, err = parse_fields(json_body(), {"work_completed_date": parse_date})
    if err:
        return api_error(err)
    wo, err = _lifecycle().request_completion(
        current_identity(), wo_id, fields.get("work_completed_date"),
    )
    if err:
        return api_error(err)
    return api_ok(wo, message="Completion requested successfully")


@work_order_bp.route("/<int:wo_id>/approve-completion", methods=["PUT"])
@require_role(Role.ADMIN)
def approve_completion(wo_id):
    data = json_body()
    approved = data.get("approved")
    if not isinstance(approved, bool):
        return api_error(validation("approved must be true or false"))

    lifecycle = _lifecycle()
    if approved:
        wo, err = lifecycle.approve_completion(current_identity(), wo_id)
        message = "Work order completion approved"
    else:
        wo, err = lifecycle.reject_completion(
            current_identity(), wo_id, data.get("rejection_reason", data.get("reason")),
        )
        message = "Work order completion rejected"
    if err:
        return api_error(err)
    return api_ok(wo, message=message)
