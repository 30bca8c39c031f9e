"""
Notification Blueprint — the caller's own inbox.

Endpoints:
    GET    /api/v1/notifications               — list (query: unread_only, limit, offset)
    GET    /api/v1/notifications/unread-count
    PUT    /api/v1/notifications/<id>/read
    PUT    /api/v1/notifications/read-all
    DELETE /api/v1/notifications/<id>
    POST   /api/v1/notifications/cleanup       — purge expired (admin)
"""

from flask import Blueprint, request

from maintrack.auth import current_identity, require_role
from maintrack.core.errors import not_found
from maintrack.models.auth import Role
from maintrack.services.notification import NotificationService
from maintrack.utils.errors import api_error, api_ok

notification_bp = Blueprint("notifications", __name__, url_prefix="/api/v1/notifications")


@notification_bp.route("", methods=["GET"])
@require_role(Role.USER)
def list_notifications():
    unread_only = request.args.get("unread_only", "false").lower() == "true"
    limit = min(request.args.get("limit", 50, type=int), 200)
    offset = max(request.args.get("offset", 0, type=int), 0)

    items, total = NotificationService.list_for_user(
        current_identity().user_id, unread_only=unread_only, limit=limit, offset=offset,
    )
    return api_ok({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationService.unread_count(current_identity().user_id),
    })


@notification_bp.route("/unread-count", methods=["GET"])
@require_role(Role.USER)
def unread_count():
    return api_ok({"unread_count": NotificationService.unread_count(current_identity().user_id)})


@notification_bp.route("/<int:notif_id>/read", methods=["PUT"])
@require_role(Role.USER)
def mark_read(notif_id):
    notif = NotificationService.mark_read(notif_id, current_identity().user_id)
    if notif is None:
        return api_error(not_found("Notification", notif_id))
    return api_ok(notif.to_dict())


@notification_bp.route("/read-all", methods=["PUT"])
@require_role(Role.USER)
def mark_all_read():
    count = NotificationService.mark_all_read(current_identity().user_id)
    return api_ok({"marked_read": count})


@notification_bp.route("/<int:notif_id>", methods=["DELETE"])
@require_role(Role.USER)
def delete_notification(notif_id):
    if not NotificationService.delete(notif_id, current_identity().user_id):
        return api_error(not_found("Notification", notif_id))
    return api_ok({"id": notif_id}, message="Notification deleted")


@notification_bp.route("/cleanup", methods=["POST"])
@require_role(Role.ADMIN)
def cleanup():
    return api_ok({"deleted": NotificationService.cleanup_expired()})
