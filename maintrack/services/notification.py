"""
Maintenance Work Order Tracker
Notification Service.

Per-user inbox.  notify() is the fire-and-forget sink used by the work
order lifecycle: it commits in its own unit of work AFTER the transition
has committed, and a failure here is logged and swallowed so it can never
undo the transition that triggered it.
"""

import logging
from datetime import datetime, timedelta, timezone

from flask import current_app, has_app_context
from sqlalchemy.exc import SQLAlchemyError

from maintrack.models import db
from maintrack.models.notification import DEFAULT_TTL_DAYS, NOTIFICATION_KINDS, Notification

logger = logging.getLogger(__name__)


def _ttl_days() -> int:
    if has_app_context():
        return int(current_app.config.get("NOTIFICATION_TTL_DAYS", DEFAULT_TTL_DAYS))
    return DEFAULT_TTL_DAYS


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def notify(user_id, title, message="", kind="info",
               related_entity_type=None, related_entity_id=None, session=None):
        """
        Enqueue one notification for *user_id*.

        *session* defaults to db.session; the work order lifecycle passes
        its own session so the notification is written through it.

        Returns:
            The committed Notification, or None when the user is unknown or
            the write failed.  Never raises for storage failures.
        """
        if not user_id:
            return None
        if kind not in NOTIFICATION_KINDS:
            kind = "info"
        now = datetime.now(timezone.utc)
        notif = Notification(
            user_id=user_id,
            title=title,
            message=message,
            kind=kind,
            related_entity_type=related_entity_type,
            related_entity_id=related_entity_id,
            created_at=now,
            expires_at=now + timedelta(days=_ttl_days()),
        )
        session = session if session is not None else db.session
        try:
            session.add(notif)
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            logger.warning("Notification to user %s failed: %s", user_id, title, exc_info=True)
            return None
        return notif

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(user_id, unread_only=False, limit=50, offset=0):
        """
        Retrieve a user's notifications, newest first.  Expired rows are
        purged first.
        """
        NotificationService.cleanup_expired()
        q = Notification.query.filter_by(user_id=user_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(user_id):
        """Return count of unread, unexpired notifications."""
        now = datetime.now(timezone.utc)
        return (
            Notification.query.filter_by(user_id=user_id, is_read=False)
            .filter(Notification.expires_at > now)
            .count()
        )

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, user_id):
        """Mark a single notification as read.  None unless owned by *user_id*."""
        notif = db.session.get(Notification, notification_id)
        if notif is None or notif.user_id != user_id:
            return None
        notif.mark_read()
        db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(user_id):
        """Mark all of a user's notifications as read.  Returns the count."""
        now = datetime.now(timezone.utc)
        count = (
            Notification.query.filter_by(user_id=user_id, is_read=False)
            .update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        )
        db.session.commit()
        return count

    @staticmethod
    def delete(notification_id, user_id):
        """Delete one of the user's own notifications.  Returns True if deleted."""
        notif = db.session.get(Notification, notification_id)
        if notif is None or notif.user_id != user_id:
            return False
        db.session.delete(notif)
        db.session.commit()
        return True

    @staticmethod
    def cleanup_expired():
        """Delete every notification past its expiry.  Returns the count."""
        now = datetime.now(timezone.utc)
        count = (
            Notification.query.filter(Notification.expires_at <= now)
            .delete(synchronize_session=False)
        )
        db.session.commit()
        if count:
            logger.info("Purged %d expired notifications", count)
        return count
