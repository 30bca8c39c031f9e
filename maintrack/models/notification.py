"""
Maintenance Work Order Tracker
Notification domain model.

Models:
    - Notification: per-user inbox entry with read tracking and expiry
"""

from datetime import datetime, timedelta, timezone

from maintrack.models import db


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_KINDS = {"approval", "rejection", "completion", "info"}

DEFAULT_TTL_DAYS = 30


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event.  Rows past expires_at are purged
    lazily when the inbox is read, or explicitly by an admin cleanup.
    """

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False, default="")
    kind = db.Column(db.String(20), nullable=False, default="info", comment="approval | rejection | completion | info")

    # Link to source entity
    related_entity_type = db.Column(db.String(50), nullable=True, comment="work_order | ...")
    related_entity_id = db.Column(db.Integer, nullable=True)

    # Read tracking
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)
    expires_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc) + timedelta(days=DEFAULT_TTL_DAYS),
        index=True,
    )

    __table_args__ = (
        db.CheckConstraint(
            "kind IN ('approval', 'rejection', 'completion', 'info')",
            name="ck_notifications_kind",
        ),
    )

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "message": self.message,
            "kind": self.kind,
            "related_entity_type": self.related_entity_type,
            "related_entity_id": self.related_entity_id,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"
