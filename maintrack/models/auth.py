"""
Maintenance Work Order Tracker
Identity domain model.

Models:
    - User: an authenticated account carrying exactly one Role

Roles are a closed, ordered enum (user < admin < superadmin).  The stored
value is the lowercase role name so the column stays readable in SQL.
"""

import enum
from datetime import datetime, timezone

from maintrack.models import db


class Role(enum.IntEnum):
    """Ordered caller role.  Comparison operators follow the privilege order."""

    USER = 0
    ADMIN = 1
    SUPERADMIN = 2

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value) -> "Role | None":
        """Return the Role for a name such as ``"admin"``, or None when unknown."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls[value.strip().upper()]
        except KeyError:
            return None


ROLE_NAMES = tuple(r.label for r in Role)


class User(db.Model):
    """Application user.  The password is only ever stored as a bcrypt hash."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(50), unique=True, nullable=False, index=True)
    first_name = db.Column(db.String(100), nullable=False, default="")
    last_name = db.Column(db.String(100), nullable=False, default="")
    password_hash = db.Column(db.String(255), nullable=False)
    role_name = db.Column(
        "role",
        db.String(20),
        nullable=False,
        default=Role.USER.label,
        comment="user | admin | superadmin",
    )
    first_login = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.CheckConstraint("role IN ('user', 'admin', 'superadmin')", name="ck_users_role"),
    )

    @property
    def role(self) -> Role:
        return Role.parse(self.role_name) or Role.USER

    @role.setter
    def role(self, value) -> None:
        parsed = Role.parse(value)
        if parsed is None:
            raise ValueError(f"Unknown role: {value!r}")
        self.role_name = parsed.label

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or self.username

    def to_dict(self) -> dict:
        """Serialize without the password hash."""
        return {
            "id": self.id,
            "username": self.username,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "role": self.role.label,
            "first_login": self.first_login,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<User {self.id}: {self.username} ({self.role_name})>"
