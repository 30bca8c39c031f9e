"""
Maintenance Work Order Tracker
Work order domain models.

Models:
    - WorkOrder:   top-level unit of maintenance work with an approval / completion lifecycle
    - Finding:     a defect or observation recorded against a work order
    - Action:      a remedial task addressing a finding
    - ActionDate:  one dated work session (start/end time) against an action
    - SparePart:   a part consumed by an action

Architecture:
    WorkOrder ──1:N──▶ Finding ──1:N──▶ Action ──1:N──▶ ActionDate
                                         Action ──1:N──▶ SparePart

    Every child FK is ON DELETE CASCADE; ORM relationships use
    passive_deletes so the database performs the cascade.

Lifecycle states:
    WorkOrder:  pending → ongoing → completion_requested → completed
                pending → rejected → pending (resubmit)
                completion_requested → ongoing (completion rejected)
"""

import enum
from datetime import datetime, timezone

from maintrack.models import db
from maintrack.models.auth import Role


# ── Constants ────────────────────────────────────────────────────────────────


class WorkOrderStatus(str, enum.Enum):
    PENDING = "pending"
    ONGOING = "ongoing"
    COMPLETION_REQUESTED = "completion_requested"
    COMPLETED = "completed"
    REJECTED = "rejected"

    @classmethod
    def parse(cls, value) -> "WorkOrderStatus | None":
        try:
            return cls(value)
        except ValueError:
            return None


class WorkOrderEvent(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"
    RESUBMIT = "resubmit"
    REQUEST_COMPLETION = "request_completion"
    APPROVE_COMPLETION = "approve_completion"
    REJECT_COMPLETION = "reject_completion"


TERMINAL_STATUSES = frozenset({WorkOrderStatus.COMPLETED})

# event → legal source states, target state and the minimum caller role.
# Guards beyond status and role (reasons, ownership, completeness) live in
# maintrack.services.work_order_lifecycle.
WORK_ORDER_TRANSITIONS = {
    WorkOrderEvent.APPROVE: {
        "from": frozenset({WorkOrderStatus.PENDING}),
        "to": WorkOrderStatus.ONGOING,
        "min_role": Role.ADMIN,
    },
    WorkOrderEvent.REJECT: {
        "from": frozenset({WorkOrderStatus.PENDING}),
        "to": WorkOrderStatus.REJECTED,
        "min_role": Role.ADMIN,
    },
    WorkOrderEvent.RESUBMIT: {
        "from": frozenset({WorkOrderStatus.REJECTED}),
        "to": WorkOrderStatus.PENDING,
        "min_role": Role.USER,
    },
    WorkOrderEvent.REQUEST_COMPLETION: {
        "from": frozenset({WorkOrderStatus.ONGOING}),
        "to": WorkOrderStatus.COMPLETION_REQUESTED,
        "min_role": Role.USER,
    },
    WorkOrderEvent.APPROVE_COMPLETION: {
        "from": frozenset({WorkOrderStatus.COMPLETION_REQUESTED}),
        "to": WorkOrderStatus.COMPLETED,
        "min_role": Role.SUPERADMIN,
    },
    WorkOrderEvent.REJECT_COMPLETION: {
        "from": frozenset({WorkOrderStatus.COMPLETION_REQUESTED}),
        "to": WorkOrderStatus.ONGOING,
        "min_role": Role.ADMIN,
    },
}


def validate_work_order_transition(status: WorkOrderStatus, event: WorkOrderEvent) -> bool:
    """Return True if *event* is legal from *status*."""
    rule = WORK_ORDER_TRANSITIONS.get(event)
    return bool(rule) and status in rule["from"]


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


def _hhmm(value):
    return value.strftime("%H:%M") if value else None


# ═════════════════════════════════════════════════════════════════════════════
# WorkOrder
# ═════════════════════════════════════════════════════════════════════════════


class WorkOrder(db.Model):
    """
    Maintenance work order.

    Invariants kept by the lifecycle service:
    - rejection_reason is set iff status == rejected
    - work_completed_date is set iff status in (completion_requested, completed)
    - completed is terminal
    """

    __tablename__ = "work_orders"

    id = db.Column(db.Integer, primary_key=True)
    work_order_no = db.Column(db.String(50), unique=True, nullable=False, index=True)
    work_order_date = db.Column(db.Date, nullable=False)

    equipment_number = db.Column(db.String(100), nullable=False, default="")
    km_hrs = db.Column(db.Integer, nullable=True)
    requested_by = db.Column(db.String(100), nullable=False, default="", comment="Free-text requester name")
    requested_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
        comment="Owning user; only this user may resubmit a rejected order",
    )
    work_type = db.Column(db.String(100), nullable=False, default="")
    job_allocation_time = db.Column(db.DateTime, nullable=True)
    description = db.Column(db.Text, nullable=False, default="")
    reference_document = db.Column(db.String(255), nullable=True)

    status = db.Column(
        db.Enum(
            WorkOrderStatus,
            name="work_order_status",
            native_enum=False,
            length=30,
            values_callable=lambda e: [m.value for m in e],
            validate_strings=True,
        ),
        nullable=False,
        default=WorkOrderStatus.PENDING,
        index=True,
    )

    # Approval
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    # Completion
    work_completed_date = db.Column(db.Date, nullable=True)
    completion_requested_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    completion_requested_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completion_approved_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    completion_approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completion_rejection_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    findings = db.relationship(
        "Finding",
        back_populates="work_order",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Finding.id",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "work_order_no": self.work_order_no,
            "work_order_date": _iso(self.work_order_date),
            "equipment_number": self.equipment_number,
            "km_hrs": self.km_hrs,
            "requested_by": self.requested_by,
            "requested_by_id": self.requested_by_id,
            "work_type": self.work_type,
            "job_allocation_time": _iso(self.job_allocation_time),
            "description": self.description,
            "reference_document": self.reference_document,
            "status": self.status.value if self.status else None,
            "approved_by": self.approved_by,
            "approved_at": _iso(self.approved_at),
            "rejection_reason": self.rejection_reason,
            "work_completed_date": _iso(self.work_completed_date),
            "completion_requested_by": self.completion_requested_by,
            "completion_requested_at": _iso(self.completion_requested_at),
            "completion_approved_by": self.completion_approved_by,
            "completion_approved_at": _iso(self.completion_approved_at),
            "completion_rejection_reason": self.completion_rejection_reason,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<WorkOrder {self.id}: {self.work_order_no} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# Finding / Action
# ═════════════════════════════════════════════════════════════════════════════


class Finding(db.Model):
    """Defect or observation.  No lifecycle of its own."""

    __tablename__ = "findings"

    id = db.Column(db.Integer, primary_key=True)
    work_order_id = db.Column(
        db.Integer, db.ForeignKey("work_orders.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    description = db.Column(db.Text, nullable=False)
    reference_image = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    work_order = db.relationship("WorkOrder", back_populates="findings")
    actions = db.relationship(
        "Action",
        back_populates="finding",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Action.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "work_order_id": self.work_order_id,
            "description": self.description,
            "reference_image": self.reference_image,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Finding {self.id} wo={self.work_order_id}>"


class Action(db.Model):
    """
    Remedial task.  Its current session is derived from ActionDate, never
    stored: see SessionLedger.latest_session().
    """

    __tablename__ = "actions"

    id = db.Column(db.Integer, primary_key=True)
    finding_id = db.Column(
        db.Integer, db.ForeignKey("findings.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    description = db.Column(db.Text, nullable=False)
    remarks = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    finding = db.relationship("Finding", back_populates="actions")
    sessions = db.relationship(
        "ActionDate",
        back_populates="action",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ActionDate.action_date.desc()",
    )
    spare_parts = db.relationship(
        "SparePart",
        back_populates="action",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="SparePart.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "finding_id": self.finding_id,
            "description": self.description,
            "remarks": self.remarks,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Action {self.id} finding={self.finding_id}>"


class ActionDate(db.Model):
    """
    One work session against an action.

    Business rules (enforced in maintrack.services.session_ledger):
    - at most one row per (action_id, action_date)
    - completion can only be set on the latest row
    - a new row may only start once the latest row has an end time
    """

    __tablename__ = "action_dates"

    id = db.Column(db.Integer, primary_key=True)
    action_id = db.Column(
        db.Integer, db.ForeignKey("actions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    action_date = db.Column(db.Date, nullable=False)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=True)
    is_completed = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    action = db.relationship("Action", back_populates="sessions")

    __table_args__ = (
        db.UniqueConstraint("action_id", "action_date", name="uq_action_dates_action_date"),
    )

    @property
    def is_closed(self) -> bool:
        return self.end_time is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action_id": self.action_id,
            "action_date": _iso(self.action_date),
            "start_time": _hhmm(self.start_time),
            "end_time": _hhmm(self.end_time),
            "is_completed": self.is_completed,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<ActionDate {self.id} action={self.action_id} {self.action_date}>"


class SparePart(db.Model):
    """Part consumed by an action."""

    __tablename__ = "spare_parts"

    id = db.Column(db.Integer, primary_key=True)
    action_id = db.Column(
        db.Integer, db.ForeignKey("actions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    part_name = db.Column(db.String(200), nullable=False)
    part_number = db.Column(db.String(100), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    action = db.relationship("Action", back_populates="spare_parts")

    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_spare_parts_quantity_positive"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action_id": self.action_id,
            "part_name": self.part_name,
            "part_number": self.part_number,
            "quantity": self.quantity,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<SparePart {self.id} {self.part_number} x{self.quantity}>"
