"""
Work Order Lifecycle — status transitions and work order CRUD.

State machine (see maintrack.models.work_order.WORK_ORDER_TRANSITIONS):

    pending ──approve──▶ ongoing ──request_completion──▶ completion_requested ──approve_completion──▶ completed
       │  ▲                 ▲                                    │
    reject│  resubmit       └────────reject_completion───────────┘
       ▼  │
     rejected

Every transition is one orchestration call:
    1. role floor for the event (maintrack.auth.check_role)
    2. lock the WorkOrder row (SELECT ... FOR UPDATE).  The session ledger
       takes this same lock before touching any session of the order.
    3. status check + event guard, evaluated against the locked row
    4. mutate + commit, or roll back and return the ServiceError
    5. notify (fire-and-forget, after commit)

Expected failures come back as (None, ServiceError); nothing here raises
for a business rule.  Notification failures are logged and never turn a
committed transition into an error.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from maintrack.auth import Identity, check_role
from maintrack.core.errors import (
    Result,
    ServiceError,
    conflict,
    forbidden,
    internal,
    invalid_transition,
    not_found,
    precondition_failed,
    validation,
)
from maintrack.models import db
from maintrack.models.auth import Role, User
from maintrack.models.work_order import (
    WORK_ORDER_TRANSITIONS,
    WorkOrder,
    WorkOrderEvent,
    WorkOrderStatus,
    validate_work_order_transition,
)
from maintrack.services.notification import NotificationService
from maintrack.services.work_order_aggregate import WorkOrderAggregate

logger = logging.getLogger(__name__)

# Header fields settable on create / update.  status is deliberately absent:
# it only changes through the transition methods below.
HEADER_FIELDS = (
    "work_order_no",
    "work_order_date",
    "equipment_number",
    "km_hrs",
    "requested_by",
    "work_type",
    "job_allocation_time",
    "description",
    "reference_document",
)

_TEXT_DEFAULTS = ("equipment_number", "requested_by", "work_type", "description")


def _utcnow():
    return datetime.now(timezone.utc)


class WorkOrderLifecycle:
    """Orchestrates work order transitions over an injected session and notifier."""

    def __init__(self, session=None, notifier=None, aggregate: WorkOrderAggregate | None = None):
        self.session = session if session is not None else db.session
        self.notifier = notifier if notifier is not None else NotificationService
        self.aggregate = aggregate or WorkOrderAggregate(self.session)

    # ── Internals ─────────────────────────────────────────────────────────

    def _lock(self, work_order_id: int) -> WorkOrder | None:
        return self.aggregate.lock_work_order(work_order_id)

    def _fail(self, err: ServiceError):
        self.session.rollback()
        return None, err

    def _display_name(self, user_id: int | None) -> str:
        user = self.session.get(User, user_id) if user_id else None
        if user is None:
            return "an administrator"
        return user.full_name or user.username

    def _notify(self, user_id, title, message, kind, work_order_id):
        """Fire-and-forget.  Runs after the transition has committed."""
        if not user_id:
            return
        try:
            self.notifier.notify(
                user_id, title, message, kind,
                related_entity_type="work_order", related_entity_id=work_order_id,
                session=self.session,
            )
        except Exception:
            self.session.rollback()
            logger.warning(
                "Notification failed for work order %s (user %s)", work_order_id, user_id,
                exc_info=True,
            )

    def _role_error(self, identity: Identity, event: WorkOrderEvent) -> ServiceError | None:
        return check_role(identity, WORK_ORDER_TRANSITIONS[event]["min_role"], event.value)

    def _transition(self, identity: Identity, work_order_id: int, event: WorkOrderEvent, guard) -> Result[WorkOrder]:
        """Run one state-machine event.

        *guard(wo)* is evaluated on the locked row; it returns a ServiceError
        to abort, or None after applying the event's field changes.
        """
        rule = WORK_ORDER_TRANSITIONS[event]
        err = self._role_error(identity, event)
        if err:
            return None, err

        try:
            wo = self._lock(work_order_id)
            if wo is None:
                return self._fail(not_found("WorkOrder", work_order_id))

            from_status = wo.status
            if not validate_work_order_transition(from_status, event):
                return self._fail(invalid_transition(
                    f"Cannot {event.value.replace('_', ' ')} a work order that is {from_status.value}",
                    event=event.value,
                    status=from_status.value,
                ))

            err = guard(wo)
            if err:
                return self._fail(err)

            wo.status = rule["to"]
            wo.updated_at = _utcnow()
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("Work order %s: %s failed", work_order_id, event.value)
            return None, internal()

        logger.info(
            "Work order %s: %s → %s", wo.work_order_no, from_status.value, wo.status.value,
            extra={
                "work_order_id": wo.id,
                "event_type": event.value,
                "from_status": from_status.value,
                "to_status": wo.status.value,
                "user_id": identity.user_id,
            },
        )
        return wo, None

    # ── Transitions ───────────────────────────────────────────────────────

    def approve(self, identity: Identity, work_order_id: int) -> Result[dict]:
        """pending → ongoing.  Records approver, clears any rejection reason."""
        def guard(wo):
            wo.approved_by = identity.user_id
            wo.approved_at = _utcnow()
            wo.rejection_reason = None
            return None

        wo, err = self._transition(identity, work_order_id, WorkOrderEvent.APPROVE, guard)
        if err:
            return None, err
        self._notify(
            wo.requested_by_id,
            "Work Order Approved",
            f"Your work order {wo.work_order_no} for equipment {wo.equipment_number} "
            f"has been approved by {self._display_name(identity.user_id)}.",
            "approval",
            wo.id,
        )
        return wo.to_dict(), None

    def reject(self, identity: Identity, work_order_id: int, reason: str | None) -> Result[dict]:
        """pending → rejected.  A non-empty reason is required."""
        err = self._role_error(identity, WorkOrderEvent.REJECT)
        if err:
            return None, err
        reason = (reason or "").strip()
        if not reason:
            return None, validation("Rejection reason is required")

        def guard(wo):
            wo.rejection_reason = reason
            return None

        wo, err = self._transition(identity, work_order_id, WorkOrderEvent.REJECT, guard)
        if err:
            return None, err
        self._notify(
            wo.requested_by_id,
            "Work Order Rejected",
            f"Your work order {wo.work_order_no} for equipment {wo.equipment_number} "
            f"has been rejected by {self._display_name(identity.user_id)}. Reason: {reason}.",
            "rejection",
            wo.id,
        )
        return wo.to_dict(), None

    def resubmit(self, identity: Identity, work_order_id: int) -> Result[dict]:
        """rejected → pending.  Only the creator may resubmit."""
        def guard(wo):
            if wo.requested_by_id != identity.user_id:
                return forbidden("Only the creator of this work order can resubmit it")
            wo.rejection_reason = None
            return None

        wo, err = self._transition(identity, work_order_id, WorkOrderEvent.RESUBMIT, guard)
        if err:
            return None, err
        return wo.to_dict(), None

    def request_completion(
        self, identity: Identity, work_order_id: int, work_completed_date: date | None,
    ) -> Result[dict]:
        """ongoing → completion_requested.

        Guards, in order: completion date not before the work order date,
        not before the latest action date, and every action's latest
        session closed.
        """
        err = self._role_error(identity, WorkOrderEvent.REQUEST_COMPLETION)
        if err:
            return None, err
        if work_completed_date is None:
            return None, validation("Completion date is required")

        def guard(wo):
            if work_completed_date < wo.work_order_date:
                return precondition_failed(
                    f"Completion date cannot be before work order date ({wo.work_order_date.isoformat()})",
                    work_completed_date=work_completed_date.isoformat(),
                    work_order_date=wo.work_order_date.isoformat(),
                )
            latest = self.aggregate.latest_action_date(wo.id)
            if latest is not None and work_completed_date < latest:
                return precondition_failed(
                    f"Completion date cannot be before the last action date ({latest.isoformat()})",
                    work_completed_date=work_completed_date.isoformat(),
                    latest_action_date=latest.isoformat(),
                )
            unclosed = self.aggregate.unclosed_sessions(wo.id)
            if unclosed:
                return precondition_failed(
                    "All action end times must be filled before requesting completion",
                    unclosed_sessions=unclosed,
                )
            wo.work_completed_date = work_completed_date
            wo.completion_requested_by = identity.user_id
            wo.completion_requested_at = _utcnow()
            wo.completion_rejection_reason = None
            return None

        wo, err = self._transition(identity, work_order_id, WorkOrderEvent.REQUEST_COMPLETION, guard)
        if err:
            return None, err
        return wo.to_dict(), None

    def approve_completion(self, identity: Identity, work_order_id: int) -> Result[dict]:
        """completion_requested → completed.  Re-checks the completeness gate."""
        def guard(wo):
            unclosed = self.aggregate.unclosed_sessions(wo.id)
            if unclosed:
                return precondition_failed(
                    "All action end times must be filled before completion can be approved",
                    unclosed_sessions=unclosed,
                )
            wo.completion_approved_by = identity.user_id
            wo.completion_approved_at = _utcnow()
            return None

        wo, err = self._transition(identity, work_order_id, WorkOrderEvent.APPROVE_COMPLETION, guard)
        if err:
            return None, err
        self._notify(
            wo.completion_requested_by,
            "Work Order Completion Approved",
            f"Your completion request for work order {wo.work_order_no} has been approved.",
            "completion",
            wo.id,
        )
        return wo.to_dict(), None

    def reject_completion(self, identity: Identity, work_order_id: int, reason: str | None) -> Result[dict]:
        """completion_requested → ongoing.  Clears the completion date."""
        err = self._role_error(identity, WorkOrderEvent.REJECT_COMPLETION)
        if err:
            return None, err
        reason = (reason or "").strip()
        if not reason:
            return None, validation("Rejection reason is required")

        def guard(wo):
            wo.completion_rejection_reason = reason
            wo.work_completed_date = None
            wo.completion_approved_by = None
            wo.completion_approved_at = None
            return None

        wo, err = self._transition(identity, work_order_id, WorkOrderEvent.REJECT_COMPLETION, guard)
        if err:
            return None, err
        self._notify(
            wo.completion_requested_by,
            "Work Order Completion Rejected",
            f"Your completion request for work order {wo.work_order_no} has been rejected. "
            f"Reason: {reason}",
            "rejection",
            wo.id,
        )
        return wo.to_dict(), None

    # ── CRUD ──────────────────────────────────────────────────────────────

    def _no_taken(self, work_order_no: str, exclude_id: int | None = None) -> bool:
        stmt = select(WorkOrder.id).where(WorkOrder.work_order_no == work_order_no)
        if exclude_id is not None:
            stmt = stmt.where(WorkOrder.id != exclude_id)
        return self.session.execute(stmt).first() is not None

    def create(self, identity: Identity, fields: dict) -> Result[dict]:
        """Create a pending work order owned by the caller.

        *fields* carries parsed values (dates already date objects).
        """
        err = check_role(identity, Role.USER, "create_work_order")
        if err:
            return None, err

        work_order_no = (fields.get("work_order_no") or "").strip()
        if not work_order_no:
            return None, validation("work_order_no is required")
        if fields.get("work_order_date") is None:
            return None, validation("work_order_date is required")
        if self._no_taken(work_order_no):
            return None, conflict("Work order number already exists", work_order_no=work_order_no)

        values = {k: fields[k] for k in HEADER_FIELDS if k in fields}
        values["work_order_no"] = work_order_no
        for key in _TEXT_DEFAULTS:
            values[key] = (values.get(key) or "").strip()

        wo = WorkOrder(**values, status=WorkOrderStatus.PENDING, requested_by_id=identity.user_id)
        try:
            self.session.add(wo)
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            return None, conflict("Work order number already exists", work_order_no=work_order_no)
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("create work order %s failed", work_order_no)
            return None, internal()

        logger.info(
            "Work order %s created", wo.work_order_no,
            extra={"work_order_id": wo.id, "user_id": identity.user_id, "to_status": wo.status.value},
        )
        return wo.to_dict(), None

    def list_work_orders(self, identity: Identity, statuses: list[WorkOrderStatus] | None = None) -> Result[list[dict]]:
        """Work orders newest first, optionally filtered by status."""
        err = check_role(identity, Role.USER, "list_work_orders")
        if err:
            return None, err
        stmt = select(WorkOrder).order_by(WorkOrder.created_at.desc(), WorkOrder.id.desc())
        if statuses:
            stmt = stmt.where(WorkOrder.status.in_(statuses))
        return [wo.to_dict() for wo in self.session.execute(stmt).scalars()], None

    def list_completion_requests(self, identity: Identity) -> Result[list[dict]]:
        err = check_role(identity, Role.ADMIN, "list_completion_requests")
        if err:
            return None, err
        stmt = (
            select(WorkOrder)
            .where(WorkOrder.status == WorkOrderStatus.COMPLETION_REQUESTED)
            .order_by(WorkOrder.completion_requested_at.desc(), WorkOrder.id.desc())
        )
        return [wo.to_dict() for wo in self.session.execute(stmt).scalars()], None

    def stats(self, identity: Identity) -> Result[dict]:
        """Dashboard counts: one entry per status plus the overall total."""
        err = check_role(identity, Role.USER, "work_order_stats")
        if err:
            return None, err
        stmt = select(WorkOrder.status, func.count(WorkOrder.id)).group_by(WorkOrder.status)
        counts = {status.value: 0 for status in WorkOrderStatus}
        for status, count in self.session.execute(stmt):
            counts[status.value] = count
        counts["total"] = sum(counts.values())
        return counts, None

    def get(self, identity: Identity, work_order_id: int) -> Result[dict]:
        err = check_role(identity, Role.USER, "get_work_order")
        if err:
            return None, err
        return self.aggregate.work_order_detail(work_order_id)

    def _check_work_order_date(self, wo: WorkOrder, new_date: date | None) -> ServiceError | None:
        """A new work_order_date may not overtake any session or completion date.

        It is frozen while a completion request is pending.
        """
        if new_date is None:
            return validation("work_order_date cannot be empty")
        if new_date == wo.work_order_date:
            return None
        if wo.status == WorkOrderStatus.COMPLETION_REQUESTED:
            return invalid_transition(
                "Work order date cannot change while completion is requested",
                status=wo.status.value,
            )
        earliest = self.aggregate.earliest_action_date(wo.id)
        if earliest is not None and new_date > earliest:
            return precondition_failed(
                f"Work order date cannot be after the first action date ({earliest.isoformat()})",
                work_order_date=new_date.isoformat(),
                earliest_action_date=earliest.isoformat(),
            )
        return None

    def update(self, identity: Identity, work_order_id: int, fields: dict) -> Result[dict]:
        """Edit header fields.  Status is not editable; completed orders are read-only."""
        err = check_role(identity, Role.ADMIN, "update_work_order")
        if err:
            return None, err
        if "status" in fields:
            return None, validation(
                "status cannot be edited directly; use the approval and completion endpoints",
            )
        changes = {k: v for k, v in fields.items() if k in HEADER_FIELDS}
        if not changes:
            return None, validation("No fields to update")

        try:
            wo = self._lock(work_order_id)
            if wo is None:
                return self._fail(not_found("WorkOrder", work_order_id))
            if wo.is_terminal:
                return self._fail(invalid_transition(
                    "Completed work orders cannot be edited", status=wo.status.value,
                ))

            if "work_order_no" in changes:
                number = (changes["work_order_no"] or "").strip()
                if not number:
                    return self._fail(validation("work_order_no cannot be empty"))
                if self._no_taken(number, exclude_id=wo.id):
                    return self._fail(conflict("Work order number already exists", work_order_no=number))
                changes["work_order_no"] = number
            if "work_order_date" in changes:
                err = self._check_work_order_date(wo, changes["work_order_date"])
                if err:
                    return self._fail(err)
            for key in _TEXT_DEFAULTS:
                if key in changes:
                    changes[key] = (changes[key] or "").strip()

            for key, value in changes.items():
                setattr(wo, key, value)
            wo.updated_at = _utcnow()
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            return None, conflict("Work order number already exists")
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("update work order %s failed", work_order_id)
            return None, internal()

        logger.info("Work order %s updated", wo.work_order_no,
                    extra={"work_order_id": wo.id, "user_id": identity.user_id})
        return wo.to_dict(), None

    def delete(self, identity: Identity, work_order_id: int) -> Result[dict]:
        """Delete a work order with its findings, actions, sessions and parts."""
        err = check_role(identity, Role.ADMIN, "delete_work_order")
        if err:
            return None, err
        wo = self.session.get(WorkOrder, work_order_id)
        if wo is None:
            return None, not_found("WorkOrder", work_order_id)
        number = wo.work_order_no
        try:
            self.session.delete(wo)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("delete work order %s failed", work_order_id)
            return None, internal()

        logger.info("Work order %s deleted", number,
                    extra={"work_order_id": work_order_id, "user_id": identity.user_id})
        return {"id": work_order_id, "work_order_no": number}, None
