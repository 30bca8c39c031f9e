"""
Work order aggregate — Findings, Actions and SpareParts under a WorkOrder.

Provides:
    - unclosed_sessions() / all_sessions_closed():  the completeness gate shared
      by completion-request and completion-approval.  Only each action's
      LATEST session counts; an action with no sessions is not closed.
    - latest_action_date() / earliest_action_date():  max / min session date
      across the whole order.
    - work_order_detail():   nested read model (findings → actions → sessions).
    - Finding / Action / SparePart writes (admin).

Deletes cascade in the database (ON DELETE CASCADE): a Finding takes its
Actions, their sessions and spare parts with it.
"""

from __future__ import annotations

import logging
from datetime import date, time

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from maintrack.auth import Identity, check_role
from maintrack.core.errors import (
    Result,
    ServiceError,
    internal,
    invalid_transition,
    not_found,
    precondition_failed,
    validation,
)
from maintrack.models import db
from maintrack.models.auth import Role
from maintrack.models.work_order import (
    Action,
    ActionDate,
    Finding,
    SparePart,
    WorkOrder,
    WorkOrderStatus,
)
from maintrack.services.session_ledger import SessionLedger

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 1000


def _clean_description(value, label: str) -> tuple[str | None, ServiceError | None]:
    if value is not None and not isinstance(value, str):
        return None, validation(f"{label} description must be a string")
    text = (value or "").strip()
    if not text:
        return None, validation(f"{label} description cannot be empty")
    if len(text) > MAX_DESCRIPTION_LENGTH:
        return None, validation(
            f"{label} description must be less than {MAX_DESCRIPTION_LENGTH} characters"
        )
    return text, None


class WorkOrderAggregate:
    """Read model and child-entity writes for work orders."""

    def __init__(self, session=None, ledger: SessionLedger | None = None):
        self.session = session if session is not None else db.session
        self.ledger = ledger or SessionLedger(self.session)

    # ── Completeness gate ─────────────────────────────────────────────────

    def actions_of(self, work_order_id: int) -> list[Action]:
        stmt = (
            select(Action)
            .join(Finding, Action.finding_id == Finding.id)
            .where(Finding.work_order_id == work_order_id)
            .order_by(Finding.id, Action.id)
        )
        return list(self.session.execute(stmt).scalars())

    def unclosed_sessions(self, work_order_id: int) -> list[dict]:
        """Actions whose latest session has no end time (or that have none)."""
        unclosed = []
        for action in self.actions_of(work_order_id):
            latest = self.ledger.latest_session(action.id)
            if latest is not None and latest.is_closed:
                continue
            unclosed.append({
                "finding_id": action.finding_id,
                "action_id": action.id,
                "action_description": action.description,
                "session_id": latest.id if latest else None,
                "action_date": latest.action_date.isoformat() if latest else None,
            })
        return unclosed

    def all_sessions_closed(self, work_order_id: int) -> bool:
        """True when every action's latest session has an end time.

        Vacuously true for an order without actions.
        """
        return not self.unclosed_sessions(work_order_id)

    def latest_action_date(self, work_order_id: int) -> date | None:
        stmt = (
            select(func.max(ActionDate.action_date))
            .join(Action, ActionDate.action_id == Action.id)
            .join(Finding, Action.finding_id == Finding.id)
            .where(Finding.work_order_id == work_order_id)
        )
        return self.session.execute(stmt).scalar()

    def earliest_action_date(self, work_order_id: int) -> date | None:
        stmt = (
            select(func.min(ActionDate.action_date))
            .join(Action, ActionDate.action_id == Action.id)
            .join(Finding, Action.finding_id == Finding.id)
            .where(Finding.work_order_id == work_order_id)
        )
        return self.session.execute(stmt).scalar()

    # ── Read model ────────────────────────────────────────────────────────

    def action_detail(self, action: Action) -> dict:
        sessions = self.ledger.sessions_for(action.id)
        latest = sessions[0] if sessions else None
        d = action.to_dict()
        d["sessions"] = []
        for s in sessions:
            sd = s.to_dict()
            sd["is_latest"] = s is latest
            d["sessions"].append(sd)
        d["is_completed"] = bool(latest and latest.is_completed)
        d["is_closed"] = bool(latest and latest.is_closed)
        d["spare_parts"] = [p.to_dict() for p in action.spare_parts]
        return d

    def work_order_detail(self, work_order_id: int) -> Result[dict]:
        wo = self.session.get(WorkOrder, work_order_id)
        if wo is None:
            return None, not_found("WorkOrder", work_order_id)
        data = wo.to_dict()
        data["findings"] = []
        for finding in wo.findings:
            fd = finding.to_dict()
            fd["actions"] = [self.action_detail(a) for a in finding.actions]
            data["findings"].append(fd)
        data["unclosed_sessions"] = self.unclosed_sessions(wo.id)
        data["all_sessions_closed"] = not data["unclosed_sessions"]
        return data, None

    def lock_work_order(self, work_order_id: int) -> WorkOrder | None:
        """SELECT ... FOR UPDATE on the order; taken before any Action lock."""
        stmt = select(WorkOrder).where(WorkOrder.id == work_order_id).with_for_update()
        return self.session.execute(stmt).scalars().first()

    # ── Internals ─────────────────────────────────────────────────────────

    def _commit(self, what: str) -> ServiceError | None:
        try:
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("%s failed", what)
            return internal()
        return None

    # ── Findings ──────────────────────────────────────────────────────────

    def create_finding(
        self, identity: Identity, work_order_id: int, description, reference_image=None,
    ) -> Result[dict]:
        err = check_role(identity, Role.ADMIN, "create_finding")
        if err:
            return None, err
        text, err = _clean_description(description, "Finding")
        if err:
            return None, err

        wo = self.session.get(WorkOrder, work_order_id)
        if wo is None:
            return None, not_found("WorkOrder", work_order_id)
        if wo.status == WorkOrderStatus.COMPLETED:
            return None, invalid_transition(
                "Cannot add findings to completed work orders", status=wo.status.value,
            )

        finding = Finding(
            work_order_id=wo.id,
            description=text,
            reference_image=(reference_image or "").strip() or None,
        )
        self.session.add(finding)
        err = self._commit("create_finding")
        if err:
            return None, err
        logger.info("Finding created", extra={"work_order_id": wo.id, "user_id": identity.user_id})
        return finding.to_dict(), None

    def update_finding(self, identity: Identity, finding_id: int, fields: dict) -> Result[dict]:
        err = check_role(identity, Role.ADMIN, "update_finding")
        if err:
            return None, err
        finding = self.session.get(Finding, finding_id)
        if finding is None:
            return None, not_found("Finding", finding_id)

        if "description" in fields:
            text, err = _clean_description(fields["description"], "Finding")
            if err:
                return None, err
            finding.description = text
        if "reference_image" in fields:
            finding.reference_image = (fields["reference_image"] or "").strip() or None

        err = self._commit("update_finding")
        if err:
            return None, err
        return finding.to_dict(), None

    def delete_finding(self, identity: Identity, finding_id: int) -> Result[dict]:
        err = check_role(identity, Role.ADMIN, "delete_finding")
        if err:
            return None, err
        finding = self.session.get(Finding, finding_id)
        if finding is None:
            return None, not_found("Finding", finding_id)
        work_order_id = finding.work_order_id
        self.session.delete(finding)
        err = self._commit("delete_finding")
        if err:
            return None, err
        logger.info("Finding deleted", extra={"work_order_id": work_order_id, "user_id": identity.user_id})
        return {"id": finding_id, "work_order_id": work_order_id}, None

    # ── Actions ───────────────────────────────────────────────────────────

    def create_action(
        self,
        identity: Identity,
        finding_id: int,
        description,
        action_date: date,
        start_time: time,
        end_time: time | None = None,
        is_completed: bool = False,
        remarks: str | None = None,
    ) -> Result[dict]:
        """Create an Action together with its first session."""
        err = check_role(identity, Role.ADMIN, "create_action")
        if err:
            return None, err
        text, err = _clean_description(description, "Action")
        if err:
            return None, err
        if action_date is None:
            return None, validation("action_date is required")

        finding = self.session.get(Finding, finding_id)
        if finding is None:
            return None, not_found("Finding", finding_id)
        wo = self.lock_work_order(finding.work_order_id)
        if action_date < wo.work_order_date:
            return None, precondition_failed(
                f"Action date cannot be before work order date ({wo.work_order_date.isoformat()})",
                action_date=action_date.isoformat(),
                work_order_date=wo.work_order_date.isoformat(),
            )

        try:
            action = Action(finding_id=finding.id, description=text, remarks=remarks or None)
            self.session.add(action)
            self.session.flush()

            first, err = self.ledger.insert_session(action, action_date, start_time, end_time, is_completed)
            if err:
                self.session.rollback()
                return None, err
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("create_action failed for finding %s", finding_id)
            return None, internal()

        logger.info(
            "Action created",
            extra={"work_order_id": wo.id, "action_id": action.id, "user_id": identity.user_id},
        )
        data = action.to_dict()
        data["sessions"] = [first.to_dict()]
        return data, None

    def update_action(self, identity: Identity, action_id: int, fields: dict) -> Result[dict]:
        err = check_role(identity, Role.ADMIN, "update_action")
        if err:
            return None, err
        action = self.session.get(Action, action_id)
        if action is None:
            return None, not_found("Action", action_id)

        if "description" in fields:
            text, err = _clean_description(fields["description"], "Action")
            if err:
                return None, err
            action.description = text
        if "remarks" in fields:
            action.remarks = fields["remarks"] or None

        err = self._commit("update_action")
        if err:
            return None, err
        return action.to_dict(), None

    def delete_action(self, identity: Identity, action_id: int) -> Result[dict]:
        err = check_role(identity, Role.ADMIN, "delete_action")
        if err:
            return None, err
        action = self.session.get(Action, action_id)
        if action is None:
            return None, not_found("Action", action_id)
        finding_id = action.finding_id
        self.session.delete(action)
        err = self._commit("delete_action")
        if err:
            return None, err
        logger.info("Action deleted", extra={"action_id": action_id, "user_id": identity.user_id})
        return {"id": action_id, "finding_id": finding_id}, None

    # ── Spare parts ───────────────────────────────────────────────────────

    def add_spare_part(
        self, identity: Identity, action_id: int, part_name, part_number, quantity,
    ) -> Result[dict]:
        err = check_role(identity, Role.ADMIN, "add_spare_part")
        if err:
            return None, err
        name = (part_name or "").strip()
        number = (part_number or "").strip()
        if not name or not number:
            return None, validation("part_name and part_number are required")
        if isinstance(quantity, bool):
            quantity = None
        try:
            qty = int(quantity)
        except (TypeError, ValueError):
            return None, validation("quantity must be a positive integer")
        if qty <= 0:
            return None, validation("quantity must be a positive integer")

        if self.session.get(Action, action_id) is None:
            return None, not_found("Action", action_id)

        part = SparePart(action_id=action_id, part_name=name, part_number=number, quantity=qty)
        self.session.add(part)
        err = self._commit("add_spare_part")
        if err:
            return None, err
        return part.to_dict(), None

    def delete_spare_part(self, identity: Identity, part_id: int) -> Result[dict]:
        err = check_role(identity, Role.ADMIN, "delete_spare_part")
        if err:
            return None, err
        part = self.session.get(SparePart, part_id)
        if part is None:
            return None, not_found("SparePart", part_id)
        action_id = part.action_id
        self.session.delete(part)
        err = self._commit("delete_spare_part")
        if err:
            return None, err
        return {"id": part_id, "action_id": action_id}, None
