"""
Session Ledger — the dated work sessions (ActionDate rows) of one Action.

Rules enforced here, never in blueprints:
    - At most one session per (action, action_date).  Checked before insert
      and backed by the uq_action_dates_action_date constraint, so a racing
      duplicate still surfaces as CONFLICT.
    - "Start again": a new session may only be added once the latest
      session has an end time.  Every other session of the action is then
      marked completed.
    - Completion can only be SET on the latest session.  Older sessions keep
      whatever value they had when superseded.
    - Reverting a completion needs admin or above.

The latest session is derived, never stored: latest_session() is the one
query every caller uses.

Each mutation runs as one unit of work: the owning WorkOrder row and then
the parent Action row are locked (SELECT ... FOR UPDATE), the row being
changed is re-read, the guard is checked, the change is written and
committed.  WorkOrderLifecycle locks the same WorkOrder row before it runs
the completeness gate, so a session edit and a completion decision on one
order never interleave.  A failed guard rolls back and leaves every row
untouched.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone

from sqlalchemy import select
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
from maintrack.models.auth import Role
from maintrack.models.work_order import Action, ActionDate, Finding, WorkOrder

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("action_date", "start_time", "end_time", "is_completed")


def _utcnow():
    return datetime.now(timezone.utc)


def check_times(start_time: time | None, end_time: time | None) -> ServiceError | None:
    """VALIDATION when the session has no start or ends before it starts."""
    if start_time is None:
        return validation("start_time is required")
    if end_time is not None and end_time <= start_time:
        return validation(
            "end_time must be after start_time",
            start_time=start_time.strftime("%H:%M"),
            end_time=end_time.strftime("%H:%M"),
        )
    return None


class SessionLedger:
    """Session operations for Actions, bound to one SQLAlchemy session."""

    def __init__(self, session=None):
        self.session = session if session is not None else db.session

    # ── Queries ───────────────────────────────────────────────────────────

    def sessions_for(self, action_id: int) -> list[ActionDate]:
        """All sessions of an action, newest action_date first."""
        stmt = (
            select(ActionDate)
            .where(ActionDate.action_id == action_id)
            .order_by(ActionDate.action_date.desc(), ActionDate.id.desc())
        )
        return list(self.session.execute(stmt).scalars())

    def latest_session(self, action_id: int) -> ActionDate | None:
        """The session with the maximum action_date, or None."""
        stmt = (
            select(ActionDate)
            .where(ActionDate.action_id == action_id)
            .order_by(ActionDate.action_date.desc(), ActionDate.id.desc())
            .limit(1)
        )
        return self.session.execute(stmt).scalars().first()

    def is_latest_closed(self, action_id: int) -> bool:
        """True iff the action's latest session has an end time.

        An action without any session is not closed.
        """
        latest = self.latest_session(action_id)
        return latest is not None and latest.is_closed

    def list_sessions(self, identity: Identity, action_id: int) -> Result[list[dict]]:
        err = check_role(identity, Role.USER, "list_sessions")
        if err:
            return None, err
        if self.session.get(Action, action_id) is None:
            return None, not_found("Action", action_id)
        latest = self.latest_session(action_id)
        rows = []
        for s in self.sessions_for(action_id):
            d = s.to_dict()
            d["is_latest"] = latest is not None and s.id == latest.id
            rows.append(d)
        return rows, None

    # ── Internals ─────────────────────────────────────────────────────────

    def _lock_action(self, action_id: int) -> Action | None:
        """Lock the action's WorkOrder, then the Action itself.

        Lock order is always WorkOrder → Action, the same as the lifecycle.
        """
        owner = (
            select(WorkOrder.id)
            .join(Finding, Finding.work_order_id == WorkOrder.id)
            .join(Action, Action.finding_id == Finding.id)
            .where(Action.id == action_id)
            .with_for_update(of=WorkOrder)
        )
        self.session.execute(owner)
        stmt = select(Action).where(Action.id == action_id).with_for_update()
        return self.session.execute(stmt).scalars().first()

    def _load(self, session_id: int, action_id: int | None) -> ActionDate | None:
        row = self.session.get(ActionDate, session_id)
        if row is None or (action_id is not None and row.action_id != action_id):
            return None
        return row

    def _date_taken(self, action_id: int, action_date: date, exclude_id: int | None = None) -> bool:
        stmt = select(ActionDate.id).where(
            ActionDate.action_id == action_id,
            ActionDate.action_date == action_date,
        )
        if exclude_id is not None:
            stmt = stmt.where(ActionDate.id != exclude_id)
        return self.session.execute(stmt).first() is not None

    def _fail(self, err: ServiceError):
        self.session.rollback()
        return None, err

    def insert_session(
        self,
        action: Action,
        action_date: date,
        start_time: time,
        end_time: time | None = None,
        is_completed: bool = False,
    ) -> Result[ActionDate]:
        """Guarded insert without commit; the caller owns the transaction.

        Used by add_session and by the action-creation flow, which inserts
        an Action and its first session in one unit of work.
        """
        if action_date is None:
            return None, validation("action_date is required")
        err = check_times(start_time, end_time)
        if err:
            return None, err

        if self._date_taken(action.id, action_date):
            return None, conflict(
                "A session already exists for this action and date",
                action_id=action.id,
                action_date=action_date.isoformat(),
            )

        latest = self.latest_session(action.id)
        if latest is not None and not latest.is_closed:
            return None, precondition_failed(
                "cannot start again: previous session has no end time",
                session=latest.to_dict(),
            )

        becomes_latest = latest is None or action_date > latest.action_date
        if is_completed and not becomes_latest:
            return None, invalid_transition(
                "only the latest date may be marked completed",
                action_date=action_date.isoformat(),
                latest_date=latest.action_date.isoformat(),
            )

        row = ActionDate(
            action_id=action.id,
            action_date=action_date,
            start_time=start_time,
            end_time=end_time,
            is_completed=bool(is_completed),
        )
        self.session.add(row)
        self.session.flush()

        # Starting a new session implicitly closes out every other one.
        others = self.session.execute(
            select(ActionDate).where(ActionDate.action_id == action.id, ActionDate.id != row.id)
        ).scalars()
        now = _utcnow()
        for other in others:
            if not other.is_completed:
                other.is_completed = True
                other.updated_at = now
        return row, None

    # ── Mutations ─────────────────────────────────────────────────────────

    def add_session(
        self,
        identity: Identity,
        action_id: int,
        action_date: date,
        start_time: time,
        end_time: time | None = None,
        is_completed: bool = False,
    ) -> Result[dict]:
        """Start a new work session ("start again") on an action."""
        err = check_role(identity, Role.USER, "add_session")
        if err:
            return None, err
        try:
            action = self._lock_action(action_id)
            if action is None:
                return self._fail(not_found("Action", action_id))

            row, err = self.insert_session(action, action_date, start_time, end_time, is_completed)
            if err:
                return self._fail(err)

            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            return None, conflict(
                "A session already exists for this action and date",
                action_id=action_id,
                action_date=action_date.isoformat() if action_date else None,
            )
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("add_session failed for action %s", action_id)
            return None, internal()

        logger.info(
            "Session added",
            extra={"action_id": action_id, "session_id": row.id, "user_id": identity.user_id},
        )
        return row.to_dict(), None

    def mark_latest_completed(
        self, identity: Identity, session_id: int, action_id: int | None = None,
    ) -> Result[dict]:
        """Mark a session completed; only the action's latest session qualifies."""
        err = check_role(identity, Role.USER, "mark_latest_completed")
        if err:
            return None, err
        try:
            row = self._load(session_id, action_id)
            if row is None:
                return self._fail(not_found("ActionDate", session_id))
            self._lock_action(row.action_id)
            self.session.refresh(row)

            latest = self.latest_session(row.action_id)
            if latest is None or latest.id != row.id:
                return self._fail(invalid_transition(
                    "only the latest date may be marked completed",
                    session_id=row.id,
                    latest_session_id=latest.id if latest else None,
                ))

            row.is_completed = True
            row.updated_at = _utcnow()
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("mark_latest_completed failed for session %s", session_id)
            return None, internal()

        logger.info(
            "Session marked completed",
            extra={"action_id": row.action_id, "session_id": row.id, "user_id": identity.user_id},
        )
        return row.to_dict(), None

    def revert_completion(
        self, identity: Identity, session_id: int, action_id: int | None = None,
    ) -> Result[dict]:
        """Clear is_completed on a completed session.  Admin or above."""
        err = check_role(identity, Role.ADMIN, "revert_completion")
        if err:
            return None, err
        try:
            row = self._load(session_id, action_id)
            if row is None:
                return self._fail(not_found("ActionDate", session_id))
            self._lock_action(row.action_id)
            self.session.refresh(row)

            if not row.is_completed:
                return self._fail(invalid_transition(
                    "Session is not completed", session_id=row.id,
                ))

            row.is_completed = False
            row.updated_at = _utcnow()
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("revert_completion failed for session %s", session_id)
            return None, internal()

        logger.info(
            "Session completion reverted",
            extra={"action_id": row.action_id, "session_id": row.id, "user_id": identity.user_id},
        )
        return row.to_dict(), None

    def edit_session(
        self, identity: Identity, session_id: int, fields: dict, action_id: int | None = None,
    ) -> Result[dict]:
        """Edit date / times / completion of one session.

        *fields* holds already-parsed values for any of EDITABLE_FIELDS.
        Setting is_completed=False on a completed session needs admin;
        setting it True is only allowed on the (post-edit) latest session.
        """
        err = check_role(identity, Role.USER, "edit_session")
        if err:
            return None, err
        changes = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS}
        if not changes:
            return None, validation("No fields to update")
        if "action_date" in changes and changes["action_date"] is None:
            return None, validation("action_date cannot be empty")

        try:
            row = self._load(session_id, action_id)
            if row is None:
                return self._fail(not_found("ActionDate", session_id))
            self._lock_action(row.action_id)
            self.session.refresh(row)

            if changes.get("is_completed") is False and row.is_completed:
                err = check_role(identity, Role.ADMIN, "revert_completion")
                if err:
                    return self._fail(forbidden(
                        "Only admins can revert completion", required_role=Role.ADMIN.label,
                    ))

            new_date = changes.get("action_date", row.action_date)
            if new_date != row.action_date and self._date_taken(row.action_id, new_date, exclude_id=row.id):
                return self._fail(conflict(
                    "Another entry for this action with the same date already exists",
                    action_id=row.action_id,
                    action_date=new_date.isoformat(),
                ))

            err = check_times(
                changes.get("start_time", row.start_time),
                changes.get("end_time", row.end_time),
            )
            if err:
                return self._fail(err)

            for key, value in changes.items():
                setattr(row, key, bool(value) if key == "is_completed" else value)
            row.updated_at = _utcnow()
            self.session.flush()

            if changes.get("is_completed") is True:
                latest = self.latest_session(row.action_id)
                if latest is None or latest.id != row.id:
                    return self._fail(invalid_transition(
                        "only the latest date may be marked completed",
                        session_id=row.id,
                        latest_session_id=latest.id if latest else None,
                    ))

            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            return None, conflict("Another entry for this action with the same date already exists")
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("edit_session failed for session %s", session_id)
            return None, internal()

        logger.info(
            "Session edited",
            extra={"action_id": row.action_id, "session_id": row.id, "user_id": identity.user_id},
        )
        return row.to_dict(), None

    def delete_session(
        self, identity: Identity, session_id: int, action_id: int | None = None,
    ) -> Result[dict]:
        """Delete one session.  Admin or above; no completeness re-check."""
        err = check_role(identity, Role.ADMIN, "delete_session")
        if err:
            return None, err
        try:
            row = self._load(session_id, action_id)
            if row is None:
                return self._fail(not_found("ActionDate", session_id))
            self._lock_action(row.action_id)
            parent_id = row.action_id
            self.session.delete(row)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("delete_session failed for session %s", session_id)
            return None, internal()

        logger.info(
            "Session deleted",
            extra={"action_id": parent_id, "session_id": session_id, "user_id": identity.user_id},
        )
        return {"id": session_id, "action_id": parent_id}, None
