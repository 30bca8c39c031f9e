"""
Work order lifecycle tests — state machine, completeness gate, notifications.

Tests cover:
  - Transition table and role floors
  - Approve / reject / resubmit
  - Completion request guards (dates, unclosed sessions)
  - Completion approval / rejection
  - Completed is terminal
  - Notification failures never undo a committed transition
  - Work order CRUD guards, date edits and status counts
  - Lock order and the injected session reaching the notifier
"""

from datetime import date, time

import pytest

from maintrack.core.errors import ErrorKind
from maintrack.models import db
from maintrack.models.auth import User
from maintrack.models.notification import Notification
from maintrack.models.work_order import (
    WorkOrder,
    WorkOrderEvent,
    WorkOrderStatus,
    validate_work_order_transition,
)
from maintrack.services.session_ledger import SessionLedger
from maintrack.services.work_order_lifecycle import WorkOrderLifecycle


@pytest.fixture()
def lifecycle():
    return WorkOrderLifecycle()


def _status(wo_id):
    db.session.expire_all()
    return db.session.get(WorkOrder, wo_id).status


def _notifications(user_id, kind=None):
    q = Notification.query.filter_by(user_id=user_id)
    if kind:
        q = q.filter_by(kind=kind)
    return q.all()


class _RecordingNotifier:
    def __init__(self):
        self.calls = []

    def notify(self, user_id, title, message="", kind="info", **kwargs):
        self.calls.append({"user_id": user_id, "title": title, "message": message, **kwargs})


class _BrokenNotifier:
    calls = 0

    @classmethod
    def notify(cls, *args, **kwargs):
        cls.calls += 1
        raise RuntimeError("notification sink down")


# ═════════════════════════════════════════════════════════════════════════
# TRANSITION TABLE
# ═════════════════════════════════════════════════════════════════════════


class TestTransitionTable:
    @pytest.mark.parametrize("status,event", [
        (WorkOrderStatus.PENDING, WorkOrderEvent.APPROVE),
        (WorkOrderStatus.PENDING, WorkOrderEvent.REJECT),
        (WorkOrderStatus.REJECTED, WorkOrderEvent.RESUBMIT),
        (WorkOrderStatus.ONGOING, WorkOrderEvent.REQUEST_COMPLETION),
        (WorkOrderStatus.COMPLETION_REQUESTED, WorkOrderEvent.APPROVE_COMPLETION),
        (WorkOrderStatus.COMPLETION_REQUESTED, WorkOrderEvent.REJECT_COMPLETION),
    ])
    def test_legal_edges(self, status, event):
        assert validate_work_order_transition(status, event) is True

    def test_completed_has_no_outgoing_edge(self):
        for event in WorkOrderEvent:
            assert validate_work_order_transition(WorkOrderStatus.COMPLETED, event) is False

    def test_ongoing_cannot_be_rejected(self):
        assert validate_work_order_transition(WorkOrderStatus.ONGOING, WorkOrderEvent.REJECT) is False


# ═════════════════════════════════════════════════════════════════════════
# APPROVAL
# ═════════════════════════════════════════════════════════════════════════


class TestApproval:
    def test_admin_approves(self, lifecycle, make_work_order, identity_of, user, admin):
        wo = make_work_order(user)
        assert wo["status"] == "pending"

        result, err = lifecycle.approve(identity_of(admin), wo["id"])
        assert err is None
        assert result["status"] == "ongoing"
        assert result["approved_by"] == admin.id
        assert result["approved_at"] is not None

        notes = _notifications(user.id, "approval")
        assert len(notes) == 1
        assert notes[0].related_entity_id == wo["id"]
        assert wo["work_order_no"] in notes[0].message

    def test_user_cannot_approve(self, lifecycle, make_work_order, identity_of, user):
        wo = make_work_order(user)
        _, err = lifecycle.approve(identity_of(user), wo["id"])
        assert err.kind is ErrorKind.FORBIDDEN
        assert _status(wo["id"]) is WorkOrderStatus.PENDING

    def test_approve_twice_is_invalid(self, lifecycle, make_work_order, identity_of, user, admin):
        wo = make_work_order(user, approved=True)
        _, err = lifecycle.approve(identity_of(admin), wo["id"])
        assert err.kind is ErrorKind.INVALID_TRANSITION
        assert err.details["status"] == "ongoing"

    def test_unknown_work_order(self, lifecycle, identity_of, admin):
        _, err = lifecycle.approve(identity_of(admin), 424242)
        assert err.kind is ErrorKind.NOT_FOUND

    def test_failing_notifier_keeps_transition(self, make_work_order, identity_of, user, admin):
        wo = make_work_order(user)
        _BrokenNotifier.calls = 0
        result, err = WorkOrderLifecycle(notifier=_BrokenNotifier).approve(identity_of(admin), wo["id"])

        assert err is None
        assert result["status"] == "ongoing"
        assert _BrokenNotifier.calls == 1
        assert _status(wo["id"]) is WorkOrderStatus.ONGOING

    def test_notification_uses_lifecycle_session(
        self, recording_session, make_work_order, identity_of, user, admin,
    ):
        wo = make_work_order(user)
        notifier = _RecordingNotifier()
        lifecycle = WorkOrderLifecycle(session=recording_session, notifier=notifier)

        _, err = lifecycle.approve(identity_of(admin), wo["id"])
        assert err is None
        assert notifier.calls[0]["session"] is recording_session
        assert notifier.calls[0]["related_entity_id"] == wo["id"]
        assert "Ada Lead" in notifier.calls[0]["message"]
        assert (User, admin.id) in recording_session.loaded


class TestRejectAndResubmit:
    def test_reject_requires_reason(self, lifecycle, make_work_order, identity_of, user, admin):
        wo = make_work_order(user)
        _, err = lifecycle.reject(identity_of(admin), wo["id"], "   ")
        assert err.kind is ErrorKind.VALIDATION
        assert _status(wo["id"]) is WorkOrderStatus.PENDING

    def test_reject_sets_reason_and_notifies(self, lifecycle, make_work_order, identity_of, user, admin):
        wo = make_work_order(user)
        result, err = lifecycle.reject(identity_of(admin), wo["id"], "Wrong equipment")
        assert err is None
        assert result["status"] == "rejected"
        assert result["rejection_reason"] == "Wrong equipment"
        assert len(_notifications(user.id, "rejection")) == 1

    def test_reject_is_only_legal_from_pending(self, lifecycle, make_work_order, identity_of, user, admin):
        wo = make_work_order(user, approved=True)
        _, err = lifecycle.reject(identity_of(admin), wo["id"], "Too late")
        assert err.kind is ErrorKind.INVALID_TRANSITION

    def test_only_creator_resubmits(self, lifecycle, make_work_order, identity_of, user, other_user, admin):
        wo = make_work_order(user)
        lifecycle.reject(identity_of(admin), wo["id"], "Missing details")

        _, err = lifecycle.resubmit(identity_of(other_user), wo["id"])
        assert err.kind is ErrorKind.FORBIDDEN
        assert _status(wo["id"]) is WorkOrderStatus.REJECTED

        result, err = lifecycle.resubmit(identity_of(user), wo["id"])
        assert err is None
        assert result["status"] == "pending"
        assert result["rejection_reason"] is None

    def test_resubmit_requires_rejected(self, lifecycle, make_work_order, identity_of, user):
        wo = make_work_order(user)
        _, err = lifecycle.resubmit(identity_of(user), wo["id"])
        assert err.kind is ErrorKind.INVALID_TRANSITION


# ═════════════════════════════════════════════════════════════════════════
# COMPLETION
# ═════════════════════════════════════════════════════════════════════════


class TestRequestCompletion:
    def test_open_session_blocks_then_closing_it_allows(
        self, lifecycle, make_work_order, make_action, identity_of, user, admin,
    ):
        wo = make_work_order(user)
        result, err = lifecycle.approve(identity_of(admin), wo["id"])
        assert result["status"] == "ongoing"

        action = make_action(wo["id"], action_date=date(2024, 1, 1), start=time(9, 0))
        session_id = action["sessions"][0]["id"]

        _, err = lifecycle.request_completion(identity_of(user), wo["id"], date(2024, 1, 2))
        assert err.kind is ErrorKind.PRECONDITION_FAILED
        unclosed = err.details["unclosed_sessions"]
        assert [u["action_id"] for u in unclosed] == [action["id"]]
        assert unclosed[0]["action_date"] == "2024-01-01"
        assert _status(wo["id"]) is WorkOrderStatus.ONGOING

        _, err = SessionLedger().edit_session(identity_of(user), session_id, {"end_time": time(17, 0)})
        assert err is None

        result, err = lifecycle.request_completion(identity_of(user), wo["id"], date(2024, 1, 2))
        assert err is None
        assert result["status"] == "completion_requested"
        assert result["work_completed_date"] == "2024-01-02"
        assert result["completion_requested_by"] == user.id

    def test_only_latest_session_counts(
        self, lifecycle, make_work_order, make_action, identity_of, user, admin,
    ):
        wo = make_work_order(user, approved=True)
        action = make_action(wo["id"], date(2024, 1, 1), time(9, 0), time(10, 0))
        ledger = SessionLedger()
        _, err = ledger.add_session(identity_of(user), action["id"], date(2024, 1, 2), time(9, 0), time(11, 0))
        assert err is None
        # Reopen the older session; only the latest one gates completion.
        _, err = ledger.edit_session(identity_of(admin), action["sessions"][0]["id"], {"end_time": None})
        assert err is None

        result, err = lifecycle.request_completion(identity_of(user), wo["id"], date(2024, 1, 2))
        assert err is None
        assert result["status"] == "completion_requested"

    def test_no_actions_is_vacuously_complete(self, lifecycle, make_work_order, identity_of, user):
        wo = make_work_order(user, approved=True)
        result, err = lifecycle.request_completion(identity_of(user), wo["id"], date(2024, 1, 1))
        assert err is None
        assert result["status"] == "completion_requested"

    def test_date_before_work_order_date(self, lifecycle, make_work_order, identity_of, user):
        wo = make_work_order(user, approved=True, work_order_date=date(2024, 3, 1))
        _, err = lifecycle.request_completion(identity_of(user), wo["id"], date(2024, 2, 28))
        assert err.kind is ErrorKind.PRECONDITION_FAILED
        assert err.details["work_order_date"] == "2024-03-01"

    def test_date_before_latest_action_date(
        self, lifecycle, make_work_order, make_action, identity_of, user,
    ):
        wo = make_work_order(user, approved=True)
        make_action(wo["id"], date(2024, 1, 5), time(9, 0), time(12, 0))
        _, err = lifecycle.request_completion(identity_of(user), wo["id"], date(2024, 1, 4))
        assert err.kind is ErrorKind.PRECONDITION_FAILED
        assert err.details["latest_action_date"] == "2024-01-05"

    def test_missing_date(self, lifecycle, make_work_order, identity_of, user):
        wo = make_work_order(user, approved=True)
        _, err = lifecycle.request_completion(identity_of(user), wo["id"], None)
        assert err.kind is ErrorKind.VALIDATION

    def test_pending_order_cannot_request_completion(self, lifecycle, make_work_order, identity_of, user):
        wo = make_work_order(user)
        _, err = lifecycle.request_completion(identity_of(user), wo["id"], date(2024, 1, 2))
        assert err.kind is ErrorKind.INVALID_TRANSITION


class TestCompletionDecision:
    @pytest.fixture()
    def requested(self, lifecycle, make_work_order, make_action, identity_of, user):
        wo = make_work_order(user, approved=True)
        action = make_action(wo["id"], date(2024, 1, 1), time(9, 0), time(17, 0))
        result, err = lifecycle.request_completion(identity_of(user), wo["id"], date(2024, 1, 2))
        assert err is None
        return result, action

    def test_superadmin_approves(self, lifecycle, requested, identity_of, user, superadmin):
        wo, _ = requested
        result, err = lifecycle.approve_completion(identity_of(superadmin), wo["id"])
        assert err is None
        assert result["status"] == "completed"
        assert result["completion_approved_at"] is not None
        assert result["completion_approved_by"] == superadmin.id
        assert len(_notifications(user.id, "completion")) == 1

    def test_admin_cannot_approve_completion(self, lifecycle, requested, identity_of, admin):
        wo, _ = requested
        _, err = lifecycle.approve_completion(identity_of(admin), wo["id"])
        assert err.kind is ErrorKind.FORBIDDEN
        assert _status(wo["id"]) is WorkOrderStatus.COMPLETION_REQUESTED

    def test_session_opened_after_request_blocks_approval(
        self, lifecycle, requested, identity_of, user, superadmin,
    ):
        wo, action = requested
        _, err = SessionLedger().add_session(identity_of(user), action["id"], date(2024, 1, 3), time(8, 0))
        assert err is None

        _, err = lifecycle.approve_completion(identity_of(superadmin), wo["id"])
        assert err.kind is ErrorKind.PRECONDITION_FAILED
        assert err.details["unclosed_sessions"][0]["action_date"] == "2024-01-03"
        assert _status(wo["id"]) is WorkOrderStatus.COMPLETION_REQUESTED

    def test_approval_locks_order_before_reading_sessions(
        self, recording_session, requested, identity_of, superadmin,
    ):
        wo, _ = requested
        lifecycle = WorkOrderLifecycle(session=recording_session)
        _, err = lifecycle.approve_completion(identity_of(superadmin), wo["id"])
        assert err is None

        rendered = recording_session.rendered()
        first_lock = next(i for i, sql in enumerate(rendered) if "FOR UPDATE" in sql)
        assert "FROM work_orders" in rendered[first_lock]
        assert not any("action_dates" in sql for sql in rendered[:first_lock])
        assert any("action_dates" in sql for sql in rendered[first_lock:])

    def test_work_order_date_frozen_while_requested(
        self, lifecycle, make_work_order, make_action, identity_of, user, admin, superadmin,
    ):
        wo = make_work_order(user, approved=True)
        make_action(wo["id"], date(2024, 1, 5), time(9, 0), time(17, 0))
        _, err = lifecycle.request_completion(identity_of(user), wo["id"], date(2024, 1, 6))
        assert err is None

        _, err = lifecycle.update(identity_of(admin), wo["id"], {"work_order_date": date(2024, 3, 1)})
        assert err.kind is ErrorKind.INVALID_TRANSITION

        result, err = lifecycle.approve_completion(identity_of(superadmin), wo["id"])
        assert err is None
        assert result["work_order_date"] == "2024-01-01"
        assert result["work_completed_date"] == "2024-01-06"

    def test_unchanged_date_is_accepted_while_requested(self, lifecycle, requested, identity_of, admin):
        wo, _ = requested
        result, err = lifecycle.update(
            identity_of(admin), wo["id"],
            {"work_order_date": date(2024, 1, 1), "description": "Pump overhaul"},
        )
        assert err is None
        assert result["description"] == "Pump overhaul"
        assert result["status"] == "completion_requested"

    def test_admin_rejects_completion(self, lifecycle, requested, identity_of, user, admin):
        wo, _ = requested
        result, err = lifecycle.reject_completion(identity_of(admin), wo["id"], "Paint not dry")
        assert err is None
        assert result["status"] == "ongoing"
        assert result["work_completed_date"] is None
        assert result["completion_rejection_reason"] == "Paint not dry"
        assert result["rejection_reason"] is None
        assert len(_notifications(user.id, "rejection")) == 1

    def test_reject_completion_requires_reason(self, lifecycle, requested, identity_of, admin):
        wo, _ = requested
        _, err = lifecycle.reject_completion(identity_of(admin), wo["id"], "")
        assert err.kind is ErrorKind.VALIDATION

    def test_completed_is_terminal(self, lifecycle, requested, identity_of, superadmin):
        wo, _ = requested
        lifecycle.approve_completion(identity_of(superadmin), wo["id"])
        me = identity_of(superadmin)

        attempts = [
            lifecycle.approve(me, wo["id"]),
            lifecycle.reject(me, wo["id"], "no"),
            lifecycle.resubmit(me, wo["id"]),
            lifecycle.request_completion(me, wo["id"], date(2024, 2, 1)),
            lifecycle.approve_completion(me, wo["id"]),
            lifecycle.reject_completion(me, wo["id"], "no"),
        ]
        for result, err in attempts:
            assert result is None
            assert err.kind is ErrorKind.INVALID_TRANSITION
        assert _status(wo["id"]) is WorkOrderStatus.COMPLETED


# ═════════════════════════════════════════════════════════════════════════
# CRUD
# ═════════════════════════════════════════════════════════════════════════


class TestWorkOrderCrud:
    def test_duplicate_number_conflicts(self, lifecycle, identity_of, user):
        fields = {"work_order_no": "WO-DUP", "work_order_date": date(2024, 1, 1)}
        _, err = lifecycle.create(identity_of(user), fields)
        assert err is None
        _, err = lifecycle.create(identity_of(user), dict(fields))
        assert err.kind is ErrorKind.CONFLICT

    def test_create_requires_number_and_date(self, lifecycle, identity_of, user):
        _, err = lifecycle.create(identity_of(user), {"work_order_date": date(2024, 1, 1)})
        assert err.kind is ErrorKind.VALIDATION
        _, err = lifecycle.create(identity_of(user), {"work_order_no": "WO-X"})
        assert err.kind is ErrorKind.VALIDATION

    def test_status_is_not_editable(self, lifecycle, make_work_order, identity_of, user, admin):
        wo = make_work_order(user)
        _, err = lifecycle.update(identity_of(admin), wo["id"], {"status": "completed"})
        assert err.kind is ErrorKind.VALIDATION
        assert _status(wo["id"]) is WorkOrderStatus.PENDING

    def test_update_header(self, lifecycle, make_work_order, identity_of, user, admin):
        wo = make_work_order(user)
        result, err = lifecycle.update(identity_of(admin), wo["id"], {"equipment_number": " EQ-9 "})
        assert err is None
        assert result["equipment_number"] == "EQ-9"

    def test_list_filters_by_status(self, lifecycle, make_work_order, identity_of, user):
        pending = make_work_order(user)
        ongoing = make_work_order(user, approved=True)

        items, err = lifecycle.list_work_orders(identity_of(user), [WorkOrderStatus.ONGOING])
        assert err is None
        assert [i["id"] for i in items] == [ongoing["id"]]

        items, _ = lifecycle.list_work_orders(identity_of(user))
        assert {i["id"] for i in items} == {pending["id"], ongoing["id"]}

    def test_user_cannot_delete(self, lifecycle, make_work_order, identity_of, user):
        wo = make_work_order(user)
        _, err = lifecycle.delete(identity_of(user), wo["id"])
        assert err.kind is ErrorKind.FORBIDDEN

    def test_work_order_date_cannot_pass_first_action_date(
        self, lifecycle, make_work_order, make_action, identity_of, user, admin,
    ):
        wo = make_work_order(user, approved=True)
        make_action(wo["id"], date(2024, 1, 5), time(9, 0), time(17, 0))

        _, err = lifecycle.update(identity_of(admin), wo["id"], {"work_order_date": date(2024, 1, 6)})
        assert err.kind is ErrorKind.PRECONDITION_FAILED
        assert err.details["earliest_action_date"] == "2024-01-05"

        result, err = lifecycle.update(identity_of(admin), wo["id"], {"work_order_date": date(2024, 1, 5)})
        assert err is None
        assert result["work_order_date"] == "2024-01-05"

    def test_empty_work_order_date(self, lifecycle, make_work_order, identity_of, user, admin):
        wo = make_work_order(user)
        _, err = lifecycle.update(identity_of(admin), wo["id"], {"work_order_date": None})
        assert err.kind is ErrorKind.VALIDATION

    def test_stats_counts_every_status(self, lifecycle, make_work_order, identity_of, user, admin):
        make_work_order(user)
        make_work_order(user)
        make_work_order(user, approved=True)
        rejected = make_work_order(user)
        lifecycle.reject(identity_of(admin), rejected["id"], "Duplicate")

        counts, err = lifecycle.stats(identity_of(user))
        assert err is None
        assert counts == {
            "pending": 2,
            "ongoing": 1,
            "rejected": 1,
            "completion_requested": 0,
            "completed": 0,
            "total": 4,
        }

    def test_stats_on_empty_table(self, lifecycle, identity_of, user):
        counts, err = lifecycle.stats(identity_of(user))
        assert err is None
        assert counts["total"] == 0
        assert counts["completed"] == 0
