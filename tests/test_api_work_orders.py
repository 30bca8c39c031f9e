"""
Work order API tests — HTTP flows end to end.

Tests cover:
  - Create / list / detail / update / delete, status counts
  - Approve → request completion → approve completion over HTTP
  - Error envelope and status codes for each failure kind
  - Findings, actions and spare parts endpoints
"""

import pytest

BASE = "/api/v1/work-orders"


def _create(client, headers, number="WO-1", date="2024-01-01", **extra):
    body = {"work_order_no": number, "work_order_date": date, "equipment_number": "EQ-1", **extra}
    return client.post(BASE, json=body, headers=headers)


@pytest.fixture()
def h_user(user, auth_headers):
    return auth_headers(user)


@pytest.fixture()
def h_admin(admin, auth_headers):
    return auth_headers(admin)


@pytest.fixture()
def h_super(superadmin, auth_headers):
    return auth_headers(superadmin)


@pytest.fixture()
def ongoing(client, h_user, h_admin):
    res = _create(client, h_user)
    assert res.status_code == 201
    wo = res.get_json()["data"]
    res = client.put(f"{BASE}/{wo['id']}/approve", headers=h_admin)
    assert res.status_code == 200
    return res.get_json()["data"]


def _add_action(client, h_admin, wo_id, **session):
    res = client.post("/api/v1/findings", json={"work_order_id": wo_id, "description": "Oil leak"},
                      headers=h_admin)
    assert res.status_code == 201
    finding = res.get_json()["data"]
    body = {"finding_id": finding["id"], "description": "Replace gasket",
            "action_date": "2024-01-01", "start_time": "09:00", **session}
    res = client.post("/api/v1/actions", json=body, headers=h_admin)
    assert res.status_code == 201, res.get_json()
    return res.get_json()["data"]


# ═════════════════════════════════════════════════════════════════════════
# CRUD
# ═════════════════════════════════════════════════════════════════════════


class TestWorkOrderCrud:
    def test_create_requires_auth(self, client):
        assert _create(client, {}).status_code == 401

    def test_create_and_get(self, client, h_user, user):
        res = _create(client, h_user, km_hrs="1200")
        assert res.status_code == 201
        wo = res.get_json()["data"]
        assert wo["status"] == "pending"
        assert wo["km_hrs"] == 1200
        assert wo["requested_by_id"] == user.id

        res = client.get(f"{BASE}/{wo['id']}", headers=h_user)
        assert res.status_code == 200
        detail = res.get_json()["data"]
        assert detail["findings"] == []
        assert detail["all_sessions_closed"] is True

    def test_bad_date(self, client, h_user):
        res = _create(client, h_user, date="01/02/2024")
        assert res.status_code == 400
        assert res.get_json()["details"]["field"] == "work_order_date"

    def test_date_with_trailing_text(self, client, h_user):
        res = _create(client, h_user, date="2024-01-01garbage")
        assert res.status_code == 400
        assert res.get_json()["details"]["field"] == "work_order_date"

    def test_datetime_string_is_truncated_to_date(self, client, h_user):
        res = _create(client, h_user, date="2024-01-01T08:30:00")
        assert res.status_code == 201
        assert res.get_json()["data"]["work_order_date"] == "2024-01-01"

    def test_duplicate_number(self, client, h_user):
        _create(client, h_user)
        res = _create(client, h_user)
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT"

    def test_list_with_status_filter(self, client, h_user, ongoing):
        _create(client, h_user, number="WO-2")
        res = client.get(f"{BASE}?status=ongoing", headers=h_user)
        assert [w["id"] for w in res.get_json()["data"]] == [ongoing["id"]]

        res = client.get(f"{BASE}?status=all", headers=h_user)
        assert len(res.get_json()["data"]) == 2

        res = client.get(f"{BASE}?status=bogus", headers=h_user)
        assert res.status_code == 400

    def test_status_cannot_be_set_through_update(self, client, h_admin, ongoing):
        res = client.put(f"{BASE}/{ongoing['id']}", json={"status": "completed"}, headers=h_admin)
        assert res.status_code == 400

    def test_user_cannot_update(self, client, h_user, ongoing):
        res = client.put(f"{BASE}/{ongoing['id']}", json={"description": "x"}, headers=h_user)
        assert res.status_code == 403

    def test_stats(self, client, h_user, ongoing):
        _create(client, h_user, number="WO-2")
        assert client.get(f"{BASE}/stats").status_code == 401

        res = client.get(f"{BASE}/stats", headers=h_user)
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["ongoing"] == 1
        assert data["pending"] == 1
        assert data["completed"] == 0
        assert data["total"] == 2

    def test_work_order_date_after_first_session(self, client, h_admin, ongoing):
        _add_action(client, h_admin, ongoing["id"], action_date="2024-01-03")
        res = client.put(f"{BASE}/{ongoing['id']}", json={"work_order_date": "2024-01-04"}, headers=h_admin)
        assert res.status_code == 422
        assert res.get_json()["details"]["earliest_action_date"] == "2024-01-03"

    def test_delete(self, client, h_admin, ongoing):
        _add_action(client, h_admin, ongoing["id"])
        res = client.delete(f"{BASE}/{ongoing['id']}", headers=h_admin)
        assert res.status_code == 200
        assert client.get(f"{BASE}/{ongoing['id']}", headers=h_admin).status_code == 404


# ═════════════════════════════════════════════════════════════════════════
# LIFECYCLE OVER HTTP
# ═════════════════════════════════════════════════════════════════════════


class TestLifecycleApi:
    def test_user_cannot_approve(self, client, h_user):
        wo = _create(client, h_user).get_json()["data"]
        res = client.put(f"{BASE}/{wo['id']}/approve", headers=h_user)
        assert res.status_code == 403

    def test_reject_and_resubmit(self, client, h_user, h_admin):
        wo = _create(client, h_user).get_json()["data"]

        res = client.put(f"{BASE}/{wo['id']}/reject", json={}, headers=h_admin)
        assert res.status_code == 400

        res = client.put(f"{BASE}/{wo['id']}/reject", json={"reason": "Duplicate"}, headers=h_admin)
        assert res.status_code == 200
        assert res.get_json()["data"]["status"] == "rejected"

        res = client.put(f"{BASE}/{wo['id']}/resubmit", headers=h_admin)
        assert res.status_code == 403

        res = client.put(f"{BASE}/{wo['id']}/resubmit", headers=h_user)
        assert res.status_code == 200
        assert res.get_json()["data"]["status"] == "pending"

    def test_full_completion_flow(self, client, h_user, h_admin, h_super, ongoing):
        action = _add_action(client, h_admin, ongoing["id"])
        session_id = action["sessions"][0]["id"]
        wo_url = f"{BASE}/{ongoing['id']}"

        res = client.put(f"{wo_url}/complete", json={"work_completed_date": "2024-01-02"}, headers=h_user)
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_PRECONDITION_FAILED"
        assert body["details"]["unclosed_sessions"][0]["session_id"] == session_id

        res = client.put(f"/api/v1/actions/{action['id']}/dates/{session_id}",
                         json={"end_time": "17:00"}, headers=h_user)
        assert res.status_code == 200

        res = client.put(f"{wo_url}/complete", json={"work_completed_date": "2024-01-02"}, headers=h_user)
        assert res.status_code == 200
        assert res.get_json()["data"]["status"] == "completion_requested"

        res = client.get(f"{BASE}/completion-requests", headers=h_admin)
        assert [w["id"] for w in res.get_json()["data"]] == [ongoing["id"]]

        res = client.put(f"{wo_url}/approve-completion", json={"approved": True}, headers=h_admin)
        assert res.status_code == 403

        res = client.put(f"{wo_url}/approve-completion", json={"approved": True}, headers=h_super)
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["status"] == "completed"
        assert data["completion_approved_at"] is not None

        res = client.put(wo_url, json={"description": "late edit"}, headers=h_super)
        assert res.status_code == 409

    def test_reject_completion(self, client, h_user, h_admin, ongoing):
        wo_url = f"{BASE}/{ongoing['id']}"
        client.put(f"{wo_url}/complete", json={"work_completed_date": "2024-01-02"}, headers=h_user)

        res = client.put(f"{wo_url}/approve-completion", json={"approved": False}, headers=h_admin)
        assert res.status_code == 400

        res = client.put(f"{wo_url}/approve-completion",
                         json={"approved": False, "rejection_reason": "Redo torque check"},
                         headers=h_admin)
        assert res.status_code == 200
        data = res.get_json()["data"]
        assert data["status"] == "ongoing"
        assert data["work_completed_date"] is None
        assert data["completion_rejection_reason"] == "Redo torque check"

    def test_approved_flag_must_be_boolean(self, client, h_admin, ongoing):
        res = client.put(f"{BASE}/{ongoing['id']}/approve-completion",
                         json={"approved": "yes"}, headers=h_admin)
        assert res.status_code == 400

    def test_completion_date_required(self, client, h_user, ongoing):
        res = client.put(f"{BASE}/{ongoing['id']}/complete", json={}, headers=h_user)
        assert res.status_code == 400

    def test_invalid_transition_is_409(self, client, h_user, ongoing):
        res = client.put(f"{BASE}/{ongoing['id']}/resubmit", headers=h_user)
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_INVALID_TRANSITION"


# ═════════════════════════════════════════════════════════════════════════
# FINDINGS / ACTIONS / SPARE PARTS
# ═════════════════════════════════════════════════════════════════════════


class TestChildEndpoints:
    def test_user_cannot_create_finding(self, client, h_user, ongoing):
        res = client.post("/api/v1/findings", json={"work_order_id": ongoing["id"], "description": "x"},
                          headers=h_user)
        assert res.status_code == 403

    def test_finding_requires_work_order_id(self, client, h_admin):
        res = client.post("/api/v1/findings", json={"description": "x"}, headers=h_admin)
        assert res.status_code == 400

    def test_action_requires_start_time(self, client, h_admin, ongoing):
        res = client.post("/api/v1/findings", json={"work_order_id": ongoing["id"], "description": "x"},
                          headers=h_admin)
        finding = res.get_json()["data"]
        res = client.post("/api/v1/actions",
                          json={"finding_id": finding["id"], "description": "y", "action_date": "2024-01-01"},
                          headers=h_admin)
        assert res.status_code == 400

    def test_action_before_work_order_date(self, client, h_admin, ongoing):
        res = client.post("/api/v1/findings", json={"work_order_id": ongoing["id"], "description": "x"},
                          headers=h_admin)
        finding = res.get_json()["data"]
        res = client.post("/api/v1/actions",
                          json={"finding_id": finding["id"], "description": "y",
                                "action_date": "2023-12-31", "start_time": "09:00"},
                          headers=h_admin)
        assert res.status_code == 422

    def test_spare_parts(self, client, h_admin, h_user, ongoing):
        action = _add_action(client, h_admin, ongoing["id"])
        body = {"action_id": action["id"], "part_name": "Gasket", "part_number": "G-12", "quantity": 0}
        assert client.post("/api/v1/spare-parts", json=body, headers=h_admin).status_code == 400

        body["quantity"] = 2
        assert client.post("/api/v1/spare-parts", json=body, headers=h_user).status_code == 403
        res = client.post("/api/v1/spare-parts", json=body, headers=h_admin)
        assert res.status_code == 201
        part = res.get_json()["data"]

        detail = client.get(f"{BASE}/{ongoing['id']}", headers=h_user).get_json()["data"]
        parts = detail["findings"][0]["actions"][0]["spare_parts"]
        assert [p["part_number"] for p in parts] == ["G-12"]

        res = client.delete(f"/api/v1/spare-parts/{part['id']}", headers=h_admin)
        assert res.status_code == 200

    def test_update_and_delete_finding(self, client, h_admin, ongoing):
        action = _add_action(client, h_admin, ongoing["id"])
        finding_id = action["finding_id"]

        res = client.put(f"/api/v1/findings/{finding_id}", json={"description": ""}, headers=h_admin)
        assert res.status_code == 400
        res = client.put(f"/api/v1/findings/{finding_id}", json={"description": "Oil leak at pump"},
                         headers=h_admin)
        assert res.get_json()["data"]["description"] == "Oil leak at pump"

        assert client.delete(f"/api/v1/findings/{finding_id}", headers=h_admin).status_code == 200
        assert client.get(f"/api/v1/actions/{action['id']}/dates", headers=h_admin).status_code == 404
