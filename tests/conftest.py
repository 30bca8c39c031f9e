"""
Shared pytest fixtures for the work order tracker test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - user / admin / superadmin: one User per role
    - identity_of / auth_headers: helpers to act as a given user
    - make_work_order / make_action: service-level builders
    - recording_session: db.session proxy that records executed statements
"""

from datetime import date, time

import pytest
from sqlalchemy.dialects import postgresql

from maintrack import create_app
from maintrack.auth import Identity
from maintrack.models import db as _db
from maintrack.models.auth import Role, User
from maintrack.services.jwt_service import generate_access_token
from maintrack.services.work_order_aggregate import WorkOrderAggregate
from maintrack.services.work_order_lifecycle import WorkOrderLifecycle
from maintrack.utils.crypto import hash_password

PASSWORD = "secret123"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Users ────────────────────────────────────────────────────────────────


def _make_user(username, role, first_name="Test", last_name="User"):
    u = User(
        username=username,
        first_name=first_name,
        last_name=last_name,
        password_hash=hash_password(PASSWORD, rounds=4),
    )
    u.role = role
    _db.session.add(u)
    _db.session.commit()
    return u


@pytest.fixture()
def user():
    return _make_user("tech", Role.USER, "Tina", "Tech")


@pytest.fixture()
def other_user():
    return _make_user("tech2", Role.USER, "Otto", "Other")


@pytest.fixture()
def admin():
    return _make_user("lead", Role.ADMIN, "Ada", "Lead")


@pytest.fixture()
def superadmin():
    return _make_user("boss", Role.SUPERADMIN, "Sam", "Boss")


@pytest.fixture()
def identity_of():
    def _identity(u):
        return Identity(user_id=u.id, username=u.username, role=u.role)
    return _identity


@pytest.fixture()
def auth_headers():
    def _headers(u):
        token = generate_access_token(u.id, u.username, u.role.label)
        return {"Authorization": f"Bearer {token}"}
    return _headers


# ── Domain builders ──────────────────────────────────────────────────────


@pytest.fixture()
def make_work_order(identity_of, admin):
    """Create a work order owned by *owner*, optionally approved."""
    counter = {"n": 0}

    def _make(owner, approved=False, work_order_date=date(2024, 1, 1)):
        counter["n"] += 1
        lifecycle = WorkOrderLifecycle()
        wo, err = lifecycle.create(identity_of(owner), {
            "work_order_no": f"WO-{counter['n']:04d}",
            "work_order_date": work_order_date,
            "equipment_number": "EQ-7",
            "requested_by": owner.full_name,
        })
        assert err is None, err
        if approved:
            wo, err = lifecycle.approve(identity_of(admin), wo["id"])
            assert err is None, err
        return wo
    return _make


@pytest.fixture()
def make_action(identity_of, admin):
    """Create a finding + action with a first session on the given work order."""
    def _make(work_order_id, action_date=date(2024, 1, 1), start=time(8, 0), end=None):
        agg = WorkOrderAggregate()
        finding, err = agg.create_finding(identity_of(admin), work_order_id, "Leaking seal")
        assert err is None, err
        action, err = agg.create_action(
            identity_of(admin), finding["id"], "Replace seal", action_date, start, end,
        )
        assert err is None, err
        return action
    return _make


# ── Statement recording ──────────────────────────────────────────────────


class RecordingSession:
    """Delegates to db.session; keeps every executed statement and get() key."""

    def __init__(self):
        self.statements = []
        self.loaded = []

    def execute(self, statement, *args, **kwargs):
        self.statements.append(statement)
        return _db.session.execute(statement, *args, **kwargs)

    def get(self, entity, ident, *args, **kwargs):
        self.loaded.append((entity, ident))
        return _db.session.get(entity, ident, *args, **kwargs)

    def __getattr__(self, name):
        return getattr(_db.session, name)

    def rendered(self):
        """Statements compiled for PostgreSQL, where FOR UPDATE is kept."""
        dialect = postgresql.dialect()
        return [str(s.compile(dialect=dialect)) for s in self.statements]

    def row_locks(self):
        return [sql for sql in self.rendered() if "FOR UPDATE" in sql]


@pytest.fixture()
def recording_session():
    return RecordingSession()
