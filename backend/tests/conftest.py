"""Pytest fixtures — file-backed SQLite database, rebuilt for every test."""
import os

# Must be set before app.config is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("DEADLINE_MONITOR_ENABLED", "false")

from datetime import date, time

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

from app.database import Base, get_db
from app.main import app
from app.errors import ProvisioningError
from app.models.directory import Group, GroupMember, GroupRole, User
from app.services import group_request_service, request_service
from app.services.directory import SqlDirectory
from app.services.meeting_provisioner import JitsiMeetingProvisioner, MeetingProvisioner
from app.store.base import ChangeFeed
from app.store.sql import SqlRecordStore
from app.timeutil import utcnow

# Import all models so they register with Base.metadata
from app.models.request import Request                   # noqa: F401
from app.models.response import Response, HiddenRequest  # noqa: F401
from app.models.group_request import GroupRequest        # noqa: F401
from app.models.meeting import Meeting                   # noqa: F401
from app.models.request_mutation import RequestMutation  # noqa: F401

SQLITE_URL = "sqlite:///./test.db"


@pytest.fixture(scope="function")
def db_engine():
    """Create a fresh SQLite engine for each test."""
    engine = create_engine(SQLITE_URL, connect_args={"check_same_thread": False})

    # Enable WAL mode for better concurrency
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db(session_factory):
    """Yield a database session, closed after the test."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def feed():
    """A private change feed so subscriptions never leak between tests."""
    return ChangeFeed()


@pytest.fixture(scope="function")
def store(db, feed):
    return SqlRecordStore(db, feed=feed)


@pytest.fixture(scope="function")
def provisioner(store):
    return JitsiMeetingProvisioner(store)


@pytest.fixture(scope="function")
def directory(db):
    return SqlDirectory(db)


@pytest.fixture(scope="function")
def client(session_factory):
    """FastAPI TestClient with the database dependency overridden to use SQLite."""

    def _override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


class FailingProvisioner(MeetingProvisioner):
    """Provisioner whose room service is down."""

    def __init__(self):
        self.calls = 0

    def provision(self, request_id, request_type, roster, scheduled_start_utc=None):
        self.calls += 1
        raise ProvisioningError("Meeting service unavailable", request_id=request_id)

    def mark_ended(self, meeting_id):
        return False

    def join(self, meeting_id, user_id, now=None):
        raise ProvisioningError("Meeting service unavailable", meeting_id=meeting_id)


# ---------------------------------------------------------------------------
# Helpers: directory rows and requests in a given state
# ---------------------------------------------------------------------------
def create_test_user(db, user_id: str, name: str = None, tz: str = "UTC") -> User:
    """Helper — insert a directory user."""
    user = User(user_id=user_id, display_name=name or user_id.title(), default_timezone=tz)
    db.add(user)
    db.commit()
    return user


def create_test_group(db, creator_id: str, member_ids=(), group_id: str = "group-1") -> Group:
    """Helper — insert a group with the creator as admin plus members."""
    group = Group(group_id=group_id, name="Study Group", created_by=creator_id)
    db.add(group)
    db.add(GroupMember(group_id=group_id, user_id=creator_id, role=GroupRole.admin))
    for user_id in member_ids:
        db.add(GroupMember(group_id=group_id, user_id=user_id, role=GroupRole.member))
    db.commit()
    return group


def publishable_fields(**overrides) -> dict:
    fields = {
        "topic": "Linear algebra refresher",
        "description": "Eigenvalues and diagonalisation before my exam",
        "subject": "Mathematics",
        "payment_amount": 250.0,
        "preferred_date": date(2026, 11, 2),
        "preferred_time": time(15, 0),
        "duration_minutes": 60,
    }
    fields.update(overrides)
    return fields


def create_open_request(store, owner_id: str = "olivia", **overrides):
    """Helper — a published one-to-one request."""
    return request_service.create_request(store, owner_id, publishable_fields(**overrides), publish_now=True)


def group_request_fields(**overrides) -> dict:
    fields = {
        "title": "Intro to Rust",
        "description": "Ownership, borrowing and lifetimes for beginners",
        "group_id": "group-1",
        "category": "Programming",
        "rate": 10.0,
    }
    fields.update(overrides)
    return fields


def create_group_request(store, creator_id: str = "carla", **overrides):
    """Helper — a pending group request (no directory check)."""
    return group_request_service.create_group_request(store, creator_id, group_request_fields(**overrides))


def group_request_in_funding(store, creator_id="carla", voters=("v1", "v2", "v3", "v4", "v5"),
                             teacher_id="tom", deadline_hours=24, now=None, **overrides):
    """Helper — drive a group request through voting and teacher selection."""
    now = now or utcnow()
    record = create_group_request(store, creator_id, **overrides)
    for voter in voters:
        group_request_service.vote(store, record.request_id, voter, now=now)
    group_request_service.apply_to_teach(store, record.request_id, teacher_id, now=now)
    return group_request_service.select_teacher(
        store, record.request_id, creator_id, teacher_id, deadline_hours, now=now
    )
