"""Pytest fixtures and configuration for focusgrid tests."""

import pytest
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Set
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from focusgrid.database.database import Base
from focusgrid.database.repository import TaskRepository
from focusgrid.database.push_subscription_repository import PushSubscriptionRepository
from focusgrid.local.database import build_local_engine, create_local_session_factory
from focusgrid.local.outbox import RetryPolicy
from focusgrid.local.store import LocalStore
from focusgrid.models.push import PushEndpoint, PushPayload
from focusgrid.models.task import Task, TaskStatus, TaskPriority
from focusgrid.notifications.web_push import PushDeliveryError, PushTransport
from focusgrid.sync.change_feed import ChangeFeed
from focusgrid.sync.coordinator import SyncCoordinator
from focusgrid.sync.remote import RemoteStore, RemoteStoreError, RepositoryRemoteStore


# Use in-memory SQLite database for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def server_engine():
    """In-memory remote store database, created fresh for each test."""
    from focusgrid.database import models  # noqa: F401

    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def server_session_factory(server_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=server_engine)


@pytest.fixture
def db_session(server_session_factory) -> Session:
    session = server_session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def change_feed():
    return ChangeFeed()


@pytest.fixture
def task_repository(db_session: Session):
    """Create a TaskRepository instance for testing."""
    return TaskRepository(db_session)


@pytest.fixture
def push_repository(db_session: Session):
    return PushSubscriptionRepository(db_session)


@pytest.fixture
def test_user_id():
    """Test user ID for multi-user testing."""
    return "test-user-123"


@pytest.fixture
def other_user_id():
    return "other-user-456"


@pytest.fixture
def make_local_store():
    """Factory for device stores, each backed by its own in-memory database."""
    engines = []

    def _make(retry_policy: Optional[RetryPolicy] = None) -> LocalStore:
        engine = build_local_engine("sqlite://")
        engines.append(engine)
        return LocalStore(create_local_session_factory(engine), retry_policy=retry_policy)

    yield _make
    for engine in engines:
        engine.dispose()


@pytest.fixture
def local_store(make_local_store):
    return make_local_store()


@pytest.fixture
def remote_store(server_session_factory, change_feed):
    """In-process remote store that publishes to the test change feed."""
    return RepositoryRemoteStore(server_session_factory, feed=change_feed)


@pytest.fixture
def coordinator(local_store, remote_store):
    return SyncCoordinator(local_store, remote_store)


@pytest.fixture
def sample_task_base(test_user_id):
    """Base task data for creating test tasks.

    Returns a dict with default task attributes that can be overridden.
    """
    now = datetime.utcnow()
    return {
        "id": str(uuid.uuid4()),
        "user_id": test_user_id,
        "title": "Test Task",
        "status": TaskStatus.TODO,
        "priority": TaskPriority.NORMAL,
        "tags": [],
        "scheduled_date": None,
        "due_time": None,
        "timezone": "UTC",
        "created_at": now,
        "updated_at": now,
    }


@pytest.fixture
def make_task(sample_task_base):
    """Build a Task with a fresh id, overriding any field."""

    def _make(**overrides) -> Task:
        return Task(**{**sample_task_base, "id": str(uuid.uuid4()), **overrides})

    return _make


class FailingRemote(RemoteStore):
    """Wraps a remote store and fails calls for chosen task ids."""

    def __init__(self, inner: RemoteStore, fail_task_ids: Optional[Set[str]] = None):
        self.inner = inner
        self.fail_task_ids: Set[str] = set(fail_task_ids or ())
        self.fail_fetch = False
        self.calls: List[tuple] = []

    def upsert_task(self, row: Dict[str, Any]) -> None:
        self.calls.append(("upsert", row["id"]))
        if row["id"] in self.fail_task_ids:
            raise RemoteStoreError("simulated network failure")
        self.inner.upsert_task(row)

    def delete_task(self, user_id: str, task_id: str) -> None:
        self.calls.append(("delete", task_id))
        if task_id in self.fail_task_ids:
            raise RemoteStoreError("simulated network failure")
        self.inner.delete_task(user_id, task_id)

    def fetch_changes(self, user_id: str, since: datetime, limit: int) -> List[Dict[str, Any]]:
        self.calls.append(("fetch", user_id))
        if self.fail_fetch:
            raise RemoteStoreError("simulated network failure")
        return self.inner.fetch_changes(user_id, since, limit)


@pytest.fixture
def failing_remote(remote_store):
    return FailingRemote(remote_store)


class FakePushTransport(PushTransport):
    """Records deliveries; endpoints listed in `failures` raise with that status code."""

    def __init__(self):
        self.sent: List[tuple] = []
        self.failures: Dict[str, Optional[int]] = {}

    def send(self, endpoint: PushEndpoint, payload: PushPayload) -> None:
        if endpoint.endpoint in self.failures:
            raise PushDeliveryError("simulated push failure", status_code=self.failures[endpoint.endpoint])
        self.sent.append((endpoint.endpoint, payload))


@pytest.fixture
def push_transport():
    return FakePushTransport()


@pytest.fixture
def auth_headers(test_user_id):
    from focusgrid.auth.jwt import create_access_token

    return {"Authorization": f"Bearer {create_access_token(test_user_id)}"}


@pytest.fixture
def test_client(db_session: Session, change_feed, push_transport):
    """Create a FastAPI test client with overridden database, feed and push dependencies."""
    from focusgrid.api.app import app, get_change_feed, get_push_transport
    from focusgrid.database.database import get_db

    # Override the get_db dependency to use our test database session
    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close the session here, let the fixture handle it

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_change_feed] = lambda: change_feed
    app.dependency_overrides[get_push_transport] = lambda: push_transport

    with TestClient(app) as client:
        yield client

    # Clean up dependency overrides
    app.dependency_overrides.clear()
