import os

os.environ["DATABASE_URL"] = "sqlite://"

import itertools
import json
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from taskguard.dependencies import build_services, get_events, get_host, get_session
from taskguard.main import app
from taskguard.services.event_service import EventService


class FakeHost:
    """Records submissions instead of talking to Celery."""

    def __init__(self):
        self.submitted = []
        self.cancel = MagicMock(return_value=0)
        self._ids = itertools.count(1)

    def submit(self, hook, payload, not_before, priority, job_id=None):
        job_id = job_id or f"job-{next(self._ids)}"
        self.submitted.append({
            "hook": hook,
            "payload": payload,
            "not_before": not_before,
            "priority": priority,
            "job_id": job_id,
        })
        return job_id


@pytest.fixture(name="engine")
def engine_fixture():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(name="session")
def session_fixture(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture(name="file_engine")
def file_engine_fixture(tmp_path):
    """File-backed engine for tests that hit the store from several threads."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'taskguard.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        # serialize writers instead of failing with "database is locked"
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(name="redis_client")
def redis_client_fixture():
    return MagicMock()


@pytest.fixture(name="published")
def published_fixture(redis_client):
    """Events sent to the pub/sub channel, optionally filtered by type."""
    def _published(event_type=None):
        out = [json.loads(c.args[1]) for c in redis_client.publish.call_args_list]
        return [e for e in out if event_type is None or e["type"] == event_type]
    return _published


@pytest.fixture(name="events")
def events_fixture(redis_client):
    return EventService(client=redis_client, channel="test:events")


@pytest.fixture(name="host")
def host_fixture():
    return FakeHost()


@pytest.fixture(name="services")
def services_fixture(session, host, events):
    return build_services(session, host=host, events=events, http_client=MagicMock())


@pytest.fixture(name="client")
def client_fixture(session, host, events):
    def get_session_override():
        return session

    app.dependency_overrides[get_session] = get_session_override
    app.dependency_overrides[get_host] = lambda: host
    app.dependency_overrides[get_events] = lambda: events
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
