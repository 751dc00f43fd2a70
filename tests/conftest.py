import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from calcstore import database, services, users
from calcstore.api import create_app
from calcstore.config import Settings
from calcstore.context_store import InMemoryContextStore
from calcstore.database import init_db, make_engine


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def session_local(monkeypatch):
    """Provide an isolated in-memory database for each test."""
    engine = make_engine("sqlite://")
    init_db(engine)
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    monkeypatch.setattr(services, "SessionLocal", TestingSessionLocal)
    monkeypatch.setattr(users, "SessionLocal", TestingSessionLocal)
    yield TestingSessionLocal
    engine.dispose()


@pytest.fixture
def restore_database():
    """Undo any engine switch made by create_app during the test."""
    original = database.engine
    yield
    if database.engine is not original:
        database.engine.dispose()
        database.engine = original
        database.SessionLocal.configure(bind=original)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def context_store(clock):
    return InMemoryContextStore(clock=clock)


@pytest.fixture
def app_settings():
    return Settings(database_url="sqlite://", session_ttl_seconds=3600)


@pytest.fixture
def app(session_local, restore_database, app_settings, context_store):
    return create_app(app_settings, context_store)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def make_client(app):
    """Build extra clients with their own cookie jars against the same app."""

    def _make():
        return TestClient(app)

    return _make


def register(client, username, email=None, password="secret"):
    return client.post(
        "/api/register",
        json={
            "username": username,
            "email": email or f"{username}@example.com",
            "password": password,
        },
    )
