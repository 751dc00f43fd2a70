from fastapi.testclient import TestClient
from sqlalchemy import create_engine, text

from calcstore.api import create_app
from calcstore.config import Settings


def test_startup_creates_tables_in_configured_database(tmp_path, restore_database):
    db_path = tmp_path / "mine.db"
    url = f"sqlite:///{db_path}"
    app = create_app(Settings(database_url=url))

    with TestClient(app) as client:
        resp = client.post(
            "/api/register",
            json={"username": "alice", "email": "alice@x.com", "password": "pw1"},
        )
        assert resp.status_code == 200

    assert db_path.exists()
    engine = create_engine(url)
    try:
        with engine.connect() as conn:
            names = conn.execute(text("SELECT username FROM users")).scalars().all()
    finally:
        engine.dispose()
    assert names == ["alice"]


def test_demo_accounts_seeded_on_startup_when_enabled(tmp_path, restore_database):
    settings = Settings(
        database_url=f"sqlite:///{tmp_path / 'seeded.db'}", seed_demo_users=True
    )
    with TestClient(create_app(settings)) as client:
        resp = client.post("/api/login", json={"username": "admin", "password": "admin123"})
        assert resp.status_code == 200
        assert resp.json()["username"] == "admin"


def test_demo_accounts_absent_by_default(tmp_path, restore_database):
    settings = Settings(database_url=f"sqlite:///{tmp_path / 'plain.db'}")
    assert settings.seed_demo_users is False
    with TestClient(create_app(settings)) as client:
        resp = client.post("/api/login", json={"username": "admin", "password": "admin123"})
        assert resp.status_code == 401
