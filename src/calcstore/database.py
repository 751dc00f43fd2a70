"""Database setup for user accounts and saved calculator sessions."""

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from .config import settings

Base = declarative_base()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def make_engine(url: str) -> Engine:
    """Create an engine for ``url``.

    SQLite connections are shared across the request threadpool and enforce
    foreign keys. In-memory SQLite uses a single static connection so every
    session sees the same database.
    """
    if not url.startswith("sqlite"):
        return create_engine(url, future=True)

    kwargs = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    engine = create_engine(url, future=True, **kwargs)
    event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


engine = make_engine(settings.database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def configure_database(url: str) -> Engine:
    """Point the module engine and ``SessionLocal`` at ``url`` and return the engine."""
    global engine
    if make_url(url) != engine.url:
        engine = make_engine(url)
        SessionLocal.configure(bind=engine)
    return engine


def init_db(bind: Engine | None = None) -> None:
    """Create database tables if they do not exist."""
    from . import models  # noqa: F401  registers the ORM tables

    Base.metadata.create_all(bind=bind or engine)
