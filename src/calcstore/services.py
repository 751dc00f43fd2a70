"""Service layer for saved calculator sessions.

Each user owns a set of named JSON documents. All functions take the owner id
from the caller, which the API derives from the authenticated context.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List

from prometheus_client import Counter
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .database import SessionLocal
from .errors import (
    CalcStoreError,
    CorruptDataError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from .models.named_session import NamedSession


logger = logging.getLogger(__name__)

SESSION_SAVE_COUNTER = Counter(
    "named_sessions_saved_total",
    "Total saved sessions by outcome",
    ["outcome"],
)
SESSION_DELETE_COUNTER = Counter(
    "named_sessions_deleted_total", "Total saved sessions deleted"
)

# Dialects supporting INSERT .. ON CONFLICT DO UPDATE .. RETURNING
_UPSERT_INSERTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}

NOT_FOUND_MESSAGE = "Session not found"

# Primary keys are signed 64-bit integers in SQLite and PostgreSQL.
_MAX_ID = 2**63 - 1


@dataclass(frozen=True)
class UpsertResult:
    id: int
    created: bool


def _utcnow() -> datetime:
    return datetime.utcnow()


def handle_service_error(session: Session, exc: Exception) -> None:
    """Rollback the transaction and re-raise ``exc`` as a ``CalcStoreError``."""
    session.rollback()
    if isinstance(exc, CalcStoreError):
        raise exc
    logger.exception("service layer error", exc_info=exc)
    if isinstance(exc, SQLAlchemyError):
        raise StorageError("Database error") from exc
    raise exc


def _parse_session_id(session_id: Any) -> int:
    try:
        value = int(session_id)
    except (TypeError, ValueError):
        raise NotFoundError(NOT_FOUND_MESSAGE) from None
    if not 0 < value <= _MAX_ID:
        raise NotFoundError(NOT_FOUND_MESSAGE)
    return value


def _serialize_payload(payload: Any) -> str:
    try:
        return json.dumps(payload, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise ValidationError("Session data must be JSON serializable") from exc


def _atomic_upsert(session: Session, owner_id: int, name: str, text: str, now: datetime) -> int:
    insert = _UPSERT_INSERTS[session.get_bind().dialect.name]
    stmt = insert(NamedSession).values(
        user_id=owner_id,
        session_name=name,
        session_data=text,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id", "session_name"],
        set_={
            "session_data": stmt.excluded.session_data,
            "updated_at": stmt.excluded.updated_at,
        },
    ).returning(NamedSession.id)
    return session.execute(stmt).scalar_one()


def upsert_session(owner_id: int, name: str, payload: Any) -> UpsertResult:
    """Create or replace the session called ``name`` for ``owner_id``.

    Parameters
    ----------
    owner_id: int
        Identifier of the owning user.
    name: str
        Session name, unique per owner.
    payload: Any
        JSON-compatible document to store.

    Returns
    -------
    UpsertResult
        Identifier of the stored record and whether it was newly created.
    """
    if not name or not str(name).strip() or payload is None or payload == "":
        raise ValidationError("Session name and data are required")
    text = _serialize_payload(payload)

    session: Session = SessionLocal()
    try:
        now = _utcnow()
        existing_id = (
            session.query(NamedSession.id)
            .filter(
                NamedSession.user_id == owner_id,
                NamedSession.session_name == name,
            )
            .scalar()
        )
        if session.get_bind().dialect.name in _UPSERT_INSERTS:
            record_id = _atomic_upsert(session, owner_id, name, text, now)
        elif existing_id is not None:
            session.query(NamedSession).filter(NamedSession.id == existing_id).update(
                {"session_data": text, "updated_at": now}
            )
            record_id = existing_id
        else:
            record = NamedSession(
                user_id=owner_id,
                session_name=name,
                session_data=text,
                created_at=now,
                updated_at=now,
            )
            session.add(record)
            session.flush()
            record_id = record.id
        session.commit()

        created = existing_id is None
        SESSION_SAVE_COUNTER.labels(outcome="created" if created else "updated").inc()
        logger.info(
            "%s session id=%s user=%s name=%s",
            "created" if created else "updated",
            record_id,
            owner_id,
            name,
        )
        return UpsertResult(id=record_id, created=created)
    except Exception as exc:
        handle_service_error(session, exc)
    finally:
        session.close()


def list_sessions(owner_id: int) -> List[Dict[str, Any]]:
    """Return summaries of a user's sessions, most recently updated first."""

    session: Session = SessionLocal()
    try:
        rows = (
            session.query(
                NamedSession.id,
                NamedSession.session_name,
                NamedSession.created_at,
                NamedSession.updated_at,
            )
            .filter(NamedSession.user_id == owner_id)
            .order_by(NamedSession.updated_at.desc(), NamedSession.id.desc())
            .all()
        )
        return [row._asdict() for row in rows]
    except Exception as exc:
        handle_service_error(session, exc)
    finally:
        session.close()


def get_session_data(owner_id: int, session_id: Any) -> Any:
    """Return the decoded payload of one of the user's sessions."""

    record_id = _parse_session_id(session_id)
    session: Session = SessionLocal()
    try:
        text = (
            session.query(NamedSession.session_data)
            .filter(NamedSession.id == record_id, NamedSession.user_id == owner_id)
            .scalar()
        )
        if text is None:
            raise NotFoundError(NOT_FOUND_MESSAGE)
        try:
            return json.loads(text)
        except ValueError as exc:
            logger.error("undecodable payload in session id=%s", record_id)
            raise CorruptDataError("Invalid session data") from exc
    except Exception as exc:
        handle_service_error(session, exc)
    finally:
        session.close()


def delete_session(owner_id: int, session_id: Any) -> None:
    record_id = _parse_session_id(session_id)
    session: Session = SessionLocal()
    try:
        deleted = (
            session.query(NamedSession)
            .filter(NamedSession.id == record_id, NamedSession.user_id == owner_id)
            .delete(synchronize_session=False)
        )
        if deleted == 0:
            raise NotFoundError(NOT_FOUND_MESSAGE)
        session.commit()
        SESSION_DELETE_COUNTER.inc()
        logger.info("deleted session id=%s user=%s", record_id, owner_id)
    except Exception as exc:
        handle_service_error(session, exc)
    finally:
        session.close()
