"""Credential store: persisted user identities."""

import logging
from typing import Dict, Iterable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .database import SessionLocal
from .errors import ConflictError
from .models.user import User
from .passwords import hash_password
from .services import handle_service_error


logger = logging.getLogger(__name__)

# Bootstrap accounts for local demos. Their passwords are public, so seeding
# only happens when the SEED_DEMO_USERS setting is enabled.
DEMO_ACCOUNTS = (
    {"username": "admin", "email": "admin@logistics.com", "password": "admin123"},
    {"username": "user1", "email": "user1@logistics.com", "password": "user123"},
)


def create_user(username: str, email: str, password_hash: str) -> User:
    """Persist a new user, raising ``ConflictError`` on a duplicate name or email."""

    session: Session = SessionLocal()
    try:
        user = User(username=username, email=email, password_hash=password_hash)
        session.add(user)
        session.commit()
        session.refresh(user)
        logger.info("created user id=%s username=%s", user.id, username)
        return user
    except IntegrityError as exc:
        session.rollback()
        logger.info("duplicate registration username=%s", username)
        raise ConflictError("Username or email already exists") from exc
    except Exception as exc:
        handle_service_error(session, exc)
    finally:
        session.close()


def find_by_username(username: str) -> Optional[User]:
    session: Session = SessionLocal()
    try:
        return session.query(User).filter(User.username == username).first()
    except Exception as exc:
        handle_service_error(session, exc)
    finally:
        session.close()


def seed_demo_users(accounts: Iterable[Dict[str, str]] = DEMO_ACCOUNTS) -> int:
    """Insert any missing demo accounts and return how many were created."""

    logger.warning(
        "demo account seeding is enabled; these accounts use well-known passwords"
    )
    created = 0
    session: Session = SessionLocal()
    try:
        for account in accounts:
            exists = (
                session.query(User.id)
                .filter(
                    (User.username == account["username"])
                    | (User.email == account["email"])
                )
                .first()
            )
            if exists:
                continue
            session.add(
                User(
                    username=account["username"],
                    email=account["email"],
                    password_hash=hash_password(account["password"]),
                )
            )
            try:
                session.commit()
            except IntegrityError:
                # Created concurrently by another worker.
                session.rollback()
                continue
            created += 1
            logger.info("created demo user %s", account["username"])
        return created
    except Exception as exc:
        handle_service_error(session, exc)
    finally:
        session.close()
