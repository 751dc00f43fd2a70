"""Authentication service and the access-control dependency for the API."""

import logging
from typing import Annotated, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from prometheus_client import Counter

from . import users
from .context_store import AuthenticatedContext, ContextStore
from .errors import InvalidCredentialsError, UnauthorizedError, ValidationError
from .passwords import burn_verification, hash_password, verify_password

logger = logging.getLogger(__name__)

LOGIN_COUNTER = Counter("logins_total", "Login attempts by outcome", ["outcome"])

security = HTTPBearer(auto_error=False)


class AuthService:
    """Registers users and maps opaque tokens to identities."""

    def __init__(self, store: ContextStore, ttl_seconds: int):
        self.store = store
        self.ttl_seconds = ttl_seconds

    def register(self, username: str, email: str, password: str) -> AuthenticatedContext:
        if not username or not email or not password:
            raise ValidationError("All fields are required")
        user = users.create_user(username, email, hash_password(password))
        return self.store.issue(user.id, user.username, self.ttl_seconds)

    def login(self, username: str, password: str) -> AuthenticatedContext:
        """Check credentials and issue a context.

        Unknown usernames and wrong passwords raise the same
        ``InvalidCredentialsError`` so that callers cannot probe for
        registered names.
        """
        if not username or not password:
            raise ValidationError("Username and password are required")

        user = users.find_by_username(username)
        if user is None:
            burn_verification(password)
            LOGIN_COUNTER.labels(outcome="failure").inc()
            logger.info("login failed")
            raise InvalidCredentialsError("Invalid credentials")
        if not verify_password(user.password_hash, password):
            LOGIN_COUNTER.labels(outcome="failure").inc()
            logger.info("login failed")
            raise InvalidCredentialsError("Invalid credentials")

        LOGIN_COUNTER.labels(outcome="success").inc()
        logger.info("login user id=%s", user.id)
        return self.store.issue(user.id, user.username, self.ttl_seconds)

    def logout(self, token: Optional[str]) -> None:
        if token and self.store.delete(token):
            logger.info("logout")

    def current_user(self, token: Optional[str]) -> AuthenticatedContext:
        context = self.store.get(token) if token else None
        if context is None:
            raise UnauthorizedError("Unauthorized")
        return context


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def extract_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> Optional[str]:
    """Return the session token from the cookie, falling back to a Bearer header."""
    token = request.cookies.get(request.app.state.settings.session_cookie_name)
    if token:
        return token
    if credentials:
        return credentials.credentials
    return None


def require_context(
    token: Optional[str] = Depends(extract_token),
    service: AuthService = Depends(get_auth_service),
) -> AuthenticatedContext:
    """Dependency guarding every endpoint that touches user data."""
    return service.current_user(token)


CurrentContext = Annotated[AuthenticatedContext, Depends(require_context)]
