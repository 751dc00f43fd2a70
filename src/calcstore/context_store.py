"""Server-side storage for authenticated contexts.

A context maps an opaque client token to a user identity until it expires.
``ContextStore`` is the seam for swapping the in-process map for a shared
cache when several API instances run behind one load balancer.
"""

import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, Optional


@dataclass(frozen=True)
class AuthenticatedContext:
    token: str
    user_id: int
    username: str
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


def new_token() -> str:
    return secrets.token_urlsafe(32)


class ContextStore(ABC):
    """Token keyed store of :class:`AuthenticatedContext` records."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock

    def issue(self, user_id: int, username: str, ttl_seconds: int) -> AuthenticatedContext:
        """Create, store and return a fresh context."""
        context = AuthenticatedContext(
            token=new_token(),
            user_id=user_id,
            username=username,
            expires_at=self.clock() + ttl_seconds,
        )
        self.put(context)
        return context

    @abstractmethod
    def get(self, token: str) -> Optional[AuthenticatedContext]:
        """Return the live context for ``token`` or ``None``."""

    @abstractmethod
    def put(self, context: AuthenticatedContext) -> None:
        ...

    @abstractmethod
    def delete(self, token: str) -> bool:
        """Remove ``token``; return whether it was present."""

    @abstractmethod
    def purge_expired(self) -> int:
        ...


class InMemoryContextStore(ContextStore):
    """Process-local store. Expired entries are evicted on first access."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        super().__init__(clock)
        self._contexts: Dict[str, AuthenticatedContext] = {}
        self._lock = Lock()

    def get(self, token: str) -> Optional[AuthenticatedContext]:
        if not token:
            return None
        with self._lock:
            context = self._contexts.get(token)
            if context is None:
                return None
            if context.is_expired(self.clock()):
                del self._contexts[token]
                return None
            return context

    def put(self, context: AuthenticatedContext) -> None:
        with self._lock:
            self._contexts[context.token] = context

    def delete(self, token: str) -> bool:
        with self._lock:
            return self._contexts.pop(token, None) is not None

    def purge_expired(self) -> int:
        now = self.clock()
        with self._lock:
            expired = [t for t, c in self._contexts.items() if c.is_expired(now)]
            for token in expired:
                del self._contexts[token]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._contexts)
