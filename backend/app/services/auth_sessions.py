"""In-memory registry of pending OIDC handshakes.

Each login attempt stores its PKCE verifier, nonce and redirect URI under a
random state token until the provider redirects back. Entries are one-time
use: ``consume`` reads and deletes under a lock, so two concurrent callbacks
carrying the same state cannot both obtain the verifier.

This is process-local state. Running more than one worker process requires a
shared ``TTLStore`` implementation.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from app.utils.log_redaction import sanitize_for_log

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingAuthSession:
    """Handshake data bound to a single authorization attempt."""

    state: str
    code_verifier: str
    nonce: str
    redirect_uri: str
    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        """A session is unusable at or after ``expires_at``."""
        now = now or datetime.now(UTC)
        return now >= self.expires_at


class TTLStore(ABC):
    """Minimal key-value contract with expiry, keyed by state token."""

    @abstractmethod
    async def put(self, key: str, value: PendingAuthSession) -> None: ...

    @abstractmethod
    async def pop(self, key: str) -> PendingAuthSession | None:
        """Atomically remove and return the entry for ``key``."""

    @abstractmethod
    async def purge_expired(self, now: datetime) -> int:
        """Remove every entry past its expiry, returning how many were removed."""

    @abstractmethod
    def __len__(self) -> int: ...


class InMemoryTTLStore(TTLStore):
    """Dict-backed store guarded by an asyncio lock."""

    def __init__(self) -> None:
        self._entries: dict[str, PendingAuthSession] = {}
        self._lock = asyncio.Lock()

    async def put(self, key: str, value: PendingAuthSession) -> None:
        async with self._lock:
            self._entries[key] = value

    async def pop(self, key: str) -> PendingAuthSession | None:
        async with self._lock:
            return self._entries.pop(key, None)

    async def purge_expired(self, now: datetime) -> int:
        async with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


class AuthSessionRegistry:
    """Creates, consumes and sweeps pending OIDC handshakes."""

    def __init__(self, store: TTLStore | None = None) -> None:
        self._store = store or InMemoryTTLStore()

    async def create(
        self,
        code_verifier: str,
        nonce: str,
        redirect_uri: str,
        ttl: timedelta,
    ) -> str:
        """Register a pending handshake and return its new state token."""
        state = secrets.token_urlsafe(32)
        session = PendingAuthSession(
            state=state,
            code_verifier=code_verifier,
            nonce=nonce,
            redirect_uri=redirect_uri,
            expires_at=datetime.now(UTC) + ttl,
        )
        await self._store.put(state, session)
        logger.debug("Registered OIDC session: %s...", sanitize_for_log(state[:8]))
        return state

    async def consume(self, state: str | None) -> PendingAuthSession | None:
        """Take the handshake for ``state`` out of the registry.

        Returns None when the state was never issued, was already consumed, or
        is empty. Expiry is not checked here; callers inspect
        ``PendingAuthSession.is_expired`` so they can report it separately.
        """
        if not state or not isinstance(state, str):
            return None
        return await self._store.pop(state)

    async def sweep_expired(self) -> int:
        """Drop abandoned handshakes. Correctness never depends on this running."""
        removed = await self._store.purge_expired(datetime.now(UTC))
        if removed:
            logger.info(f"Swept {removed} expired OIDC sessions")
        return removed

    def __len__(self) -> int:
        return len(self._store)


# Module-level singleton for shared usage.
auth_sessions = AuthSessionRegistry()
