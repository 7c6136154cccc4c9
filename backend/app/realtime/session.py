"""Per-connection identity for the session channel."""

import logging
from typing import Any

logger = logging.getLogger(__name__)


class ChannelSession:
    """Identity bound to one live channel connection.

    ``user_id`` is None until a login event succeeds.
    """

    def __init__(self) -> None:
        self.user_id: int | None = None
        self.user_role: str | None = None
        self.username: str | None = None

    def bind(self, user: Any) -> None:
        self.user_id = user.id
        self.user_role = user.role
        self.username = user.username

    def unbind(self) -> None:
        self.user_id = None
        self.user_role = None
        self.username = None


class ConnectedSessions:
    """Tracks live channel sessions so role changes and deletions apply immediately.

    Only touched from the event loop thread and never across an await.
    """

    def __init__(self) -> None:
        self._sessions: set[ChannelSession] = set()

    def register(self, session: ChannelSession) -> None:
        self._sessions.add(session)

    def unregister(self, session: ChannelSession) -> None:
        self._sessions.discard(session)

    def for_user(self, user_id: int) -> list[ChannelSession]:
        return [session for session in self._sessions if session.user_id == user_id]

    def update_role(self, user_id: int, role: str) -> int:
        """Rebind the role on every connection of ``user_id``."""
        sessions = self.for_user(user_id)
        for session in sessions:
            session.user_role = role
        return len(sessions)

    def revoke(self, user_id: int) -> int:
        """Log out every connection of ``user_id``."""
        sessions = self.for_user(user_id)
        for session in sessions:
            session.unbind()
        if sessions:
            logger.info(f"Revoked {len(sessions)} channel session(s) for user {user_id}")
        return len(sessions)

    def __len__(self) -> int:
        return len(self._sessions)


# Module-level singleton for shared usage.
connected_sessions = ConnectedSessions()
