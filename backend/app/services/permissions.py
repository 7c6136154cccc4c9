"""Role-based permission model.

Two closed roles exist. ``admin`` holds a wildcard grant, so a newly added
permission never needs to be added to the admin role. ``viewer`` holds an
explicit read-only subset. Anything else has no permissions.
"""

from enum import Enum
from typing import Protocol

from app.errors import Forbidden, Unauthenticated


class Role(str, Enum):
    """Closed set of user roles."""

    ADMIN = "admin"
    VIEWER = "viewer"

    @classmethod
    def parse(cls, value: object) -> "Role | None":
        """Return the matching role, or None for anything unknown."""
        if isinstance(value, Role):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


WILDCARD = "*"

ALL_PERMISSIONS: tuple[str, ...] = (
    # Monitors
    "monitor:read",
    "monitor:write",
    "monitor:delete",
    "heartbeat:read",
    # Notifications
    "notification:read",
    "notification:write",
    "notification:delete",
    # Status pages
    "status-page:read",
    "status-page:write",
    "status-page:delete",
    # Maintenance windows
    "maintenance:read",
    "maintenance:write",
    "maintenance:delete",
    # Proxies
    "proxy:read",
    "proxy:write",
    "proxy:delete",
    # Docker hosts
    "docker-host:read",
    "docker-host:write",
    "docker-host:delete",
    # Remote browsers
    "remote-browser:read",
    "remote-browser:write",
    "remote-browser:delete",
    # API keys
    "api-key:read",
    "api-key:write",
    "api-key:delete",
    # Tags
    "tag:read",
    "tag:write",
    "tag:delete",
    "cert-info:read",
    # Settings
    "settings:read",
    "settings:write",
    # User management
    "user:read",
    "user:write",
    "user:delete",
)

ROLE_PERMISSIONS: dict[Role, frozenset[str]] = {
    Role.ADMIN: frozenset({WILDCARD}),
    Role.VIEWER: frozenset(
        {
            "monitor:read",
            "heartbeat:read",
            "notification:read",
            "status-page:read",
            "maintenance:read",
            "proxy:read",
            "docker-host:read",
            "remote-browser:read",
            "api-key:read",
            "tag:read",
            "cert-info:read",
        }
    ),
}


class SessionIdentity(Protocol):
    """Anything carrying the identity bound to a connection."""

    user_id: int | None
    user_role: str | None


def permissions_for_role(role: Role | str | None) -> frozenset[str]:
    """Expand a role to its concrete permission set."""
    parsed = Role.parse(role)
    if parsed is None:
        return frozenset()
    grants = ROLE_PERMISSIONS[parsed]
    if WILDCARD in grants:
        return frozenset(ALL_PERMISSIONS)
    return grants


def has_permission(role: Role | str | None, permission: str) -> bool:
    """Check whether a role grants a permission."""
    parsed = Role.parse(role)
    if parsed is None:
        return False
    grants = ROLE_PERMISSIONS[parsed]
    return WILDCARD in grants or permission in grants


def is_admin(role: Role | str | None) -> bool:
    return Role.parse(role) is Role.ADMIN


def require_logged_in(session: SessionIdentity) -> None:
    """Raise Unauthenticated unless a user is bound to the session."""
    if getattr(session, "user_id", None) is None:
        raise Unauthenticated()


def require_admin(session: SessionIdentity) -> None:
    """Raise Unauthenticated or Forbidden unless the session belongs to an admin."""
    require_logged_in(session)
    if not is_admin(session.user_role):
        raise Forbidden("Permission denied. Admin access required.")


def require_permission(session: SessionIdentity, permission: str) -> None:
    """Raise Unauthenticated or Forbidden unless the session's role grants ``permission``."""
    require_logged_in(session)
    if not has_permission(session.user_role, permission):
        raise Forbidden()
