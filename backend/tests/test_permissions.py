"""Tests for the role/permission model."""

import pytest

from app.errors import Forbidden, Unauthenticated
from app.realtime.session import ChannelSession
from app.services.permissions import (
    ALL_PERMISSIONS,
    Role,
    has_permission,
    is_admin,
    permissions_for_role,
    require_admin,
    require_logged_in,
    require_permission,
)


def _session(user_id=None, role=None) -> ChannelSession:
    session = ChannelSession()
    session.user_id = user_id
    session.user_role = role
    return session


class TestRoleParsing:
    def test_known_roles(self):
        assert Role.parse("admin") is Role.ADMIN
        assert Role.parse("viewer") is Role.VIEWER
        assert Role.parse(Role.VIEWER) is Role.VIEWER

    @pytest.mark.parametrize("value", ["Admin", "owner", "", None, 1, ["admin"]])
    def test_unknown_roles(self, value):
        assert Role.parse(value) is None


class TestPermissionSets:
    """Admin holds everything, viewer a read-only subset, anything else nothing."""

    def test_admin_has_every_permission(self):
        for permission in ALL_PERMISSIONS:
            assert has_permission("admin", permission)

    def test_admin_wildcard_covers_new_permissions(self):
        assert has_permission("admin", "something:new")

    def test_viewer_is_read_only(self):
        viewer_permissions = permissions_for_role("viewer")
        assert "monitor:read" in viewer_permissions
        assert "cert-info:read" in viewer_permissions
        assert len(viewer_permissions) == 11
        assert all(p.endswith(":read") for p in viewer_permissions)

    def test_viewer_cannot_write_or_manage(self):
        assert not has_permission("viewer", "monitor:write")
        assert not has_permission("viewer", "settings:read")
        assert not has_permission("viewer", "user:read")

    def test_unknown_role_has_nothing(self):
        assert permissions_for_role("superuser") == frozenset()
        assert not has_permission("superuser", "monitor:read")
        assert not has_permission(None, "monitor:read")

    def test_is_admin(self):
        assert is_admin("admin")
        assert not is_admin("viewer")
        assert not is_admin(None)


class TestSessionGuards:
    def test_require_logged_in_rejects_anonymous(self):
        with pytest.raises(Unauthenticated):
            require_logged_in(_session())

    def test_require_admin_rejects_viewer(self):
        with pytest.raises(Forbidden) as exc_info:
            require_admin(_session(2, "viewer"))
        assert exc_info.value.user_message == "Permission denied. Admin access required."

    def test_require_admin_rejects_anonymous_first(self):
        with pytest.raises(Unauthenticated):
            require_admin(_session(None, "admin"))

    def test_require_admin_accepts_admin(self):
        require_admin(_session(1, "admin"))

    def test_require_permission(self):
        require_permission(_session(2, "viewer"), "heartbeat:read")
        with pytest.raises(Forbidden):
            require_permission(_session(2, "viewer"), "heartbeat:write")
