"""Session channel event handlers.

Every handler returns ``{"ok": True, ...}`` or ``{"ok": False, "msg": ...}``.
Expected failures arrive as ``AuthError`` and carry a caller-safe message;
anything else is logged with its traceback and reported generically.
"""

import logging
from typing import Any

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import AuthError, Unauthenticated, ValidationFailed
from app.realtime.session import ChannelSession, ConnectedSessions, connected_sessions
from app.schemas.oidc import SECRET_SENTINEL, OidcSettingsUpdate, OidcSettingsView
from app.services import users
from app.services.login_codes import LoginCodeBridge, login_codes
from app.services.oidc import get_oidc_settings
from app.services.permissions import Role, require_admin, require_logged_in
from app.services.settings_manager import SettingsManager
from app.services.user_auth import create_access_token, decode_token
from app.utils.log_redaction import redact_dict_keys, sanitize_for_log

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "Internal server error"


def _coerce_user_id(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationFailed("Invalid user id")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise ValidationFailed("Invalid user id")


def _validation_message(error: ValidationError) -> str:
    """First validation error as a plain sentence."""
    errors = error.errors()
    if not errors:
        return "Invalid settings"
    message = errors[0].get("msg", "Invalid settings")
    return message.removeprefix("Value error, ")


class SessionChannelHandlers:
    """Handles the events of one channel message against one database session."""

    EVENTS = {
        "loginByOidcCode": "login_by_oidc_code",
        "loginByToken": "login_by_token",
        "getOidcSettings": "get_oidc_settings",
        "saveOidcSettings": "save_oidc_settings",
        "getUsers": "get_users",
        "setUserRole": "set_user_role",
        "deleteUser": "delete_user",
        "linkEntraAccount": "link_entra_account",
    }

    def __init__(
        self,
        db: AsyncSession,
        session: ChannelSession,
        codes: LoginCodeBridge | None = None,
        sessions: ConnectedSessions | None = None,
    ):
        self.db = db
        self.session = session
        self.codes = codes or login_codes
        self.sessions = sessions or connected_sessions

    async def dispatch(self, event: Any, args: list[Any]) -> dict[str, Any]:
        method_name = self.EVENTS.get(event) if isinstance(event, str) else None
        if method_name is None:
            return {"ok": False, "msg": "Unknown event"}

        try:
            return await getattr(self, method_name)(*args)
        except AuthError as e:
            logger.debug(f"{event} rejected: {type(e).__name__}")
            return {"ok": False, "msg": e.user_message}
        except Exception:
            logger.error(f"Unexpected error handling {sanitize_for_log(event)}", exc_info=True)
            return {"ok": False, "msg": INTERNAL_ERROR_MESSAGE}

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    async def login_by_oidc_code(self, code: Any = None, *_: Any) -> dict[str, Any]:
        """Redeem a one-time login code and bind its user to this connection."""
        user = await self.codes.exchange(self.db, code)
        self.session.bind(user)
        token = create_access_token(user.id, user.username, user.role)
        logger.info(f"Successful OIDC login for user: {sanitize_for_log(user.username)}")
        return {"ok": True, "token": token, "role": user.role}

    async def login_by_token(self, token: Any = None, *_: Any) -> dict[str, Any]:
        """Resume a session from a bearer token.

        The bound role comes from the database, so a role change made after
        the token was issued takes effect on reconnect.
        """
        if not isinstance(token, str) or not token:
            raise Unauthenticated("Could not validate credentials")
        payload = decode_token(token)
        try:
            user_id = int(payload.get("sub"))
        except (TypeError, ValueError) as e:
            raise Unauthenticated("Could not validate credentials") from e

        user = await users.get_active_user(self.db, user_id)
        if not user:
            raise Unauthenticated("User not found or inactive")

        self.session.bind(user)
        return {"ok": True, "role": user.role}

    # ------------------------------------------------------------------
    # SSO settings
    # ------------------------------------------------------------------

    async def get_oidc_settings(self, *_: Any) -> dict[str, Any]:
        require_admin(self.session)
        current = await get_oidc_settings(self.db)
        view = OidcSettingsView(
            enabled=current.enabled,
            tenant_id=current.tenant_id,
            client_id=current.client_id,
            client_secret=SECRET_SENTINEL if current.client_secret else "",
            allowed_groups=current.allowed_groups,
            default_role=current.default_role,
            auto_create_users=current.auto_create_users,
        )
        return {"ok": True, "settings": view.model_dump(by_alias=True, mode="json")}

    async def save_oidc_settings(self, data: Any = None, *_: Any) -> dict[str, Any]:
        """Validate and store SSO settings as one unit.

        Everything is checked before the first write, so a rejected save
        leaves the stored settings untouched.
        """
        require_admin(self.session)
        if not isinstance(data, dict):
            raise ValidationFailed("Invalid settings")

        try:
            update = OidcSettingsUpdate.model_validate(data)
        except ValidationError as e:
            raise ValidationFailed(_validation_message(e)) from e

        current = await get_oidc_settings(self.db)
        if update.enabled:
            if not update.tenant_id or not update.client_id:
                raise ValidationFailed(
                    "Tenant ID and Client ID are required when enabling Entra ID SSO"
                )
            if not current.client_secret and not update.has_new_secret:
                raise ValidationFailed("Client Secret is required when enabling Entra ID SSO")

        settings_manager = SettingsManager(self.db)
        await settings_manager.set_bool("oidc_entra_enabled", update.enabled, commit=False)
        await settings_manager.set("oidc_entra_tenant_id", update.tenant_id, commit=False)
        await settings_manager.set("oidc_entra_client_id", update.client_id, commit=False)
        if update.has_new_secret:
            await settings_manager.set(
                "oidc_entra_client_secret", update.client_secret, commit=False
            )
        await settings_manager.set_json(
            "oidc_entra_allowed_groups", update.allowed_groups, commit=False
        )
        await settings_manager.set(
            "oidc_entra_default_role", update.default_role.value, commit=False
        )
        await settings_manager.set_bool(
            "oidc_entra_auto_create_users", update.auto_create_users, commit=False
        )
        await self.db.commit()

        logger.info(
            f"Entra ID settings saved by user {self.session.user_id}: {redact_dict_keys(data)}"
        )
        return {"ok": True, "msg": "oidcSettingsSaved"}

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------

    async def get_users(self, *_: Any) -> dict[str, Any]:
        require_admin(self.session)
        active_users = await users.list_active_users(self.db)
        return {"ok": True, "users": [user.to_dict() for user in active_users]}

    async def set_user_role(self, data: Any = None, *_: Any) -> dict[str, Any]:
        require_admin(self.session)
        if not isinstance(data, dict):
            raise ValidationFailed("Invalid request")
        user_id = _coerce_user_id(data.get("userId"))
        role = Role.parse(data.get("role"))
        if role is None:
            raise ValidationFailed("Invalid role")

        await users.set_user_role(self.db, user_id, role, actor_id=self.session.user_id)
        self.sessions.update_role(user_id, role.value)
        if self.session.user_id == user_id:
            self.session.user_role = role.value
        return {"ok": True, "msg": "userRoleUpdated"}

    async def delete_user(self, user_id: Any = None, *_: Any) -> dict[str, Any]:
        require_admin(self.session)
        user_id = _coerce_user_id(user_id)
        await users.deactivate_user(self.db, user_id, actor_id=self.session.user_id)
        self.sessions.revoke(user_id)
        return {"ok": True, "msg": "userDeleted"}

    async def link_entra_account(self, *_: Any) -> dict[str, Any]:
        """Report whether the current user is linked to an Entra ID identity."""
        require_logged_in(self.session)
        user = await users.get_active_user(self.db, self.session.user_id)
        if not user:
            raise Unauthenticated("User not found or inactive")
        return {"ok": True, "hasEntraId": user.has_external_identity, "email": user.email}
