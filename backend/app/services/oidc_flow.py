"""Entra ID SSO flow: login redirect and callback handling.

The login leg parks PKCE verifier, nonce and redirect URI in the pending
session registry and sends the browser to Entra ID. The callback leg consumes
that entry, exchanges the code, applies group policy, resolves the local user
and hands the browser a one-time login code for the session channel.
"""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any
from urllib.parse import urlencode

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.errors import (
    GENERIC_FAILURE_MESSAGE,
    AuthError,
    InvalidSession,
    NotAuthorized,
    ProviderError,
    ProvisioningDisabled,
    SessionExpired,
    SsoDisabled,
    SsoMisconfigured,
    TokenExchangeFailed,
)
from app.models import User
from app.services import users
from app.services.auth_sessions import AuthSessionRegistry, auth_sessions
from app.services.login_codes import LoginCodeBridge, login_codes
from app.services.oidc import (
    OidcProvider,
    OidcSettings,
    ProviderRejected,
    ProviderUnavailable,
    generate_nonce,
    generate_pkce_pair,
    get_oidc_settings,
)
from app.utils.log_redaction import sanitize_for_log

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/auth/oidc/entra/callback"

# Failures whose message is shown on the landing page; any other error gets the generic one
CALLBACK_ERRORS = (
    InvalidSession,
    SessionExpired,
    SsoDisabled,
    SsoMisconfigured,
    ProviderError,
    NotAuthorized,
    ProvisioningDisabled,
)


@dataclass
class ExternalIdentity:
    """The parts of a verified ID token the application cares about."""

    subject_id: str
    email: str | None = None
    display_name: str | None = None
    groups: list[str] = field(default_factory=list)

    @classmethod
    def from_claims(cls, claims: Mapping[str, Any]) -> "ExternalIdentity":
        subject_id = claims.get("oid") or claims.get("sub")
        if not subject_id:
            raise ProviderRejected("ID token has no subject")
        groups = claims.get("groups") or []
        if not isinstance(groups, list):
            groups = []
        return cls(
            subject_id=str(subject_id),
            email=claims.get("preferred_username") or claims.get("email"),
            display_name=claims.get("name"),
            groups=[str(group) for group in groups],
        )


def callback_redirect_uri(
    scheme: str,
    host: str | None,
    forwarded_proto: str | None = None,
    forwarded_host: str | None = None,
) -> str:
    """Build the absolute callback URL as the browser sees this server."""
    proto = forwarded_proto or scheme
    return f"{proto}://{forwarded_host or host}{CALLBACK_PATH}"


def landing_url(**params: str) -> str:
    return f"{settings.oidc_landing_path}?{urlencode(params)}"


def is_group_allowed(allowed_groups: list[str], user_groups: list[str]) -> bool:
    """An empty allow-list admits everyone; otherwise one shared group is required."""
    if not allowed_groups:
        return True
    return bool(set(allowed_groups) & set(user_groups))


class OidcFlowController:
    """Drives both legs of the authorization code flow for one request."""

    def __init__(
        self,
        db: AsyncSession,
        registry: AuthSessionRegistry | None = None,
        codes: LoginCodeBridge | None = None,
        provider_factory: Callable[[str, str], OidcProvider] = OidcProvider,
    ):
        self.db = db
        self.registry = registry or auth_sessions
        self.codes = codes or login_codes
        self.provider_factory = provider_factory

    async def get_public_config(self) -> dict[str, bool]:
        oidc_settings = await get_oidc_settings(self.db)
        return {"enabled": oidc_settings.enabled}

    async def begin_login(self, redirect_uri: str) -> str:
        """Register a pending session and return the provider authorization URL.

        Raises:
            SsoDisabled: SSO is switched off
            SsoMisconfigured: Tenant, client id or secret missing
            ProviderError: Discovery failed
        """
        oidc_settings = await get_oidc_settings(self.db)
        if not oidc_settings.enabled:
            raise SsoDisabled()
        if not oidc_settings.is_complete:
            raise SsoMisconfigured()

        provider = self.provider_factory(oidc_settings.client_id, oidc_settings.client_secret)
        try:
            issuer = await provider.discover(oidc_settings.issuer_url)
        except (ProviderUnavailable, ProviderRejected) as e:
            logger.error(f"Entra ID discovery failed: {sanitize_for_log(str(e))}")
            raise ProviderError("Failed to initiate SSO login") from e

        code_verifier, code_challenge = generate_pkce_pair()
        nonce = generate_nonce()
        state = await self.registry.create(
            code_verifier=code_verifier,
            nonce=nonce,
            redirect_uri=redirect_uri,
            ttl=timedelta(minutes=settings.oidc_session_ttl_minutes),
        )

        logger.info(f"Initiating Entra ID login flow (state: {state[:8]}...)")
        return issuer.authorization_url(
            redirect_uri=redirect_uri,
            state=state,
            nonce=nonce,
            code_challenge=code_challenge,
        )

    async def handle_callback(self, query: Mapping[str, str]) -> str:
        """Process the provider callback and return the landing page URL.

        Never raises: every failure becomes an ``oidc_error`` parameter.
        """
        try:
            code = await self._complete_login(query)
        except CALLBACK_ERRORS as e:
            logger.warning(f"Entra ID callback rejected: {type(e).__name__}")
            return landing_url(oidc_error=e.user_message)
        except AuthError as e:
            logger.warning(
                f"Entra ID callback failed: {type(e).__name__}: {sanitize_for_log(str(e))}"
            )
            return landing_url(oidc_error=GENERIC_FAILURE_MESSAGE)
        except Exception:
            logger.error("Unexpected error in Entra ID callback", exc_info=True)
            return landing_url(oidc_error=GENERIC_FAILURE_MESSAGE)

        return landing_url(oidc_code=code)

    async def _complete_login(self, query: Mapping[str, str]) -> str:
        error = query.get("error")
        if error:
            description = query.get("error_description") or error
            logger.warning(
                f"Entra ID returned error: {sanitize_for_log(error)} - "
                f"{sanitize_for_log(description)}"
            )
            await self.registry.consume(query.get("state"))
            raise ProviderError(description)

        state = query.get("state") or ""
        pending = await self.registry.consume(state)
        if pending is None:
            logger.warning(f"Unknown or replayed state: {sanitize_for_log(state[:8])}...")
            raise InvalidSession()
        if pending.is_expired():
            logger.warning(f"Expired auth session: {sanitize_for_log(state[:8])}...")
            raise SessionExpired()

        oidc_settings = await get_oidc_settings(self.db)
        if not oidc_settings.enabled:
            raise SsoDisabled()

        provider = self.provider_factory(oidc_settings.client_id, oidc_settings.client_secret)
        try:
            issuer = await provider.discover(oidc_settings.issuer_url)
            claims = await issuer.exchange(
                redirect_uri=pending.redirect_uri,
                code=query.get("code") or "",
                code_verifier=pending.code_verifier,
                nonce=pending.nonce,
            )
            identity = ExternalIdentity.from_claims(claims)
        except (ProviderUnavailable, ProviderRejected) as e:
            logger.error(f"Entra ID token exchange failed: {sanitize_for_log(str(e))}")
            raise TokenExchangeFailed() from e

        if not is_group_allowed(oidc_settings.allowed_groups, identity.groups):
            logger.warning(
                f"User {sanitize_for_log(identity.email)} not in allowed groups"
            )
            raise NotAuthorized()

        user = await self._resolve_user(oidc_settings, identity)
        code = await self.codes.issue(self.db, user.id)
        logger.info(f"Entra ID login successful for user: {sanitize_for_log(user.username)}")
        return code

    async def _resolve_user(self, oidc_settings: OidcSettings, identity: ExternalIdentity) -> User:
        user = await users.get_user_by_subject(self.db, identity.subject_id)

        if user is not None and not user.active:
            # Deleted accounts are not resurrected by signing in again
            logger.warning(
                f"Deactivated user attempted SSO login: {sanitize_for_log(user.username)}"
            )
            raise ProvisioningDisabled()

        if user is None:
            if not oidc_settings.auto_create_users:
                logger.warning(
                    f"User {sanitize_for_log(identity.email)} not found and auto-create disabled"
                )
                raise ProvisioningDisabled()
            return await users.create_sso_user(
                self.db,
                subject_id=identity.subject_id,
                email=identity.email,
                display_name=identity.display_name,
                role=oidc_settings.default_role,
            )

        return await users.update_sso_profile(
            self.db, user, email=identity.email, display_name=identity.display_name
        )
