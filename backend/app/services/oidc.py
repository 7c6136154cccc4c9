"""OIDC provider client for Microsoft Entra ID (authorization code + PKCE)."""

import logging
import re
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode

import httpx
from authlib.common.security import generate_token
from authlib.integrations.base_client import OAuthError
from authlib.integrations.httpx_client import AsyncOAuth2Client
from authlib.jose import JsonWebKey, jwt
from authlib.jose.errors import JoseError
from authlib.oauth2.rfc7636 import create_s256_code_challenge
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.services.permissions import Role
from app.utils.log_redaction import sanitize_for_log

logger = logging.getLogger(__name__)

ENTRA_SCOPES = "openid profile email"
CODE_CHALLENGE_METHOD = "S256"

# Entra tenant ids are GUIDs or verified domain names
TENANT_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9.-]{0,253}$")


class ProviderUnavailable(Exception):
    """The identity provider could not be reached or returned garbage."""

    pass


class ProviderRejected(Exception):
    """The identity provider refused the request or its response failed validation."""

    pass


@dataclass
class OidcSettings:
    """Entra ID SSO configuration as stored in the settings table."""

    enabled: bool = False
    tenant_id: str = ""
    client_id: str = ""
    client_secret: str = ""
    allowed_groups: list[str] = field(default_factory=list)
    default_role: Role = Role.VIEWER
    auto_create_users: bool = True

    @property
    def is_complete(self) -> bool:
        """All credentials needed to talk to the provider are present."""
        return bool(
            self.tenant_id.strip() and self.client_id.strip() and self.client_secret.strip()
        )

    @property
    def issuer_url(self) -> str:
        return entra_issuer_url(self.tenant_id)


async def get_oidc_settings(db: AsyncSession) -> OidcSettings:
    """Load Entra ID SSO settings from the settings store."""
    from app.services.settings_manager import SettingsManager

    settings_manager = SettingsManager(db)
    values = await settings_manager.get_many(
        [
            "oidc_entra_tenant_id",
            "oidc_entra_client_id",
            "oidc_entra_client_secret",
            "oidc_entra_default_role",
        ]
    )
    enabled = await settings_manager.get_bool("oidc_entra_enabled", default=False)
    auto_create_users = await settings_manager.get_bool(
        "oidc_entra_auto_create_users", default=True
    )
    allowed_groups = await settings_manager.get_json("oidc_entra_allowed_groups", default=[])
    if not isinstance(allowed_groups, list):
        allowed_groups = []

    return OidcSettings(
        enabled=bool(enabled),
        tenant_id=values["oidc_entra_tenant_id"] or "",
        client_id=values["oidc_entra_client_id"] or "",
        client_secret=values["oidc_entra_client_secret"] or "",
        allowed_groups=[str(group) for group in allowed_groups if str(group).strip()],
        default_role=Role.parse(values["oidc_entra_default_role"]) or Role.VIEWER,
        auto_create_users=bool(auto_create_users),
    )


def entra_issuer_url(tenant_id: str) -> str:
    """Build the v2.0 issuer URL for a tenant."""
    return f"{settings.entra_authority.rstrip('/')}/{tenant_id.strip()}/v2.0"


def generate_pkce_pair() -> tuple[str, str]:
    """Return a (code_verifier, S256 code_challenge) pair."""
    code_verifier = generate_token(64)
    return code_verifier, create_s256_code_challenge(code_verifier)


def generate_nonce() -> str:
    """Generate a nonce for ID token replay protection."""
    return generate_token(32)


async def get_provider_metadata(issuer_url: str) -> dict[str, Any]:
    """Fetch OIDC provider metadata from the well-known endpoint.

    Args:
        issuer_url: OIDC issuer URL

    Returns:
        Provider metadata dict with endpoints (authorization_endpoint, token_endpoint, etc.)

    Raises:
        ProviderUnavailable: If the discovery document cannot be fetched or is invalid
    """
    discovery_url = f"{issuer_url.rstrip('/')}/.well-known/openid-configuration"

    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(discovery_url, timeout=settings.provider_timeout)
            response.raise_for_status()
            metadata = response.json()
    except httpx.TimeoutException as e:
        logger.error("OIDC metadata request timeout")
        raise ProviderUnavailable("Discovery request timed out") from e
    except httpx.HTTPStatusError as e:
        logger.error(f"OIDC provider returned error: {e.response.status_code}")
        raise ProviderUnavailable(f"Discovery returned HTTP {e.response.status_code}") from e
    except httpx.HTTPError as e:
        logger.error(f"Cannot connect to OIDC provider: {e}")
        raise ProviderUnavailable("Cannot connect to OIDC provider") from e
    except ValueError as e:
        logger.error("OIDC discovery document is not valid JSON")
        raise ProviderUnavailable("Invalid discovery document") from e

    required = ("authorization_endpoint", "token_endpoint", "jwks_uri")
    if not isinstance(metadata, dict) or any(not metadata.get(key) for key in required):
        logger.error("OIDC discovery document is missing required endpoints")
        raise ProviderUnavailable("Discovery document is missing required endpoints")

    logger.info(f"Fetched OIDC metadata from {sanitize_for_log(issuer_url)}")
    return metadata


class Issuer:
    """A discovered provider bound to this application's client credentials."""

    def __init__(self, metadata: dict[str, Any], client_id: str, client_secret: str):
        self.metadata = metadata
        self.client_id = client_id
        self.client_secret = client_secret

    @property
    def issuer(self) -> str:
        return self.metadata.get("issuer", "")

    def authorization_url(
        self,
        redirect_uri: str,
        state: str,
        nonce: str,
        code_challenge: str,
    ) -> str:
        """Build the authorization request URL for the browser redirect."""
        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": redirect_uri,
            "scope": ENTRA_SCOPES,
            "state": state,
            "nonce": nonce,
            "code_challenge": code_challenge,
            "code_challenge_method": CODE_CHALLENGE_METHOD,
            "response_mode": "query",
        }
        return f"{self.metadata['authorization_endpoint']}?{urlencode(params)}"

    async def exchange(
        self,
        redirect_uri: str,
        code: str,
        code_verifier: str,
        nonce: str,
    ) -> dict[str, Any]:
        """Redeem an authorization code and return the verified ID token claims.

        Raises:
            ProviderRejected: Code, verifier, nonce or token signature rejected
            ProviderUnavailable: Network failure talking to the provider
        """
        if not code:
            raise ProviderRejected("Missing authorization code")

        try:
            async with AsyncOAuth2Client(
                client_id=self.client_id,
                client_secret=self.client_secret,
                redirect_uri=redirect_uri,
                token_endpoint_auth_method="client_secret_post",
                timeout=settings.provider_timeout,
            ) as client:
                tokens = await client.fetch_token(
                    self.metadata["token_endpoint"],
                    grant_type="authorization_code",
                    code=code,
                    code_verifier=code_verifier,
                )
        except OAuthError as e:
            logger.error(f"Token endpoint rejected code: {sanitize_for_log(e.error)}")
            raise ProviderRejected(str(e.error)) from e
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error during token exchange: {e.response.status_code}")
            raise ProviderRejected(f"Token endpoint returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error(f"Token exchange request failed: {e}")
            raise ProviderUnavailable("Token exchange request failed") from e
        except ValueError as e:
            logger.error("Token endpoint returned an unreadable response")
            raise ProviderRejected("Unreadable token response") from e

        id_token = tokens.get("id_token")
        if not id_token:
            logger.error("No ID token received from provider")
            raise ProviderRejected("No ID token received from provider")

        return await self.verify_id_token(id_token, nonce)

    async def verify_id_token(self, id_token: str, nonce: str) -> dict[str, Any]:
        """Verify the ID token signature, issuer, audience, nonce and expiry."""
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(
                    self.metadata["jwks_uri"], timeout=settings.provider_timeout
                )
                response.raise_for_status()
                jwks = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to fetch JWKS: {e}")
            raise ProviderUnavailable("Cannot fetch provider signing keys") from e

        try:
            key_set = JsonWebKey.import_key_set(jwks)
            claims = jwt.decode(
                id_token,
                key_set,
                claims_options={
                    "iss": {"essential": True, "value": self.issuer},
                    "aud": {"essential": True, "value": self.client_id},
                    "nonce": {"essential": True, "value": nonce},
                },
            )
            claims.validate(leeway=60)
        except JoseError as e:
            logger.error(f"ID token verification failed: {e}")
            raise ProviderRejected("ID token verification failed") from e
        except ValueError as e:
            logger.error(f"Malformed ID token or key set: {e}")
            raise ProviderRejected("Malformed ID token") from e

        logger.info(f"Verified ID token for subject: {sanitize_for_log(claims.get('sub'))}")
        return dict(claims)


class OidcProvider:
    """Discovers issuers for a given set of client credentials."""

    def __init__(self, client_id: str, client_secret: str):
        self.client_id = client_id
        self.client_secret = client_secret

    async def discover(self, issuer_url: str) -> Issuer:
        metadata = await get_provider_metadata(issuer_url)
        return Issuer(metadata, self.client_id, self.client_secret)
