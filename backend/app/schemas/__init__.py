"""Pydantic schemas for API requests and responses."""

from app.schemas.oidc import (
    SECRET_SENTINEL,
    OidcPublicConfig,
    OidcSettingsUpdate,
    OidcSettingsView,
)
from app.schemas.user_auth import SetupRequest, SetupResponse, UserAuthStatusResponse

__all__ = [
    "SECRET_SENTINEL",
    "OidcPublicConfig",
    "OidcSettingsUpdate",
    "OidcSettingsView",
    "SetupRequest",
    "SetupResponse",
    "UserAuthStatusResponse",
]
