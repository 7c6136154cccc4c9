"""Settings manager service for handling application configuration."""

import json
import os
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Setting


def _env_or_default(key: str, default: str) -> str:
    """Retrieve setting override from environment variables."""
    env_keys = [
        key.upper(),
        f"WATCHPOST_{key.upper()}",
    ]
    for env_key in env_keys:
        value = os.getenv(env_key)
        if value:
            return value
    return default


class SettingsManager:
    """Manage application settings with typed access."""

    # Default settings values
    DEFAULTS = {
        # Microsoft Entra ID SSO
        "oidc_entra_enabled": "false",
        "oidc_entra_tenant_id": "",
        "oidc_entra_client_id": "",
        "oidc_entra_client_secret": "",
        "oidc_entra_allowed_groups": "[]",  # JSON array of Entra group object ids
        "oidc_entra_default_role": _env_or_default("oidc_entra_default_role", "viewer"),
        "oidc_entra_auto_create_users": "true",
    }

    DEFAULT_CATEGORIES = {
        "oidc_entra_enabled": "sso",
        "oidc_entra_tenant_id": "sso",
        "oidc_entra_client_id": "sso",
        "oidc_entra_client_secret": "sso",
        "oidc_entra_allowed_groups": "sso",
        "oidc_entra_default_role": "sso",
        "oidc_entra_auto_create_users": "sso",
    }

    def __init__(self, db: AsyncSession):
        """Initialize settings manager."""
        self.db = db

    async def get(self, key: str, default: str | None = None) -> str | None:
        """Get a setting value by key."""
        result = await self.db.execute(select(Setting).where(Setting.key == key))
        setting = result.scalar_one_or_none()

        if setting:
            return setting.value

        # Return default from DEFAULTS or provided default
        return default or self.DEFAULTS.get(key)

    async def get_bool(self, key: str, default: bool | None = None) -> bool | None:
        """Get a setting as boolean."""
        value = await self.get(key)
        if value is None:
            return default
        return value.lower() in ("true", "1", "yes", "on")

    async def get_json(self, key: str, default: Any = None) -> Any:
        """Get a setting as JSON."""
        value = await self.get(key)
        if value is None:
            return default
        try:
            return json.loads(value)
        except (ValueError, TypeError):
            return default

    async def get_many(self, keys: list[str]) -> dict[str, str | None]:
        """
        Get multiple setting values in a single query.

        Args:
            keys: List of setting keys to retrieve

        Returns:
            Dictionary mapping keys to string values (defaults applied when missing)
        """
        if not keys:
            return {}

        result = await self.db.execute(select(Setting).where(Setting.key.in_(keys)))
        rows = {setting.key: setting.value for setting in result.scalars()}

        values: dict[str, str | None] = {}
        for key in keys:
            if key in rows:
                values[key] = rows[key]
            else:
                values[key] = self.DEFAULTS.get(key)

        return values

    async def set(
        self,
        key: str,
        value: str,
        description: str | None = None,
        is_sensitive: bool | None = None,
        commit: bool = True,
    ) -> Setting:
        """Set a setting value.

        Pass ``commit=False`` to stage several writes and commit them together.
        """
        result = await self.db.execute(select(Setting).where(Setting.key == key))
        setting = result.scalar_one_or_none()

        category = self._get_category(key)

        if setting:
            setting.value = value
            if description is not None:
                setting.description = description
            if not getattr(setting, "category", None):
                setting.category = category
            # Auto-detect sensitive keys if not explicitly set
            if is_sensitive is not None:
                setting.is_sensitive = is_sensitive
            elif setting.is_sensitive is False:  # Only auto-detect if not already marked sensitive
                setting.is_sensitive = self._is_sensitive_key(key)
        else:
            # Determine if sensitive based on key name if not explicitly set
            if is_sensitive is None:
                is_sensitive = self._is_sensitive_key(key)
            setting = Setting(
                key=key,
                value=value,
                description=description,
                category=category,
                is_sensitive=is_sensitive,
            )
            self.db.add(setting)

        if commit:
            await self.db.commit()
            await self.db.refresh(setting)
        else:
            await self.db.flush()
        return setting

    async def set_bool(self, key: str, value: bool, commit: bool = True) -> Setting:
        """Store a boolean as the canonical "true"/"false" string."""
        return await self.set(key, "true" if value else "false", commit=commit)

    async def set_json(self, key: str, value: Any, commit: bool = True) -> Setting:
        """Store a JSON-serializable value."""
        return await self.set(key, json.dumps(value), commit=commit)

    @staticmethod
    def _is_sensitive_key(key: str) -> bool:
        """Determine if a key should be marked as sensitive."""
        sensitive_keywords = ["token", "password", "secret", "apikey", "api_key"]
        key_lower = key.lower()
        return any(keyword in key_lower for keyword in sensitive_keywords)

    async def initialize_defaults(self) -> None:
        """Initialize default settings if they don't exist."""
        for key, value in self.DEFAULTS.items():
            result = await self.db.execute(select(Setting).where(Setting.key == key))
            existing = result.scalar_one_or_none()

            if not existing:
                setting = Setting(
                    key=key,
                    value=value,
                    description=self._get_description(key),
                    category=self._get_category(key),
                    is_sensitive=self._is_sensitive_key(key),
                )
                self.db.add(setting)
            elif not getattr(existing, "category", None):
                existing.category = self._get_category(key)

        await self.db.commit()

    @staticmethod
    def _get_description(key: str) -> str:
        """Get human-readable description for a setting key."""
        descriptions = {
            "oidc_entra_enabled": "Enable Microsoft Entra ID single sign-on",
            "oidc_entra_tenant_id": "Entra ID directory (tenant) id",
            "oidc_entra_client_id": "Entra ID application (client) id",
            "oidc_entra_client_secret": "Entra ID client secret (write-only)",
            "oidc_entra_allowed_groups": "Entra group object ids allowed to sign in (empty = all)",
            "oidc_entra_default_role": "Role given to users created on first SSO login",
            "oidc_entra_auto_create_users": "Create users automatically on first SSO login",
        }
        return descriptions.get(key, "")

    def _get_category(self, key: str) -> str:
        """Resolve category for a given setting key."""
        return self.DEFAULT_CATEGORIES.get(key, "general")
