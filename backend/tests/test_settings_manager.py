"""Tests for SettingsManager service."""

from sqlalchemy import select

from app.models import Setting
from app.services.settings_manager import SettingsManager


class TestSettingsRetrieval:
    """Tests for settings retrieval."""

    async def test_get_existing_setting(self, db_session):
        manager = SettingsManager(db_session)

        assert await manager.get("oidc_entra_enabled") == "false"

    async def test_get_nonexistent_setting_returns_default(self, db_session):
        manager = SettingsManager(db_session)

        value = await manager.get("nonexistent_key", default="default_value")
        assert value == "default_value"

    async def test_defaults_apply_when_row_missing(self, db_engine):
        from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

        async with async_sessionmaker(db_engine, class_=AsyncSession)() as empty_session:
            manager = SettingsManager(empty_session)
            assert await manager.get("oidc_entra_auto_create_users") == "true"
            values = await manager.get_many(["oidc_entra_default_role", "unknown"])
            assert values == {"oidc_entra_default_role": "viewer", "unknown": None}

    async def test_get_many_reads_stored_values(self, db_session):
        manager = SettingsManager(db_session)
        await manager.set("oidc_entra_tenant_id", "contoso.onmicrosoft.com")

        values = await manager.get_many(["oidc_entra_tenant_id", "oidc_entra_enabled"])

        assert values == {
            "oidc_entra_tenant_id": "contoso.onmicrosoft.com",
            "oidc_entra_enabled": "false",
        }


class TestSettingsTypeConversion:
    async def test_get_bool_variations(self, db_session):
        manager = SettingsManager(db_session)

        for raw, expected in [("true", True), ("Yes", True), ("1", True), ("false", False)]:
            await manager.set("flag", raw)
            assert await manager.get_bool("flag") is expected

    async def test_json_round_trip(self, db_session):
        manager = SettingsManager(db_session)
        await manager.set_json("oidc_entra_allowed_groups", ["g1", "g2"])

        assert await manager.get("oidc_entra_allowed_groups") == '["g1", "g2"]'
        assert await manager.get_json("oidc_entra_allowed_groups") == ["g1", "g2"]

    async def test_invalid_json_returns_default(self, db_session):
        manager = SettingsManager(db_session)
        await manager.set("oidc_entra_allowed_groups", "{broken")

        assert await manager.get_json("oidc_entra_allowed_groups", default=[]) == []

    async def test_set_bool_stores_canonical_string(self, db_session):
        manager = SettingsManager(db_session)
        await manager.set_bool("oidc_entra_enabled", True)

        assert await manager.get("oidc_entra_enabled") == "true"


class TestSettingsWrites:
    async def test_secret_keys_are_marked_sensitive(self, db_session):
        manager = SettingsManager(db_session)

        secret = await manager.set("oidc_entra_client_secret", "s3cr3t")
        tenant = await manager.set("oidc_entra_tenant_id", "contoso.onmicrosoft.com")

        assert secret.is_sensitive is True
        assert tenant.is_sensitive is False
        assert secret.category == "sso"

    async def test_uncommitted_writes_roll_back_together(self, db_session):
        manager = SettingsManager(db_session)

        await manager.set("oidc_entra_tenant_id", "pending-tenant", commit=False)
        await manager.set("oidc_entra_client_id", "pending-client", commit=False)
        await db_session.rollback()

        values = await manager.get_many(["oidc_entra_tenant_id", "oidc_entra_client_id"])
        assert values == {"oidc_entra_tenant_id": "", "oidc_entra_client_id": ""}

    async def test_initialize_defaults_is_idempotent(self, db_session):
        manager = SettingsManager(db_session)
        await manager.set("oidc_entra_default_role", "admin")

        await manager.initialize_defaults()
        await manager.initialize_defaults()

        rows = (await db_session.execute(select(Setting))).scalars().all()
        assert len(rows) == len(SettingsManager.DEFAULTS)
        assert await manager.get("oidc_entra_default_role") == "admin"
        assert all(row.category == "sso" for row in rows)
