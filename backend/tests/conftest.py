"""Pytest configuration and shared fixtures."""

import asyncio
import os
import sys
from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
project_root_str = str(PROJECT_ROOT)
if project_root_str in sys.path:
    sys.path.remove(project_root_str)
sys.path.insert(0, project_root_str)

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("STRICT_MIGRATIONS", "false")  # Disable strict migrations in tests
os.environ.setdefault("JWT_SECRET_KEY", "test-signing-key-not-for-production-use-0123456789")

# ruff: noqa: E402 - Imports must come after environment variable setup
from app import database
from app.database import Base, get_db
from app.dependencies.rate_limit import limiter
from app.main import app
from app.models import User
from app.services.oidc import ProviderRejected, ProviderUnavailable

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_TENANT_ID = "11111111-2222-3333-4444-555555555555"
TEST_CLIENT_ID = "aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee"


@pytest.fixture(autouse=True)
def _reset_shared_state(monkeypatch):
    """Give every test fresh registries and locks (each test runs on its own loop)."""
    from app.realtime import session as session_module
    from app.services import auth_sessions as auth_sessions_module
    from app.services import users as users_module
    from app.services.login_codes import login_codes

    monkeypatch.setattr(
        auth_sessions_module.auth_sessions, "_store", auth_sessions_module.InMemoryTTLStore()
    )
    monkeypatch.setattr(login_codes, "_claim_lock", asyncio.Lock())
    monkeypatch.setattr(users_module, "_mutation_lock", asyncio.Lock())
    monkeypatch.setattr(session_module.connected_sessions, "_sessions", set())


@pytest.fixture(autouse=True)
def _disable_rate_limits():
    limiter.enabled = False
    yield
    limiter.enabled = True


async def _seed_default_settings(session: AsyncSession) -> None:
    from app.services.settings_manager import SettingsManager

    await SettingsManager(session).initialize_defaults()


@pytest.fixture
async def db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # Override the global async_session_maker so the session channel uses the test database
    original_maker = database.async_session_maker
    database.async_session_maker = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    try:
        yield engine
    finally:
        database.async_session_maker = original_maker

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

        await engine.dispose(close=True)


@pytest.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession]:
    """Create test database session with default settings."""
    async_session = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    session = async_session()
    try:
        await _seed_default_settings(session)
        yield session
    finally:
        await session.close()


@pytest.fixture
async def file_session_maker(tmp_path):
    """Session factory over a file database, one real connection per session.

    Used by tests that need genuinely independent concurrent sessions.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'concurrency.db'}",
        connect_args={"timeout": 30.0},
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with maker() as session:
        await _seed_default_settings(session)

    try:
        yield maker
    finally:
        await engine.dispose()


@pytest.fixture
async def client(db_session: AsyncSession):
    """Create test client with database override (redirects are not followed)."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    test_client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")

    try:
        yield test_client
    finally:
        await test_client.aclose()
        app.dependency_overrides.clear()


# ============================================
# Factory Fixtures
# ============================================


@pytest.fixture
def make_user():
    """Factory fixture persisting a User with sensible defaults.

    Usage:
        user = await make_user(db_session, username="bob", role="viewer")
    """

    async def _make_user(session: AsyncSession, **kwargs) -> User:
        import secrets

        defaults = {
            "username": f"user-{secrets.token_hex(4)}",
            "password_hash": None,
            "active": True,
            "role": "viewer",
        }
        user = User(**{**defaults, **kwargs})
        session.add(user)
        await session.commit()
        await session.refresh(user)
        return user

    return _make_user


@pytest.fixture
async def admin_user(db_session: AsyncSession, make_user) -> User:
    return await make_user(db_session, username="admin", role="admin", email="admin@contoso.com")


@pytest.fixture
async def viewer_user(db_session: AsyncSession, make_user) -> User:
    return await make_user(db_session, username="viewer", role="viewer")


# ============================================
# SSO Fixtures
# ============================================


async def configure_sso(session: AsyncSession, **overrides: Any) -> None:
    """Store a complete, enabled Entra ID configuration."""
    from app.services.settings_manager import SettingsManager

    values = {
        "oidc_entra_enabled": "true",
        "oidc_entra_tenant_id": TEST_TENANT_ID,
        "oidc_entra_client_id": TEST_CLIENT_ID,
        "oidc_entra_client_secret": "client-secret-value",
        "oidc_entra_allowed_groups": "[]",
        "oidc_entra_default_role": "viewer",
        "oidc_entra_auto_create_users": "true",
    }
    values.update(overrides)
    settings_manager = SettingsManager(session)
    for key, value in values.items():
        await settings_manager.set(key, value, commit=False)
    await session.commit()


@pytest.fixture
async def sso_enabled(db_session: AsyncSession) -> AsyncSession:
    await configure_sso(db_session)
    return db_session


class FakeIssuer:
    """Stands in for a discovered Entra ID issuer."""

    authorization_endpoint = "https://login.example.test/tenant/oauth2/v2.0/authorize"

    def __init__(self, claims: dict[str, Any] | None = None):
        self.claims = claims if claims is not None else {
            "oid": "entra-object-id-1",
            "sub": "pairwise-subject-1",
            "preferred_username": "alice@contoso.com",
            "name": "Alice Example",
            "groups": ["group-engineering"],
        }
        self.exchange_error: Exception | None = None
        self.exchanges: list[dict[str, str]] = []

    def authorization_url(self, redirect_uri, state, nonce, code_challenge) -> str:
        params = {
            "client_id": TEST_CLIENT_ID,
            "response_type": "code",
            "redirect_uri": redirect_uri,
            "state": state,
            "nonce": nonce,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        return f"{self.authorization_endpoint}?{urlencode(params)}"

    async def exchange(self, redirect_uri, code, code_verifier, nonce) -> dict[str, Any]:
        self.exchanges.append(
            {
                "redirect_uri": redirect_uri,
                "code": code,
                "code_verifier": code_verifier,
                "nonce": nonce,
            }
        )
        if self.exchange_error is not None:
            raise self.exchange_error
        return {**self.claims, "nonce": nonce}


class FakeProvider:
    """Provider factory returning a FakeIssuer; records discoveries."""

    def __init__(self, issuer: FakeIssuer | None = None):
        self.issuer = issuer or FakeIssuer()
        self.discover_error: Exception | None = None
        self.discovered: list[str] = []
        self.credentials: tuple[str, str] | None = None

    def __call__(self, client_id: str, client_secret: str) -> "FakeProvider":
        self.credentials = (client_id, client_secret)
        return self

    async def discover(self, issuer_url: str) -> FakeIssuer:
        self.discovered.append(issuer_url)
        if self.discover_error is not None:
            raise self.discover_error
        return self.issuer


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def provider_down() -> ProviderUnavailable:
    return ProviderUnavailable("Cannot connect to OIDC provider")


@pytest.fixture
def provider_rejects() -> ProviderRejected:
    return ProviderRejected("invalid_grant")


def query_of(url: str) -> dict[str, str]:
    """Flatten the query string of a redirect target."""
    return {key: values[0] for key, values in parse_qs(urlparse(url).query).items()}
