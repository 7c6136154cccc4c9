"""Tests for the pending SSO session registry."""

import asyncio
from datetime import UTC, datetime, timedelta

from app.services.auth_sessions import AuthSessionRegistry, PendingAuthSession

TTL = timedelta(minutes=10)


async def _create(registry: AuthSessionRegistry, ttl: timedelta = TTL) -> str:
    return await registry.create(
        code_verifier="verifier",
        nonce="nonce",
        redirect_uri="https://app.example.com/auth/oidc/entra/callback",
        ttl=ttl,
    )


class TestCreateAndConsume:
    async def test_consume_returns_stored_session_once(self):
        registry = AuthSessionRegistry()
        state = await _create(registry)

        session = await registry.consume(state)
        assert isinstance(session, PendingAuthSession)
        assert session.state == state
        assert session.code_verifier == "verifier"
        assert session.redirect_uri.endswith("/auth/oidc/entra/callback")
        assert not session.is_expired()

        assert await registry.consume(state) is None
        assert len(registry) == 0

    async def test_states_are_unique_and_unguessable(self):
        registry = AuthSessionRegistry()
        states = {await _create(registry) for _ in range(20)}
        assert len(states) == 20
        assert all(len(state) >= 43 for state in states)

    async def test_unknown_and_blank_states(self):
        registry = AuthSessionRegistry()
        await _create(registry)

        assert await registry.consume("never-issued") is None
        assert await registry.consume("") is None
        assert await registry.consume(None) is None
        assert len(registry) == 1

    async def test_expired_session_is_returned_for_reporting(self):
        """Expiry is reported by the caller, so consume still hands it back (and removes it)."""
        registry = AuthSessionRegistry()
        state = await _create(registry, ttl=timedelta(seconds=-1))

        session = await registry.consume(state)
        assert session is not None
        assert session.is_expired()
        assert await registry.consume(state) is None

    async def test_concurrent_consume_has_one_winner(self):
        registry = AuthSessionRegistry()
        state = await _create(registry)

        results = await asyncio.gather(*(registry.consume(state) for _ in range(25)))

        assert sum(result is not None for result in results) == 1


class TestSweep:
    async def test_sweep_removes_only_expired(self):
        registry = AuthSessionRegistry()
        live = await _create(registry)
        await _create(registry, ttl=timedelta(seconds=-5))
        await _create(registry, ttl=timedelta(seconds=-1))

        removed = await registry.sweep_expired()

        assert removed == 2
        assert len(registry) == 1
        assert await registry.consume(live) is not None

    async def test_sweep_on_empty_registry(self):
        assert await AuthSessionRegistry().sweep_expired() == 0


class TestPendingAuthSession:
    def test_is_expired_boundary(self):
        expires_at = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
        session = PendingAuthSession(
            state="s", code_verifier="v", nonce="n", redirect_uri="r", expires_at=expires_at
        )
        assert not session.is_expired(now=expires_at - timedelta(seconds=1))
        assert session.is_expired(now=expires_at + timedelta(seconds=1))
