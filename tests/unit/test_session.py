"""Unit tests for the session provider."""

import asyncio

import pytest

from storyclient.common.errors import AuthError, NetworkError
from storyclient.storage import InMemoryKeyValueStore


class AuthRejecting:
    """Callable that rejects a set of credentials and records every call."""

    def __init__(self, rejected):
        self.rejected = set(rejected)
        self.calls = []

    async def __call__(self, token):
        self.calls.append(token)
        await asyncio.sleep(0)
        if token in self.rejected:
            raise AuthError("expired", status_code=401)
        return f"ok:{token}"


class TestSessionProvider:
    """Tests for credential lifecycle."""

    @pytest.mark.asyncio
    async def test_get_token_reads_store(self, session):
        """Test hydration from the store."""
        assert await session.get_token() == "token-1"

    @pytest.mark.asyncio
    async def test_sign_in_persists(self, auth_api):
        """Test storing a new credential pair."""
        from storyclient.session import SessionProvider

        store = InMemoryKeyValueStore()
        session = SessionProvider(
            auth_api, store, token_key="auth_token", refresh_key="refresh_token"
        )

        await session.sign_in("cred-a", "refresh-a")

        assert await session.get_token() == "cred-a"
        assert store.snapshot() == {"auth_token": "cred-a", "refresh_token": "refresh-a"}

    @pytest.mark.asyncio
    async def test_call_with_refresh_success(self, session, auth_api):
        """Test that a working credential does not trigger a refresh."""
        call = AuthRejecting([])

        assert await session.call_with_refresh(call) == "ok:token-1"
        assert auth_api.refresh_calls == []

    @pytest.mark.asyncio
    async def test_refresh_and_retry(self, session, auth_api, store):
        """Test one refresh and one retry on an auth error."""
        call = AuthRejecting(["token-1"])

        result = await session.call_with_refresh(call)

        assert result == "ok:token-2"
        assert call.calls == ["token-1", "token-2"]
        assert auth_api.refresh_calls == ["refresh-1"]
        assert store.snapshot()["auth_token"] == "token-2"
        assert store.snapshot()["refresh_token"] == "refresh-2"
        assert await session.get_token() == "token-2"

    @pytest.mark.asyncio
    async def test_second_auth_error_signs_out(self, session, auth_api, store):
        """Test that a rejected fresh credential ends the session."""
        signed_out = []
        session.on_sign_out(lambda: signed_out.append(True))
        call = AuthRejecting(["token-1", "token-2"])

        with pytest.raises(AuthError):
            await session.call_with_refresh(call)

        assert call.calls == ["token-1", "token-2"]
        assert len(auth_api.refresh_calls) == 1
        assert signed_out == [True]
        assert await session.get_token() is None
        assert "auth_token" not in store.snapshot()
        assert "refresh_token" not in store.snapshot()

    @pytest.mark.asyncio
    async def test_refresh_rejected_signs_out(self, session, auth_api):
        """Test a rejected refresh credential."""
        notified = []

        async def listener():
            notified.append("async")

        session.on_sign_out(listener)
        auth_api.refresh_error = AuthError("refresh expired", status_code=401)

        with pytest.raises(AuthError):
            await session.call_with_refresh(AuthRejecting(["token-1"]))

        assert notified == ["async"]
        assert auth_api.sign_out_calls == ["token-1"]
        assert await session.get_token() is None

    @pytest.mark.asyncio
    async def test_refresh_without_refresh_credential(self, auth_api):
        """Test that a session without a refresh credential cannot refresh."""
        from storyclient.session import SessionProvider

        session = SessionProvider(
            auth_api,
            InMemoryKeyValueStore({"auth_token": "token-1"}),
            token_key="auth_token",
            refresh_key="refresh_token",
        )

        with pytest.raises(AuthError):
            await session.refresh()

        assert auth_api.refresh_calls == []
        assert await session.get_token() is None

    @pytest.mark.asyncio
    async def test_network_error_during_refresh_keeps_session(self, session, auth_api):
        """Test that an unreachable server is not a sign-out."""
        auth_api.refresh_error = NetworkError("offline")

        with pytest.raises(NetworkError):
            await session.refresh()

        assert await session.get_token() == "token-1"

    @pytest.mark.asyncio
    async def test_concurrent_refreshes_coalesce(self, session, auth_api):
        """Test that simultaneous auth failures share one refresh."""
        call = AuthRejecting(["token-1"])

        results = await asyncio.gather(
            session.call_with_refresh(call),
            session.call_with_refresh(call),
        )

        assert results == ["ok:token-2", "ok:token-2"]
        assert auth_api.refresh_calls == ["refresh-1"]

    @pytest.mark.asyncio
    async def test_unsubscribe(self, session):
        """Test removing a sign-out listener."""
        calls = []
        unsubscribe = session.on_sign_out(lambda: calls.append(1))

        unsubscribe()
        await session.sign_out()

        assert calls == []


class TestIsValid:
    """Tests for debounced verification."""

    @pytest.mark.asyncio
    async def test_debounced(self, session, auth_api, clock):
        """Test at most one verification per window."""
        assert await session.is_valid()
        clock.advance(10)
        assert await session.is_valid()

        assert auth_api.verify_calls == ["token-1"]

        clock.advance(25)
        auth_api.verify_result = False
        assert not await session.is_valid()
        assert len(auth_api.verify_calls) == 2

    @pytest.mark.asyncio
    async def test_signed_out_is_invalid(self, auth_api, clock):
        """Test that no credential means no server call."""
        from storyclient.session import SessionProvider

        session = SessionProvider(
            auth_api,
            InMemoryKeyValueStore(),
            token_key="auth_token",
            refresh_key="refresh_token",
            clock=clock,
        )

        assert not await session.is_valid()
        assert auth_api.verify_calls == []

    @pytest.mark.asyncio
    async def test_network_error_not_remembered(self, session, auth_api, clock):
        """Test that an unreachable server is retried on the next call."""

        async def offline(credential):
            auth_api.verify_calls.append(credential)
            raise NetworkError("offline")

        auth_api.verify_token = offline
        assert not await session.is_valid()

        del auth_api.verify_token
        clock.advance(1)
        assert await session.is_valid()
        assert len(auth_api.verify_calls) == 2
