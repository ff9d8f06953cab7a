"""Session and credential provider."""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

from storyclient.api.auth import AuthApiClient
from storyclient.common.config import get_settings
from storyclient.common.errors import AuthError, NetworkError, ServerError, StoryClientError
from storyclient.common.logging import get_logger
from storyclient.common.models import TokenPair
from storyclient.storage.kv import KeyValueStore

logger = get_logger(__name__)

T = TypeVar("T")

SignOutListener = Callable[[], Awaitable[None] | None]


class SessionProvider:
    """Owns the bearer credential and its refresh credential.

    The provider is the only writer of the credential. Other components ask
    for it on every call through :meth:`get_token` or
    :meth:`call_with_refresh`, so a refreshed credential is picked up
    immediately.
    """

    def __init__(
        self,
        auth_api: AuthApiClient,
        store: KeyValueStore,
        debounce_seconds: float | None = None,
        token_key: str | None = None,
        refresh_key: str | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        settings = get_settings()
        self._auth_api = auth_api
        self._store = store
        self.debounce_seconds = (
            settings.token_verify_debounce_seconds
            if debounce_seconds is None
            else debounce_seconds
        )
        self.token_key = token_key or settings.auth_token_key
        self.refresh_key = refresh_key or settings.refresh_token_key
        self._clock = clock

        self._token: str | None = None
        self._refresh_credential: str | None = None
        self._hydrated = False
        self._refresh_lock = asyncio.Lock()
        self._last_verified_at: float | None = None
        self._last_valid = False
        self._sign_out_listeners: list[SignOutListener] = []

    async def _hydrate(self) -> None:
        if self._hydrated:
            return
        try:
            token = await self._store.get(self.token_key)
            refresh_credential = await self._store.get(self.refresh_key)
        except Exception as e:
            logger.error("session_read_failed", error=str(e))
            token = refresh_credential = None
        if not self._hydrated:
            self._token = token
            self._refresh_credential = refresh_credential
            self._hydrated = True

    async def _save(self, pair: TokenPair) -> None:
        self._token = pair.credential
        if pair.refresh_credential:
            self._refresh_credential = pair.refresh_credential
        self._hydrated = True
        try:
            await self._store.set(self.token_key, pair.credential)
            if pair.refresh_credential:
                await self._store.set(self.refresh_key, pair.refresh_credential)
        except Exception as e:
            logger.error("session_persist_failed", error=str(e))

    async def sign_in(self, credential: str, refresh_credential: str | None = None) -> None:
        """Adopt a credential pair issued by the identity provider."""
        await self._save(TokenPair(credential=credential, refresh_credential=refresh_credential))
        self._last_verified_at = None
        logger.info("session_signed_in", has_refresh=refresh_credential is not None)

    async def get_token(self) -> str | None:
        """Current credential, or None when signed out."""
        await self._hydrate()
        return self._token

    async def refresh(self, failed_credential: str | None = None) -> str:
        """Renew the credential using the refresh credential.

        When ``failed_credential`` is given and another caller already
        replaced it, the newer credential is returned without a second
        round-trip.

        Raises:
            AuthError: if there is no refresh credential or it is rejected;
                the session is signed out first.
        """
        async with self._refresh_lock:
            await self._hydrate()
            if failed_credential and self._token and self._token != failed_credential:
                logger.debug("session_refresh_coalesced")
                return self._token

            if not self._refresh_credential:
                logger.warning("session_refresh_unavailable")
                await self.sign_out()
                raise AuthError("No refresh credential available")

            try:
                pair = await self._auth_api.refresh_token(self._refresh_credential)
            except AuthError:
                logger.warning("session_refresh_rejected")
                await self.sign_out()
                raise

            await self._save(pair)
            self._last_verified_at = self._clock()
            self._last_valid = True
            logger.info("session_refreshed")
            return pair.credential

    async def is_valid(self) -> bool:
        """Verify the credential with the server, at most once per debounce window."""
        token = await self.get_token()
        if not token:
            return False

        now = self._clock()
        if (
            self._last_verified_at is not None
            and now - self._last_verified_at < self.debounce_seconds
        ):
            return self._last_valid

        try:
            valid = await self._auth_api.verify_token(token)
        except (NetworkError, ServerError) as e:
            logger.warning("session_verify_unavailable", error=str(e))
            return False

        self._last_verified_at = now
        self._last_valid = valid
        logger.debug("session_verified", valid=valid)
        return valid

    async def call_with_refresh(
        self,
        call: Callable[[str | None], Awaitable[T]],
        credential: str | None = None,
    ) -> T:
        """Run ``call(token)``; on an auth error refresh once and retry once.

        A second auth error signs the session out and propagates.
        """
        token = credential or await self.get_token()
        try:
            return await call(token)
        except AuthError:
            logger.info("auth_error_refreshing")

        new_token = await self.refresh(failed_credential=token)
        try:
            return await call(new_token)
        except AuthError:
            logger.warning("auth_error_after_refresh")
            await self.sign_out()
            raise

    def on_sign_out(self, listener: SignOutListener) -> Callable[[], None]:
        """Register a listener for forced or explicit sign-out."""
        self._sign_out_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._sign_out_listeners:
                self._sign_out_listeners.remove(listener)

        return unsubscribe

    async def sign_out(self) -> None:
        """Forget both credentials locally and tell the server."""
        await self._hydrate()
        token = self._token
        self._token = None
        self._refresh_credential = None
        self._hydrated = True
        self._last_verified_at = None
        self._last_valid = False

        try:
            await self._store.remove(self.token_key)
            await self._store.remove(self.refresh_key)
        except Exception as e:
            logger.error("session_clear_failed", error=str(e))

        if token:
            try:
                await self._auth_api.sign_out(token)
            except StoryClientError as e:
                logger.debug("server_sign_out_failed", error=str(e))

        logger.info("session_signed_out")
        for listener in list(self._sign_out_listeners):
            result = listener()
            if inspect.isawaitable(result):
                await result
