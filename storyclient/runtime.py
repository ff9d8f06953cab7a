"""Wiring of the client components from settings."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import httpx

from storyclient.api import AuthApiClient, StoryApiClient
from storyclient.common.config import Settings, get_settings
from storyclient.reconciliation import PollPolicy, StoryEngine
from storyclient.session import SessionProvider
from storyclient.storage import JsonFileKeyValueStore, KeyValueStore, LocalStoryCache


@dataclass
class StoryClientRuntime:
    """All long-lived client components sharing one store and one session."""

    settings: Settings
    store: KeyValueStore
    cache: LocalStoryCache
    story_api: StoryApiClient
    auth_api: AuthApiClient
    session: SessionProvider
    engine: StoryEngine

    async def close(self) -> None:
        await self.engine.close()
        await self.story_api.close()
        await self.auth_api.close()

    async def __aenter__(self) -> StoryClientRuntime:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


def create_runtime(
    settings: Settings | None = None,
    store: KeyValueStore | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    sleep=asyncio.sleep,
) -> StoryClientRuntime:
    """Build a runtime; the store defaults to a JSON file under ``storage_dir``."""
    settings = settings or get_settings()
    store = store or JsonFileKeyValueStore(settings.storage_dir)

    story_api = StoryApiClient(
        base_url=settings.api_base_url,
        timeout=settings.request_timeout_seconds,
        transport=transport,
    )
    auth_api = AuthApiClient(
        base_url=settings.api_base_url,
        timeout=settings.request_timeout_seconds,
        transport=transport,
    )
    cache = LocalStoryCache(store, key=settings.stories_storage_key)
    session = SessionProvider(
        auth_api,
        store,
        debounce_seconds=settings.token_verify_debounce_seconds,
        token_key=settings.auth_token_key,
        refresh_key=settings.refresh_token_key,
    )
    # Cached stories belong to the signed-in user.
    session.on_sign_out(cache.clear)
    engine = StoryEngine(
        story_api,
        cache,
        session,
        policy=PollPolicy.from_settings(settings),
        sleep=sleep,
        page_size=settings.list_page_size,
        max_pages=settings.list_max_pages,
    )
    return StoryClientRuntime(
        settings=settings,
        store=store,
        cache=cache,
        story_api=story_api,
        auth_api=auth_api,
        session=session,
        engine=engine,
    )
