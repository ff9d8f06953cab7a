"""Unit tests for component wiring."""

from datetime import datetime, timezone

import httpx
import pytest

from storyclient.common.config import Settings
from storyclient.common.models import JobStatus, LocalCacheEntry
from storyclient.runtime import create_runtime
from storyclient.storage import InMemoryKeyValueStore


class TestCreateRuntime:
    """Tests for the runtime built from settings."""

    @pytest.mark.asyncio
    async def test_sign_out_clears_cached_stories(self):
        """Test that another user's stories do not survive a sign-out."""
        seen = []

        def handler(request):
            seen.append(request.url.path)
            return httpx.Response(200, json={"success": True})

        store = InMemoryKeyValueStore({"auth_token": "token-1", "refresh_token": "refresh-1"})
        runtime = create_runtime(
            settings=Settings(_env_file=None),
            store=store,
            transport=httpx.MockTransport(handler),
        )

        async with runtime:
            await runtime.cache.upsert(
                LocalCacheEntry(
                    id="story_1",
                    title="The Moon Robot",
                    generated_at=datetime(2025, 1, 5, tzinfo=timezone.utc),
                    status=JobStatus.COMPLETED,
                )
            )

            await runtime.session.sign_out()

            assert await runtime.cache.get() == []

        assert seen == ["/auth/signout"]
        assert store.snapshot() == {"user_stories": "[]"}
