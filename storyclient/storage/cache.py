"""Persisted local cache of story metadata."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Iterable

from pydantic import ValidationError as PydanticValidationError

from storyclient.common.config import get_settings
from storyclient.common.logging import get_logger
from storyclient.common.models import JobStatus, LocalCacheEntry
from storyclient.storage.kv import KeyValueStore

logger = get_logger(__name__)


def _dedupe(entries: Iterable[LocalCacheEntry]) -> list[LocalCacheEntry]:
    """Keep the first entry for every id, preserving order."""
    seen: set[str] = set()
    result = []
    for entry in entries:
        if entry.id in seen:
            continue
        seen.add(entry.id)
        result.append(entry)
    return result


class LocalStoryCache:
    """Ordered id -> entry mapping, most recent first, mirrored to a store.

    The in-memory list is what readers see. Every mutation builds a new list
    and swaps it in a single step before persisting, so a reader can never
    observe a partially applied change. Persistence failures are logged and
    swallowed: the cache keeps working in memory.
    """

    def __init__(self, store: KeyValueStore, key: str | None = None):
        self._store = store
        self.key = key or get_settings().stories_storage_key
        self._entries: list[LocalCacheEntry] = []
        self._loaded = False
        self._load_lock = asyncio.Lock()
        self._persist_lock = asyncio.Lock()

    async def load(self) -> None:
        """Hydrate from the store once."""
        if self._loaded:
            return
        async with self._load_lock:
            if self._loaded:
                return
            self._entries = await self._read_store()
            self._loaded = True
            logger.debug("cache_loaded", key=self.key, entries=len(self._entries))

    async def _read_store(self) -> list[LocalCacheEntry]:
        try:
            raw = await self._store.get(self.key)
        except Exception as e:
            logger.error("cache_read_failed", key=self.key, error=str(e))
            return []
        if not raw:
            return []

        try:
            items = json.loads(raw)
        except ValueError as e:
            logger.error("cache_corrupt", key=self.key, error=str(e))
            return []
        if not isinstance(items, list):
            logger.error("cache_corrupt", key=self.key, error="not a list")
            return []

        entries = []
        for item in items:
            try:
                entries.append(LocalCacheEntry.model_validate(item))
            except PydanticValidationError:
                logger.warning("cache_entry_skipped", key=self.key)
        return _dedupe(entries)

    async def _persist(self) -> None:
        async with self._persist_lock:
            # Serialize under the lock so the last write is the newest state.
            payload = json.dumps([e.model_dump(mode="json") for e in self._entries])
            try:
                await self._store.set(self.key, payload)
            except Exception as e:
                logger.error("cache_persist_failed", key=self.key, error=str(e))

    async def get(self) -> list[LocalCacheEntry]:
        """All entries, most recent first."""
        await self.load()
        return list(self._entries)

    async def find(self, story_id: str) -> LocalCacheEntry | None:
        await self.load()
        for entry in self._entries:
            if entry.id == story_id:
                return entry
        return None

    async def upsert(self, entry: LocalCacheEntry) -> None:
        """Replace the entry with the same id in place, or prepend it."""
        await self.load()
        entries = list(self._entries)
        for i, existing in enumerate(entries):
            if existing.id == entry.id:
                entries[i] = entry
                break
        else:
            entries.insert(0, entry)
        self._entries = entries
        logger.debug("cache_upsert", **entry.summary())
        await self._persist()

    async def replace_all(self, entries: Iterable[LocalCacheEntry]) -> None:
        """Atomically replace the whole cache."""
        await self.load()
        self._entries = _dedupe(entries)
        logger.debug("cache_replaced", entries=len(self._entries))
        await self._persist()

    async def patch_status(self, story_id: str, status: JobStatus) -> bool:
        """Update only the status of an existing entry. No-op if absent."""
        await self.load()
        entries = list(self._entries)
        for i, existing in enumerate(entries):
            if existing.id == story_id:
                entries[i] = existing.with_status(status)
                break
        else:
            return False
        self._entries = entries
        logger.debug("cache_status_patched", id=story_id, status=status.value)
        await self._persist()
        return True

    async def remove(self, story_id: str) -> bool:
        """Drop an entry after an explicit user delete."""
        await self.load()
        entries = [e for e in self._entries if e.id != story_id]
        if len(entries) == len(self._entries):
            return False
        self._entries = entries
        await self._persist()
        return True

    async def clear(self) -> None:
        """Forget every entry, e.g. on sign-out."""
        await self.load()
        self._entries = []
        await self._persist()
