"""String-keyed persistence backends."""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Protocol

from storyclient.common.logging import get_logger

logger = get_logger(__name__)


class KeyValueStore(Protocol):
    """Protocol for opaque async key-value persistence."""

    async def get(self, key: str) -> str | None:
        """Return the stored string or None."""
        ...

    async def set(self, key: str, value: str) -> None:
        """Store a string under ``key``."""
        ...

    async def remove(self, key: str) -> None:
        """Delete ``key`` if present."""
        ...


class InMemoryKeyValueStore:
    """Dictionary-backed store for tests and ephemeral sessions."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def snapshot(self) -> dict[str, str]:
        """Copy of the raw contents."""
        return dict(self._data)


class JsonFileKeyValueStore:
    """Store that keeps every key in one JSON document on disk.

    Writes go to a temporary file in the same directory and are moved into
    place with ``os.replace``, so a crash never leaves a half-written file.
    """

    FILENAME = "store.json"

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)
        self.path = self.directory / self.FILENAME
        self._lock = asyncio.Lock()

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        data = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not hold a JSON object")
        return data

    def _write(self, data: dict[str, str]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp_path, self.path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    async def get(self, key: str) -> str | None:
        async with self._lock:
            return self._read().get(key)

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    async def remove(self, key: str) -> None:
        async with self._lock:
            data = self._read()
            if data.pop(key, None) is not None:
                self._write(data)
