"""Local persistence: key-value backends and the story cache."""

from storyclient.storage.kv import (
    KeyValueStore,
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
)
from storyclient.storage.cache import LocalStoryCache

__all__ = [
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "LocalStoryCache",
]
