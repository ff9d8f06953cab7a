"""Data models for the story client."""

from storyclient.common.models.base import ClientModel, utcnow
from storyclient.common.models.story import (
    PLACEHOLDER_TITLE,
    JobState,
    JobStatus,
    Scene,
    StoryJob,
    StoryPage,
    StoryRecord,
)
from storyclient.common.models.cache import LocalCacheEntry
from storyclient.common.models.session import TokenPair

__all__ = [
    # Base
    "ClientModel",
    "utcnow",
    # Story
    "PLACEHOLDER_TITLE",
    "JobState",
    "JobStatus",
    "Scene",
    "StoryJob",
    "StoryPage",
    "StoryRecord",
    # Cache
    "LocalCacheEntry",
    # Session
    "TokenPair",
]
