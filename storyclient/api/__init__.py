"""HTTP clients for the story server."""

from storyclient.api.base import BaseApiClient, translate_status
from storyclient.api.stories import StoryApiClient, parse_status, parse_story
from storyclient.api.auth import AuthApiClient

__all__ = [
    "BaseApiClient",
    "translate_status",
    "StoryApiClient",
    "parse_status",
    "parse_story",
    "AuthApiClient",
]
