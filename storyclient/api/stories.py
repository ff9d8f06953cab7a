"""Remote story API client."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

from pydantic import ValidationError as PydanticValidationError

from storyclient.api.base import BaseApiClient
from storyclient.common.errors import AuthError, ServerError, StoryClientError, ValidationError
from storyclient.common.logging import get_logger
from storyclient.common.models import JobState, JobStatus, Scene, StoryPage, StoryRecord

logger = get_logger(__name__)


def parse_status(value: Any, default: JobStatus = JobStatus.PROCESSING) -> JobStatus:
    """Read a wire status, treating unknown values as ``default``."""
    if not value:
        return default
    try:
        return JobStatus(str(value).lower())
    except ValueError:
        logger.warning("unknown_job_status", status=value)
        return default


def parse_story(raw: Any, job_id: str | None = None) -> StoryRecord:
    """Build a :class:`StoryRecord` from a server story object.

    Malformed scene entries are dropped; the declared scene count is kept
    so the record reports itself as not playable.
    """
    if not isinstance(raw, dict):
        raise ServerError(f"Malformed story payload: {type(raw).__name__}")

    data = dict(raw)
    if job_id and not (data.get("story_id") or data.get("id")):
        data["story_id"] = job_id
    data["status"] = parse_status(data.get("status"), default=JobStatus.COMPLETED)

    raw_scenes = data.get("scenes")
    if not isinstance(raw_scenes, list):
        raw_scenes = []
    scenes: list[Scene] = []
    for item in raw_scenes:
        try:
            scenes.append(Scene.model_validate(item))
        except PydanticValidationError as e:
            logger.warning(
                "story_scene_malformed",
                story_id=data.get("story_id") or data.get("id"),
                error_count=e.error_count(),
            )
    data["scenes"] = scenes
    data["total_scenes"] = data.get("total_scenes") or len(raw_scenes)

    try:
        return StoryRecord.model_validate(data)
    except PydanticValidationError as e:
        raise ServerError(f"Malformed story payload: {e.error_count()} errors") from e


class StoryApiClient(BaseApiClient):
    """Typed wrapper over the story server's REST endpoints.

    No caching happens here: every method is one network call and every
    failure is raised as a typed :class:`StoryClientError`.
    """

    async def generate(self, prompt: str, credential: str | None) -> JobState:
        """Start a generation job for ``prompt``."""
        if not prompt or not prompt.strip():
            raise ValidationError("Prompt must not be empty")
        if not credential:
            raise AuthError("A credential is required to generate a story")

        data = await self._request(
            "POST",
            "/stories/generate",
            route="generate",
            credential=credential,
            json_body={"firebase_token": credential, "prompt": prompt.strip()},
        )
        job_id = data.get("story_id")
        if not data.get("success") or not job_id:
            raise ServerError(data.get("message") or "Failed to start story generation")

        job = JobState(
            id=str(job_id),
            status=parse_status(data.get("status")),
            message=data.get("message"),
        )
        logger.info("story_generation_started", job_id=job.id, status=job.status.value)
        return job

    async def fetch_status(
        self, job_id: str, credential: str | None = None
    ) -> StoryRecord | JobState:
        """Fetch a job; returns the story once the server has one.

        Callers must not assume scenes unless the result is a
        :class:`StoryRecord` with status ``completed``.
        """
        data = await self._request(
            "GET",
            f"/stories/fetch/{quote(job_id, safe='')}",
            route="fetch_status",
            credential=credential,
        )
        story = data.get("story")
        if story:
            return parse_story(story, job_id=job_id)
        return JobState(
            id=job_id,
            status=parse_status(data.get("status")),
            message=data.get("message"),
        )

    async def list_for_user(
        self, credential: str | None, limit: int = 20, offset: int = 0
    ) -> StoryPage:
        """Fetch one page of the user's stories."""
        if not credential:
            raise AuthError("A credential is required to list stories")

        data = await self._request(
            "GET",
            f"/stories/user/{quote(credential, safe='')}",
            route="list_for_user",
            credential=credential,
            params={"limit": limit, "offset": offset},
        )
        if data.get("success") is False:
            raise ServerError(data.get("message") or "Failed to list stories")
        stories = data.get("stories")
        if not isinstance(stories, list):
            raise ServerError("Story list response has no stories array")

        records = []
        for raw in stories:
            try:
                records.append(parse_story(raw))
            except ServerError:
                logger.warning("story_summary_skipped", offset=offset)

        return StoryPage(
            records=records,
            has_more=bool(data.get("has_more")),
            total_count=data.get("total_count"),
        )

    async def delete_story(self, job_id: str, credential: str | None) -> bool:
        """Delete one of the user's stories on the server."""
        if not credential:
            raise AuthError("A credential is required to delete a story")

        data = await self._request(
            "DELETE",
            f"/stories/user/{quote(credential, safe='')}/story/{quote(job_id, safe='')}",
            route="delete_story",
            credential=credential,
        )
        deleted = bool(data.get("success"))
        logger.info("story_delete_response", job_id=job_id, deleted=deleted)
        return deleted

    async def health_check(self) -> bool:
        """Check if the story server is reachable."""
        try:
            await self._request("GET", "/health", route="health")
            return True
        except StoryClientError as e:
            logger.warning("story_server_health_check_failed", error=str(e))
            return False
