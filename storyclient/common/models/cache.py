"""Persisted projection of stories used for instant list rendering."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field

from storyclient.common.models.base import ClientModel
from storyclient.common.models.story import PLACEHOLDER_TITLE, JobStatus, StoryRecord


class LocalCacheEntry(ClientModel):
    """Lightweight story metadata kept in the local cache."""

    id: str
    title: str = PLACEHOLDER_TITLE
    description: str = ""
    generated_at: datetime | None = None
    duration: float = Field(default=0.0, ge=0)
    status: JobStatus = JobStatus.PROCESSING
    thumbnail: str | None = None
    total_scenes: int = Field(default=0, ge=0)

    @classmethod
    def placeholder(cls, job_id: str, prompt: str, now: datetime) -> LocalCacheEntry:
        """Entry written the moment a job is accepted by the server."""
        return cls(
            id=job_id,
            title=PLACEHOLDER_TITLE,
            description=prompt,
            generated_at=now,
            status=JobStatus.PROCESSING,
        )

    @classmethod
    def from_record(
        cls, record: StoryRecord, fallback_description: str = ""
    ) -> LocalCacheEntry:
        return cls(
            id=record.id,
            title=record.title,
            description=record.prompt or fallback_description,
            generated_at=record.generated_at,
            duration=record.total_duration,
            status=record.status,
            thumbnail=record.cover_image,
            total_scenes=record.total_scenes,
        )

    def with_status(self, status: JobStatus) -> LocalCacheEntry:
        return self.model_copy(update={"status": status})

    def summary(self) -> dict[str, Any]:
        return {"id": self.id, "status": self.status.value, "title": self.title}
