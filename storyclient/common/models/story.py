"""Story job, scene and record models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, Field, model_validator

from storyclient.common.models.base import ClientModel, utcnow

PLACEHOLDER_TITLE = "Generating..."


class JobStatus(str, Enum):
    """Status of a server-side generation job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)

    @property
    def rank(self) -> int:
        """Position in the forward-only ordering."""
        return _STATUS_RANK[self]


_STATUS_RANK = {
    JobStatus.PENDING: 0,
    JobStatus.PROCESSING: 1,
    JobStatus.COMPLETED: 2,
    JobStatus.FAILED: 2,
}


class StoryJob(ClientModel):
    """A single generation request."""

    id: str
    prompt: str
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)

    def with_status(self, status: JobStatus) -> StoryJob:
        """Return a copy moved forward to ``status``.

        Backward moves are ignored; leaving a terminal state is an error.
        """
        if status == self.status:
            return self
        if self.status.is_terminal:
            raise ValueError(
                f"Job {self.id} is {self.status.value}; cannot move to {status.value}"
            )
        if status.rank < self.status.rank:
            return self
        return self.model_copy(update={"status": status})

    def summary(self) -> dict[str, Any]:
        return {"id": self.id, "status": self.status.value}


class Scene(ClientModel):
    """One narrated unit of a completed story."""

    index: int = Field(ge=1, validation_alias=AliasChoices("index", "scene_number"))
    text: str = ""
    visual_description: str = Field(
        default="",
        validation_alias=AliasChoices("visual_description", "visual_prompt"),
    )
    audio_ref: str | None = Field(
        default=None, validation_alias=AliasChoices("audio_ref", "audio_url")
    )
    image_ref: str | None = Field(
        default=None, validation_alias=AliasChoices("image_ref", "image_url")
    )
    start_offset: float = Field(
        default=0.0, ge=0, validation_alias=AliasChoices("start_offset", "start_time")
    )
    duration: float = Field(default=0.0, ge=0)


class StoryRecord(ClientModel):
    """Completed (or summarised) form of a job, owned by the server."""

    id: str = Field(validation_alias=AliasChoices("id", "story_id"))
    title: str = PLACEHOLDER_TITLE
    prompt: str = Field(default="", validation_alias=AliasChoices("prompt", "user_prompt"))
    status: JobStatus = JobStatus.COMPLETED
    scenes: list[Scene] = Field(default_factory=list)
    total_scenes: int = Field(default=0, ge=0)
    total_duration: float = Field(default=0.0, ge=0)
    generated_at: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("generated_at", "created_at"),
    )
    thumbnail: str | None = Field(
        default=None, validation_alias=AliasChoices("thumbnail", "thumbnail_url")
    )

    @model_validator(mode="before")
    @classmethod
    def _fill_derived(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = {k: v for k, v in data.items() if v is not None}
        scenes = data.get("scenes") or []
        if not data.get("total_scenes"):
            data["total_scenes"] = len(scenes)
        if not data.get("status"):
            data.pop("status", None)
        return data

    @property
    def cover_image(self) -> str | None:
        """Thumbnail for list display, falling back to the first scene's image."""
        if self.thumbnail:
            return self.thumbnail
        if self.scenes:
            return self.scenes[0].image_ref
        return None

    @property
    def is_playable(self) -> bool:
        """True when every declared scene arrived intact."""
        return bool(self.scenes) and len(self.scenes) >= self.total_scenes

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status.value,
            "scenes": len(self.scenes),
            "total_scenes": self.total_scenes,
        }


class JobState(ClientModel):
    """Answer of a status fetch for a job that has no story yet."""

    id: str
    status: JobStatus = JobStatus.PROCESSING
    message: str | None = None


class StoryPage(ClientModel):
    """One offset-based page of a user's stories."""

    records: list[StoryRecord] = Field(default_factory=list)
    has_more: bool = False
    total_count: int | None = None
