"""Polling primitives: states, outcomes, policy and cancellation."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum

from storyclient.common.config import Settings, get_settings
from storyclient.common.errors import PollCancelledError, StoryClientError
from storyclient.common.models import JobState, JobStatus, StoryJob, StoryRecord


class PollState(str, Enum):
    """State of one generation's poll loop."""

    SUBMITTED = "submitted"
    POLLING = "polling"
    DONE = "done"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (PollState.SUBMITTED, PollState.POLLING)


class PollOutcomeKind(str, Enum):
    """Classification of a single status fetch."""

    STILL_PENDING = "still_pending"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class PollOutcome:
    """Result of one poll tick."""

    kind: PollOutcomeKind
    status: JobStatus
    record: StoryRecord | None = None
    reason: str | None = None

    @classmethod
    def still_pending(cls, status: JobStatus) -> PollOutcome:
        return cls(kind=PollOutcomeKind.STILL_PENDING, status=status)

    @classmethod
    def completed(cls, record: StoryRecord) -> PollOutcome:
        return cls(kind=PollOutcomeKind.COMPLETED, status=JobStatus.COMPLETED, record=record)

    @classmethod
    def failed(cls, reason: str) -> PollOutcome:
        return cls(kind=PollOutcomeKind.FAILED, status=JobStatus.FAILED, reason=reason)


def classify(result: StoryRecord | JobState) -> PollOutcome:
    """Map a status fetch onto a poll outcome.

    A completed story without playable scenes counts as failed.
    """
    if result.status == JobStatus.FAILED:
        message = getattr(result, "message", None)
        return PollOutcome.failed(message or "Story generation failed")

    if result.status == JobStatus.COMPLETED:
        if not isinstance(result, StoryRecord):
            return PollOutcome.failed("Story completed without story data")
        if not result.is_playable:
            return PollOutcome.failed(
                f"Story has {len(result.scenes)} playable of "
                f"{result.total_scenes} scenes"
            )
        return PollOutcome.completed(result)

    return PollOutcome.still_pending(result.status)


@dataclass(frozen=True)
class PollPolicy:
    """Fixed-interval polling budget."""

    interval_seconds: float = 15.0
    max_attempts: int = 20

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> PollPolicy:
        settings = settings or get_settings()
        return cls(
            interval_seconds=settings.poll_interval_seconds,
            max_attempts=settings.poll_max_attempts,
        )

    @property
    def timeout_seconds(self) -> float:
        """Approximate overall wait before a job times out."""
        return self.interval_seconds * self.max_attempts


class CancellationToken:
    """Cooperative cancellation flag checked by a poll loop."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        """Block until cancelled."""
        await self._event.wait()

    def raise_if_cancelled(self, job_id: str) -> None:
        if self.cancelled:
            raise PollCancelledError(job_id)


@dataclass
class Generation:
    """Engine-side bookkeeping for one in-flight job."""

    job: StoryJob
    token: CancellationToken = field(default_factory=CancellationToken)
    state: PollState = PollState.SUBMITTED
    attempts: int = 0
    record: StoryRecord | None = None
    error: StoryClientError | None = None
    task: asyncio.Task | None = field(default=None, repr=False)

    @property
    def job_id(self) -> str:
        return self.job.id

    def summary(self) -> dict:
        """Return summary for logging."""
        return {
            "job_id": self.job.id,
            "state": self.state.value,
            "status": self.job.status.value,
            "attempts": self.attempts,
        }
