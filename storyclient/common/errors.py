"""Error taxonomy shared by every client component.

Errors carry a ``recoverable`` flag: recoverable errors are retried inside
the poll loop's attempt budget (or offered to the user as a retry action),
the rest surface immediately.
"""

from __future__ import annotations


class StoryClientError(Exception):
    """Base exception for story client errors."""

    def __init__(
        self,
        message: str,
        recoverable: bool = True,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.recoverable = recoverable
        self.status_code = status_code


class ValidationError(StoryClientError):
    """Raised for bad input. Never retried."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message, recoverable=False, status_code=status_code)


class AuthError(StoryClientError):
    """Raised when a credential is missing, rejected or cannot be refreshed."""

    def __init__(self, message: str = "Not authorized", status_code: int | None = None):
        super().__init__(message, recoverable=False, status_code=status_code)


class NotFoundError(StoryClientError):
    """Raised when the server does not know the requested story."""

    def __init__(self, message: str = "Story not found", status_code: int | None = 404):
        super().__init__(message, recoverable=False, status_code=status_code)


class NetworkError(StoryClientError):
    """Raised on transport failures and request timeouts."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message, recoverable=True, status_code=status_code)


class ServerError(StoryClientError):
    """Raised on 5xx responses and malformed or unsuccessful bodies."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message, recoverable=True, status_code=status_code)


class MediaLoadError(StoryClientError):
    """Raised when a scene's audio cannot be loaded."""

    def __init__(self, message: str, scene_index: int, recoverable: bool = True):
        super().__init__(message, recoverable=recoverable)
        self.scene_index = scene_index


class GenerationFailedError(StoryClientError):
    """Raised when a generation job ends in the failed state."""

    def __init__(self, job_id: str, reason: str = "Story generation failed"):
        super().__init__(reason, recoverable=False)
        self.job_id = job_id
        self.reason = reason


class GenerationTimeoutError(GenerationFailedError):
    """Raised when a job is still unfinished after the last poll attempt."""

    def __init__(self, job_id: str, attempts: int):
        super().__init__(job_id, f"Story generation timed out after {attempts} attempts")
        self.attempts = attempts


class PollCancelledError(StoryClientError):
    """Raised when a poll loop is stopped through its cancellation token."""

    def __init__(self, job_id: str):
        super().__init__(f"Polling cancelled for {job_id}", recoverable=False)
        self.job_id = job_id


# Errors the poll loop absorbs and retries within its attempt budget.
TRANSIENT_ERRORS: tuple[type[StoryClientError], ...] = (NetworkError, ServerError)
