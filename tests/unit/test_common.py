"""Unit tests for settings, logging helpers, errors and poll classification."""

import httpx
import pytest
import structlog

from storyclient.api import translate_status
from storyclient.common.config import Settings
from storyclient.common.errors import (
    TRANSIENT_ERRORS,
    AuthError,
    GenerationFailedError,
    GenerationTimeoutError,
    NetworkError,
    ServerError,
)
from storyclient.common.logging import _redact_credentials, bind_job, unbind_job
from storyclient.common.models import JobState, JobStatus
from storyclient.reconciliation import (
    CancellationToken,
    PollOutcomeKind,
    PollPolicy,
    classify,
)


class TestSettings:
    """Tests for environment-driven settings."""

    def test_defaults(self, monkeypatch):
        """Test the polling and paging defaults."""
        monkeypatch.delenv("POLL_INTERVAL_SECONDS", raising=False)
        settings = Settings(_env_file=None)

        assert settings.poll_interval_seconds == 15.0
        assert settings.poll_max_attempts == 20
        assert settings.stories_storage_key == "user_stories"
        assert not settings.is_production

    def test_environment_override(self, monkeypatch):
        """Test reading values from the environment."""
        monkeypatch.setenv("POLL_INTERVAL_SECONDS", "2")
        monkeypatch.setenv("API_BASE_URL", "http://localhost:8000")
        monkeypatch.setenv("APP_ENV", "production")

        settings = Settings(_env_file=None)
        policy = PollPolicy.from_settings(settings)

        assert settings.api_base_url == "http://localhost:8000"
        assert settings.is_production
        assert policy.interval_seconds == 2.0
        assert policy.timeout_seconds == 40.0


class TestLogging:
    """Tests for logging helpers."""

    def test_credentials_redacted(self):
        """Test that credential values never reach the renderer."""
        event = _redact_credentials(
            None,
            "info",
            {"event": "session_refreshed", "token": "secret", "refresh_token": "r", "job_id": "s1"},
        )

        assert event["token"] == "***"
        assert event["refresh_token"] == "***"
        assert event["job_id"] == "s1"

    def test_bind_job(self):
        """Test binding the job id to the logging context."""
        bind_job("story_1")
        assert structlog.contextvars.get_contextvars()["job_id"] == "story_1"

        unbind_job()
        assert "job_id" not in structlog.contextvars.get_contextvars()


class TestErrors:
    """Tests for the error taxonomy."""

    def test_recoverable_flags(self):
        """Test which errors are retried."""
        assert NetworkError("offline").recoverable
        assert ServerError("boom").recoverable
        assert not AuthError().recoverable
        assert not GenerationFailedError("s1").recoverable
        assert set(TRANSIENT_ERRORS) == {NetworkError, ServerError}

    def test_timeout_is_failure(self):
        """Test that timeouts are a kind of generation failure."""
        error = GenerationTimeoutError("s1", attempts=20)

        assert isinstance(error, GenerationFailedError)
        assert error.job_id == "s1"
        assert "20 attempts" in error.message

    def test_error_message_fallback(self):
        """Test messages for responses without a body."""
        error = translate_status(httpx.Response(502))

        assert isinstance(error, ServerError)
        assert error.message == "HTTP 502 Bad Gateway"


class TestClassify:
    """Tests for mapping fetch answers onto poll outcomes."""

    @pytest.mark.parametrize("status", [JobStatus.PENDING, JobStatus.PROCESSING])
    def test_pending(self, status):
        outcome = classify(JobState(id="s1", status=status))

        assert outcome.kind == PollOutcomeKind.STILL_PENDING
        assert outcome.status == status

    def test_completed_without_story(self):
        """Test a completed status that carries no story."""
        outcome = classify(JobState(id="s1", status=JobStatus.COMPLETED))

        assert outcome.kind == PollOutcomeKind.FAILED

    def test_completed(self, story_record):
        outcome = classify(story_record())

        assert outcome.kind == PollOutcomeKind.COMPLETED
        assert outcome.record.id == "story_1"

    def test_truncated_story(self, story_record):
        """Test a story with fewer scenes than declared."""
        record = story_record(scenes=4)
        record = record.model_copy(update={"scenes": record.scenes[:2]})

        outcome = classify(record)

        assert outcome.kind == PollOutcomeKind.FAILED
        assert "2 playable of 4" in outcome.reason


class TestCancellationToken:
    """Tests for cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_cancel(self):
        token = CancellationToken()
        assert not token.cancelled

        token.cancel()
        await token.wait()

        assert token.cancelled
        with pytest.raises(Exception, match="s1"):
            token.raise_if_cancelled("s1")
