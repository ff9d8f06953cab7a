"""Pytest configuration and fixtures."""

import asyncio

import pytest

from storyclient.api.stories import parse_story
from storyclient.common.errors import AuthError, ValidationError
from storyclient.common.models import JobState, JobStatus, StoryPage, TokenPair
from storyclient.playback import PlaybackStatus
from storyclient.reconciliation import PollPolicy, StoryEngine
from storyclient.session import SessionProvider
from storyclient.storage import InMemoryKeyValueStore, LocalStoryCache


def make_scene_payload(number: int, audio: bool = True) -> dict:
    """Wire-format scene."""
    return {
        "scene_number": number,
        "text": f"Scene {number} text",
        "visual_prompt": f"Scene {number} picture",
        "audio_url": f"https://cdn.test/audio/{number}.mp3" if audio else None,
        "image_url": f"https://cdn.test/img/{number}.png",
        "start_time": (number - 1) * 30.0,
        "duration": 30.0,
    }


def make_story_payload(
    story_id: str = "story_1",
    title: str = "The Moon Robot",
    scenes: int = 4,
    status: str = "completed",
    prompt: str = "A robot visits the moon",
) -> dict:
    """Wire-format story as returned by the fetch endpoint."""
    return {
        "story_id": story_id,
        "title": title,
        "user_prompt": prompt,
        "status": status,
        "total_scenes": scenes,
        "total_duration": scenes * 30.0,
        "generated_at": "2025-01-05T10:00:00Z",
        "scenes": [make_scene_payload(i) for i in range(1, scenes + 1)],
    }


class FakeStoryApi:
    """Scripted stand-in for StoryApiClient.

    ``fetch_script`` items are returned in order, the last one repeating.
    An item may be a result, an exception to raise, or an async callable
    producing either.
    """

    def __init__(self):
        self.job_id = "story_1"
        self.generate_error: Exception | None = None
        self.generate_calls: list[tuple[str, str | None]] = []
        self.fetch_script: list = [JobState(id="story_1", status=JobStatus.PROCESSING)]
        self.fetch_calls: list[tuple[str, str | None]] = []
        self.pages: list = []
        self.list_calls: list[tuple[str | None, int, int]] = []
        self.delete_result = True
        self.delete_calls: list[tuple[str, str | None]] = []

    async def generate(self, prompt, credential):
        self.generate_calls.append((prompt, credential))
        if not prompt or not prompt.strip():
            raise ValidationError("Prompt must not be empty")
        if self.generate_error is not None:
            raise self.generate_error
        return JobState(id=self.job_id, status=JobStatus.PROCESSING)

    async def fetch_status(self, job_id, credential=None):
        self.fetch_calls.append((job_id, credential))
        if len(self.fetch_script) > 1:
            item = self.fetch_script.pop(0)
        else:
            item = self.fetch_script[0]
        if callable(item):
            item = await item()
        if isinstance(item, Exception):
            raise item
        return item

    async def list_for_user(self, credential, limit=20, offset=0):
        self.list_calls.append((credential, limit, offset))
        item = self.pages.pop(0) if len(self.pages) > 1 else self.pages[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def delete_story(self, job_id, credential):
        self.delete_calls.append((job_id, credential))
        return self.delete_result


class FakeAuthApi:
    """Stand-in for AuthApiClient."""

    def __init__(self):
        self.next_pair = TokenPair(credential="token-2", refresh_credential="refresh-2")
        self.refresh_error: Exception | None = None
        self.refresh_calls: list[str] = []
        self.verify_result = True
        self.verify_calls: list[str] = []
        self.sign_out_calls: list[str] = []

    async def verify_token(self, credential):
        self.verify_calls.append(credential)
        return self.verify_result

    async def refresh_token(self, refresh_credential):
        self.refresh_calls.append(refresh_credential)
        await asyncio.sleep(0)
        if self.refresh_error is not None:
            raise self.refresh_error
        return self.next_pair

    async def sign_out(self, credential):
        self.sign_out_calls.append(credential)
        raise AuthError("already signed out", status_code=401)


class RecordingSleep:
    """Simulated clock for poll intervals: records delays, never waits."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await asyncio.sleep(0)


class FakeClock:
    """Monotonic clock under test control."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePlayer:
    """Audio player double recording every call."""

    def __init__(self):
        self.loaded: list[str] = []
        self.unloads = 0
        self.plays = 0
        self.pauses = 0
        self.seeks: list[float] = []
        self.fail_uris: set[str] = set()
        self.listener = None

    async def load(self, uri):
        if uri in self.fail_uris:
            raise RuntimeError("HTTP 404")
        self.loaded.append(uri)

    async def play(self):
        self.plays += 1

    async def pause(self):
        self.pauses += 1

    async def seek(self, position):
        self.seeks.append(position)

    async def unload(self):
        self.unloads += 1

    def set_status_listener(self, listener):
        self.listener = listener

    async def emit(self, **kwargs):
        await self.listener(PlaybackStatus(**kwargs))


@pytest.fixture
def story_payload():
    """Factory for wire-format stories."""
    return make_story_payload


@pytest.fixture
def story_record():
    """Factory for parsed StoryRecords."""

    def _make(**kwargs):
        return parse_story(make_story_payload(**kwargs))

    return _make


@pytest.fixture
def processing():
    """A still-processing fetch answer for story_1."""
    return JobState(id="story_1", status=JobStatus.PROCESSING)


@pytest.fixture
def make_page(story_record):
    """Factory for list pages."""

    def _make(ids, has_more=False):
        return StoryPage(
            records=[story_record(story_id=i, title=f"Story {i}") for i in ids],
            has_more=has_more,
            total_count=len(ids),
        )

    return _make


@pytest.fixture
def store():
    """Key-value store holding a signed-in session."""
    return InMemoryKeyValueStore(
        {"auth_token": "token-1", "refresh_token": "refresh-1"}
    )


@pytest.fixture
def cache(store):
    return LocalStoryCache(store, key="user_stories")


@pytest.fixture
def story_api():
    return FakeStoryApi()


@pytest.fixture
def auth_api():
    return FakeAuthApi()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session(auth_api, store, clock):
    return SessionProvider(
        auth_api,
        store,
        debounce_seconds=30.0,
        token_key="auth_token",
        refresh_key="refresh_token",
        clock=clock,
    )


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def policy():
    return PollPolicy(interval_seconds=15.0, max_attempts=20)


@pytest.fixture
def engine(story_api, cache, session, policy, sleep):
    return StoryEngine(
        story_api,
        cache,
        session,
        policy=policy,
        sleep=sleep,
        page_size=2,
        max_pages=5,
    )


@pytest.fixture
def player():
    return FakePlayer()
