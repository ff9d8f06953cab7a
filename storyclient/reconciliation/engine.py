"""Story reconciliation and polling engine.

The engine is the single owner of story state on the client. It starts
generation jobs, polls them at a fixed interval until they reach a terminal
state, and merges every answer from the server into the local cache. UI
layers read the derived :class:`StoryListView` or subscribe to it; they never
write the cache themselves.

Per job the poll loop moves through::

    SUBMITTED -> POLLING -> DONE | FAILED | TIMED_OUT | CANCELLED

Transient errors (network, 5xx) are retried inside the attempt budget. An
auth error is retried once after a credential refresh by the session
provider. Only terminal outcomes reach the caller.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from storyclient.api.stories import StoryApiClient
from storyclient.common.config import get_settings
from storyclient.common.errors import (
    TRANSIENT_ERRORS,
    AuthError,
    GenerationFailedError,
    GenerationTimeoutError,
    PollCancelledError,
    StoryClientError,
)
from storyclient.common.logging import bind_job, get_logger, unbind_job
from storyclient.common.models import (
    JobStatus,
    LocalCacheEntry,
    StoryJob,
    StoryRecord,
    utcnow,
)
from storyclient.reconciliation.polling import (
    CancellationToken,
    Generation,
    PollOutcome,
    PollOutcomeKind,
    PollPolicy,
    PollState,
    classify,
)
from storyclient.session.provider import SessionProvider
from storyclient.storage.cache import LocalStoryCache

logger = get_logger(__name__)

ProgressCallback = Callable[[JobStatus], None]
Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class StoryListView:
    """Read-only snapshot handed to UI layers."""

    entries: tuple[LocalCacheEntry, ...] = ()
    generating: tuple[str, ...] = ()
    error: StoryClientError | None = None


ViewListener = Callable[[StoryListView], None]


class StoryEngine:
    """Orchestrates generation, polling and cache reconciliation."""

    def __init__(
        self,
        api: StoryApiClient,
        cache: LocalStoryCache,
        session: SessionProvider,
        policy: PollPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
        clock=utcnow,
        page_size: int | None = None,
        max_pages: int | None = None,
    ):
        settings = get_settings()
        self._api = api
        self._cache = cache
        self._session = session
        self.policy = policy or PollPolicy.from_settings(settings)
        self._sleep = sleep
        self._clock = clock
        self.page_size = page_size or settings.list_page_size
        self.max_pages = max_pages or settings.list_max_pages

        self._generations: dict[str, Generation] = {}
        self._records: dict[str, StoryRecord] = {}
        self._entries: tuple[LocalCacheEntry, ...] = ()
        self._error: StoryClientError | None = None
        self._listeners: list[ViewListener] = []

    # ------------------------------------------------------------------
    # Observable view
    # ------------------------------------------------------------------

    @property
    def stories(self) -> list[LocalCacheEntry]:
        return list(self._entries)

    @property
    def generations(self) -> dict[str, Generation]:
        return dict(self._generations)

    @property
    def view(self) -> StoryListView:
        generating = tuple(
            job_id
            for job_id, generation in self._generations.items()
            if not generation.state.is_terminal
        )
        return StoryListView(entries=self._entries, generating=generating, error=self._error)

    def subscribe(self, listener: ViewListener) -> Callable[[], None]:
        """Call ``listener`` with a fresh view after every state change."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _sync_view(self) -> None:
        self._entries = tuple(await self._cache.get())
        view = self.view
        for listener in list(self._listeners):
            try:
                listener(view)
            except Exception:
                logger.exception("story_view_listener_failed")

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def start_generation(
        self,
        prompt: str,
        credential: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        """Submit ``prompt`` and start polling the new job in the background.

        Returns the job id. Nothing is cached when submission fails.
        """
        job_state = await self._session.call_with_refresh(
            lambda token: self._api.generate(prompt, token), credential
        )
        now = self._clock()
        job = StoryJob(id=job_state.id, prompt=prompt, status=job_state.status, created_at=now)
        generation = Generation(job=job)
        self._generations[job.id] = generation

        await self._cache.upsert(LocalCacheEntry.placeholder(job.id, prompt, now))
        generation.task = asyncio.create_task(
            self._drive(generation, on_progress), name=f"poll-{job.id}"
        )
        await self._sync_view()
        logger.info("story_generation_submitted", job_id=job.id)
        return job.id

    async def generate(
        self,
        prompt: str,
        credential: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> StoryRecord:
        """Submit ``prompt`` and wait for the finished story."""
        job_id = await self.start_generation(prompt, credential, on_progress)
        return await self.wait(job_id)

    async def _drive(self, generation: Generation, on_progress: ProgressCallback | None) -> None:
        try:
            await self.run_poll_loop(generation.job_id, on_progress, generation.token)
        except StoryClientError as e:
            # Outcome is kept on the generation for wait().
            logger.debug("story_poll_task_ended", job_id=generation.job_id, error_type=type(e).__name__)

    async def wait(self, job_id: str) -> StoryRecord:
        """Wait for a background poll loop and return its story or raise its error."""
        generation = self._require(job_id)
        if generation.task is not None:
            await generation.task
        if generation.error is not None:
            raise generation.error
        if generation.record is None:
            raise PollCancelledError(job_id)
        return generation.record

    def cancel(self, job_id: str) -> bool:
        """Stop polling ``job_id``. Returns False if it is not being polled."""
        generation = self._generations.get(job_id)
        if generation is None or generation.state.is_terminal:
            return False
        generation.token.cancel()
        logger.info("story_poll_cancel_requested", job_id=job_id)
        return True

    async def close(self) -> None:
        """Cancel every poll loop and wait for them to stop."""
        tasks = []
        for generation in self._generations.values():
            generation.token.cancel()
            if generation.task is not None:
                tasks.append(generation.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _require(self, job_id: str) -> Generation:
        if job_id not in self._generations:
            raise KeyError(f"No generation tracked for '{job_id}'")
        return self._generations[job_id]

    async def _track(self, job_id: str) -> Generation:
        """Generation for ``job_id`` to run a poll loop on.

        An unknown job is built from its cache entry. A job whose previous
        loop already ended gets a fresh generation with a new token.
        """
        previous = self._generations.get(job_id)
        if previous is not None and not previous.state.is_terminal:
            return previous

        if previous is not None:
            prompt = previous.job.prompt
            created_at = previous.job.created_at
            logger.info("story_poll_restarted", job_id=job_id, previous_state=previous.state.value)
        else:
            entry = await self._cache.find(job_id)
            prompt = entry.description if entry else ""
            created_at = entry.generated_at if entry and entry.generated_at else self._clock()

        job = StoryJob(id=job_id, prompt=prompt, status=JobStatus.PROCESSING, created_at=created_at)
        generation = Generation(job=job)
        self._generations[job_id] = generation
        return generation

    async def resume_pending(self, on_progress: ProgressCallback | None = None) -> list[str]:
        """Restart polling for cached entries still marked as in progress."""
        resumed = []
        for entry in await self._cache.get():
            if entry.status.is_terminal:
                continue
            current = self._generations.get(entry.id)
            if current is not None and not current.state.is_terminal:
                continue
            generation = await self._track(entry.id)
            generation.task = asyncio.create_task(
                self._drive(generation, on_progress), name=f"poll-{entry.id}"
            )
            resumed.append(entry.id)
        if resumed:
            logger.info("story_polls_resumed", count=len(resumed))
        return resumed

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def poll_once(self, job_id: str, token: CancellationToken | None = None) -> PollOutcome:
        """Fetch the job once and merge the answer into the cache.

        Raises:
            PollCancelledError: if ``token`` was cancelled while the fetch
                was in flight; the answer is discarded.
            StoryClientError: whatever the fetch raised.
        """
        result = await self._session.call_with_refresh(
            lambda credential: self._api.fetch_status(job_id, credential)
        )
        if token is not None:
            if token.cancelled:
                logger.info("story_poll_result_discarded", job_id=job_id)
            token.raise_if_cancelled(job_id)

        outcome = classify(result)
        if outcome.kind == PollOutcomeKind.COMPLETED:
            generation = self._generations.get(job_id)
            prompt = generation.job.prompt if generation else ""
            self._records[job_id] = outcome.record
            await self._cache.upsert(
                LocalCacheEntry.from_record(outcome.record, fallback_description=prompt)
            )
        elif outcome.kind == PollOutcomeKind.FAILED:
            await self._cache.patch_status(job_id, JobStatus.FAILED)
        else:
            # Cached status only moves forward.
            entry = await self._cache.find(job_id)
            if entry is not None and entry.status.rank < outcome.status.rank:
                await self._cache.patch_status(job_id, outcome.status)

        await self._sync_view()
        return outcome

    async def run_poll_loop(
        self,
        job_id: str,
        on_progress: ProgressCallback | None = None,
        token: CancellationToken | None = None,
    ) -> StoryRecord:
        """Poll ``job_id`` at a fixed interval until it reaches a terminal state.

        Returns:
            The completed story.

        Raises:
            GenerationFailedError: the job failed, its story is unplayable,
                or transient errors used up the attempt budget
            GenerationTimeoutError: still unfinished after the last attempt
            PollCancelledError: ``token`` was cancelled
            AuthError: the credential could not be renewed
        """
        generation = await self._track(job_id)
        if token is not None:
            generation.token = token
        token = generation.token
        max_attempts = self.policy.max_attempts

        generation.state = PollState.POLLING
        bind_job(job_id)
        try:
            for attempt in range(1, max_attempts + 1):
                if token.cancelled:
                    await self._finish(generation, PollState.CANCELLED, error=PollCancelledError(job_id))
                    raise generation.error

                generation.attempts = attempt
                logger.info("story_poll_tick", attempt=attempt, max_attempts=max_attempts)
                try:
                    outcome = await self.poll_once(job_id, token)
                except PollCancelledError as e:
                    await self._finish(generation, PollState.CANCELLED, error=e)
                    raise
                except TRANSIENT_ERRORS as e:
                    logger.warning(
                        "story_poll_error",
                        attempt=attempt,
                        error_type=type(e).__name__,
                        error=str(e),
                    )
                    if attempt == max_attempts:
                        await self._cache.patch_status(job_id, JobStatus.FAILED)
                        error = GenerationFailedError(job_id, f"Polling failed: {e.message}")
                        await self._finish(generation, PollState.FAILED, error=error)
                        raise error from e
                    await self._wait_interval(token)
                    continue
                except AuthError as e:
                    await self._finish(generation, PollState.FAILED, error=e)
                    raise
                except StoryClientError as e:
                    await self._cache.patch_status(job_id, JobStatus.FAILED)
                    await self._finish(generation, PollState.FAILED, error=e)
                    raise

                generation.job = generation.job.with_status(outcome.status)
                if on_progress is not None:
                    on_progress(outcome.status)

                if outcome.kind == PollOutcomeKind.COMPLETED:
                    await self._finish(generation, PollState.DONE, record=outcome.record)
                    return outcome.record
                if outcome.kind == PollOutcomeKind.FAILED:
                    error = GenerationFailedError(job_id, outcome.reason or "Story generation failed")
                    await self._finish(generation, PollState.FAILED, error=error)
                    raise error

                if attempt < max_attempts:
                    await self._wait_interval(token)

            await self._cache.patch_status(job_id, JobStatus.FAILED)
            error = GenerationTimeoutError(job_id, max_attempts)
            await self._finish(generation, PollState.TIMED_OUT, error=error)
            raise error
        finally:
            unbind_job()

    async def _wait_interval(self, token: CancellationToken) -> None:
        """Sleep one poll interval, returning early on cancellation."""
        sleeper = asyncio.ensure_future(self._sleep(self.policy.interval_seconds))
        canceller = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait({sleeper, canceller}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for pending in (sleeper, canceller):
                if not pending.done():
                    pending.cancel()

    async def _finish(
        self,
        generation: Generation,
        state: PollState,
        record: StoryRecord | None = None,
        error: StoryClientError | None = None,
    ) -> None:
        generation.state = state
        generation.record = record
        generation.error = error
        if state in (PollState.FAILED, PollState.TIMED_OUT) and not generation.job.status.is_terminal:
            generation.job = generation.job.with_status(JobStatus.FAILED)
        logger.info("story_poll_finished", **generation.summary())
        await self._sync_view()

    # ------------------------------------------------------------------
    # Story list
    # ------------------------------------------------------------------

    async def _fetch_all(self, credential: str | None) -> list[LocalCacheEntry]:
        """Accumulate every page of the user's stories."""
        entries: list[LocalCacheEntry] = []
        offset = 0
        for _ in range(self.max_pages):
            page = await self._session.call_with_refresh(
                lambda token, offset=offset: self._api.list_for_user(token, self.page_size, offset),
                credential,
            )
            entries.extend(LocalCacheEntry.from_record(record) for record in page.records)
            if not page.has_more or not page.records:
                break
            offset += len(page.records)
        else:
            logger.warning("story_list_truncated", pages=self.max_pages, entries=len(entries))
        return entries

    def _keep_in_flight(self, entries: list[LocalCacheEntry], current: list[LocalCacheEntry]) -> list[LocalCacheEntry]:
        """Prepend placeholders of running jobs the server list does not show yet."""
        listed = {entry.id for entry in entries}
        running = {
            job_id
            for job_id, generation in self._generations.items()
            if not generation.state.is_terminal
        }
        kept = [e for e in current if e.id in running and e.id not in listed]
        return kept + entries

    async def _reload(self, credential: str | None, surface_errors: bool) -> list[LocalCacheEntry]:
        try:
            fresh = await self._fetch_all(credential)
        except StoryClientError as e:
            if surface_errors:
                logger.warning(
                    "story_list_fallback_to_cache",
                    error_type=type(e).__name__,
                    error=str(e),
                )
                self._error = e
                await self._sync_view()
            else:
                logger.debug("story_refresh_failed", error_type=type(e).__name__)
            return await self._cache.get()

        merged = self._keep_in_flight(fresh, await self._cache.get())
        await self._cache.replace_all(merged)
        self._error = None
        await self._sync_view()
        logger.info("story_list_loaded", entries=len(merged))
        return await self._cache.get()

    async def load_user_stories(self, credential: str | None = None) -> list[LocalCacheEntry]:
        """Load the user's stories from the server, falling back to the cache.

        A failure is recorded on the view (so the UI can offer a retry) but
        the cached list is still returned.
        """
        return await self._reload(credential, surface_errors=True)

    async def refresh(self, credential: str | None = None) -> list[LocalCacheEntry]:
        """Pull-to-refresh variant of :meth:`load_user_stories`; failures are silent."""
        return await self._reload(credential, surface_errors=False)

    async def delete_story(self, job_id: str, credential: str | None = None) -> bool:
        """Delete a story on the server, then locally."""
        deleted = await self._session.call_with_refresh(
            lambda token: self._api.delete_story(job_id, token), credential
        )
        if deleted:
            self.cancel(job_id)
            self._records.pop(job_id, None)
            await self._cache.remove(job_id)
            await self._sync_view()
        return deleted

    async def get_story(self, job_id: str) -> StoryRecord:
        """Full story with scenes, from memory or the server.

        Raises:
            GenerationFailedError: the job failed or its story is unplayable
            StoryClientError: the story is not ready yet, or the fetch failed
        """
        if job_id in self._records:
            return self._records[job_id]

        result = await self._session.call_with_refresh(
            lambda credential: self._api.fetch_status(job_id, credential)
        )
        outcome = classify(result)
        if outcome.kind == PollOutcomeKind.FAILED:
            raise GenerationFailedError(job_id, outcome.reason or "Story generation failed")
        if outcome.kind == PollOutcomeKind.STILL_PENDING:
            raise StoryClientError(f"Story {job_id} is still {outcome.status.value}")
        self._records[job_id] = outcome.record
        return outcome.record
