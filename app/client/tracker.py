"""Client-side tracking of a submitted story until it resolves.

A tracked story resolves exactly once, from whichever detector fires first:

* a change-feed event reporting a terminal status,
* a periodic poll of the story,
* the overall timeout.

Each detector only enqueues a signal. A single watcher task drains the queue
and re-reads the story, so resolution is serialized and the first successful
read wins; later signals find the session already resolved.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from app.client.api import StoryApiClient, StoryApiError, StoryNotFoundError
from app.client.feed import ChangeFeed
from app.config import get_settings
from app.models.story import StoryStatus
from app.schemas.stats import UserStatsResponse
from app.schemas.story import StoryDetailResponse

logger = logging.getLogger("storycoach.client")

TIMEOUT_MESSAGE = "Processing is taking longer than expected. Please check back later."
FAILED_MESSAGE = "Story processing failed. Please try again."


class TrackerState(str, Enum):
    IDLE = "idle"
    TRACKING = "tracking"


class OutcomeKind(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class Signal(str, Enum):
    PUSH = "push"
    POLL = "poll"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class TrackingOutcome:
    story_id: int
    kind: OutcomeKind
    story: StoryDetailResponse | None = None
    error: str | None = None
    stats: UserStatsResponse | None = None

    @property
    def succeeded(self) -> bool:
        return self.kind is OutcomeKind.COMPLETED


@dataclass
class TrackingSession:
    user_id: str
    story_id: int
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    finished: asyncio.Future | None = None
    subscription: object | None = None
    tasks: list[asyncio.Task] = field(default_factory=list)
    resolved: bool = False
    outcome: TrackingOutcome | None = None


class StoryTracker:
    """Watches one story at a time and reports how it ended."""

    def __init__(
        self,
        api: StoryApiClient,
        feed: ChangeFeed,
        on_result: Callable[[TrackingOutcome], None] | None = None,
        poll_interval: float | None = None,
        timeout: float | None = None,
        refresh_stats: bool = True,
    ) -> None:
        settings = get_settings()
        self._api = api
        self._feed = feed
        self._on_result = on_result
        self._poll_interval = poll_interval if poll_interval is not None else settings.POLL_INTERVAL_SECONDS
        self._timeout = timeout if timeout is not None else settings.TRACKING_TIMEOUT_SECONDS
        self._refresh_stats = refresh_stats
        self._session: TrackingSession | None = None
        self._last_outcome: TrackingOutcome | None = None
        self._finishing: TrackingSession | None = None

    @property
    def state(self) -> TrackerState:
        return TrackerState.TRACKING if self._session is not None else TrackerState.IDLE

    @property
    def tracked_story_id(self) -> int | None:
        return self._session.story_id if self._session else None

    @property
    def last_outcome(self) -> TrackingOutcome | None:
        return self._last_outcome

    async def track(self, user_id: str, story_id: int) -> TrackingSession:
        """Start tracking ``story_id``, abandoning any story tracked before."""
        self.cancel()

        loop = asyncio.get_running_loop()
        session = TrackingSession(user_id=user_id, story_id=story_id, finished=loop.create_future())
        self._session = session

        def on_event(event) -> None:
            if session.resolved or event.story_id != story_id:
                return
            if StoryStatus(event.status).is_terminal:
                session.queue.put_nowait(Signal.PUSH)

        session.subscription = self._feed.subscribe(user_id, on_event)
        session.tasks = [
            loop.create_task(self._watch(session)),
            loop.create_task(self._poll(session)),
            loop.create_task(self._deadline(session)),
        ]
        logger.info("Tracking story %s for user %s", story_id, user_id)
        return session

    async def wait(self) -> TrackingOutcome | None:
        """Wait for the current session to end. ``None`` if it was cancelled."""
        session = self._session
        if session is None:
            finishing = self._finishing
            if finishing is not None and not finishing.finished.done():
                return await finishing.finished
            return self._last_outcome
        return await session.finished

    def cancel(self) -> None:
        """Stop tracking without reporting an outcome."""
        session = self._session
        if session is None:
            return
        self._session = None
        if not session.resolved:
            session.resolved = True
            logger.info("Stopped tracking story %s", session.story_id)
        self._teardown(session)
        if not session.finished.done():
            session.finished.set_result(None)

    async def resolve(self, story_id: int) -> TrackingOutcome | None:
        """Re-read ``story_id`` and finish the session if it reached an end state.

        Safe to call any number of times: once a story has resolved, every
        later call returns the same outcome.
        """
        session = self._session
        if session is None or session.story_id != story_id:
            if self._last_outcome is not None and self._last_outcome.story_id == story_id:
                return self._last_outcome
            return None
        if session.resolved:
            return session.outcome

        try:
            story = await self._api.get_story(story_id)
        except StoryNotFoundError:
            outcome = TrackingOutcome(story_id=story_id, kind=OutcomeKind.FAILED, error="Story no longer exists.")
        else:
            outcome = self._outcome_for(story)

        if session.resolved:
            return session.outcome
        if outcome is None:
            return None
        await self._finish(session, outcome)
        return session.outcome

    def _outcome_for(self, story: StoryDetailResponse) -> TrackingOutcome | None:
        if story.status is StoryStatus.FAILED:
            return TrackingOutcome(
                story_id=story.id,
                kind=OutcomeKind.FAILED,
                story=story,
                error=story.error_message or FAILED_MESSAGE,
            )
        if story.status is StoryStatus.COMPLETED:
            if story.feedback is None:
                logger.debug("Story %s completed but feedback not visible yet", story.id)
                return None
            return TrackingOutcome(story_id=story.id, kind=OutcomeKind.COMPLETED, story=story)
        return None

    async def _watch(self, session: TrackingSession) -> None:
        while not session.resolved:
            signal = await session.queue.get()
            if session.resolved:
                break
            if signal is Signal.TIMEOUT:
                await self._expire(session)
                break
            try:
                await self.resolve(session.story_id)
            except StoryApiError as e:
                logger.warning("Could not check story %s after %s signal: %s", session.story_id, signal.value, e)

    async def _expire(self, session: TrackingSession) -> None:
        # One last read so a story that finished right at the deadline is still shown.
        outcome = None
        try:
            outcome = self._outcome_for(await self._api.get_story(session.story_id))
        except StoryApiError as e:
            logger.warning("Final check of story %s failed: %s", session.story_id, e)
        if session.resolved:
            return
        if outcome is None:
            logger.warning("Story %s still unresolved after %.0fs", session.story_id, self._timeout)
            outcome = TrackingOutcome(story_id=session.story_id, kind=OutcomeKind.TIMED_OUT, error=TIMEOUT_MESSAGE)
        await self._finish(session, outcome)

    async def _poll(self, session: TrackingSession) -> None:
        while not session.resolved:
            await asyncio.sleep(self._poll_interval)
            session.queue.put_nowait(Signal.POLL)

    async def _deadline(self, session: TrackingSession) -> None:
        await asyncio.sleep(self._timeout)
        session.queue.put_nowait(Signal.TIMEOUT)

    async def _finish(self, session: TrackingSession, outcome: TrackingOutcome) -> None:
        if session.resolved:
            return
        session.resolved = True
        session.outcome = outcome
        self._last_outcome = outcome
        self._finishing = session
        if self._session is session:
            self._session = None
        self._teardown(session)
        resolved = outcome

        if outcome.succeeded and self._refresh_stats:
            try:
                stats = await self._api.get_stats()
            except StoryApiError as e:
                logger.warning("Could not refresh stats after story %s: %s", outcome.story_id, e)
            else:
                outcome = TrackingOutcome(
                    story_id=outcome.story_id, kind=outcome.kind, story=outcome.story, stats=stats
                )

        session.outcome = outcome
        if self._last_outcome is resolved:
            self._last_outcome = outcome
        if self._finishing is session:
            self._finishing = None
        logger.info("Story %s resolved: %s", outcome.story_id, outcome.kind.value)
        if not session.finished.done():
            session.finished.set_result(outcome)
        if self._on_result is not None:
            try:
                self._on_result(outcome)
            except Exception:
                logger.exception("Result handler failed for story %s", outcome.story_id)

    def _teardown(self, session: TrackingSession) -> None:
        if session.subscription is not None:
            self._feed.unsubscribe(session.subscription)
            session.subscription = None
        current = asyncio.current_task()
        for task in session.tasks:
            if task is not current and not task.done():
                task.cancel()
