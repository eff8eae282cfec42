"""Tests for the client API wrapper, change feeds and the story tracker."""

import asyncio
import itertools
import json
import threading
from datetime import datetime

import httpx
import pytest

from app.client.api import StoryApiClient, StoryApiError, StoryNotFoundError, iter_sse_events
from app.client.feed import ChannelFeed, EventStreamFeed
from app.client.tracker import TIMEOUT_MESSAGE, OutcomeKind, StoryTracker, TrackerState
from app.models.story import FeedbackPersonality, Genre, StoryStatus
from app.schemas.feedback import FeedbackResponse
from app.schemas.stats import UserStatsResponse
from app.schemas.story import StoryDetailResponse, StoryEventPayload
from app.services.notifications import ChangeNotificationChannel, StoryEvent

pytestmark = pytest.mark.asyncio

NOW = datetime(2026, 3, 14, 12, 0)


def _story(story_id: int, status: StoryStatus, feedback: bool = True, error: str | None = None) -> StoryDetailResponse:
    return StoryDetailResponse(
        id=story_id,
        title="The Knock",
        genre=Genre.MYSTERY,
        feedback_personality=FeedbackPersonality.ENCOURAGING,
        status=status,
        duration_seconds=120,
        error_message=error,
        created_at=NOW,
        updated_at=NOW,
        feedback=FeedbackResponse(
            id=1,
            story_id=story_id,
            feedback_text="A confident telling.",
            strengths=["Voice"],
            improvements=["Ending"],
            next_steps=["Record another"],
            overall_score=8,
            created_at=NOW,
        )
        if feedback
        else None,
    )


class FakeApi:
    """In-memory stand-in for StoryApiClient."""

    def __init__(self) -> None:
        self.stories: dict[int, StoryDetailResponse] = {}
        self.errors: list[Exception] = []
        self.get_calls = 0
        self.stats_calls = 0

    async def get_story(self, story_id: int) -> StoryDetailResponse:
        self.get_calls += 1
        if self.errors:
            raise self.errors.pop(0)
        if story_id not in self.stories:
            raise StoryNotFoundError("not found", status_code=404)
        return self.stories[story_id]

    async def get_stats(self) -> UserStatsResponse:
        self.stats_calls += 1
        return UserStatsResponse(total_stories=1, total_minutes=2, current_streak=1, longest_streak=1)


class SlowStatsApi(FakeApi):
    """Holds the stats refresh until the test releases it."""

    def __init__(self) -> None:
        super().__init__()
        self.stats_ready = asyncio.Event()

    async def get_stats(self) -> UserStatsResponse:
        await self.stats_ready.wait()
        return await super().get_stats()


class FakeFeed:
    """Change feed whose events are emitted by the test."""

    def __init__(self) -> None:
        self.handlers: dict[int, object] = {}
        self.unsubscribed: list[int] = []
        self._ids = itertools.count(1)

    def subscribe(self, user_id, on_event):
        handle = next(self._ids)
        self.handlers[handle] = on_event
        return handle

    def unsubscribe(self, handle) -> None:
        self.handlers.pop(handle, None)
        self.unsubscribed.append(handle)

    def emit(self, story_id: int, status: StoryStatus) -> None:
        for handler in list(self.handlers.values()):
            handler(StoryEventPayload(story_id=story_id, status=status))


@pytest.fixture(name="api")
def api_fixture():
    return FakeApi()


@pytest.fixture(name="feed")
def feed_fixture():
    return FakeFeed()


@pytest.fixture(name="results")
def results_fixture():
    return []


def _tracker(api, feed, results, poll_interval: float = 60.0, timeout: float = 120.0) -> StoryTracker:
    return StoryTracker(api, feed, on_result=results.append, poll_interval=poll_interval, timeout=timeout)


async def _wait(tracker: StoryTracker):
    return await asyncio.wait_for(tracker.wait(), timeout=2.0)


class TestStoryTracker:
    async def test_push_resolves_completed(self, api, feed, results):
        tracker = _tracker(api, feed, results)
        api.stories[1] = _story(1, StoryStatus.PROCESSING)
        await tracker.track("user-1", 1)
        assert tracker.state is TrackerState.TRACKING

        api.stories[1] = _story(1, StoryStatus.COMPLETED)
        feed.emit(1, StoryStatus.COMPLETED)
        outcome = await _wait(tracker)

        assert outcome.kind is OutcomeKind.COMPLETED
        assert outcome.succeeded
        assert outcome.story.feedback.overall_score == 8
        assert outcome.stats.total_stories == 1
        assert results == [outcome]
        assert tracker.state is TrackerState.IDLE
        assert feed.handlers == {}

    async def test_poll_catches_failure_when_push_is_lost(self, api, feed, results):
        tracker = _tracker(api, feed, results, poll_interval=0.01)
        api.stories[2] = _story(
            2, StoryStatus.FAILED, feedback=False, error="Transcription failed: no speech detected"
        )
        await tracker.track("user-1", 2)

        outcome = await _wait(tracker)

        assert outcome.kind is OutcomeKind.FAILED
        assert outcome.error == "Transcription failed: no speech detected"
        assert outcome.stats is None
        assert api.stats_calls == 0

    async def test_failure_without_message_gets_generic_error(self, api, feed, results):
        tracker = _tracker(api, feed, results)
        api.stories[2] = _story(2, StoryStatus.FAILED, feedback=False)
        await tracker.track("user-1", 2)
        feed.emit(2, StoryStatus.FAILED)

        outcome = await _wait(tracker)

        assert outcome.kind is OutcomeKind.FAILED
        assert outcome.error

    async def test_timeout(self, api, feed, results):
        tracker = _tracker(api, feed, results, poll_interval=0.01, timeout=0.05)
        api.stories[3] = _story(3, StoryStatus.PROCESSING, feedback=False)
        await tracker.track("user-1", 3)

        outcome = await _wait(tracker)

        assert outcome.kind is OutcomeKind.TIMED_OUT
        assert outcome.error == TIMEOUT_MESSAGE
        assert len(results) == 1

    async def test_timeout_racing_completion_shows_feedback(self, api, feed, results):
        """A story that completed without any push or poll is still shown when the deadline fires."""
        tracker = _tracker(api, feed, results, timeout=0.02)
        api.stories[4] = _story(4, StoryStatus.COMPLETED)
        await tracker.track("user-1", 4)

        outcome = await _wait(tracker)

        assert outcome.kind is OutcomeKind.COMPLETED
        assert outcome.story.feedback is not None

    async def test_completed_without_feedback_keeps_tracking(self, api, feed, results):
        tracker = _tracker(api, feed, results)
        api.stories[5] = _story(5, StoryStatus.COMPLETED, feedback=False)
        await tracker.track("user-1", 5)

        feed.emit(5, StoryStatus.COMPLETED)
        await asyncio.sleep(0.05)
        assert tracker.state is TrackerState.TRACKING
        assert results == []

        api.stories[5] = _story(5, StoryStatus.COMPLETED)
        feed.emit(5, StoryStatus.COMPLETED)
        outcome = await _wait(tracker)
        assert outcome.kind is OutcomeKind.COMPLETED

    async def test_resolution_happens_once(self, api, feed, results):
        """Pushes, polls and manual resolves after the first resolution are no-ops."""
        tracker = _tracker(api, feed, results, poll_interval=0.005)
        api.stories[6] = _story(6, StoryStatus.COMPLETED)
        await tracker.track("user-1", 6)
        for _ in range(5):
            feed.emit(6, StoryStatus.COMPLETED)

        outcome = await _wait(tracker)
        calls = api.get_calls
        await asyncio.sleep(0.05)

        assert await tracker.resolve(6) is outcome
        assert await tracker.resolve(6) is outcome
        assert api.get_calls == calls
        assert results == [outcome]
        assert api.stats_calls == 1

    async def test_resolve_unknown_story(self, api, feed, results):
        tracker = _tracker(api, feed, results)
        assert await tracker.resolve(99) is None

    async def test_resolve_while_stats_refresh(self, feed, results):
        """Repeat resolves and waiters see the outcome while stats are still loading."""
        api = SlowStatsApi()
        tracker = _tracker(api, feed, results)
        api.stories[7] = _story(7, StoryStatus.COMPLETED)
        await tracker.track("user-1", 7)

        first = asyncio.create_task(tracker.resolve(7))
        await asyncio.sleep(0.01)
        again = await tracker.resolve(7)
        waiter = asyncio.create_task(tracker.wait())
        await asyncio.sleep(0.01)

        assert again is not None
        assert again.kind is OutcomeKind.COMPLETED
        assert not waiter.done()

        api.stats_ready.set()
        outcome = await asyncio.wait_for(first, timeout=2.0)
        assert await asyncio.wait_for(waiter, timeout=2.0) is outcome
        assert outcome.stats is not None
        assert tracker.last_outcome is outcome
        assert await tracker.resolve(7) is outcome
        assert results == [outcome]

    async def test_non_terminal_pushes_are_ignored(self, api, feed, results):
        tracker = _tracker(api, feed, results)
        api.stories[7] = _story(7, StoryStatus.PROCESSING, feedback=False)
        await tracker.track("user-1", 7)

        feed.emit(7, StoryStatus.PROCESSING)
        feed.emit(8, StoryStatus.COMPLETED)
        await asyncio.sleep(0.02)

        assert api.get_calls == 0
        assert tracker.state is TrackerState.TRACKING
        tracker.cancel()

    async def test_new_track_abandons_previous(self, api, feed, results):
        tracker = _tracker(api, feed, results)
        api.stories[1] = _story(1, StoryStatus.PROCESSING)
        api.stories[2] = _story(2, StoryStatus.PROCESSING)
        first = await tracker.track("user-1", 1)
        await tracker.track("user-1", 2)

        assert first.finished.done() and first.finished.result() is None
        assert first.subscription is None
        await asyncio.sleep(0.01)
        assert all(task.done() for task in first.tasks)
        assert tracker.tracked_story_id == 2

        api.stories[1] = _story(1, StoryStatus.COMPLETED)
        api.stories[2] = _story(2, StoryStatus.COMPLETED)
        feed.emit(1, StoryStatus.COMPLETED)
        feed.emit(2, StoryStatus.COMPLETED)
        outcome = await _wait(tracker)

        assert outcome.story_id == 2
        assert [r.story_id for r in results] == [2]

    async def test_cancel(self, api, feed, results):
        tracker = _tracker(api, feed, results)
        api.stories[1] = _story(1, StoryStatus.PROCESSING)
        session = await tracker.track("user-1", 1)

        tracker.cancel()

        assert tracker.state is TrackerState.IDLE
        assert await session.finished is None
        assert results == []

    async def test_transient_errors_are_retried(self, api, feed, results):
        tracker = _tracker(api, feed, results, poll_interval=0.01)
        api.stories[1] = _story(1, StoryStatus.COMPLETED)
        api.errors = [StoryApiError("connection reset"), StoryApiError("502 bad gateway")]
        await tracker.track("user-1", 1)

        outcome = await _wait(tracker)

        assert outcome.kind is OutcomeKind.COMPLETED
        assert api.get_calls >= 3

    async def test_deleted_story_resolves_as_failed(self, api, feed, results):
        tracker = _tracker(api, feed, results)
        await tracker.track("user-1", 42)
        feed.emit(42, StoryStatus.COMPLETED)

        outcome = await _wait(tracker)

        assert outcome.kind is OutcomeKind.FAILED
        assert "no longer exists" in outcome.error

    async def test_result_handler_errors_are_contained(self, api, feed):
        def broken(outcome):
            raise RuntimeError("view unmounted")

        tracker = StoryTracker(api, feed, on_result=broken, poll_interval=60, timeout=120)
        api.stories[1] = _story(1, StoryStatus.COMPLETED)
        await tracker.track("user-1", 1)
        feed.emit(1, StoryStatus.COMPLETED)

        outcome = await _wait(tracker)
        assert outcome.succeeded

    async def test_in_process_channel_feed(self, api, results):
        """Events published from a worker thread reach the tracker on its own loop."""
        channel = ChangeNotificationChannel()
        tracker = _tracker(api, ChannelFeed(channel), results)
        api.stories[9] = _story(9, StoryStatus.PROCESSING)
        await tracker.track("user-1", 9)
        assert channel.subscriber_count("user-1") == 1

        api.stories[9] = _story(9, StoryStatus.COMPLETED)
        worker = threading.Thread(
            target=channel.publish, args=("user-1", StoryEvent(story_id=9, status=StoryStatus.COMPLETED))
        )
        worker.start()
        worker.join()

        outcome = await _wait(tracker)
        assert outcome.kind is OutcomeKind.COMPLETED
        assert channel.subscriber_count("user-1") == 0


async def _lines(items):
    for item in items:
        yield item


class TestEventStreamParsing:
    async def test_parses_events_and_skips_noise(self):
        lines = [
            ": connected",
            "",
            "event: story",
            'data: {"story_id": 3, "status": "completed", "updated_at": null}',
            "",
            ": keep-alive",
            "",
            "data: {not json",
            "",
            'data: {"story_id": 4, "status": "failed"}',
            "",
        ]
        events = [event async for event in iter_sse_events(_lines(lines))]
        assert [(e.story_id, e.status) for e in events] == [(3, StoryStatus.COMPLETED), (4, StoryStatus.FAILED)]


def _mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://testserver")


class TestStoryApiClient:
    async def test_get_story(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["Authorization"] == "Bearer tok"
            assert request.url.path == "/api/v1/stories/1"
            return httpx.Response(200, json=json.loads(_story(1, StoryStatus.COMPLETED).model_dump_json()))

        api = StoryApiClient("http://testserver", "tok", client=_mock_client(handler))
        story = await api.get_story(1)
        assert story.status is StoryStatus.COMPLETED
        assert story.feedback.overall_score == 8
        await api.aclose()

    async def test_not_found(self):
        api = StoryApiClient(
            "http://testserver",
            "tok",
            client=_mock_client(lambda request: httpx.Response(404, json={"detail": "Story not found"})),
        )
        with pytest.raises(StoryNotFoundError):
            await api.get_story(1)

    async def test_server_error(self):
        api = StoryApiClient(
            "http://testserver", "tok", client=_mock_client(lambda request: httpx.Response(500, text="boom"))
        )
        with pytest.raises(StoryApiError) as exc_info:
            await api.get_stats()
        assert exc_info.value.status_code == 500

    async def test_unexpected_payload(self):
        api = StoryApiClient(
            "http://testserver", "tok", client=_mock_client(lambda request: httpx.Response(200, json={"id": "x"}))
        )
        with pytest.raises(StoryApiError):
            await api.get_story(1)

    async def test_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        api = StoryApiClient("http://testserver", "tok", client=_mock_client(handler))
        with pytest.raises(StoryApiError):
            await api.get_stats()

    async def test_submit_story(self):
        def handler(request: httpx.Request) -> httpx.Response:
            body = request.read()
            assert b'name="genre"' in body
            assert b"sci-fi" in body
            payload = json.loads(_story(3, StoryStatus.PENDING, feedback=False).model_dump_json())
            payload.pop("feedback")
            return httpx.Response(200, json=payload)

        api = StoryApiClient("http://testserver", "tok", client=_mock_client(handler))
        story = await api.submit_story(b"\x00" * 16, "take.webm", Genre.SCI_FI, 75)
        assert story.id == 3
        assert story.status is StoryStatus.PENDING

    async def test_event_stream_feed(self):
        body = ': connected\n\nevent: story\ndata: {"story_id": 5, "status": "completed"}\n\n'
        api = StoryApiClient(
            "http://testserver",
            "tok",
            client=_mock_client(
                lambda request: httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})
            ),
        )
        feed = EventStreamFeed(api, reconnect_delay=0.01)
        received = asyncio.Event()
        events = []

        def on_event(event):
            events.append(event)
            received.set()

        handle = feed.subscribe("user-1", on_event)
        await asyncio.wait_for(received.wait(), timeout=2.0)
        feed.unsubscribe(handle)
        await asyncio.sleep(0.01)

        assert handle.cancelled()
        assert events[0].story_id == 5
        assert events[0].status is StoryStatus.COMPLETED
