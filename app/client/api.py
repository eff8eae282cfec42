"""Async HTTP client for the Story Coach API."""

import logging
from collections.abc import AsyncIterator

import httpx
from pydantic import ValidationError

from app.models.story import FeedbackPersonality, Genre
from app.schemas.stats import UserStatsResponse
from app.schemas.story import StoryDetailResponse, StoryEventPayload, StoryResponse

logger = logging.getLogger("storycoach.client")


class StoryApiError(Exception):
    """Transport, HTTP or payload error talking to the API."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StoryNotFoundError(StoryApiError):
    """The story does not exist (or is not visible to this user)."""


async def iter_sse_events(lines: AsyncIterator[str]) -> AsyncIterator[StoryEventPayload]:
    """Parse a server-sent event stream into story events.

    Comment lines (keep-alives) are skipped; malformed payloads are logged
    and dropped.
    """
    data: list[str] = []
    async for raw in lines:
        line = raw.rstrip("\r")
        if line.startswith(":"):
            continue
        if line.startswith("data:"):
            data.append(line[5:].lstrip())
            continue
        if line == "" and data:
            payload = "\n".join(data)
            data = []
            try:
                yield StoryEventPayload.model_validate_json(payload)
            except ValidationError as e:
                logger.warning("Dropping malformed change event: %s", e)


class StoryApiClient:
    """Thin wrapper over the REST API. Every response is validated into the shared schemas."""

    def __init__(
        self,
        base_url: str,
        token: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._headers = {"Authorization": f"Bearer {token}"}

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, url, headers=self._headers, **kwargs)
        except httpx.HTTPError as e:
            raise StoryApiError(f"{method} {url} failed: {e}") from e

        if response.status_code == 404:
            raise StoryNotFoundError(f"{method} {url}: not found", status_code=404)
        if response.is_error:
            raise StoryApiError(f"{method} {url} -> {response.status_code}: {response.text}", response.status_code)
        return response

    async def submit_story(
        self,
        audio: bytes,
        filename: str,
        genre: Genre,
        duration_seconds: int,
        feedback_personality: FeedbackPersonality = FeedbackPersonality.ENCOURAGING,
        title: str | None = None,
        prompt: str | None = None,
        content_type: str = "audio/webm",
    ) -> StoryResponse:
        form = {
            "genre": genre.value,
            "duration_seconds": str(duration_seconds),
            "feedback_personality": feedback_personality.value,
        }
        if title:
            form["title"] = title
        if prompt:
            form["prompt"] = prompt
        response = await self._request(
            "POST", "/api/v1/stories/", data=form, files={"file": (filename, audio, content_type)}
        )
        return self._parse(StoryResponse, response)

    async def get_story(self, story_id: int) -> StoryDetailResponse:
        response = await self._request("GET", f"/api/v1/stories/{story_id}")
        return self._parse(StoryDetailResponse, response)

    async def delete_story(self, story_id: int) -> bool:
        response = await self._request("DELETE", f"/api/v1/stories/{story_id}")
        return bool(response.json().get("success"))

    async def retry_story(self, story_id: int) -> StoryResponse:
        response = await self._request("POST", f"/api/v1/stories/{story_id}/retry")
        return self._parse(StoryResponse, response)

    async def get_stats(self) -> UserStatsResponse:
        response = await self._request("GET", "/api/v1/stats")
        return self._parse(UserStatsResponse, response)

    async def stream_events(self) -> AsyncIterator[StoryEventPayload]:
        """Yield change events until the server closes the stream."""
        try:
            async with self._client.stream(
                "GET",
                "/api/v1/stories/events",
                headers=self._headers,
                timeout=httpx.Timeout(10.0, read=None),
            ) as response:
                if response.is_error:
                    raise StoryApiError(f"Change feed -> {response.status_code}", response.status_code)
                async for event in iter_sse_events(response.aiter_lines()):
                    yield event
        except httpx.HTTPError as e:
            raise StoryApiError(f"Change feed failed: {e}") from e

    @staticmethod
    def _parse(schema, response: httpx.Response):
        try:
            return schema.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise StoryApiError(f"Unexpected response from {response.request.url}: {e}") from e
