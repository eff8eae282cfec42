"""Pydantic schemas for story endpoints."""

from datetime import datetime

from pydantic import BaseModel

from app.models.story import FeedbackPersonality, Genre, StoryStatus
from app.schemas.feedback import FeedbackResponse


class StoryResponse(BaseModel):
    id: int
    title: str
    prompt: str | None = None
    genre: Genre
    feedback_personality: FeedbackPersonality
    status: StoryStatus
    duration_seconds: int
    transcript: str | None = None
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class StoryDetailResponse(StoryResponse):
    feedback: FeedbackResponse | None = None


class StoryListResponse(BaseModel):
    items: list[StoryResponse]
    total: int


class StoryEventPayload(BaseModel):
    """One change-feed event, as sent over the SSE stream."""

    story_id: int
    status: StoryStatus
    updated_at: datetime | None = None
