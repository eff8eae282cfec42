"""Pydantic schemas for story feedback."""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator


class FeedbackPayload(BaseModel):
    """Output contract of the feedback-generation capability."""

    detailed_feedback: str = Field(min_length=1)
    strengths: list[str]
    improvements: list[str]
    next_steps: list[str]
    score: int = Field(ge=1, le=10)

    @field_validator("strengths", "improvements", "next_steps")
    @classmethod
    def strip_items(cls, items: list[str]) -> list[str]:
        cleaned = [item.strip() for item in items if item and item.strip()]
        if not cleaned:
            raise ValueError("must contain at least one non-empty item")
        return cleaned


class FeedbackResponse(BaseModel):
    id: int
    story_id: int
    feedback_text: str
    strengths: list[str]
    improvements: list[str]
    next_steps: list[str]
    overall_score: int
    created_at: datetime

    model_config = {"from_attributes": True}
