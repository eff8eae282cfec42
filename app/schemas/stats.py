"""Pydantic schemas for stats and achievement endpoints."""

from datetime import date, datetime

from pydantic import BaseModel


class UserStatsResponse(BaseModel):
    total_stories: int = 0
    total_minutes: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    favorite_genre: str | None = None
    last_story_date: date | None = None

    model_config = {"from_attributes": True}


class AchievementResponse(BaseModel):
    id: str
    title: str
    description: str
    icon: str
    achievement_type: str
    points: int
    earned: bool = False
    earned_at: datetime | None = None


class AchievementListResponse(BaseModel):
    items: list[AchievementResponse]
    total_points: int


class StoryPromptResponse(BaseModel):
    genre: str
    title: str
    content: str
    fallback: bool = False
