"""Dashboard API endpoints: stats, achievements and story prompts."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.dependencies import CurrentUser, get_current_user
from app.models.story import Genre
from app.models.user_stats import UserStats
from app.schemas.stats import AchievementListResponse, AchievementResponse, StoryPromptResponse, UserStatsResponse
from app.services.achievements import get_user_achievements
from app.services.story_prompt import get_story_prompt_service

router = APIRouter(prefix="/api/v1", tags=["Dashboard"])


@router.get("/stats", response_model=UserStatsResponse)
def get_stats(
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> UserStatsResponse:
    """Get the current user's stats. Users without completed stories get zeroed stats."""
    stats = db.get(UserStats, user.user_id)
    if stats is None:
        return UserStatsResponse()
    return UserStatsResponse.model_validate(stats)


@router.get("/achievements", response_model=AchievementListResponse)
def list_achievements(
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> AchievementListResponse:
    """List the achievement catalog with the current user's grants."""
    items = []
    total_points = 0
    for achievement, grant in get_user_achievements(db, user.user_id):
        items.append(
            AchievementResponse(
                id=achievement.id,
                title=achievement.title,
                description=achievement.description,
                icon=achievement.icon,
                achievement_type=achievement.achievement_type,
                points=achievement.points,
                earned=grant is not None,
                earned_at=grant.earned_at if grant else None,
            )
        )
        if grant is not None:
            total_points += achievement.points
    return AchievementListResponse(items=items, total_points=total_points)


@router.get("/prompts/{genre}", response_model=StoryPromptResponse)
def get_story_prompt(
    genre: Genre,
    length: str = "medium",
    user: CurrentUser = Depends(get_current_user),
) -> StoryPromptResponse:
    """Suggest a story opening to read or improvise from."""
    prompt = get_story_prompt_service().suggest(genre, length)
    return StoryPromptResponse(genre=prompt.genre, title=prompt.title, content=prompt.content, fallback=prompt.fallback)
