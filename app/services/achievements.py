"""Achievement catalog, eligibility predicates and idempotent grants."""

import logging
from collections.abc import Callable, Sequence
from datetime import datetime

from sqlalchemy.orm import Session

from app.database import dialect_insert
from app.models.achievement import Achievement, UserAchievement
from app.models.story import Story
from app.services.stats import ComputedStats, counted_stories

logger = logging.getLogger("storycoach.achievements")

ACHIEVEMENT_CATALOG: list[dict] = [
    {
        "id": "first_story",
        "title": "First Story",
        "description": "Recorded your very first story",
        "icon": "🎯",
        "achievement_type": "milestone",
        "criteria": {"stories_count": 1},
        "points": 10,
    },
    {
        "id": "week_warrior",
        "title": "Week Warrior",
        "description": "Maintained a 7-day streak",
        "icon": "🔥",
        "achievement_type": "streak",
        "criteria": {"streak_days": 7},
        "points": 25,
    },
    {
        "id": "genre_explorer",
        "title": "Genre Explorer",
        "description": "Tried all 6 story genres",
        "icon": "🗺️",
        "achievement_type": "variety",
        "criteria": {"unique_genres": 6},
        "points": 30,
    },
    {
        "id": "marathon_storyteller",
        "title": "Marathon Storyteller",
        "description": "Recorded a 15-minute story",
        "icon": "⏰",
        "achievement_type": "duration",
        "criteria": {"min_duration_seconds": 900},
        "points": 20,
    },
    {
        "id": "century_club",
        "title": "Century Club",
        "description": "Recorded 100 stories",
        "icon": "💯",
        "achievement_type": "milestone",
        "criteria": {"stories_count": 100},
        "points": 100,
    },
    {
        "id": "master_storyteller",
        "title": "Master Storyteller",
        "description": "Achieved 30-day streak",
        "icon": "👑",
        "achievement_type": "streak",
        "criteria": {"streak_days": 30},
        "points": 75,
    },
]

Predicate = Callable[[dict, ComputedStats, Sequence], bool]


def _milestone(criteria: dict, stats: ComputedStats, stories: Sequence) -> bool:
    return stats.total_stories >= criteria["stories_count"]


def _streak(criteria: dict, stats: ComputedStats, stories: Sequence) -> bool:
    return stats.longest_streak >= criteria["streak_days"]


def _variety(criteria: dict, stats: ComputedStats, stories: Sequence) -> bool:
    genres = {getattr(s.genre, "value", s.genre) for s in counted_stories(stories)}
    return len(genres) >= criteria["unique_genres"]


def _duration(criteria: dict, stats: ComputedStats, stories: Sequence) -> bool:
    longest = max((s.duration_seconds or 0 for s in counted_stories(stories)), default=0)
    return longest >= criteria["min_duration_seconds"]


PREDICATES: dict[str, Predicate] = {
    "milestone": _milestone,
    "streak": _streak,
    "variety": _variety,
    "duration": _duration,
}


def is_satisfied(achievement: dict, stats: ComputedStats, stories: Sequence) -> bool:
    """Evaluate one catalog entry. Unknown achievement types never match."""
    predicate = PREDICATES.get(achievement["achievement_type"])
    if predicate is None:
        logger.warning("No predicate for achievement type '%s'", achievement["achievement_type"])
        return False
    return predicate(achievement["criteria"], stats, stories)


def evaluate_achievements(
    stats: ComputedStats, stories: Sequence, catalog: Sequence[dict] = ACHIEVEMENT_CATALOG
) -> list[str]:
    """Return the ids of every catalog entry satisfied by ``stats`` and ``stories``."""
    return [a["id"] for a in catalog if is_satisfied(a, stats, stories)]


def seed_achievements(db: Session) -> None:
    """Insert the catalog rows that are missing. Existing rows are left untouched."""
    insert = dialect_insert(db)
    stmt = insert(Achievement).values(ACHIEVEMENT_CATALOG).on_conflict_do_nothing(index_elements=[Achievement.id])
    db.execute(stmt)
    db.commit()


def grant_achievements(db: Session, user_id: str, achievement_ids: Sequence[str]) -> list[str]:
    """Grant achievements idempotently. Returns only the ids granted by this call."""
    if not achievement_ids:
        return []

    insert = dialect_insert(db)
    granted = []
    now = datetime.utcnow()
    for achievement_id in achievement_ids:
        stmt = (
            insert(UserAchievement)
            .values(user_id=user_id, achievement_id=achievement_id, earned_at=now)
            .on_conflict_do_nothing(index_elements=[UserAchievement.user_id, UserAchievement.achievement_id])
        )
        result = db.execute(stmt)
        if result.rowcount:
            granted.append(achievement_id)
    db.commit()

    if granted:
        logger.info("Granted %s to user %s", ", ".join(granted), user_id)
    return granted


def check_achievements(db: Session, user_id: str, stats: ComputedStats) -> list[str]:
    """Evaluate the catalog for a user and grant whatever is newly satisfied."""
    stories = db.query(Story).filter(Story.user_id == user_id).all()
    return grant_achievements(db, user_id, evaluate_achievements(stats, stories))


def get_user_achievements(db: Session, user_id: str) -> list[tuple[Achievement, UserAchievement | None]]:
    """Catalog entries paired with the user's grant, if any."""
    grants = {g.achievement_id: g for g in db.query(UserAchievement).filter(UserAchievement.user_id == user_id).all()}
    catalog = db.query(Achievement).order_by(Achievement.points, Achievement.id).all()
    return [(achievement, grants.get(achievement.id)) for achievement in catalog]
