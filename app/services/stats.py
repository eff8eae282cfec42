"""Stats engine: totals, streaks and favorite genre derived from a user's stories.

Everything above ``refresh_user_stats`` is pure. Only completed stories are
counted, so a failed or still-processing recording never moves a streak or a
total.
"""

import logging
import math
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta

from sqlalchemy.orm import Session

from app.database import dialect_insert
from app.models.story import Story, StoryStatus
from app.models.user_stats import UserStats

logger = logging.getLogger("storycoach.stats")


@dataclass(frozen=True)
class ComputedStats:
    total_stories: int = 0
    total_minutes: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    favorite_genre: str | None = None
    last_story_date: date | None = None


def _status(story) -> StoryStatus:
    return StoryStatus(story.status)


def _genre_value(story) -> str:
    genre = story.genre
    return genre.value if hasattr(genre, "value") else str(genre)


def counted_stories(stories: Iterable) -> list:
    """Stories that contribute to stats: completed ones."""
    return [s for s in stories if _status(s) is StoryStatus.COMPLETED]


def minutes_for(duration_seconds: int | float) -> int:
    """Whole minutes credited for a recording, rounded up."""
    return math.ceil(max(duration_seconds or 0, 0) / 60)


def streak_runs(dates: Iterable[date]) -> list[int]:
    """Lengths of consecutive-day runs, newest run first.

    Several stories on the same day count once.
    """
    runs: list[int] = []
    previous: date | None = None
    for day in sorted(set(dates), reverse=True):
        if previous is not None and previous - day == timedelta(days=1):
            runs[-1] += 1
        else:
            runs.append(1)
        previous = day
    return runs


def compute_streaks(dates: Iterable[date], today: date) -> tuple[int, int]:
    """Return ``(current_streak, longest_streak)`` for a set of story dates.

    The current streak is the newest run, but only while it is still alive:
    its latest day must be today or yesterday.
    """
    unique = sorted(set(dates), reverse=True)
    if not unique:
        return 0, 0

    runs = streak_runs(unique)
    current = runs[0] if (today - unique[0]).days in (0, 1) else 0
    return current, max(runs)


def favorite_genre(stories: Sequence) -> str | None:
    """Most used genre; ties go to the genre used most recently."""
    if not stories:
        return None

    counts = Counter(_genre_value(s) for s in stories)
    latest: dict[str, datetime] = {}
    for story in stories:
        genre = _genre_value(story)
        if genre not in latest or story.created_at > latest[genre]:
            latest[genre] = story.created_at

    return max(counts, key=lambda g: (counts[g], latest[g]))


def compute_user_stats(stories: Iterable, today: date, previous_longest: int = 0) -> ComputedStats:
    """Derive a user's stats from their stories.

    ``previous_longest`` carries forward a longest streak recorded earlier so
    it never shrinks on the completion path.
    """
    counted = counted_stories(stories)
    if not counted:
        return ComputedStats(longest_streak=previous_longest)

    dates = [s.created_at.date() for s in counted]
    current, longest = compute_streaks(dates, today)

    return ComputedStats(
        total_stories=len(counted),
        total_minutes=sum(minutes_for(s.duration_seconds) for s in counted),
        current_streak=current,
        longest_streak=max(longest, previous_longest),
        favorite_genre=favorite_genre(counted),
        last_story_date=max(dates),
    )


def refresh_user_stats(
    db: Session, user_id: str, today: date | None = None, keep_longest: bool = True
) -> ComputedStats:
    """Recompute a user's stats from storage and upsert the row.

    Concurrent refreshes converge: each one writes the same deterministic
    value for the same story set.
    """
    today = today or datetime.utcnow().date()
    stories = db.query(Story).filter(Story.user_id == user_id).all()

    previous_longest = 0
    if keep_longest:
        previous = db.get(UserStats, user_id)
        previous_longest = previous.longest_streak if previous is not None else 0

    stats = compute_user_stats(stories, today, previous_longest=previous_longest)
    values = asdict(stats)

    insert = dialect_insert(db)
    stmt = insert(UserStats).values(user_id=user_id, updated_at=datetime.utcnow(), **values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[UserStats.user_id],
        set_={**{key: stmt.excluded[key] for key in values}, "updated_at": stmt.excluded.updated_at},
    )
    db.execute(stmt)
    db.commit()

    logger.info(
        "Stats for user %s: %d stories, %d min, streak %d (best %d)",
        user_id,
        stats.total_stories,
        stats.total_minutes,
        stats.current_streak,
        stats.longest_streak,
    )
    return stats
