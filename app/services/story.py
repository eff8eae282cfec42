"""Story store: creation, owner-scoped reads, guarded status writes and deletion."""

import logging
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.orm import Session, joinedload

from app.models.story import STATUS_PREDECESSORS, FeedbackPersonality, Genre, Story, StoryStatus
from app.services.notifications import ChangeNotificationChannel, StoryEvent, get_notification_channel
from app.services.storage import MediaStorage, StorageError, get_media_storage

logger = logging.getLogger("storycoach.stories")

# Columns the worker may write alongside a status transition
_WRITABLE_FIELDS = {"transcript", "error_message"}


class StoryService:
    """Durable record of submitted stories.

    Status writes are compare-and-set: the UPDATE only matches rows whose
    current status is a valid predecessor of the target, so concurrent
    triggers for the same story cannot move it backwards.
    """

    def __init__(
        self,
        channel: ChangeNotificationChannel | None = None,
        storage: MediaStorage | None = None,
    ) -> None:
        self._channel = channel
        self._storage = storage

    @property
    def channel(self) -> ChangeNotificationChannel:
        return self._channel if self._channel is not None else get_notification_channel()

    @property
    def storage(self) -> MediaStorage:
        return self._storage if self._storage is not None else get_media_storage()

    def create_story(
        self,
        db: Session,
        user_id: str,
        genre: Genre,
        duration_seconds: int,
        media_ref: str,
        feedback_personality: FeedbackPersonality = FeedbackPersonality.ENCOURAGING,
        title: str | None = None,
        prompt: str | None = None,
    ) -> Story:
        """Create a story record. Status is always ``pending``."""
        story = Story(
            user_id=user_id,
            title=(title or "").strip() or "Untitled story",
            prompt=prompt,
            genre=genre,
            feedback_personality=feedback_personality,
            duration_seconds=max(int(duration_seconds), 0),
            media_ref=media_ref,
            status=StoryStatus.PENDING,
        )
        db.add(story)
        db.commit()
        db.refresh(story)
        logger.info("Created story %s for user %s (%s, %ds)", story.id, user_id, genre.value, story.duration_seconds)
        self._publish(story)
        return story

    def create_retry(self, db: Session, failed: Story) -> Story:
        """Start a fresh attempt for a failed story, reusing its stored recording.

        The failed story keeps its terminal status.
        """
        if failed.status is not StoryStatus.FAILED:
            raise ValueError(f"Cannot retry story with status '{failed.status.value}'")
        return self.create_story(
            db,
            user_id=failed.user_id,
            genre=failed.genre,
            duration_seconds=failed.duration_seconds,
            media_ref=failed.media_ref,
            feedback_personality=failed.feedback_personality,
            title=failed.title,
            prompt=failed.prompt,
        )

    def get_story(self, db: Session, story_id: int, user_id: str) -> Story | None:
        """Get a single story by ID, scoped to user."""
        return db.query(Story).filter(Story.id == story_id, Story.user_id == user_id).first()

    def get_story_with_feedback(self, db: Session, story_id: int, user_id: str) -> Story | None:
        """Get a story with its feedback eagerly loaded."""
        return (
            db.query(Story)
            .options(joinedload(Story.feedback))
            .filter(Story.id == story_id, Story.user_id == user_id)
            .first()
        )

    def list_stories(self, db: Session, user_id: str) -> list[Story]:
        """Get all stories for a user, newest first."""
        return (
            db.query(Story)
            .filter(Story.user_id == user_id)
            .order_by(Story.created_at.desc(), Story.id.desc())
            .all()
        )

    def apply_status(
        self,
        db: Session,
        story_id: int,
        status: StoryStatus,
        user_id: str | None = None,
        **fields,
    ) -> bool:
        """Issue the guarded status UPDATE without committing.

        Returns False when the story does not exist or its current status is
        not a valid predecessor of ``status``.
        """
        unknown = set(fields) - _WRITABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot write fields {sorted(unknown)} with a status change")

        predecessors = STATUS_PREDECESSORS[status]
        if not predecessors:
            logger.warning("Rejected transition of story %s to %s: not reachable", story_id, status.value)
            return False

        stmt = (
            update(Story)
            .where(Story.id == story_id, Story.status.in_(predecessors))
            .values(status=status, updated_at=datetime.utcnow(), **fields)
            .execution_options(synchronize_session="fetch")
        )
        if user_id is not None:
            stmt = stmt.where(Story.user_id == user_id)

        result = db.execute(stmt)
        if result.rowcount == 0:
            logger.warning("Rejected transition of story %s to %s: not a forward move", story_id, status.value)
            return False
        return True

    def update_status(
        self,
        db: Session,
        story_id: int,
        status: StoryStatus,
        user_id: str | None = None,
        **fields,
    ) -> bool:
        """Move a story forward to ``status`` and commit. Publishes a change event on success."""
        try:
            applied = self.apply_status(db, story_id, status, user_id=user_id, **fields)
        except Exception:
            db.rollback()
            raise
        if not applied:
            db.rollback()
            return False
        db.commit()
        self.notify(db, story_id)
        return True

    def notify(self, db: Session, story_id: int) -> None:
        """Publish the committed state of a story to its owner's subscribers."""
        story = db.get(Story, story_id)
        if story is None:
            return
        db.refresh(story)
        self._publish(story)

    def delete_story(self, db: Session, story: Story) -> str:
        """Delete a story, its feedback and its recording. Returns the owner for stats recompute."""
        story_id = story.id
        user_id = story.user_id
        media_ref = story.media_ref
        db.delete(story)
        db.commit()

        # Retries share the original recording
        still_used = db.query(Story.id).filter(Story.media_ref == media_ref).first() is not None

        # A missing or undeletable recording never blocks the record deletion
        if not still_used:
            try:
                self.storage.remove(media_ref)
            except (OSError, StorageError) as e:
                logger.warning("Could not remove recording %s: %s", media_ref, e)

        logger.info("Deleted story %s for user %s", story_id, user_id)
        return user_id

    def _publish(self, story: Story) -> None:
        self.channel.publish(
            story.user_id,
            StoryEvent(story_id=story.id, status=story.status, updated_at=story.updated_at),
        )


_story_service: StoryService | None = None


def get_story_service() -> StoryService:
    """Get singleton story service instance."""
    global _story_service
    if _story_service is None:
        _story_service = StoryService()
    return _story_service
