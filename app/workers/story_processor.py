"""Story processing worker.

Runs once per submitted story, after the submitting request has returned:

1. pending -> processing (abort if the story is not pending)
2. transcribe the recording
3. generate coaching feedback from the transcript
4. insert the feedback row
5. processing -> completed, in the same transaction as step 4
6. recompute stats and grant achievements

Any failure in steps 2-5 ends the story as ``failed`` with the error recorded
on the row. Nothing is retried here; a retry is a new submission that reuses
the stored recording. Failures in step 6 are logged and never touch the
story's status.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.database import SessionLocal
from app.models.feedback import StoryFeedback
from app.models.story import FeedbackPersonality, Story, StoryStatus
from app.services.achievements import check_achievements
from app.services.feedback import FeedbackGenerationError, FeedbackService, get_feedback_service
from app.services.stats import refresh_user_stats
from app.services.storage import MediaStorage, StorageError, get_media_storage
from app.services.story import StoryService, get_story_service
from app.services.transcription import TranscriptionError, TranscriptionService, get_transcription_service

logger = logging.getLogger("storycoach.worker")

# Overridden in tests so background runs share the request's session
_session_factory: Callable[[], Session] | None = None

MAX_ERROR_LENGTH = 1000


@dataclass
class ProcessingResult:
    """Outcome of one worker run. Callers should re-read the story rather than trust this alone."""

    story_id: int
    success: bool
    status: StoryStatus | None = None
    error: str | None = None
    granted_achievements: list[str] | None = None


class StoryProcessor:
    """Drives one story through transcription, feedback and stats."""

    def __init__(
        self,
        stories: StoryService | None = None,
        storage: MediaStorage | None = None,
        transcription: TranscriptionService | None = None,
        feedback: FeedbackService | None = None,
    ) -> None:
        self.stories = stories or get_story_service()
        self.storage = storage or get_media_storage()
        self.transcription = transcription or get_transcription_service()
        self.feedback = feedback or get_feedback_service()

    def run(
        self,
        db: Session,
        story_id: int,
        media_ref: str,
        personality: FeedbackPersonality | None = None,
    ) -> ProcessingResult:
        story = db.get(Story, story_id)
        if story is None:
            logger.error("Story %s not found, nothing to process", story_id)
            return ProcessingResult(story_id=story_id, success=False, error="Story not found")

        user_id = story.user_id
        genre = story.genre
        personality = personality or story.feedback_personality

        # Step 1: on any failure here the story stays pending
        try:
            started = self.stories.update_status(db, story_id, StoryStatus.PROCESSING)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Marking story %s processing failed; leaving it pending: %s", story_id, e)
            return ProcessingResult(story_id=story_id, success=False, error=f"Could not start processing: {e}")
        if not started:
            logger.error("Story %s could not be marked processing; leaving it as %s", story_id, story.status.value)
            return ProcessingResult(story_id=story_id, success=False, error="Story is not pending")
        logger.info("Processing story %s for user %s", story_id, user_id)

        # Step 2
        try:
            result = self.transcription.transcribe(self.storage.path_for(media_ref))
        except (TranscriptionError, StorageError) as e:
            return self._fail(db, story_id, str(e))
        transcript = result.text

        # Step 3
        try:
            payload = self.feedback.generate(transcript, personality, genre)
        except FeedbackGenerationError as e:
            return self._fail(db, story_id, str(e), transcript=transcript)

        # Steps 4 and 5 commit together so a completed story always has feedback
        try:
            db.add(
                StoryFeedback(
                    story_id=story_id,
                    feedback_text=payload.detailed_feedback,
                    strengths=payload.strengths,
                    improvements=payload.improvements,
                    next_steps=payload.next_steps,
                    overall_score=payload.score,
                )
            )
            db.flush()
            completed = self.stories.apply_status(
                db, story_id, StoryStatus.COMPLETED, transcript=transcript, error_message=None
            )
            if not completed:
                db.rollback()
                logger.error("Story %s left processing before completion; discarding feedback", story_id)
                return ProcessingResult(story_id=story_id, success=False, error="Story is no longer processing")
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Saving feedback for story %s failed: %s", story_id, e)
            return self._fail(db, story_id, f"Saving feedback failed: {e}", transcript=transcript)

        self.stories.notify(db, story_id)
        logger.info("Story %s completed (score %d)", story_id, payload.score)

        # Step 6
        granted = self._refresh_stats(db, user_id)
        return ProcessingResult(
            story_id=story_id, success=True, status=StoryStatus.COMPLETED, granted_achievements=granted
        )

    def _fail(self, db: Session, story_id: int, error: str, transcript: str | None = None) -> ProcessingResult:
        logger.warning("Story %s failed: %s", story_id, error)
        fields = {"error_message": error[:MAX_ERROR_LENGTH]}
        if transcript is not None:
            fields["transcript"] = transcript
        if not self.stories.update_status(db, story_id, StoryStatus.FAILED, **fields):
            logger.error("Story %s could not be marked failed", story_id)
        return ProcessingResult(story_id=story_id, success=False, status=StoryStatus.FAILED, error=error)

    def _refresh_stats(self, db: Session, user_id: str) -> list[str]:
        try:
            stats = refresh_user_stats(db, user_id)
            return check_achievements(db, user_id, stats)
        except Exception:
            db.rollback()
            logger.exception("Stats refresh failed for user %s; will catch up on the next trigger", user_id)
            return []


def process_story(
    story_id: int,
    media_ref: str,
    personality: FeedbackPersonality | str | None = None,
    session_factory: Callable[[], Session] | None = None,
) -> ProcessingResult:
    """Background entry point. Opens its own session and never raises."""
    factory = session_factory or _session_factory
    db = factory() if factory else SessionLocal()
    owns_session = factory is None

    if isinstance(personality, str):
        personality = FeedbackPersonality(personality)

    try:
        return StoryProcessor().run(db, story_id, media_ref, personality)
    except Exception as e:
        db.rollback()
        logger.exception("Unexpected error while processing story %s", story_id)
        try:
            get_story_service().update_status(
                db, story_id, StoryStatus.FAILED, error_message=f"Processing failed: {e}"[:MAX_ERROR_LENGTH]
            )
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Could not record failure for story %s", story_id)
        return ProcessingResult(story_id=story_id, success=False, status=StoryStatus.FAILED, error=str(e))
    finally:
        if owns_session:
            db.close()
