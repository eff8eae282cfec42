"""Story API endpoints: submission, retrieval, deletion, retry and the change feed."""

import asyncio
import json
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Form, HTTPException, Request, UploadFile
from fastapi.responses import StreamingResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.database import get_db
from app.dependencies import CurrentUser, get_current_user
from app.models.story import FeedbackPersonality, Genre, StoryStatus
from app.rate_limit import limiter
from app.schemas.story import StoryDetailResponse, StoryListResponse, StoryResponse
from app.services.notifications import StoryEvent, get_notification_channel
from app.services.stats import refresh_user_stats
from app.services.storage import StorageError, get_media_storage
from app.services.story import get_story_service
from app.workers.story_processor import process_story

logger = logging.getLogger("storycoach.api")

router = APIRouter(prefix="/api/v1/stories", tags=["Stories"])

KEEPALIVE_SECONDS = 15.0


@router.post("/", response_model=StoryResponse)
@limiter.limit("20/minute")
async def submit_story(
    request: Request,
    background_tasks: BackgroundTasks,
    file: UploadFile,
    genre: Genre = Form(...),
    duration_seconds: int = Form(..., ge=0),
    feedback_personality: FeedbackPersonality = Form(FeedbackPersonality.ENCOURAGING),
    title: str | None = Form(None),
    prompt: str | None = Form(None),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> StoryResponse:
    """Upload a recording and queue it for transcription and feedback."""
    storage = get_media_storage()
    try:
        media_ref = await storage.upload(user.user_id, file)
    except StorageError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None

    service = get_story_service()
    try:
        story = service.create_story(
            db,
            user_id=user.user_id,
            genre=genre,
            duration_seconds=duration_seconds,
            media_ref=media_ref,
            feedback_personality=feedback_personality,
            title=title,
            prompt=prompt,
        )
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Could not create story for user %s", user.user_id)
        storage.remove(media_ref)
        raise HTTPException(status_code=500, detail="Could not save story") from None

    response = StoryResponse.model_validate(story)
    background_tasks.add_task(process_story, story.id, story.media_ref, story.feedback_personality)
    return response


@router.get("/", response_model=StoryListResponse)
def list_stories(
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> StoryListResponse:
    """List all stories for the current user, newest first."""
    stories = get_story_service().list_stories(db, user.user_id)
    return StoryListResponse(
        items=[StoryResponse.model_validate(s) for s in stories],
        total=len(stories),
    )


@router.get("/events")
async def story_events(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
) -> StreamingResponse:
    """Server-sent change feed of the current user's story status updates."""
    channel = get_notification_channel()
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[StoryEvent] = asyncio.Queue()

    def on_event(event: StoryEvent) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, event)

    async def stream():
        handle = channel.subscribe(user.user_id, on_event)
        try:
            yield ": connected\n\n"
            while not await request.is_disconnected():
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield f"event: story\ndata: {json.dumps(event.to_dict())}\n\n"
        finally:
            channel.unsubscribe(handle)

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/{story_id}", response_model=StoryDetailResponse)
def get_story(
    story_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> StoryDetailResponse:
    """Get a story with its feedback, if any."""
    story = get_story_service().get_story_with_feedback(db, story_id, user.user_id)
    if not story:
        raise HTTPException(status_code=404, detail="Story not found")
    return StoryDetailResponse.model_validate(story)


@router.delete("/{story_id}")
def delete_story(
    story_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    """Delete a story and its feedback, then recompute the owner's stats."""
    service = get_story_service()
    story = service.get_story(db, story_id, user.user_id)
    if not story:
        raise HTTPException(status_code=404, detail="Story not found")

    owner = service.delete_story(db, story)
    try:
        refresh_user_stats(db, owner, keep_longest=False)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Stats refresh after deleting story %s failed", story_id)

    return {"success": True}


@router.post("/{story_id}/retry", response_model=StoryResponse)
@limiter.limit("10/minute")
def retry_story(
    request: Request,
    story_id: int,
    background_tasks: BackgroundTasks,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> StoryResponse:
    """Re-run transcription and feedback for a failed story as a new attempt."""
    service = get_story_service()
    story = service.get_story(db, story_id, user.user_id)
    if not story:
        raise HTTPException(status_code=404, detail="Story not found")
    if story.status is not StoryStatus.FAILED:
        raise HTTPException(status_code=409, detail=f"Cannot retry story with status '{story.status.value}'")

    retry = service.create_retry(db, story)
    response = StoryResponse.model_validate(retry)
    background_tasks.add_task(process_story, retry.id, retry.media_ref, retry.feedback_personality)
    return response
