"""Story prompt suggestions, generated with OpenAI and backed by canned openings."""

import json
import logging
from dataclasses import dataclass

from app.config import get_settings
from app.models.story import Genre
from app.prompts.story_prompts import (
    FALLBACK_STORIES,
    STORY_PROMPT_SYSTEM_PROMPT,
    STORY_PROMPT_USER_TEMPLATE,
    WORD_COUNTS,
)
from app.services.feedback import FeedbackService, get_feedback_service

logger = logging.getLogger("storycoach.prompts")


@dataclass
class StoryPrompt:
    genre: str
    title: str
    content: str
    fallback: bool = False


class StoryPromptService:
    """Suggests a story opening for a genre. Never fails: falls back to a canned opening."""

    def __init__(self, feedback_service: FeedbackService | None = None) -> None:
        self._feedback_service = feedback_service

    def _client(self):
        return (self._feedback_service or get_feedback_service()).client

    def suggest(self, genre: Genre, length: str = "medium") -> StoryPrompt:
        word_count = WORD_COUNTS.get(length, WORD_COUNTS["medium"])
        try:
            response = self._client().chat.completions.create(
                model=get_settings().FEEDBACK_MODEL,
                messages=[
                    {"role": "system", "content": STORY_PROMPT_SYSTEM_PROMPT},
                    {"role": "user", "content": STORY_PROMPT_USER_TEMPLATE.format(genre=genre.value, word_count=word_count)},
                ],
                temperature=0.9,
                max_tokens=800,
                response_format={"type": "json_object"},
            )
            data = json.loads(response.choices[0].message.content or "")
            title, content = data["title"].strip(), data["content"].strip()
            if not title or not content:
                raise ValueError("empty title or content")
            return StoryPrompt(genre=genre.value, title=title, content=content)
        except Exception as e:
            logger.warning("Story prompt generation failed for %s, using fallback: %s", genre.value, e)
            fallback = FALLBACK_STORIES[genre.value]
            return StoryPrompt(genre=genre.value, title=fallback["title"], content=fallback["content"], fallback=True)


_story_prompt_service: StoryPromptService | None = None


def get_story_prompt_service() -> StoryPromptService:
    """Get singleton story prompt service instance."""
    global _story_prompt_service
    if _story_prompt_service is None:
        _story_prompt_service = StoryPromptService()
    return _story_prompt_service
