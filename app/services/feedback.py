"""Feedback generation service using OpenAI chat completions."""

import json
import logging

from openai import OpenAI
from pydantic import ValidationError

from app.config import get_settings
from app.models.story import FeedbackPersonality, Genre
from app.prompts.feedback_prompts import FEEDBACK_SYSTEM_PROMPTS, FEEDBACK_USER_PROMPT_TEMPLATE
from app.schemas.feedback import FeedbackPayload

logger = logging.getLogger("storycoach.feedback")


class FeedbackGenerationError(RuntimeError):
    """Any failure producing coaching feedback, including output that fails schema validation."""


def parse_feedback(content: str | None) -> FeedbackPayload:
    """Parse and validate a model response. Raises FeedbackGenerationError on malformed output."""
    if not content:
        raise FeedbackGenerationError("Feedback generation failed: empty response")

    content = content.strip()
    # Models occasionally wrap JSON in a markdown fence even in JSON mode
    if content.startswith("```"):
        content = content.split("```")[1]
        if content.startswith("json"):
            content = content[4:]
        content = content.strip()

    try:
        return FeedbackPayload.model_validate(json.loads(content))
    except json.JSONDecodeError as e:
        raise FeedbackGenerationError(f"Feedback generation failed: response is not JSON ({e})") from e
    except ValidationError as e:
        raise FeedbackGenerationError(
            f"Feedback generation failed: response does not match schema ({e.error_count()} errors)"
        ) from e


class FeedbackService:
    """Turns a transcript into structured coaching feedback."""

    def __init__(self, api_key: str | None = None) -> None:
        self.api_key = api_key
        self._client: OpenAI | None = None

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            api_key = self.api_key or get_settings().OPENAI_API_KEY
            if not api_key:
                raise FeedbackGenerationError("Feedback generation failed: OPENAI_API_KEY is not configured")
            self._client = OpenAI(api_key=api_key)
        return self._client

    def build_messages(self, transcript: str, personality: FeedbackPersonality, genre: Genre) -> list[dict[str, str]]:
        system_prompt = FEEDBACK_SYSTEM_PROMPTS.get(personality, FEEDBACK_SYSTEM_PROMPTS[FeedbackPersonality.ENCOURAGING])
        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": FEEDBACK_USER_PROMPT_TEMPLATE.format(genre=genre.value, transcript=transcript)},
        ]

    def generate(
        self,
        transcript: str,
        personality: FeedbackPersonality = FeedbackPersonality.ENCOURAGING,
        genre: Genre = Genre.ADVENTURE,
    ) -> FeedbackPayload:
        """Generate feedback for a transcript. Raises FeedbackGenerationError on any failure."""
        if not transcript.strip():
            raise FeedbackGenerationError("Feedback generation failed: transcript is empty")

        settings = get_settings()
        try:
            response = self.client.chat.completions.create(
                model=settings.FEEDBACK_MODEL,
                messages=self.build_messages(transcript, personality, genre),
                temperature=settings.FEEDBACK_TEMPERATURE,
                max_tokens=1200,
                response_format={"type": "json_object"},
            )
            content = response.choices[0].message.content
        except FeedbackGenerationError:
            raise
        except Exception as e:
            raise FeedbackGenerationError(f"Feedback generation failed: {e}") from e

        payload = parse_feedback(content)
        logger.info("Generated %s feedback (score %d)", personality.value, payload.score)
        return payload


_feedback_service: FeedbackService | None = None


def get_feedback_service() -> FeedbackService:
    """Get singleton feedback service instance."""
    global _feedback_service
    if _feedback_service is None:
        _feedback_service = FeedbackService()
    return _feedback_service
