"""Configuration settings for Story Coach."""

import os
import secrets
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./storycoach.db")

    # JWT
    JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY", secrets.token_urlsafe(32))
    JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")
    JWT_EXPIRE_MINUTES: int = int(os.getenv("JWT_EXPIRE_MINUTES", "480"))

    # Whisper
    WHISPER_MODEL_SIZE: str = os.getenv("WHISPER_MODEL_SIZE", "base")

    # Feedback generation
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
    FEEDBACK_MODEL: str = os.getenv("FEEDBACK_MODEL", "gpt-4o-mini")
    FEEDBACK_TEMPERATURE: float = float(os.getenv("FEEDBACK_TEMPERATURE", "0.7"))

    # Upload
    UPLOAD_DIR: str = os.getenv("UPLOAD_DIR", "uploads")
    MAX_UPLOAD_SIZE_MB: int = int(os.getenv("MAX_UPLOAD_SIZE_MB", "50"))

    # Client tracking
    POLL_INTERVAL_SECONDS: float = float(os.getenv("POLL_INTERVAL_SECONDS", "2"))
    TRACKING_TIMEOUT_SECONDS: float = float(os.getenv("TRACKING_TIMEOUT_SECONDS", "300"))

    # Application
    APP_ENV: str = os.getenv("APP_ENV", "development")
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"

    def validate(self) -> list[str]:
        """Validate settings and return list of warnings."""
        errors = []
        if not os.getenv("JWT_SECRET_KEY"):
            errors.append("JWT_SECRET_KEY is not set - using auto-generated key (not persistent across restarts)")
        if not self.OPENAI_API_KEY:
            errors.append("OPENAI_API_KEY is not set - feedback generation will fail and stories will end as failed")
        return errors


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
