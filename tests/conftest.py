"""Pytest configuration and fixtures."""

from dataclasses import dataclass
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base, get_db
from app.models.achievement import Achievement, UserAchievement  # noqa: F401
from app.models.feedback import StoryFeedback  # noqa: F401
from app.models.story import Story  # noqa: F401
from app.models.user_stats import UserStats  # noqa: F401
from app.schemas.feedback import FeedbackPayload
from app.services.achievements import seed_achievements


@dataclass
class MockSegment:
    """Mock transcription segment."""

    start: float
    end: float
    text: str


@dataclass
class MockTranscriptionInfo:
    """Mock transcription info."""

    language: str = "en"
    language_probability: float = 0.95
    duration: float = 30.0


SAMPLE_FEEDBACK = FeedbackPayload(
    detailed_feedback="A vivid opening with a clear sense of place.",
    strengths=["Strong imagery", "Confident pacing"],
    improvements=["Give the villain a motive"],
    next_steps=["Retell the ending from another point of view"],
    score=8,
)


@pytest.fixture(name="db_session")
def db_session_fixture():
    """Create an in-memory SQLite database for tests, with the achievement catalog seeded."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    testing_session_local = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = testing_session_local()
    seed_achievements(session)
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(name="upload_dir")
def upload_dir_fixture(tmp_path, monkeypatch):
    """Point media storage at a temporary directory."""
    from app.services import storage as storage_module

    root = tmp_path / "uploads"
    monkeypatch.setattr(storage_module, "_media_storage", storage_module.MediaStorage(root))
    return root


@pytest.fixture(name="mock_whisper")
def mock_whisper_fixture():
    """Replace the whisper model with one that always hears the same story."""
    with patch("app.services.transcription.TranscriptionService._get_model") as mock_get_model:
        mock_model = MagicMock()
        mock_model.transcribe.side_effect = lambda *args, **kwargs: (
            iter(
                [
                    MockSegment(start=0.0, end=4.0, text="The lighthouse keeper heard a knock."),
                    MockSegment(start=4.0, end=9.0, text="Nobody had visited in years."),
                ]
            ),
            MockTranscriptionInfo(),
        )
        mock_get_model.return_value = mock_model
        yield mock_model


@pytest.fixture(name="mock_feedback")
def mock_feedback_fixture():
    """Replace the OpenAI call with a fixed, valid feedback payload."""
    with patch("app.services.feedback.FeedbackService.generate") as mock_generate:
        mock_generate.return_value = SAMPLE_FEEDBACK
        yield mock_generate


@pytest.fixture(name="client")
def client_fixture(db_session: Session, upload_dir, mock_whisper, mock_feedback):
    """Create a test client with overridden DB dependency and disabled rate limiting."""
    from app.rate_limit import limiter
    from app.workers import story_processor
    from main import app

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    # Point background processing at the test DB session
    story_processor._session_factory = lambda: db_session

    app.dependency_overrides[get_db] = override_get_db
    limiter.enabled = False
    with TestClient(app) as c:
        yield c
    limiter.enabled = True
    app.dependency_overrides.clear()
    story_processor._session_factory = None


def _auth(user_id: str) -> dict:
    from app.services.jwt import get_jwt_service

    token = get_jwt_service().create_token(user_id)
    return {"user_id": user_id, "token": token, "headers": {"Authorization": f"Bearer {token}"}}


@pytest.fixture(name="test_user")
def test_user_fixture():
    """Return (user_id, token, headers) for the primary test user."""
    return _auth("user-1")


@pytest.fixture(name="other_user")
def other_user_fixture():
    """A second user, for ownership checks."""
    return _auth("user-2")
