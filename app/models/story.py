"""Story model and its closed vocabularies."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import relationship

from app.database import Base
from app.models.feedback import StoryFeedback


class StoryStatus(str, Enum):
    """Processing status of a story. Only forward transitions are valid."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (StoryStatus.COMPLETED, StoryStatus.FAILED)


# target status -> statuses it may be entered from
STATUS_PREDECESSORS: dict[StoryStatus, tuple[StoryStatus, ...]] = {
    StoryStatus.PENDING: (),
    StoryStatus.PROCESSING: (StoryStatus.PENDING,),
    StoryStatus.COMPLETED: (StoryStatus.PROCESSING,),
    StoryStatus.FAILED: (StoryStatus.PENDING, StoryStatus.PROCESSING),
}


def can_transition(current: StoryStatus, target: StoryStatus) -> bool:
    """Return True if ``current -> target`` is a forward move in the status lattice."""
    return current in STATUS_PREDECESSORS[target]


class Genre(str, Enum):
    ADVENTURE = "adventure"
    MYSTERY = "mystery"
    FANTASY = "fantasy"
    HORROR = "horror"
    ROMANCE = "romance"
    SCI_FI = "sci-fi"


class FeedbackPersonality(str, Enum):
    ENCOURAGING = "encouraging"
    STEPHEN_KING = "stephen_king"
    LITERARY = "literary"
    CASUAL = "casual"
    PROFESSIONAL = "professional"


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class Story(Base):
    """A recorded storytelling session and its processing lifecycle."""

    __tablename__ = "story"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    title = Column(String(256), nullable=False, default="Untitled story")
    prompt = Column(Text, nullable=True)
    genre = Column(
        SAEnum(Genre, native_enum=False, length=32, values_callable=_enum_values, validate_strings=True),
        nullable=False,
    )
    feedback_personality = Column(
        SAEnum(
            FeedbackPersonality, native_enum=False, length=32, values_callable=_enum_values, validate_strings=True
        ),
        nullable=False,
        default=FeedbackPersonality.ENCOURAGING,
    )
    status = Column(
        SAEnum(StoryStatus, native_enum=False, length=32, values_callable=_enum_values, validate_strings=True),
        nullable=False,
        default=StoryStatus.PENDING,
        index=True,
    )
    media_ref = Column(String(512), nullable=False)
    transcript = Column(Text, nullable=True)
    duration_seconds = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    feedback = relationship(
        StoryFeedback,
        back_populates="story",
        uselist=False,
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Story {self.id} {self.status.value if self.status else None}>"
