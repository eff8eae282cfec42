"""Story feedback model."""

from datetime import datetime

from sqlalchemy import JSON, CheckConstraint, Column, DateTime, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship

from app.database import Base


class StoryFeedback(Base):
    """Coaching feedback for a story. Written once by the processing worker."""

    __tablename__ = "story_feedback"
    __table_args__ = (CheckConstraint("overall_score >= 1 AND overall_score <= 10", name="ck_feedback_score_range"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    story_id = Column(Integer, ForeignKey("story.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)
    feedback_text = Column(Text, nullable=False)
    strengths = Column(JSON, nullable=False, default=list)
    improvements = Column(JSON, nullable=False, default=list)
    next_steps = Column(JSON, nullable=False, default=list)
    overall_score = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    story = relationship("Story", back_populates="feedback")
