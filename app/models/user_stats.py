"""Aggregated per-user statistics."""

from datetime import datetime

from sqlalchemy import Column, Date, DateTime, Integer, String

from app.database import Base


class UserStats(Base):
    """Derived dashboard stats. Only ever written through an upsert."""

    __tablename__ = "user_stats"

    user_id = Column(String(64), primary_key=True)
    total_stories = Column(Integer, nullable=False, default=0)
    total_minutes = Column(Integer, nullable=False, default=0)
    current_streak = Column(Integer, nullable=False, default=0)
    longest_streak = Column(Integer, nullable=False, default=0)
    favorite_genre = Column(String(32), nullable=True)
    last_story_date = Column(Date, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
