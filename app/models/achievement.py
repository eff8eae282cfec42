"""Achievement catalog and per-user grants."""

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint

from app.database import Base


class Achievement(Base):
    """Immutable catalog entry describing a milestone."""

    __tablename__ = "achievement"

    id = Column(String(64), primary_key=True)
    title = Column(String(128), nullable=False)
    description = Column(Text, nullable=False)
    icon = Column(String(16), nullable=False)
    achievement_type = Column(String(32), nullable=False)  # milestone, streak, variety, duration
    criteria = Column(JSON, nullable=False)
    points = Column(Integer, nullable=False, default=0)


class UserAchievement(Base):
    """A user's grant of an achievement. At most one per (user, achievement)."""

    __tablename__ = "user_achievement"
    __table_args__ = (UniqueConstraint("user_id", "achievement_id", name="uq_user_achievement"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    achievement_id = Column(String(64), ForeignKey("achievement.id", ondelete="CASCADE"), nullable=False)
    earned_at = Column(DateTime, nullable=False, default=datetime.utcnow)
