"""
SQLAlchemy models for games and players.
Settings, tasks and rosters are stored as JSON strings, one document per row.
"""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GameRow(Base):
    __tablename__ = "games"

    id = Column(String(36), primary_key=True)  # uuid
    state = Column(String(16), nullable=False)  # not-ready | ready | running | ended
    host = Column(String(64), nullable=False, index=True)  # creator username
    settings = Column(Text, nullable=False)  # JSON object of GameSettings
    tasks = Column(Text, nullable=False)  # JSON array of task documents
    admins = Column(Text, nullable=False, default="[]")  # JSON array of usernames
    players = Column(Text, nullable=False, default="[]")  # JSON array of usernames
    stop_schedule_handle = Column(String(255), nullable=True)  # set only while a timed game runs
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class PlayerRow(Base):
    __tablename__ = "players"

    id = Column(String(36), primary_key=True)  # uuid
    game_id = Column(String(36), nullable=False, index=True)  # games.id, not enforced as a FK
    username = Column(String(64), nullable=False, index=True)
    points = Column(Integer, nullable=False, default=0)
    tasks_submitted = Column(Text, nullable=False, default="[]")  # JSON array of submission refs
    done = Column(Boolean, nullable=False, default=False)
