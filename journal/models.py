# journal/models.py
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, JSON,
    DateTime, Date, ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship, declarative_base
from datetime import datetime, timezone

Base = declarative_base()

ALL_WEEKDAYS = [0, 1, 2, 3, 4, 5, 6]   # Sunday = 0


def _utcnow():
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id            = Column(Integer, primary_key=True, index=True)
    username      = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    created_at    = Column(DateTime, default=_utcnow)

    entries     = relationship("Entry",     back_populates="owner", cascade="all, delete-orphan")
    habits      = relationship("Habit",     back_populates="owner", cascade="all, delete-orphan")
    quick_notes = relationship("QuickNote", back_populates="owner", cascade="all, delete-orphan")


class Entry(Base):
    __tablename__ = "entries"

    id         = Column(Integer, primary_key=True, index=True)
    user_id    = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    entry_date = Column(Date, nullable=False)
    content    = Column(Text, nullable=False, default="")
    tags       = Column(JSON, nullable=False, default=list)
    mood       = Column(Integer, nullable=True)              # 1-5 scale
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    owner = relationship("User", back_populates="entries")

    # One entry per user per day
    __table_args__ = (
        UniqueConstraint("user_id", "entry_date", name="uq_entries_user_date"),
        Index("ix_entries_user_id", "user_id"),
    )


class Habit(Base):
    __tablename__ = "habits"

    id             = Column(Integer, primary_key=True, index=True)
    user_id        = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    name           = Column(String, nullable=False)
    icon           = Column(String, default="✅")
    color          = Column(String, default="#8B5CF6")
    category       = Column(String, default="General")
    frequency_days = Column(JSON, nullable=False, default=lambda: list(ALL_WEEKDAYS))
    target_count   = Column(Integer, default=1)
    created_at     = Column(DateTime, default=_utcnow)

    owner = relationship("User", back_populates="habits")
    logs  = relationship("HabitLog", back_populates="habit", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_habits_user_id", "user_id"),
    )


class HabitLog(Base):
    __tablename__ = "habit_logs"

    id        = Column(Integer, primary_key=True, index=True)
    habit_id  = Column(Integer, ForeignKey("habits.id", ondelete="CASCADE"), nullable=False)
    user_id   = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    log_date  = Column(Date, nullable=False)
    completed = Column(Boolean, default=False)

    habit = relationship("Habit", back_populates="logs")

    __table_args__ = (
        UniqueConstraint("habit_id", "log_date", name="uq_habit_logs_habit_date"),
        Index("ix_habit_logs_user_date", "user_id", "log_date"),
    )


class QuickNote(Base):
    __tablename__ = "quick_notes"

    id         = Column(Integer, primary_key=True, index=True)
    user_id    = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title      = Column(String, default="")
    content    = Column(Text, nullable=False)
    color      = Column(String, default="#FFE066")
    pinned     = Column(Boolean, default=False)
    tags       = Column(JSON, nullable=False, default=list)
    type       = Column(String, default="text")           # text | checklist
    position   = Column(Integer, default=0)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    owner = relationship("User", back_populates="quick_notes")

    __table_args__ = (
        Index("ix_quick_notes_user_position", "user_id", "position"),
    )
