from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, relationship

Base = declarative_base()


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    profile: Mapped["Profile"] = relationship(
        "Profile", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )
    settings: Mapped["UserSettings"] = relationship(
        "UserSettings", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )
    roadmap: Mapped["Roadmap"] = relationship(
        "Roadmap", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )
    food_entries: Mapped[list["FoodEntry"]] = relationship(
        "FoodEntry", back_populates="user", cascade="all, delete-orphan"
    )
    activity_entries: Mapped[list["ActivityEntry"]] = relationship(
        "ActivityEntry", back_populates="user", cascade="all, delete-orphan"
    )
    sleep_entries: Mapped[list["SleepEntry"]] = relationship(
        "SleepEntry", back_populates="user", cascade="all, delete-orphan"
    )
    daily_stats: Mapped[list["DailyStats"]] = relationship(
        "DailyStats", back_populates="user", cascade="all, delete-orphan"
    )
    chat_messages: Mapped[list["ChatMessage"]] = relationship(
        "ChatMessage", back_populates="user", cascade="all, delete-orphan"
    )


class Profile(Base):
    __tablename__ = "profiles"
    __table_args__ = (UniqueConstraint("user_id", name="uq_profiles_user_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(120), nullable=False)
    height_cm: Mapped[float] = mapped_column(Float, nullable=False)
    weight_kg: Mapped[float] = mapped_column(Float, nullable=False)
    age: Mapped[int] = mapped_column(Integer, nullable=False)
    gender: Mapped[str] = mapped_column(String(16), nullable=False)
    goal: Mapped[str] = mapped_column(String(32), nullable=False)
    activity_level: Mapped[str] = mapped_column(String(32), nullable=False)
    daily_calorie_goal: Mapped[int] = mapped_column(Integer, nullable=False)
    daily_step_goal: Mapped[int] = mapped_column(Integer, nullable=False)

    allergies: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    preferences: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    health_conditions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user: Mapped[User] = relationship("User", back_populates="profile")


class UserSettings(Base):
    __tablename__ = "user_settings"
    __table_args__ = (UniqueConstraint("user_id", name="uq_user_settings_user_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    water_goal_ml: Mapped[int] = mapped_column(Integer, nullable=False, default=2500)

    breakfast_reminder_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    breakfast_reminder_time: Mapped[str] = mapped_column(String(5), nullable=False, default="09:00")
    lunch_reminder_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    lunch_reminder_time: Mapped[str] = mapped_column(String(5), nullable=False, default="13:00")
    dinner_reminder_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    dinner_reminder_time: Mapped[str] = mapped_column(String(5), nullable=False, default="19:00")

    sleep_target_hours: Mapped[float] = mapped_column(Float, nullable=False, default=8.0)
    bed_time: Mapped[str] = mapped_column(String(5), nullable=False, default="23:00")
    wake_time: Mapped[str] = mapped_column(String(5), nullable=False, default="07:00")
    bed_time_reminder_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    wake_alarm_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user: Mapped[User] = relationship("User", back_populates="settings")


class Roadmap(Base):
    __tablename__ = "roadmaps"
    __table_args__ = (UniqueConstraint("user_id", name="uq_roadmaps_user_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    steps_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    target_daily_calories: Mapped[int] = mapped_column(Integer, nullable=False)
    target_daily_water: Mapped[int] = mapped_column(Integer, nullable=False)
    target_daily_steps: Mapped[int] = mapped_column(Integer, nullable=False)
    target_sleep_hours: Mapped[float] = mapped_column(Float, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    user: Mapped[User] = relationship("User", back_populates="roadmap")


class DailyStats(Base):
    __tablename__ = "daily_stats"
    __table_args__ = (UniqueConstraint("user_id", "stat_date", name="uq_daily_stats_user_date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    stat_date: Mapped[str] = mapped_column(String(10), nullable=False, index=True)

    calories: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    steps: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    water_ml: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sleep_hours: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user: Mapped[User] = relationship("User", back_populates="daily_stats")


class FoodEntry(Base):
    __tablename__ = "food_entries"
    __table_args__ = (Index("ix_food_entries_user_timestamp", "user_id", "timestamp_ms"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    image_uri: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    calories: Mapped[float] = mapped_column(Float, nullable=False)
    protein: Mapped[float] = mapped_column(Float, nullable=False)
    fat: Mapped[float] = mapped_column(Float, nullable=False)
    carbs: Mapped[float] = mapped_column(Float, nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    recommendation: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp_ms: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    user: Mapped[User] = relationship("User", back_populates="food_entries")


class ActivityEntry(Base):
    __tablename__ = "activity_entries"
    __table_args__ = (Index("ix_activity_entries_user_timestamp", "user_id", "timestamp_ms"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    activity_type: Mapped[str] = mapped_column(String(120), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    calories_burned: Mapped[int] = mapped_column(Integer, nullable=False)
    timestamp_ms: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    user: Mapped[User] = relationship("User", back_populates="activity_entries")


class SleepEntry(Base):
    __tablename__ = "sleep_entries"
    __table_args__ = (Index("ix_sleep_entries_user_timestamp", "user_id", "timestamp_ms"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    duration_hours: Mapped[float] = mapped_column(Float, nullable=False)
    quality: Mapped[int] = mapped_column(Integer, nullable=False)
    timestamp_ms: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    user: Mapped[User] = relationship("User", back_populates="sleep_entries")


class ChatMessage(Base):
    __tablename__ = "chat_messages"
    __table_args__ = (Index("ix_chat_messages_user_created", "user_id", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    grounding_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    user: Mapped[User] = relationship("User", back_populates="chat_messages")
