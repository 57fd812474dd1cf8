import re
from datetime import datetime
from enum import Enum
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from wellness.api.auth import get_current_user
from wellness.core.locale import message
from wellness.core.roadmap_sync import MAX_DAILY_CALORIES, MAX_DAILY_STEPS, MAX_DAILY_WATER_ML
from wellness.db.models import Profile, User, UserSettings
from wellness.db.session import get_db

router = APIRouter(prefix="/me", tags=["profile"])

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class Gender(str, Enum):
    male = "male"
    female = "female"
    other = "other"


class Goal(str, Enum):
    lose_weight = "lose_weight"
    gain_muscle = "gain_muscle"
    maintain = "maintain"


class ActivityLevel(str, Enum):
    sedentary = "sedentary"
    active = "active"
    athletic = "athletic"


class ProfilePayload(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    height_cm: float = Field(gt=50, le=272)
    weight_kg: float = Field(gt=20, le=400)
    age: int = Field(ge=10, le=120)
    gender: Gender
    goal: Goal
    activity_level: ActivityLevel
    daily_calorie_goal: int = Field(gt=0, le=MAX_DAILY_CALORIES)
    daily_step_goal: int = Field(gt=0, le=MAX_DAILY_STEPS)
    allergies: Optional[str] = Field(default=None, max_length=500)
    preferences: Optional[str] = Field(default=None, max_length=500)
    health_conditions: Optional[str] = Field(default=None, max_length=500)


class ProfileResponse(ProfilePayload):
    updated_at: Optional[datetime] = None


class ReminderConfig(BaseModel):
    enabled: bool = False
    time: str

    @field_validator("time")
    @classmethod
    def _valid_time(cls, value: str) -> str:
        if not TIME_PATTERN.match(value):
            raise ValueError("time must be HH:MM")
        return value


class MealReminders(BaseModel):
    breakfast: ReminderConfig
    lunch: ReminderConfig
    dinner: ReminderConfig


class SleepSettings(BaseModel):
    target_hours: float = Field(gt=0, le=16)
    bed_time: str
    wake_time: str
    bed_time_reminder_enabled: bool = False
    wake_alarm_enabled: bool = False

    @field_validator("bed_time", "wake_time")
    @classmethod
    def _valid_time(cls, value: str) -> str:
        if not TIME_PATTERN.match(value):
            raise ValueError("time must be HH:MM")
        return value


class SettingsPayload(BaseModel):
    water_goal_ml: int = Field(gt=0, le=MAX_DAILY_WATER_ML)
    meal_reminders: MealReminders
    sleep: SleepSettings


def get_or_create_settings(db: Session, user_id: int) -> UserSettings:
    settings = db.query(UserSettings).filter(UserSettings.user_id == user_id).first()
    if not settings:
        settings = UserSettings(user_id=user_id)
        db.add(settings)
        db.commit()
        db.refresh(settings)
    return settings


def require_profile(db: Session, user_id: int) -> Profile:
    profile = db.query(Profile).filter(Profile.user_id == user_id).first()
    if not profile:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=message("profile_required"))
    return profile


def settings_to_payload(row: UserSettings) -> SettingsPayload:
    return SettingsPayload(
        water_goal_ml=row.water_goal_ml,
        meal_reminders=MealReminders(
            breakfast=ReminderConfig(enabled=row.breakfast_reminder_enabled, time=row.breakfast_reminder_time),
            lunch=ReminderConfig(enabled=row.lunch_reminder_enabled, time=row.lunch_reminder_time),
            dinner=ReminderConfig(enabled=row.dinner_reminder_enabled, time=row.dinner_reminder_time),
        ),
        sleep=SleepSettings(
            target_hours=row.sleep_target_hours,
            bed_time=row.bed_time,
            wake_time=row.wake_time,
            bed_time_reminder_enabled=row.bed_time_reminder_enabled,
            wake_alarm_enabled=row.wake_alarm_enabled,
        ),
    )


def _profile_response(row: Profile) -> ProfileResponse:
    return ProfileResponse(
        name=row.name,
        height_cm=row.height_cm,
        weight_kg=row.weight_kg,
        age=row.age,
        gender=Gender(row.gender),
        goal=Goal(row.goal),
        activity_level=ActivityLevel(row.activity_level),
        daily_calorie_goal=row.daily_calorie_goal,
        daily_step_goal=row.daily_step_goal,
        allergies=row.allergies,
        preferences=row.preferences,
        health_conditions=row.health_conditions,
        updated_at=row.updated_at,
    )


@router.get("/profile", response_model=ProfileResponse)
def get_profile(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> ProfileResponse:
    return _profile_response(require_profile(db, user.id))


@router.put("/profile", response_model=ProfileResponse)
def put_profile(
    payload: ProfilePayload,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ProfileResponse:
    row = db.query(Profile).filter(Profile.user_id == user.id).first()
    if not row:
        row = Profile(user_id=user.id)
        db.add(row)
    row.name = payload.name.strip()
    row.height_cm = payload.height_cm
    row.weight_kg = payload.weight_kg
    row.age = payload.age
    row.gender = payload.gender.value
    row.goal = payload.goal.value
    row.activity_level = payload.activity_level.value
    row.daily_calorie_goal = payload.daily_calorie_goal
    row.daily_step_goal = payload.daily_step_goal
    row.allergies = (payload.allergies or "").strip() or None
    row.preferences = (payload.preferences or "").strip() or None
    row.health_conditions = (payload.health_conditions or "").strip() or None
    db.commit()
    db.refresh(row)
    return _profile_response(row)


@router.get("/settings", response_model=SettingsPayload)
def get_settings(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> SettingsPayload:
    return settings_to_payload(get_or_create_settings(db, user.id))


@router.put("/settings", response_model=SettingsPayload)
def put_settings(
    payload: SettingsPayload,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> SettingsPayload:
    row = get_or_create_settings(db, user.id)
    row.water_goal_ml = payload.water_goal_ml
    row.breakfast_reminder_enabled = payload.meal_reminders.breakfast.enabled
    row.breakfast_reminder_time = payload.meal_reminders.breakfast.time
    row.lunch_reminder_enabled = payload.meal_reminders.lunch.enabled
    row.lunch_reminder_time = payload.meal_reminders.lunch.time
    row.dinner_reminder_enabled = payload.meal_reminders.dinner.enabled
    row.dinner_reminder_time = payload.meal_reminders.dinner.time
    row.sleep_target_hours = payload.sleep.target_hours
    row.bed_time = payload.sleep.bed_time
    row.wake_time = payload.sleep.wake_time
    row.bed_time_reminder_enabled = payload.sleep.bed_time_reminder_enabled
    row.wake_alarm_enabled = payload.sleep.wake_alarm_enabled
    db.commit()
    db.refresh(row)
    return settings_to_payload(row)
