from datetime import date, datetime, time, timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from wellness.core.prompt_composer import (
    RECENT_MEALS_LIMIT,
    ChatContext,
    MacroTotals,
    MealSummary,
    ProfileSnapshot,
    SleepConfig,
    SleepSnapshot,
)
from wellness.db.models import ActivityEntry, DailyStats, FoodEntry, Profile, SleepEntry, UserSettings


def today_key(today: Optional[date] = None) -> str:
    return (today or date.today()).isoformat()


def now_ms() -> int:
    return int(datetime.now().timestamp() * 1000)


def day_bounds_ms(day: date) -> tuple[int, int]:
    start = datetime.combine(day, time.min)
    end = start + timedelta(days=1)
    return int(start.timestamp() * 1000), int(end.timestamp() * 1000)


def profile_snapshot(profile: Profile) -> ProfileSnapshot:
    return ProfileSnapshot(
        name=profile.name,
        age=profile.age,
        height_cm=profile.height_cm,
        weight_kg=profile.weight_kg,
        goal=profile.goal,
        allergies=profile.allergies,
        preferences=profile.preferences,
        health_conditions=profile.health_conditions,
    )


def food_totals_for_day(db: Session, user_id: int, day: date) -> Optional[MacroTotals]:
    start_ms, end_ms = day_bounds_ms(day)
    row = (
        db.query(
            func.count(FoodEntry.id),
            func.coalesce(func.sum(FoodEntry.calories), 0.0),
            func.coalesce(func.sum(FoodEntry.protein), 0.0),
            func.coalesce(func.sum(FoodEntry.fat), 0.0),
            func.coalesce(func.sum(FoodEntry.carbs), 0.0),
        )
        .filter(FoodEntry.user_id == user_id, FoodEntry.timestamp_ms >= start_ms, FoodEntry.timestamp_ms < end_ms)
        .one()
    )
    count, calories, protein, fat, carbs = row
    if not count:
        return None
    return MacroTotals(calories=float(calories), protein=float(protein), fat=float(fat), carbs=float(carbs))


def activity_calories_for_day(db: Session, user_id: int, day: date) -> int:
    start_ms, end_ms = day_bounds_ms(day)
    total = (
        db.query(func.coalesce(func.sum(ActivityEntry.calories_burned), 0))
        .filter(
            ActivityEntry.user_id == user_id,
            ActivityEntry.timestamp_ms >= start_ms,
            ActivityEntry.timestamp_ms < end_ms,
        )
        .scalar()
    )
    return int(total or 0)


def build_chat_context(db: Session, user_id: int, today: Optional[date] = None) -> ChatContext:
    day = today or date.today()
    profile = db.query(Profile).filter(Profile.user_id == user_id).first()
    if not profile:
        return ChatContext()

    meals = (
        db.query(FoodEntry)
        .filter(FoodEntry.user_id == user_id)
        .order_by(FoodEntry.timestamp_ms.desc(), FoodEntry.id.desc())
        .limit(RECENT_MEALS_LIMIT)
        .all()
    )
    stats = (
        db.query(DailyStats)
        .filter(DailyStats.user_id == user_id, DailyStats.stat_date == today_key(day))
        .first()
    )
    latest_sleep = (
        db.query(SleepEntry)
        .filter(SleepEntry.user_id == user_id)
        .order_by(SleepEntry.timestamp_ms.desc(), SleepEntry.id.desc())
        .first()
    )
    settings = db.query(UserSettings).filter(UserSettings.user_id == user_id).first()

    return ChatContext(
        profile=profile_snapshot(profile),
        macros_today=food_totals_for_day(db, user_id, day),
        recent_meals=tuple(MealSummary(name=item.name, calories=item.calories) for item in reversed(meals)),
        water_ml=stats.water_ml if stats else 0,
        activity_calories=activity_calories_for_day(db, user_id, day),
        latest_sleep=(
            SleepSnapshot(duration_hours=latest_sleep.duration_hours, quality=latest_sleep.quality)
            if latest_sleep
            else None
        ),
        sleep_config=(
            SleepConfig(
                target_hours=settings.sleep_target_hours,
                bed_time=settings.bed_time,
                wake_time=settings.wake_time,
                wake_alarm_enabled=settings.wake_alarm_enabled,
            )
            if settings
            else None
        ),
    )
