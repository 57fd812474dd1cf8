from dataclasses import asdict
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from wellness.api.auth import get_current_user
from wellness.api.profile import get_or_create_settings
from wellness.core.achievements import AchievementState, DaySnapshot, evaluate_achievements
from wellness.core.context_builder import today_key
from wellness.core.roadmap_sync import load_roadmap_steps
from wellness.db.models import DailyStats, Profile, Roadmap, User
from wellness.db.session import get_db

router = APIRouter(prefix="/me", tags=["dashboard"])

HISTORY_DAYS = 30


class DailyStatsItem(BaseModel):
    stat_date: str
    calories: float
    steps: int
    water_ml: int
    sleep_hours: float


class DailyStatsUpdate(BaseModel):
    calories: Optional[float] = Field(default=None, ge=0)
    steps: Optional[int] = Field(default=None, ge=0)
    water_ml: Optional[int] = Field(default=None, ge=0)
    sleep_hours: Optional[float] = Field(default=None, ge=0, le=24)


class StepsUpdate(BaseModel):
    steps: int = Field(ge=0)


class WaterUpdate(BaseModel):
    water_ml: int = Field(ge=0)


class SleepHoursUpdate(BaseModel):
    sleep_hours: float = Field(ge=0, le=24)


class HistoryResponse(BaseModel):
    items: list[DailyStatsItem]


class AchievementItem(BaseModel):
    achievement_id: str
    title: str
    description: str
    icon: str
    unlocked: bool
    current: Optional[float] = None
    maximum: Optional[float] = None


class AchievementsResponse(BaseModel):
    items: list[AchievementItem]


def _to_item(row: Optional[DailyStats], stat_date: str) -> DailyStatsItem:
    if row is None:
        return DailyStatsItem(stat_date=stat_date, calories=0.0, steps=0, water_ml=0, sleep_hours=0.0)
    return DailyStatsItem(
        stat_date=row.stat_date,
        calories=row.calories,
        steps=row.steps,
        water_ml=row.water_ml,
        sleep_hours=row.sleep_hours,
    )


def upsert_today_stats(db: Session, user_id: int, **fields: Any) -> DailyStats:
    key = today_key()
    row = db.query(DailyStats).filter(DailyStats.user_id == user_id, DailyStats.stat_date == key).first()
    if not row:
        row = DailyStats(user_id=user_id, stat_date=key, calories=0.0, steps=0, water_ml=0, sleep_hours=0.0)
        db.add(row)
    for name, value in fields.items():
        if value is not None:
            setattr(row, name, value)
    db.commit()
    db.refresh(row)
    return row


def _history_rows(db: Session, user_id: int, limit: int = HISTORY_DAYS) -> list[DailyStats]:
    rows = (
        db.query(DailyStats)
        .filter(DailyStats.user_id == user_id)
        .order_by(DailyStats.stat_date.desc())
        .limit(limit)
        .all()
    )
    return list(reversed(rows))


@router.get("/stats/today", response_model=DailyStatsItem)
def get_today_stats(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> DailyStatsItem:
    key = today_key()
    row = db.query(DailyStats).filter(DailyStats.user_id == user.id, DailyStats.stat_date == key).first()
    return _to_item(row, key)


@router.put("/stats/today", response_model=DailyStatsItem)
def put_today_stats(
    payload: DailyStatsUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> DailyStatsItem:
    row = upsert_today_stats(db, user.id, **payload.model_dump())
    return _to_item(row, row.stat_date)


@router.put("/steps/today", response_model=DailyStatsItem)
def put_today_steps(
    payload: StepsUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> DailyStatsItem:
    row = upsert_today_stats(db, user.id, steps=payload.steps)
    return _to_item(row, row.stat_date)


@router.put("/water/today", response_model=DailyStatsItem)
def put_today_water(
    payload: WaterUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> DailyStatsItem:
    row = upsert_today_stats(db, user.id, water_ml=payload.water_ml)
    return _to_item(row, row.stat_date)


@router.put("/sleep/today", response_model=DailyStatsItem)
def put_today_sleep(
    payload: SleepHoursUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> DailyStatsItem:
    row = upsert_today_stats(db, user.id, sleep_hours=payload.sleep_hours)
    return _to_item(row, row.stat_date)


@router.get("/stats/history", response_model=HistoryResponse)
def get_history(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> HistoryResponse:
    return HistoryResponse(items=[_to_item(row, row.stat_date) for row in _history_rows(db, user.id)])


def _snapshot(row: DailyStats) -> DaySnapshot:
    return DaySnapshot(
        stat_date=row.stat_date,
        calories=row.calories,
        steps=row.steps,
        water_ml=row.water_ml,
        sleep_hours=row.sleep_hours,
    )


@router.get("/achievements", response_model=AchievementsResponse)
def get_achievements(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> AchievementsResponse:
    key = today_key()
    history = _history_rows(db, user.id)
    today_row = next((row for row in history if row.stat_date == key), None)
    profile = db.query(Profile).filter(Profile.user_id == user.id).first()
    settings = get_or_create_settings(db, user.id)
    roadmap = db.query(Roadmap).filter(Roadmap.user_id == user.id).first()

    state = AchievementState(
        today=_snapshot(today_row) if today_row else DaySnapshot(stat_date=key),
        calorie_goal=profile.daily_calorie_goal if profile else 0,
        step_goal=profile.daily_step_goal if profile else 0,
        water_goal_ml=settings.water_goal_ml,
        sleep_target_hours=settings.sleep_target_hours,
        wake_time=settings.wake_time,
        wake_alarm_enabled=settings.wake_alarm_enabled,
        has_roadmap=bool(roadmap and load_roadmap_steps(roadmap)),
        history=tuple(_snapshot(row) for row in history),
    )
    return AchievementsResponse(
        items=[AchievementItem(**asdict(item)) for item in evaluate_achievements(state)]
    )
