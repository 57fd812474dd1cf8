from datetime import date
from enum import Enum
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from wellness.api.auth import get_current_user
from wellness.api.dashboard import upsert_today_stats
from wellness.api.profile import require_profile
from wellness.core.activity import activity_label, estimate_calories, round_half_up
from wellness.core.context_builder import day_bounds_ms, food_totals_for_day, now_ms
from wellness.core.locale import message
from wellness.db.models import ActivityEntry, FoodEntry, SleepEntry, User
from wellness.db.session import get_db

router = APIRouter(prefix="/me", tags=["daily-log"])


class ActivityKind(str, Enum):
    run = "run"
    walk = "walk"
    gym = "gym"
    yoga = "yoga"
    cycle = "cycle"
    swim = "swim"


class IntensityLevel(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


class FoodEntryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    image_uri: Optional[str] = None
    calories: float = Field(ge=0)
    protein: float = Field(default=0, ge=0)
    fat: float = Field(default=0, ge=0)
    carbs: float = Field(default=0, ge=0)
    rating: int = Field(default=5, ge=1, le=10)
    recommendation: str = Field(default="", max_length=4000)
    timestamp_ms: Optional[int] = Field(default=None, ge=0)


class FoodEntryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    image_uri: Optional[str] = None
    calories: Optional[float] = Field(default=None, ge=0)
    protein: Optional[float] = Field(default=None, ge=0)
    fat: Optional[float] = Field(default=None, ge=0)
    carbs: Optional[float] = Field(default=None, ge=0)
    rating: Optional[int] = Field(default=None, ge=1, le=10)
    recommendation: Optional[str] = Field(default=None, max_length=4000)


class FoodEntryItem(BaseModel):
    id: int
    name: str
    image_uri: Optional[str] = None
    calories: float
    protein: float
    fat: float
    carbs: float
    rating: int
    recommendation: str
    timestamp_ms: int


class FoodListResponse(BaseModel):
    items: list[FoodEntryItem]


class ActivityCreate(BaseModel):
    activity: ActivityKind
    intensity: IntensityLevel = IntensityLevel.medium
    duration_minutes: int = Field(gt=0, le=1440)
    calories_burned: Optional[int] = Field(default=None, ge=0)


class ActivityUpdate(BaseModel):
    activity: Optional[ActivityKind] = None
    intensity: Optional[IntensityLevel] = None
    duration_minutes: Optional[int] = Field(default=None, gt=0, le=1440)
    calories_burned: Optional[int] = Field(default=None, ge=0)


class ActivityItem(BaseModel):
    id: int
    activity_type: str
    duration_minutes: int
    calories_burned: int
    timestamp_ms: int


class ActivityListResponse(BaseModel):
    items: list[ActivityItem]


class SleepCreate(BaseModel):
    duration_hours: float = Field(gt=0, le=24)
    quality: int = Field(ge=1, le=10)


class SleepUpdate(BaseModel):
    duration_hours: Optional[float] = Field(default=None, gt=0, le=24)
    quality: Optional[int] = Field(default=None, ge=1, le=10)


class SleepItem(BaseModel):
    id: int
    duration_hours: float
    quality: int
    timestamp_ms: int


class SleepListResponse(BaseModel):
    items: list[SleepItem]


def _food_item(row: FoodEntry) -> FoodEntryItem:
    return FoodEntryItem(
        id=row.id,
        name=row.name,
        image_uri=row.image_uri,
        calories=row.calories,
        protein=row.protein,
        fat=row.fat,
        carbs=row.carbs,
        rating=row.rating,
        recommendation=row.recommendation,
        timestamp_ms=row.timestamp_ms,
    )


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="date must be YYYY-MM-DD")


def _refresh_today_calories(db: Session, user_id: int) -> None:
    totals = food_totals_for_day(db, user_id, date.today())
    upsert_today_stats(db, user_id, calories=totals.calories if totals else 0.0)


def _owned(db: Session, model, user_id: int, entry_id: int):
    row = db.query(model).filter(model.id == entry_id, model.user_id == user_id).first()
    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=message("entry_not_found"))
    return row


@router.get("/food", response_model=FoodListResponse)
def list_food(
    day: Optional[str] = Query(default=None, alias="date"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> FoodListResponse:
    query = db.query(FoodEntry).filter(FoodEntry.user_id == user.id)
    selected = _parse_date(day)
    if selected:
        start_ms, end_ms = day_bounds_ms(selected)
        query = query.filter(FoodEntry.timestamp_ms >= start_ms, FoodEntry.timestamp_ms < end_ms)
    rows = query.order_by(FoodEntry.timestamp_ms.desc(), FoodEntry.id.desc()).all()
    return FoodListResponse(items=[_food_item(row) for row in rows])


@router.post("/food", response_model=FoodEntryItem, status_code=status.HTTP_201_CREATED)
def create_food(
    payload: FoodEntryCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> FoodEntryItem:
    row = FoodEntry(
        user_id=user.id,
        name=payload.name.strip(),
        image_uri=payload.image_uri,
        calories=payload.calories,
        protein=payload.protein,
        fat=payload.fat,
        carbs=payload.carbs,
        rating=payload.rating,
        recommendation=payload.recommendation,
        timestamp_ms=payload.timestamp_ms if payload.timestamp_ms is not None else now_ms(),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    _refresh_today_calories(db, user.id)
    return _food_item(row)


@router.put("/food/{entry_id}", response_model=FoodEntryItem)
def update_food(
    entry_id: int,
    payload: FoodEntryUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> FoodEntryItem:
    row = _owned(db, FoodEntry, user.id, entry_id)
    for name, value in payload.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(row, name, value)
    db.commit()
    db.refresh(row)
    _refresh_today_calories(db, user.id)
    return _food_item(row)


@router.delete("/food/{entry_id}")
def delete_food(
    entry_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, bool]:
    row = _owned(db, FoodEntry, user.id, entry_id)
    db.delete(row)
    db.commit()
    _refresh_today_calories(db, user.id)
    return {"ok": True}


def _activity_item(row: ActivityEntry) -> ActivityItem:
    return ActivityItem(
        id=row.id,
        activity_type=row.activity_type,
        duration_minutes=row.duration_minutes,
        calories_burned=row.calories_burned,
        timestamp_ms=row.timestamp_ms,
    )


def _sleep_item(row: SleepEntry) -> SleepItem:
    return SleepItem(id=row.id, duration_hours=row.duration_hours, quality=row.quality, timestamp_ms=row.timestamp_ms)


def _refresh_today_sleep(db: Session, user_id: int) -> None:
    start_ms, end_ms = day_bounds_ms(date.today())
    latest = (
        db.query(SleepEntry)
        .filter(SleepEntry.user_id == user_id, SleepEntry.timestamp_ms >= start_ms, SleepEntry.timestamp_ms < end_ms)
        .order_by(SleepEntry.timestamp_ms.desc(), SleepEntry.id.desc())
        .first()
    )
    upsert_today_stats(db, user_id, sleep_hours=latest.duration_hours if latest else 0.0)


@router.post("/activity", response_model=ActivityItem, status_code=status.HTTP_201_CREATED)
def log_activity(
    payload: ActivityCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ActivityItem:
    profile = require_profile(db, user.id)
    calories = payload.calories_burned
    if calories is None:
        calories = estimate_calories(
            payload.activity.value, payload.intensity.value, profile.weight_kg, payload.duration_minutes
        )
    row = ActivityEntry(
        user_id=user.id,
        activity_type=activity_label(payload.activity.value, payload.intensity.value),
        duration_minutes=payload.duration_minutes,
        calories_burned=calories,
        timestamp_ms=now_ms(),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return _activity_item(row)


@router.get("/activity", response_model=ActivityListResponse)
def list_activity(
    day: Optional[str] = Query(default=None, alias="date"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ActivityListResponse:
    query = db.query(ActivityEntry).filter(ActivityEntry.user_id == user.id)
    selected = _parse_date(day)
    if selected:
        start_ms, end_ms = day_bounds_ms(selected)
        query = query.filter(ActivityEntry.timestamp_ms >= start_ms, ActivityEntry.timestamp_ms < end_ms)
    rows = query.order_by(ActivityEntry.timestamp_ms.desc(), ActivityEntry.id.desc()).all()
    return ActivityListResponse(items=[_activity_item(row) for row in rows])


@router.put("/activity/{entry_id}", response_model=ActivityItem)
def update_activity(
    entry_id: int,
    payload: ActivityUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ActivityItem:
    """Edit a logged activity.

    Changing the activity re-estimates calories from the profile weight; changing only the
    duration scales the stored calories. An explicit ``calories_burned`` always wins.
    """
    row = _owned(db, ActivityEntry, user.id, entry_id)
    duration = payload.duration_minutes or row.duration_minutes
    calories = payload.calories_burned
    if payload.activity is not None:
        intensity = (payload.intensity or IntensityLevel.medium).value
        row.activity_type = activity_label(payload.activity.value, intensity)
        if calories is None:
            profile = require_profile(db, user.id)
            calories = estimate_calories(payload.activity.value, intensity, profile.weight_kg, duration)
    elif calories is None and duration != row.duration_minutes:
        calories = round_half_up(row.calories_burned * duration / row.duration_minutes)
    row.duration_minutes = duration
    if calories is not None:
        row.calories_burned = calories
    db.commit()
    db.refresh(row)
    return _activity_item(row)


@router.delete("/activity/{entry_id}")
def delete_activity(
    entry_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, bool]:
    db.delete(_owned(db, ActivityEntry, user.id, entry_id))
    db.commit()
    return {"ok": True}


@router.post("/sleep", response_model=SleepItem, status_code=status.HTTP_201_CREATED)
def log_sleep(
    payload: SleepCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> SleepItem:
    row = SleepEntry(
        user_id=user.id,
        duration_hours=payload.duration_hours,
        quality=payload.quality,
        timestamp_ms=now_ms(),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    upsert_today_stats(db, user.id, sleep_hours=payload.duration_hours)
    return _sleep_item(row)


@router.get("/sleep", response_model=SleepListResponse)
def list_sleep(
    limit: int = Query(default=30, ge=1, le=365),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> SleepListResponse:
    rows = (
        db.query(SleepEntry)
        .filter(SleepEntry.user_id == user.id)
        .order_by(SleepEntry.timestamp_ms.desc(), SleepEntry.id.desc())
        .limit(limit)
        .all()
    )
    return SleepListResponse(items=[_sleep_item(row) for row in rows])


@router.put("/sleep/{entry_id}", response_model=SleepItem)
def update_sleep(
    entry_id: int,
    payload: SleepUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> SleepItem:
    row = _owned(db, SleepEntry, user.id, entry_id)
    for name, value in payload.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(row, name, value)
    db.commit()
    db.refresh(row)
    _refresh_today_sleep(db, user.id)
    return _sleep_item(row)


@router.delete("/sleep/{entry_id}")
def delete_sleep(
    entry_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, bool]:
    db.delete(_owned(db, SleepEntry, user.id, entry_id))
    db.commit()
    _refresh_today_sleep(db, user.id)
    return {"ok": True}
