import json
import logging
from datetime import datetime
from enum import Enum
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from wellness.api.auth import get_current_user
from wellness.core.locale import message
from wellness.core.roadmap_sync import ProfileMissingError, generate_roadmap, load_roadmap_steps
from wellness.db.models import Profile, Roadmap, User
from wellness.db.session import get_db
from wellness.services.llm import AIClient, get_ai_client

router = APIRouter(prefix="/me/roadmap", tags=["roadmap"])
logger = logging.getLogger("uvicorn.error")


class StepStatus(str, Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"


class RoadmapStepItem(BaseModel):
    title: str
    description: str
    status: StepStatus


class RoadmapTargetsItem(BaseModel):
    daily_calories: int
    daily_water: int
    daily_steps: int
    sleep_hours: float


class RoadmapResponse(BaseModel):
    steps: list[RoadmapStepItem]
    targets: RoadmapTargetsItem
    updated_at: datetime


class RoadmapEnvelope(BaseModel):
    roadmap: Optional[RoadmapResponse] = None
    generated: bool = False
    error: Optional[str] = None


class RoadmapGenerateRequest(BaseModel):
    wishes: Optional[str] = Field(default=None, max_length=1000)


class StepStatusUpdate(BaseModel):
    status: StepStatus


def to_roadmap_response(row: Roadmap) -> RoadmapResponse:
    return RoadmapResponse(
        steps=[RoadmapStepItem(**step) for step in load_roadmap_steps(row)],
        targets=RoadmapTargetsItem(
            daily_calories=row.target_daily_calories,
            daily_water=row.target_daily_water,
            daily_steps=row.target_daily_steps,
            sleep_hours=row.target_sleep_hours,
        ),
        updated_at=row.updated_at,
    )


def _load_roadmap(db: Session, user_id: int) -> Optional[Roadmap]:
    row = db.query(Roadmap).filter(Roadmap.user_id == user_id).first()
    if row and not load_roadmap_steps(row):
        return None
    return row


@router.get("", response_model=RoadmapEnvelope)
def get_roadmap(
    auto_generate: bool = Query(default=True),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ai_client: AIClient = Depends(get_ai_client),
) -> RoadmapEnvelope:
    row = _load_roadmap(db, user.id)
    if row:
        return RoadmapEnvelope(roadmap=to_roadmap_response(row))
    if not auto_generate:
        return RoadmapEnvelope()
    has_profile = db.query(Profile.id).filter(Profile.user_id == user.id).first() is not None
    if not has_profile:
        return RoadmapEnvelope(error=message("profile_required"))

    generated = generate_roadmap(db, user.id, ai_client)
    if generated is None:
        return RoadmapEnvelope(error=message("roadmap_failed"))
    return RoadmapEnvelope(roadmap=to_roadmap_response(generated), generated=True)


@router.post("/generate", response_model=RoadmapResponse)
def regenerate_roadmap(
    payload: RoadmapGenerateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ai_client: AIClient = Depends(get_ai_client),
) -> RoadmapResponse:
    try:
        generated = generate_roadmap(db, user.id, ai_client, wishes=payload.wishes)
    except ProfileMissingError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=message("profile_required"))
    if generated is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=message("roadmap_failed"))
    return to_roadmap_response(generated)


@router.put("/steps/{index}", response_model=RoadmapResponse)
def update_step_status(
    payload: StepStatusUpdate,
    index: int = Path(..., ge=0),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> RoadmapResponse:
    row = _load_roadmap(db, user.id)
    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Roadmap not found")
    steps = load_roadmap_steps(row)
    if index >= len(steps):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Roadmap step not found")
    steps[index]["status"] = payload.status.value
    row.steps_json = json.dumps(steps, ensure_ascii=False)
    db.commit()
    db.refresh(row)
    logger.info("roadmap_step_updated user_id=%s index=%s status=%s", user.id, index, payload.status.value)
    return to_roadmap_response(row)
