import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from wellness.api.auth import get_current_user
from wellness.api.profile import require_profile
from wellness.core.context_builder import today_key
from wellness.core.locale import message
from wellness.core.route_engine import (
    AddressRequiredError,
    LocationUnavailableError,
    WalkMode,
    normalize_address,
    steps_needed,
    suggest_routes,
)
from wellness.db.models import DailyStats, User
from wellness.db.session import get_db
from wellness.services.llm import AIClient, get_ai_client

router = APIRouter(prefix="/walks", tags=["walks"])
logger = logging.getLogger("uvicorn.error")


class AddressValidationRequest(BaseModel):
    address: str = Field(min_length=1, max_length=300)


class AddressValidationResponse(BaseModel):
    address: Optional[str] = None
    message: Optional[str] = None


class WalkSuggestRequest(BaseModel):
    mode: WalkMode
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)
    address: Optional[str] = Field(default=None, max_length=300)
    address_verified: bool = False
    steps: Optional[int] = Field(default=None, ge=0)


class RouteItem(BaseModel):
    title: str
    description: str
    estimated_steps: int
    duration_minutes: int
    distance_km: float
    start_location: str
    end_location: str
    is_round_trip: bool
    yandex_url: str
    google_url: str


class WalkSuggestResponse(BaseModel):
    mode: WalkMode
    steps: int
    target_km: float
    start: str
    routes: list[RouteItem]
    error: Optional[str] = None


def _remaining_steps(db: Session, user_id: int) -> int:
    profile = require_profile(db, user_id)
    stats = (
        db.query(DailyStats)
        .filter(DailyStats.user_id == user_id, DailyStats.stat_date == today_key())
        .first()
    )
    return steps_needed(profile.daily_step_goal, stats.steps if stats else 0)


@router.post("/validate-address", response_model=AddressValidationResponse)
def validate_address(
    payload: AddressValidationRequest,
    user: User = Depends(get_current_user),
    ai_client: AIClient = Depends(get_ai_client),
) -> AddressValidationResponse:
    normalized = normalize_address(ai_client, payload.address)
    if normalized is None:
        return AddressValidationResponse(message=message("address_not_found"))
    return AddressValidationResponse(address=normalized)


@router.post("/suggest", response_model=WalkSuggestResponse)
def suggest_walks(
    payload: WalkSuggestRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ai_client: AIClient = Depends(get_ai_client),
) -> WalkSuggestResponse:
    steps = payload.steps if payload.steps is not None else _remaining_steps(db, user.id)

    address = payload.address
    if payload.mode == WalkMode.custom_address and address and not payload.address_verified:
        address = normalize_address(ai_client, address)
        if address is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message("address_not_found"))

    try:
        suggestion = suggest_routes(
            ai_client,
            steps,
            payload.mode,
            lat=payload.lat,
            lng=payload.lng,
            address=address,
            user_id=user.id,
        )
    except LocationUnavailableError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message("location_unavailable"))
    except AddressRequiredError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message("address_required"))

    logger.info(
        "walk_routes_suggested user_id=%s mode=%s steps=%s routes=%s",
        user.id,
        payload.mode.value,
        suggestion.steps,
        len(suggestion.routes),
    )
    return WalkSuggestResponse(
        mode=suggestion.mode,
        steps=suggestion.steps,
        target_km=suggestion.target_km,
        start=suggestion.start,
        routes=[
            RouteItem(
                title=option.route.title,
                description=option.route.description,
                estimated_steps=option.route.estimated_steps,
                duration_minutes=option.route.duration_minutes,
                distance_km=option.route.distance_km,
                start_location=option.route.start_location,
                end_location=option.route.end_location,
                is_round_trip=option.route.is_round_trip,
                yandex_url=option.yandex_url,
                google_url=option.google_url,
            )
            for option in suggestion.routes
        ],
        error=None if suggestion.routes else message("routes_failed"),
    )
