import logging
import os
from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, UploadFile, status
from pydantic import BaseModel, Field, ValidationError, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from wellness.api.auth import get_current_user
from wellness.api.chat_history import GroundingItem, append_message, load_history
from wellness.api.profile import get_or_create_settings
from wellness.core.context_builder import build_chat_context
from wellness.core.locale import message, resolve_locale
from wellness.core.prompt_composer import build_context_block, build_voice_instruction
from wellness.core.response_interpreter import run_chat_turn
from wellness.core.roadmap_sync import ProfileMissingError, generate_roadmap
from wellness.core.voice import build_live_config
from wellness.db.models import User
from wellness.db.session import SessionLocal, get_db
from wellness.services.llm import AIClient, LLMRequestError, get_ai_client

router = APIRouter(prefix="/coach", tags=["coach"])
logger = logging.getLogger("uvicorn.error")
FOOD_IMAGE_MAX_BYTES = int(os.getenv("FOOD_IMAGE_MAX_BYTES", str(8 * 1024 * 1024)))

FOOD_ANALYSIS_PROMPTS = {
    "ru": (
        "Проанализируй это фото еды. Определи название блюда на русском языке, оцени калорийность, "
        "белки (г), жиры (г) и углеводы (г) для показанной порции. Оцени полезность от 1 до 10 "
        "(10 - самое полезное). В поле ratingDescription объясни, почему поставлена такая оценка "
        "(опираясь на состав и КБЖУ). Дай краткую рекомендацию."
    ),
    "en": (
        "Analyze this food photo. Name the dish in English and estimate calories, protein (g), fat (g) "
        "and carbs (g) for the portion shown. Rate how healthy it is from 1 to 10 (10 is the healthiest). "
        "In ratingDescription explain the rating based on ingredients and macros. Give a short recommendation."
    ),
}

FOOD_RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "name": {"type": "STRING"},
        "calories": {"type": "NUMBER"},
        "protein": {"type": "NUMBER"},
        "fat": {"type": "NUMBER"},
        "carbs": {"type": "NUMBER"},
        "rating": {"type": "NUMBER"},
        "ratingDescription": {"type": "STRING"},
        "recommendation": {"type": "STRING"},
    },
    "required": ["name", "calories", "protein", "fat", "carbs", "rating", "ratingDescription", "recommendation"],
}


class CoachChatRequest(BaseModel):
    message: str = Field(min_length=1, max_length=4000)
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)


class CoachChatResponse(BaseModel):
    reply: str
    kind: str
    grounding: list[GroundingItem] = []
    alarm_time: Optional[str] = None
    plan_update_scheduled: bool = False
    tools: list[str] = []


class FoodAnalysis(BaseModel):
    name: str = Field(min_length=1)
    calories: float = Field(ge=0)
    protein: float = Field(ge=0)
    fat: float = Field(ge=0)
    carbs: float = Field(ge=0)
    rating: int
    rating_description: str = Field(default="", alias="ratingDescription")
    recommendation: str = ""

    model_config = {"populate_by_name": True}

    @field_validator("rating", mode="before")
    @classmethod
    def _clamp_rating(cls, value: Any) -> int:
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise ValueError("rating must be a number")
        return max(1, min(10, int(round(number))))


class LiveConfigResponse(BaseModel):
    model: str
    voice_name: str
    system_instruction: str
    input_sample_rate: int
    output_sample_rate: int


def refresh_plan_from_chat(user_id: int, wishes: str, ai_client: AIClient) -> None:
    """Regenerate the roadmap after the coach agreed to a plan change, then post the outcome to the chat."""
    db = SessionLocal()
    try:
        try:
            updated = generate_roadmap(db, user_id, ai_client, wishes=wishes)
        except ProfileMissingError:
            updated = None
        except SQLAlchemyError:
            db.rollback()
            logger.exception("plan_refresh_failed user_id=%s", user_id)
            updated = None
        notice = message("plan_updated") if updated is not None else message("plan_update_failed")
        append_message(db, user_id, "system", notice)
        logger.info("plan_refresh_finished user_id=%s updated=%s", user_id, updated is not None)
    finally:
        db.close()


@router.post("/chat", response_model=CoachChatResponse)
def coach_chat(
    payload: CoachChatRequest,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    ai_client: AIClient = Depends(get_ai_client),
) -> CoachChatResponse:
    location = (payload.lat, payload.lng) if payload.lat is not None and payload.lng is not None else None
    history = load_history(db, user.id)
    context_block = build_context_block(build_chat_context(db, user.id))

    result = run_chat_turn(
        user_message=payload.message,
        history=history,
        ai_client=ai_client,
        context_block=context_block,
        location=location,
        user_id=user.id,
    )

    if result.kind == "alarm" and result.alarm_time:
        settings = get_or_create_settings(db, user.id)
        settings.wake_time = result.alarm_time
        settings.wake_alarm_enabled = True
        db.commit()
        logger.info("alarm_set user_id=%s wake_time=%s", user.id, result.alarm_time)

    append_message(db, user.id, "user", payload.message)
    append_message(db, user.id, "model", result.display_text, grounding=result.grounding)

    plan_update_scheduled = False
    if result.directive is not None:
        background_tasks.add_task(refresh_plan_from_chat, user.id, result.directive.payload, ai_client)
        plan_update_scheduled = True
        logger.info("plan_refresh_scheduled user_id=%s", user.id)

    return CoachChatResponse(
        reply=result.display_text,
        kind=result.kind,
        grounding=[GroundingItem(kind=ref.kind, uri=ref.uri, title=ref.title) for ref in result.grounding],
        alarm_time=result.alarm_time,
        plan_update_scheduled=plan_update_scheduled,
        tools=sorted(cap.value for cap in result.selection.capabilities) if result.selection else [],
    )


@router.post("/analyze-food", response_model=FoodAnalysis, response_model_by_alias=False)
def analyze_food(
    image: UploadFile = File(...),
    user: User = Depends(get_current_user),
    ai_client: AIClient = Depends(get_ai_client),
) -> FoodAnalysis:
    if not image.content_type or not image.content_type.startswith("image/"):
        raise HTTPException(status_code=400, detail="Only image uploads are supported.")
    image_bytes = image.file.read()
    if not image_bytes:
        raise HTTPException(status_code=400, detail="Uploaded image is empty.")
    if len(image_bytes) > FOOD_IMAGE_MAX_BYTES:
        raise HTTPException(
            status_code=400,
            detail=f"Image too large. Max size is {FOOD_IMAGE_MAX_BYTES // (1024 * 1024)}MB.",
        )

    try:
        raw = ai_client.analyze_image(
            image_bytes,
            image.content_type,
            FOOD_ANALYSIS_PROMPTS[resolve_locale()],
            FOOD_RESPONSE_SCHEMA,
        )
    except (LLMRequestError, ValueError):
        logger.exception("food_analysis_failed user_id=%s", user.id)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=message("food_analysis_failed"))

    try:
        analysis = FoodAnalysis.model_validate(raw)
    except ValidationError as exc:
        logger.warning("food_analysis_invalid user_id=%s errors=%s", user.id, exc.error_count())
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=message("food_analysis_failed"))
    logger.info("food_analyzed user_id=%s calories=%s rating=%s", user.id, analysis.calories, analysis.rating)
    return analysis


@router.get("/live-config", response_model=LiveConfigResponse)
def live_config(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> LiveConfigResponse:
    context_block = build_context_block(build_chat_context(db, user.id))
    config = build_live_config(build_voice_instruction(context_block))
    return LiveConfigResponse(
        model=config.model,
        voice_name=config.voice_name,
        system_instruction=config.system_instruction,
        input_sample_rate=config.input_sample_rate,
        output_sample_rate=config.output_sample_rate,
    )
