import json
import logging
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from wellness.core.activity import round_half_up
from wellness.core.locale import format_number, resolve_locale
from wellness.core.tool_selector import ModelTier
from wellness.db.models import Profile, Roadmap, UserSettings
from wellness.services.llm import AIClient, LLMRequestError

logger = logging.getLogger("uvicorn.error")

STEP_STATUSES = ("pending", "in_progress", "completed")

MAX_DAILY_CALORIES = 10000
MAX_DAILY_WATER_ML = 10000
MAX_DAILY_STEPS = 100000
MIN_SLEEP_HOURS = 1.0
MAX_SLEEP_HOURS = 16.0

ROADMAP_RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "targets": {
            "type": "OBJECT",
            "properties": {
                "dailyCalories": {"type": "NUMBER"},
                "dailyWater": {"type": "NUMBER"},
                "dailySteps": {"type": "NUMBER"},
                "sleepHours": {"type": "NUMBER"},
            },
            "required": ["dailyCalories", "dailyWater", "dailySteps", "sleepHours"],
        },
        "steps": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "title": {"type": "STRING"},
                    "description": {"type": "STRING"},
                    "status": {"type": "STRING", "enum": ["pending"]},
                },
                "required": ["title", "description", "status"],
            },
        },
    },
    "required": ["targets", "steps"],
}

PROMPT_TEMPLATES = {
    "ru": {
        "intro": "Создай план оздоровления из 5 конкретных шагов для пользователя.",
        "profile_header": "Данные профиля:",
        "goal": "- Цель: {goal}",
        "body": "- Возраст: {age}, Вес: {weight}, Рост: {height}, Пол: {gender}, Активность: {activity}",
        "allergies": "- Аллергии: {value}",
        "preferences": "- Предпочтения в еде: {value}",
        "health": "- Ограничения здоровья: {value}",
        "task_targets": (
            "ЗАДАЧА 1: Рассчитай конкретные целевые показатели (targets) на день:\n"
            "- dailyCalories: Используй формулу Миффлина-Сан Жеора с учетом активности и цели.\n"
            "- dailyWater: Рекомендуемый объем воды в мл (обычно 30-35 мл на кг).\n"
            "- dailySteps: Рекомендуемое количество шагов (например, 7000-12000).\n"
            "- sleepHours: Рекомендуемая продолжительность сна (обычно 7-9)."
        ),
        "task_steps": (
            "ЗАДАЧА 2: Составь план (steps) из 5 пунктов.\n"
            "ВКЛЮЧИ в план хотя бы один пункт, касающийся РЕЖИМА СНА и восстановления, если это уместно."
        ),
        "wishes": "ОСОБЫЕ ПОЖЕЛАНИЯ ПОЛЬЗОВАТЕЛЯ (УЧТИ ОБЯЗАТЕЛЬНО): {wishes}",
        "outro": "Верни JSON объект.\nЯзык: Русский.",
    },
    "en": {
        "intro": "Create a wellness plan of 5 concrete steps for the user.",
        "profile_header": "Profile data:",
        "goal": "- Goal: {goal}",
        "body": "- Age: {age}, Weight: {weight}, Height: {height}, Gender: {gender}, Activity: {activity}",
        "allergies": "- Allergies: {value}",
        "preferences": "- Food preferences: {value}",
        "health": "- Health restrictions: {value}",
        "task_targets": (
            "TASK 1: Calculate concrete daily targets:\n"
            "- dailyCalories: Use the Mifflin-St Jeor formula adjusted for activity and goal.\n"
            "- dailyWater: Recommended water volume in ml (usually 30-35 ml per kg).\n"
            "- dailySteps: Recommended number of steps (e.g. 7000-12000).\n"
            "- sleepHours: Recommended sleep duration (usually 7-9)."
        ),
        "task_steps": (
            "TASK 2: Write a plan (steps) of 5 items.\n"
            "INCLUDE at least one item about SLEEP ROUTINE and recovery where appropriate."
        ),
        "wishes": "SPECIAL USER WISHES (MUST BE TAKEN INTO ACCOUNT): {wishes}",
        "outro": "Return a JSON object.\nLanguage: English.",
    },
}


class ProfileMissingError(LookupError):
    pass


class RoadmapTargets(BaseModel):
    daily_calories: float = Field(alias="dailyCalories", gt=0, le=MAX_DAILY_CALORIES)
    daily_water: float = Field(alias="dailyWater", gt=0, le=MAX_DAILY_WATER_ML)
    daily_steps: float = Field(alias="dailySteps", gt=0, le=MAX_DAILY_STEPS)
    sleep_hours: float = Field(alias="sleepHours", gt=0)

    @field_validator("sleep_hours")
    @classmethod
    def _round_sleep_hours(cls, value: float) -> float:
        # Stored with one decimal; the rounded value must still be a usable target.
        rounded = round(value, 1)
        if not MIN_SLEEP_HOURS <= rounded <= MAX_SLEEP_HOURS:
            raise ValueError("sleep hours out of range")
        return rounded


class RoadmapStep(BaseModel):
    title: str = Field(min_length=1)
    description: str = ""
    status: str = "pending"

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("empty title")
        return value


class RoadmapResult(BaseModel):
    targets: RoadmapTargets
    steps: list[RoadmapStep] = Field(min_length=1)


def build_roadmap_prompt(profile: Profile, wishes: Optional[str] = None, locale: Optional[str] = None) -> str:
    t = PROMPT_TEMPLATES[resolve_locale(locale)]
    lines = [
        t["intro"],
        "",
        t["profile_header"],
        t["goal"].format(goal=profile.goal),
        t["body"].format(
            age=profile.age,
            weight=format_number(profile.weight_kg),
            height=format_number(profile.height_cm),
            gender=profile.gender,
            activity=profile.activity_level,
        ),
    ]
    if profile.allergies:
        lines.append(t["allergies"].format(value=profile.allergies))
    if profile.preferences:
        lines.append(t["preferences"].format(value=profile.preferences))
    if profile.health_conditions:
        lines.append(t["health"].format(value=profile.health_conditions))
    lines.extend(["", t["task_targets"], "", t["task_steps"]])
    if wishes and wishes.strip():
        lines.extend(["", t["wishes"].format(wishes=wishes.strip())])
    lines.extend(["", t["outro"]])
    return "\n".join(lines)


def parse_roadmap_payload(raw: Any) -> Optional[RoadmapResult]:
    if not isinstance(raw, dict):
        return None
    try:
        result = RoadmapResult.model_validate(raw)
    except ValidationError:
        logger.warning("roadmap_payload_invalid keys=%s", ",".join(sorted(str(k) for k in raw)))
        return None
    # A freshly generated plan always starts untouched.
    for step in result.steps:
        step.status = "pending"
    return result


def _ensure_settings(db: Session, user_id: int) -> UserSettings:
    settings = db.query(UserSettings).filter(UserSettings.user_id == user_id).first()
    if not settings:
        settings = UserSettings(user_id=user_id)
        db.add(settings)
        db.flush()
    return settings


def apply_roadmap_outcome(db: Session, user_id: int, result: RoadmapResult) -> Roadmap:
    """Fan the generated targets out, then replace the stored roadmap.

    Writes go in a fixed order (profile goals, water goal, sleep target, roadmap), each
    committed on its own. A failure part-way leaves the earlier writes in place;
    regenerating the roadmap re-derives all four values.
    """
    targets = result.targets
    calories = max(1, round_half_up(targets.daily_calories))
    steps_goal = max(1, round_half_up(targets.daily_steps))
    water = max(1, round_half_up(targets.daily_water))
    sleep_hours = targets.sleep_hours

    profile = db.query(Profile).filter(Profile.user_id == user_id).first()
    if not profile:
        raise ProfileMissingError(user_id)
    profile.daily_calorie_goal = calories
    profile.daily_step_goal = steps_goal
    db.commit()

    settings = _ensure_settings(db, user_id)
    settings.water_goal_ml = water
    db.commit()

    settings.sleep_target_hours = sleep_hours
    db.commit()

    roadmap = db.query(Roadmap).filter(Roadmap.user_id == user_id).first()
    if not roadmap:
        roadmap = Roadmap(user_id=user_id)
        db.add(roadmap)
    roadmap.steps_json = json.dumps([step.model_dump() for step in result.steps], ensure_ascii=False)
    roadmap.target_daily_calories = calories
    roadmap.target_daily_water = water
    roadmap.target_daily_steps = steps_goal
    roadmap.target_sleep_hours = sleep_hours
    roadmap.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(roadmap)

    logger.info(
        "roadmap_applied user_id=%s calories=%s steps=%s water=%s sleep_hours=%s plan_steps=%s",
        user_id,
        calories,
        steps_goal,
        water,
        sleep_hours,
        len(result.steps),
    )
    return roadmap


def generate_roadmap(
    db: Session,
    user_id: int,
    ai_client: AIClient,
    wishes: Optional[str] = None,
    locale: Optional[str] = None,
) -> Optional[Roadmap]:
    profile = db.query(Profile).filter(Profile.user_id == user_id).first()
    if not profile:
        raise ProfileMissingError(user_id)

    prompt = build_roadmap_prompt(profile, wishes, locale)
    try:
        raw = ai_client.generate_json(prompt, ROADMAP_RESPONSE_SCHEMA, tier=ModelTier.fast)
    except (LLMRequestError, ValueError):
        logger.exception("roadmap_generation_failed user_id=%s has_wishes=%s", user_id, bool(wishes))
        return None

    result = parse_roadmap_payload(raw)
    if result is None:
        return None
    try:
        return apply_roadmap_outcome(db, user_id, result)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("roadmap_apply_failed user_id=%s", user_id)
        return None


def load_roadmap_steps(roadmap: Roadmap) -> list[dict[str, str]]:
    try:
        parsed = json.loads(roadmap.steps_json or "[]")
    except json.JSONDecodeError:
        return []
    if not isinstance(parsed, list):
        return []
    steps: list[dict[str, str]] = []
    for item in parsed:
        if not isinstance(item, dict):
            continue
        status = str(item.get("status") or "pending")
        steps.append(
            {
                "title": str(item.get("title") or ""),
                "description": str(item.get("description") or ""),
                "status": status if status in STEP_STATUSES else "pending",
            }
        )
    return steps
