from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from wellness.core.locale import format_number, resolve_locale

PERSONA = {
    "ru": (
        "Ты полезный и мотивирующий тренер по питанию, сну и фитнесу. Отвечай кратко и на русском языке. "
        "Если используешь поиск или карты, используй эту информацию для ответа. "
        "Если пользователь просит поставить будильник, подтверди, что ты обновил настройки "
        "(но само действие выполняется приложением)."
    ),
    "en": (
        "You are a helpful and motivating nutrition, sleep and fitness coach. Reply briefly and in English. "
        "If you use search or maps, use that information in your answer. "
        "If the user asks to set an alarm, confirm that you updated the settings "
        "(the app performs the action itself)."
    ),
}

PLAN_DIRECTIVE_INSTRUCTION = {
    "ru": (
        "Если пользователь просит изменить план или стратегию (roadmap) и ты согласен с изменениями, "
        "в конце своего ответа добавь специальный тег: [UPDATE_PLAN: описание изменений]. "
        "Приложение увидит этот тег и обновит план."
    ),
    "en": (
        "If the user asks to change the plan or strategy (roadmap) and you agree with the changes, "
        "append a special tag at the very end of your reply: [UPDATE_PLAN: description of the changes]. "
        "The app will detect this tag and update the plan."
    ),
}

CONTEXT_HEADER = {
    "ru": "Контекст пользователя и история:",
    "en": "User context and history:",
}

VOICE_PERSONA = {
    "ru": "Ты энергичный персональный тренер и диетолог. Отвечай кратко, ободряюще и на русском языке.",
    "en": "You are an energetic personal trainer and nutritionist. Reply briefly, encouragingly and in English.",
}

VOICE_CONTEXT_PREFIX = {
    "ru": "Контекст пользователя:",
    "en": "User context:",
}

GOAL_LABELS = {
    "ru": {"lose_weight": "Похудение", "gain_muscle": "Набор массы", "maintain": "Поддержание"},
    "en": {"lose_weight": "Weight loss", "gain_muscle": "Muscle gain", "maintain": "Maintenance"},
}

CONTEXT_LINES = {
    "ru": {
        "header": "Данные пользователя:",
        "profile": "Имя: {name}, Возраст: {age}, Рост: {height}, Вес: {weight}, Цель: {goal}.",
        "allergies": "Аллергии: {value}",
        "preferences": "Предпочтения: {value}",
        "health": "Здоровье: {value}",
        "macros": "Питание сегодня (КБЖУ): {calories} ккал (Б:{protein}, Ж:{fat}, У:{carbs}).",
        "meal": "{name} ({calories} ккал)",
        "meals": "Недавние приемы пищи: {meals}.",
        "water": "Воды выпито сегодня: {value} мл.",
        "activity": "Сожжено активностью сегодня: {value} ккал.",
        "sleep": "Последний сон: {hours} часов, качество: {quality}/10.",
        "sleep_settings": "Настройки сна: Цель {target}ч, Отбой: {bed_time}, Будильник: {wake_time} ({alarm}).",
        "on": "Вкл",
        "off": "Выкл",
    },
    "en": {
        "header": "User data:",
        "profile": "Name: {name}, Age: {age}, Height: {height}, Weight: {weight}, Goal: {goal}.",
        "allergies": "Allergies: {value}",
        "preferences": "Preferences: {value}",
        "health": "Health: {value}",
        "macros": "Nutrition today: {calories} kcal (P:{protein}, F:{fat}, C:{carbs}).",
        "meal": "{name} ({calories} kcal)",
        "meals": "Recent meals: {meals}.",
        "water": "Water drunk today: {value} ml.",
        "activity": "Burned by activity today: {value} kcal.",
        "sleep": "Last sleep: {hours} hours, quality: {quality}/10.",
        "sleep_settings": "Sleep settings: Target {target}h, Bedtime: {bed_time}, Alarm: {wake_time} ({alarm}).",
        "on": "On",
        "off": "Off",
    },
}

RECENT_MEALS_LIMIT = 10


@dataclass(frozen=True)
class ProfileSnapshot:
    name: str
    age: int
    height_cm: float
    weight_kg: float
    goal: str
    allergies: Optional[str] = None
    preferences: Optional[str] = None
    health_conditions: Optional[str] = None


@dataclass(frozen=True)
class MacroTotals:
    calories: float
    protein: float
    fat: float
    carbs: float


@dataclass(frozen=True)
class MealSummary:
    name: str
    calories: float


@dataclass(frozen=True)
class SleepSnapshot:
    duration_hours: float
    quality: int


@dataclass(frozen=True)
class SleepConfig:
    target_hours: float
    bed_time: str
    wake_time: str
    wake_alarm_enabled: bool


@dataclass(frozen=True)
class ChatContext:
    """Same-day state used to ground the coach. ``None`` means the datum is unknown."""

    profile: Optional[ProfileSnapshot] = None
    macros_today: Optional[MacroTotals] = None
    recent_meals: tuple[MealSummary, ...] = field(default_factory=tuple)
    water_ml: Optional[int] = None
    activity_calories: Optional[int] = None
    latest_sleep: Optional[SleepSnapshot] = None
    sleep_config: Optional[SleepConfig] = None


def build_context_block(context: ChatContext, locale: Optional[str] = None) -> str:
    if context.profile is None:
        return ""
    key = resolve_locale(locale)
    lines = CONTEXT_LINES[key]
    profile = context.profile

    out = [
        lines["header"],
        lines["profile"].format(
            name=profile.name,
            age=profile.age,
            height=format_number(profile.height_cm),
            weight=format_number(profile.weight_kg),
            goal=GOAL_LABELS[key].get(profile.goal, GOAL_LABELS[key]["maintain"]),
        ),
    ]
    if profile.allergies:
        out.append(lines["allergies"].format(value=profile.allergies))
    if profile.preferences:
        out.append(lines["preferences"].format(value=profile.preferences))
    if profile.health_conditions:
        out.append(lines["health"].format(value=profile.health_conditions))

    if context.macros_today is not None:
        macros = context.macros_today
        out.append(
            lines["macros"].format(
                calories=round(macros.calories),
                protein=round(macros.protein),
                fat=round(macros.fat),
                carbs=round(macros.carbs),
            )
        )
    if context.recent_meals:
        meals = "; ".join(
            lines["meal"].format(name=meal.name, calories=round(meal.calories))
            for meal in context.recent_meals[-RECENT_MEALS_LIMIT:]
        )
        out.append(lines["meals"].format(meals=meals))
    # Zero is a real reading here; only unknown values are skipped.
    if context.water_ml is not None:
        out.append(lines["water"].format(value=context.water_ml))
    if context.activity_calories is not None:
        out.append(lines["activity"].format(value=context.activity_calories))
    if context.latest_sleep is not None:
        out.append(
            lines["sleep"].format(
                hours=format_number(context.latest_sleep.duration_hours),
                quality=context.latest_sleep.quality,
            )
        )
    if context.sleep_config is not None:
        config = context.sleep_config
        out.append(
            lines["sleep_settings"].format(
                target=format_number(config.target_hours),
                bed_time=config.bed_time,
                wake_time=config.wake_time,
                alarm=lines["on"] if config.wake_alarm_enabled else lines["off"],
            )
        )
    return "\n".join(out) + "\n"


def build_system_instruction(context_block: Optional[str] = None, locale: Optional[str] = None) -> str:
    key = resolve_locale(locale)
    parts = [PERSONA[key], PLAN_DIRECTIVE_INSTRUCTION[key]]
    if context_block:
        parts.append(f"{CONTEXT_HEADER[key]}\n{context_block}")
    return "\n\n".join(parts)


def build_voice_instruction(context_block: Optional[str] = None, locale: Optional[str] = None) -> str:
    key = resolve_locale(locale)
    if not context_block:
        return VOICE_PERSONA[key]
    return f"{VOICE_PERSONA[key]} {VOICE_CONTEXT_PREFIX[key]} {context_block}"
