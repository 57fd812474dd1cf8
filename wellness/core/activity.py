import math
from dataclasses import dataclass
from typing import Optional

from wellness.core.locale import resolve_locale


@dataclass(frozen=True)
class ActivityType:
    activity_id: str
    met: float
    labels: dict[str, str]


@dataclass(frozen=True)
class Intensity:
    intensity_id: str
    factor: float
    labels: dict[str, str]


ACTIVITY_TYPES: dict[str, ActivityType] = {
    item.activity_id: item
    for item in (
        ActivityType("run", 9.8, {"ru": "Бег", "en": "Running"}),
        ActivityType("walk", 3.5, {"ru": "Ходьба", "en": "Walking"}),
        ActivityType("gym", 6.0, {"ru": "Тренажерный зал", "en": "Gym"}),
        ActivityType("yoga", 2.5, {"ru": "Йога", "en": "Yoga"}),
        ActivityType("cycle", 7.5, {"ru": "Велосипед", "en": "Cycling"}),
        ActivityType("swim", 6.0, {"ru": "Плавание", "en": "Swimming"}),
    )
}

INTENSITIES: dict[str, Intensity] = {
    item.intensity_id: item
    for item in (
        Intensity("low", 0.8, {"ru": "Легкая", "en": "Light"}),
        Intensity("medium", 1.0, {"ru": "Средняя", "en": "Moderate"}),
        Intensity("high", 1.2, {"ru": "Высокая", "en": "High"}),
    )
}


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def estimate_calories(activity_id: str, intensity_id: str, weight_kg: float, duration_minutes: int) -> int:
    """Calories = MET x intensity factor x weight (kg) x hours."""
    activity = ACTIVITY_TYPES[activity_id]
    intensity = INTENSITIES[intensity_id]
    hours = max(0, duration_minutes) / 60
    return round_half_up(activity.met * intensity.factor * weight_kg * hours)


def activity_label(activity_id: str, intensity_id: str, locale: Optional[str] = None) -> str:
    key = resolve_locale(locale)
    activity = ACTIVITY_TYPES[activity_id].labels[key]
    intensity = INTENSITIES[intensity_id].labels[key].lower()
    return f"{activity} ({intensity})"
