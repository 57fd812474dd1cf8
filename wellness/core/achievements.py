from dataclasses import dataclass, field
from typing import Callable, Optional

from wellness.core.locale import resolve_locale

CALORIE_TOLERANCE = 0.15
HISTORY_DAYS_TARGET = 7
HYDRATION_DAYS_TARGET = 3
HYDRATION_DAY_ML = 2000
MARATHON_STEPS = 15000
EARLY_WAKE_BEFORE = "08:00"


@dataclass(frozen=True)
class DaySnapshot:
    stat_date: str
    calories: float = 0.0
    steps: int = 0
    water_ml: int = 0
    sleep_hours: float = 0.0


@dataclass(frozen=True)
class AchievementState:
    today: DaySnapshot
    calorie_goal: int
    step_goal: int
    water_goal_ml: int
    sleep_target_hours: float
    wake_time: str
    wake_alarm_enabled: bool
    has_roadmap: bool
    history: tuple[DaySnapshot, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class AchievementStatus:
    achievement_id: str
    title: str
    description: str
    icon: str
    unlocked: bool
    current: Optional[float] = None
    maximum: Optional[float] = None


@dataclass(frozen=True)
class _Outcome:
    unlocked: bool
    current: Optional[float] = None
    maximum: Optional[float] = None


def _progress(value: float, goal: float) -> _Outcome:
    if goal <= 0:
        return _Outcome(unlocked=False, current=max(0, value), maximum=goal)
    return _Outcome(unlocked=value >= goal, current=min(max(0, value), goal), maximum=goal)


def _water_goal(state: AchievementState) -> _Outcome:
    return _progress(state.today.water_ml, state.water_goal_ml)


def _step_goal(state: AchievementState) -> _Outcome:
    return _progress(state.today.steps, state.step_goal)


def _calorie_balance(state: AchievementState) -> _Outcome:
    goal = state.calorie_goal
    calories = state.today.calories
    within = goal > 0 and calories > 0 and abs(calories - goal) <= goal * CALORIE_TOLERANCE
    return _Outcome(unlocked=within, current=round(calories), maximum=goal)


def _roadmap(state: AchievementState) -> _Outcome:
    return _Outcome(unlocked=state.has_roadmap)


def _early_bird(state: AchievementState) -> _Outcome:
    return _Outcome(unlocked=state.wake_alarm_enabled and state.wake_time < EARLY_WAKE_BEFORE)


def _history_days(state: AchievementState) -> set[str]:
    return {day.stat_date for day in state.history}


def _week_of_history(state: AchievementState) -> _Outcome:
    return _progress(len(_history_days(state)), HISTORY_DAYS_TARGET)


def _hydration_habit(state: AchievementState) -> _Outcome:
    hydrated = {day.stat_date for day in state.history if day.water_ml >= HYDRATION_DAY_ML}
    return _progress(len(hydrated), HYDRATION_DAYS_TARGET)


def _sleep_target(state: AchievementState) -> _Outcome:
    return _progress(state.today.sleep_hours, state.sleep_target_hours)


def _marathon(state: AchievementState) -> _Outcome:
    best = max([state.today.steps, *(day.steps for day in state.history)])
    return _progress(best, MARATHON_STEPS)


@dataclass(frozen=True)
class _Achievement:
    achievement_id: str
    icon: str
    text: dict[str, tuple[str, str]]
    rule: Callable[[AchievementState], _Outcome]


CATALOG: tuple[_Achievement, ...] = (
    _Achievement(
        "water_goal",
        "💧",
        {"ru": ("Водный баланс", "Норма воды за сегодня"), "en": ("Hydrated", "Hit today's water goal")},
        _water_goal,
    ),
    _Achievement(
        "step_goal",
        "👟",
        {"ru": ("Шагомер", "Норма шагов за сегодня"), "en": ("Step master", "Hit today's step goal")},
        _step_goal,
    ),
    _Achievement(
        "calorie_balance",
        "🥗",
        {
            "ru": ("Мастер баланса", "Калории в пределах 15% от цели"),
            "en": ("Balanced plate", "Calories within 15% of the goal"),
        },
        _calorie_balance,
    ),
    _Achievement(
        "roadmap",
        "🗺️",
        {"ru": ("Стратег", "Есть персональный план"), "en": ("Strategist", "Have a personal plan")},
        _roadmap,
    ),
    _Achievement(
        "early_bird",
        "🌅",
        {"ru": ("Ранняя пташка", "Будильник до 8 утра"), "en": ("Early bird", "Wake alarm set before 8 am")},
        _early_bird,
    ),
    _Achievement(
        "week_of_history",
        "📅",
        {"ru": ("Постоянство", "7 дней статистики"), "en": ("Consistency", "7 days of history")},
        _week_of_history,
    ),
    _Achievement(
        "hydration_habit",
        "🚰",
        {
            "ru": ("Привычка пить воду", "3 дня с водой от 2000 мл"),
            "en": ("Hydration habit", "3 days with 2000 ml of water or more"),
        },
        _hydration_habit,
    ),
    _Achievement(
        "sleep_target",
        "😴",
        {"ru": ("Соня", "Цель по сну выполнена"), "en": ("Well rested", "Met the sleep target")},
        _sleep_target,
    ),
    _Achievement(
        "marathon",
        "🏃",
        {"ru": ("Марафонец", "15 тыс. шагов за день"), "en": ("Marathoner", "15,000 steps in a day")},
        _marathon,
    ),
)


def evaluate_achievements(state: AchievementState, locale: Optional[str] = None) -> list[AchievementStatus]:
    key = resolve_locale(locale)
    statuses: list[AchievementStatus] = []
    for item in CATALOG:
        outcome = item.rule(state)
        title, description = item.text[key]
        statuses.append(
            AchievementStatus(
                achievement_id=item.achievement_id,
                title=title,
                description=description,
                icon=item.icon,
                unlocked=outcome.unlocked,
                current=outcome.current,
                maximum=outcome.maximum,
            )
        )
    return statuses
