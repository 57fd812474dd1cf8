from dataclasses import replace

from wellness.core.achievements import AchievementState, DaySnapshot, evaluate_achievements


def _state(**overrides) -> AchievementState:
    base = AchievementState(
        today=DaySnapshot(stat_date="2026-03-10", calories=1900.0, steps=12000, water_ml=2600, sleep_hours=8.0),
        calorie_goal=2000,
        step_goal=10000,
        water_goal_ml=2500,
        sleep_target_hours=8.0,
        wake_time="07:00",
        wake_alarm_enabled=True,
        has_roadmap=True,
        history=(),
    )
    return replace(base, **overrides)


def _by_id(state: AchievementState) -> dict:
    return {item.achievement_id: item for item in evaluate_achievements(state, "ru")}


def test_catalog_order_and_localization() -> None:
    items = evaluate_achievements(_state(), "en")
    assert [item.achievement_id for item in items] == [
        "water_goal",
        "step_goal",
        "calorie_balance",
        "roadmap",
        "early_bird",
        "week_of_history",
        "hydration_habit",
        "sleep_target",
        "marathon",
    ]
    assert items[0].title == "Hydrated"
    assert evaluate_achievements(_state(), "ru")[0].title == "Водный баланс"


def test_daily_goals_unlock_and_cap_progress() -> None:
    items = _by_id(_state())
    assert items["water_goal"].unlocked
    assert items["water_goal"].current == 2500
    assert items["step_goal"].unlocked
    assert items["sleep_target"].unlocked
    assert items["calorie_balance"].unlocked
    assert items["roadmap"].unlocked
    assert items["early_bird"].unlocked


def test_goals_locked_when_short() -> None:
    today = DaySnapshot(stat_date="2026-03-10", calories=2400.0, steps=4000, water_ml=500, sleep_hours=6.0)
    items = _by_id(_state(today=today, wake_time="08:30", has_roadmap=False))
    assert not items["water_goal"].unlocked
    assert items["water_goal"].current == 500
    assert not items["step_goal"].unlocked
    assert not items["calorie_balance"].unlocked
    assert not items["sleep_target"].unlocked
    assert not items["roadmap"].unlocked
    assert not items["early_bird"].unlocked


def test_early_bird_needs_enabled_alarm() -> None:
    assert not _by_id(_state(wake_alarm_enabled=False))["early_bird"].unlocked


def test_zero_calories_is_not_balanced() -> None:
    today = DaySnapshot(stat_date="2026-03-10")
    assert not _by_id(_state(today=today))["calorie_balance"].unlocked


def test_history_based_achievements() -> None:
    history = tuple(
        DaySnapshot(stat_date=f"2026-03-0{day}", water_ml=2100 if day <= 3 else 900, steps=15500 if day == 2 else 5000)
        for day in range(1, 8)
    )
    items = _by_id(_state(history=history))
    assert items["week_of_history"].unlocked
    assert items["week_of_history"].current == 7
    assert items["hydration_habit"].unlocked
    assert items["marathon"].unlocked


def test_history_progress_when_incomplete() -> None:
    history = (DaySnapshot(stat_date="2026-03-09", water_ml=2000), DaySnapshot(stat_date="2026-03-10"))
    items = _by_id(_state(history=history))
    assert not items["week_of_history"].unlocked
    assert items["week_of_history"].current == 2
    assert items["hydration_habit"].current == 1
    assert not items["marathon"].unlocked
    assert items["marathon"].current == 12000


def test_water_progress_exact_values() -> None:
    met = _by_id(_state(today=DaySnapshot(stat_date="2026-03-10", water_ml=2500)))["water_goal"]
    assert (met.unlocked, met.current, met.maximum) == (True, 2500, 2500)
    short = _by_id(_state(today=DaySnapshot(stat_date="2026-03-10", water_ml=1000)))["water_goal"]
    assert (short.unlocked, short.current, short.maximum) == (False, 1000, 2500)


def test_evaluation_is_repeatable() -> None:
    state = _state(history=(DaySnapshot(stat_date="2026-03-09", steps=16000, water_ml=2100),))
    assert evaluate_achievements(state, "ru") == evaluate_achievements(state, "ru")
