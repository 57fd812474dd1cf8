from datetime import date, timedelta

from wellness.core.context_builder import build_chat_context, day_bounds_ms, now_ms, today_key
from wellness.core.prompt_composer import build_context_block
from wellness.db.models import ActivityEntry, DailyStats, FoodEntry, SleepEntry


def _food(user_id: int, name: str, calories: float, timestamp_ms: int) -> FoodEntry:
    return FoodEntry(
        user_id=user_id,
        name=name,
        calories=calories,
        protein=10.0,
        fat=5.0,
        carbs=20.0,
        rating=7,
        recommendation="",
        timestamp_ms=timestamp_ms,
    )


def test_context_builder_without_profile(create_user, db_session) -> None:
    user = create_user(with_profile=False)
    context = build_chat_context(db_session, user.id)
    assert context.profile is None
    assert build_context_block(context) == ""


def test_context_builder_empty_day(create_user, db_session) -> None:
    user = create_user()
    context = build_chat_context(db_session, user.id)
    assert context.profile.name == "Анна"
    assert context.macros_today is None
    assert context.recent_meals == ()
    assert context.water_ml == 0
    assert context.activity_calories == 0
    assert context.latest_sleep is None
    assert context.sleep_config.wake_time == "07:00"


def test_context_builder_summarizes_today(create_user, db_session) -> None:
    user = create_user()
    yesterday_start, _ = day_bounds_ms(date.today() - timedelta(days=1))
    stamp = now_ms()
    db_session.add_all(
        [
            _food(user.id, "Вчерашний ужин", 700.0, yesterday_start + 1000),
            _food(user.id, "Омлет", 300.0, stamp - 2000),
            _food(user.id, "Салат", 150.0, stamp - 1000),
            DailyStats(user_id=user.id, stat_date=today_key(), water_ml=1200),
            ActivityEntry(
                user_id=user.id, activity_type="Бег (средняя)", duration_minutes=30, calories_burned=304, timestamp_ms=stamp
            ),
            SleepEntry(user_id=user.id, duration_hours=6.5, quality=6, timestamp_ms=stamp - 5000),
            SleepEntry(user_id=user.id, duration_hours=7.5, quality=8, timestamp_ms=stamp),
        ]
    )
    db_session.commit()

    context = build_chat_context(db_session, user.id)
    assert context.macros_today.calories == 450.0
    assert [meal.name for meal in context.recent_meals] == ["Вчерашний ужин", "Омлет", "Салат"]
    assert context.water_ml == 1200
    assert context.activity_calories == 304
    assert context.latest_sleep.duration_hours == 7.5

    block = build_context_block(context, "ru")
    assert "Питание сегодня (КБЖУ): 450 ккал" in block
    assert "Воды выпито сегодня: 1200 мл." in block
