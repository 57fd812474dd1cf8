import json

import pytest
from sqlalchemy.exc import OperationalError

from conftest import FakeScenario

from wellness.core import roadmap_sync
from wellness.core.roadmap_sync import (
    ProfileMissingError,
    build_roadmap_prompt,
    generate_roadmap,
    load_roadmap_steps,
    parse_roadmap_payload,
)
from wellness.core.tool_selector import ModelTier
from wellness.db.models import Profile, Roadmap, UserSettings


def _valid_payload() -> dict:
    return {
        "targets": {"dailyCalories": 2100, "dailyWater": 2400, "dailySteps": 9500, "sleepHours": 7.5},
        "steps": [{"title": "Шаг", "description": "Описание", "status": "completed"}],
    }


def test_build_roadmap_prompt_includes_profile_and_wishes(create_user, db_session) -> None:
    user = create_user()
    profile = db_session.query(Profile).filter(Profile.user_id == user.id).one()
    prompt = build_roadmap_prompt(profile, wishes="  больше йоги ", locale="ru")
    assert "- Цель: maintain" in prompt
    assert "Вес: 62, Рост: 168" in prompt
    assert "- Аллергии: орехи" in prompt
    assert "ОСОБЫЕ ПОЖЕЛАНИЯ ПОЛЬЗОВАТЕЛЯ (УЧТИ ОБЯЗАТЕЛЬНО): больше йоги" in prompt
    assert prompt.rstrip().endswith("Язык: Русский.")


def test_build_roadmap_prompt_without_wishes(create_user, db_session) -> None:
    user = create_user()
    profile = db_session.query(Profile).filter(Profile.user_id == user.id).one()
    assert "ПОЖЕЛАНИЯ" not in build_roadmap_prompt(profile, wishes="   ", locale="ru")


def test_parse_roadmap_payload_forces_pending() -> None:
    result = parse_roadmap_payload(_valid_payload())
    assert result is not None
    assert [step.status for step in result.steps] == ["pending"]


def test_parse_roadmap_payload_rejects_bad_targets() -> None:
    payload = _valid_payload()
    payload["targets"]["dailyWater"] = -5
    assert parse_roadmap_payload(payload) is None


def test_parse_roadmap_payload_rejects_empty_steps_and_titles() -> None:
    payload = _valid_payload()
    payload["steps"] = []
    assert parse_roadmap_payload(payload) is None
    payload["steps"] = [{"title": "   ", "description": "x", "status": "pending"}]
    assert parse_roadmap_payload(payload) is None
    assert parse_roadmap_payload(["not", "an", "object"]) is None


def test_generate_roadmap_propagates_targets(create_user, db_session, fake_ai_factory) -> None:
    user = create_user()
    fake = fake_ai_factory(FakeScenario.OK)

    roadmap = generate_roadmap(db_session, user.id, fake, wishes="меньше сахара")

    assert roadmap is not None
    assert fake.methods_called() == ["generate_json"]
    _, call = fake.calls[0]
    assert call["tier"] == ModelTier.fast
    assert "меньше сахара" in call["prompt"]

    profile = db_session.query(Profile).filter(Profile.user_id == user.id).one()
    settings = db_session.query(UserSettings).filter(UserSettings.user_id == user.id).one()
    assert profile.daily_calorie_goal == 2150
    assert profile.daily_step_goal == 9000
    assert settings.water_goal_ml == 2450
    assert settings.sleep_target_hours == 8.0
    assert roadmap.target_daily_calories == 2150

    steps = load_roadmap_steps(roadmap)
    assert len(steps) == 5
    assert {step["status"] for step in steps} == {"pending"}


def test_generate_roadmap_replaces_existing(create_user, db_session, fake_ai_factory) -> None:
    user = create_user()
    fake = fake_ai_factory(FakeScenario.OK)
    generate_roadmap(db_session, user.id, fake)
    generate_roadmap(db_session, user.id, fake)
    assert db_session.query(Roadmap).filter(Roadmap.user_id == user.id).count() == 1


def test_generate_roadmap_failure_leaves_state(create_user, db_session, fake_ai_factory) -> None:
    user = create_user()
    assert generate_roadmap(db_session, user.id, fake_ai_factory(FakeScenario.TIMEOUT)) is None
    assert generate_roadmap(db_session, user.id, fake_ai_factory(FakeScenario.INVALID_PAYLOAD)) is None

    profile = db_session.query(Profile).filter(Profile.user_id == user.id).one()
    assert profile.daily_calorie_goal == 2000
    assert db_session.query(Roadmap).filter(Roadmap.user_id == user.id).first() is None


def test_generate_roadmap_requires_profile(create_user, db_session, fake_ai_factory) -> None:
    user = create_user(with_profile=False)
    fake = fake_ai_factory(FakeScenario.OK)
    with pytest.raises(ProfileMissingError):
        generate_roadmap(db_session, user.id, fake)
    assert fake.calls == []


def test_load_roadmap_steps_tolerates_garbage() -> None:
    row = Roadmap(steps_json="not json")
    assert load_roadmap_steps(row) == []
    row.steps_json = json.dumps([{"title": "A", "status": "weird"}, "skip"])
    assert load_roadmap_steps(row) == [{"title": "A", "description": "", "status": "pending"}]


@pytest.mark.parametrize(
    "field, value",
    [
        ("dailyCalories", 1e30),
        ("dailyWater", 50000),
        ("dailySteps", 2_000_000),
        ("sleepHours", 0.04),
        ("sleepHours", 17),
    ],
)
def test_parse_roadmap_payload_rejects_out_of_range_targets(field, value) -> None:
    payload = _valid_payload()
    payload["targets"][field] = value
    assert parse_roadmap_payload(payload) is None


def test_parse_roadmap_payload_rounds_sleep_hours() -> None:
    payload = _valid_payload()
    payload["targets"]["sleepHours"] = 7.56
    result = parse_roadmap_payload(payload)
    assert result is not None
    assert result.targets.sleep_hours == 7.6


def test_generate_roadmap_absurd_targets_write_nothing(create_user, db_session, fake_ai_factory) -> None:
    user = create_user()
    fake = fake_ai_factory(FakeScenario.OK)
    fake.generate_json = lambda prompt, schema, tier=ModelTier.quality: {
        "targets": {"dailyCalories": 1e30, "dailyWater": 2400, "dailySteps": 9000, "sleepHours": 8},
        "steps": [{"title": "Шаг", "description": "", "status": "pending"}],
    }
    assert generate_roadmap(db_session, user.id, fake) is None
    profile = db_session.query(Profile).filter(Profile.user_id == user.id).one()
    assert profile.daily_calorie_goal == 2000


def test_generate_roadmap_store_failure_returns_none(create_user, db_session, fake_ai_factory, monkeypatch) -> None:
    user = create_user()

    def _broken_apply(db, user_id, result):
        raise OperationalError("UPDATE profiles", {}, Exception("database is locked"))

    monkeypatch.setattr(roadmap_sync, "apply_roadmap_outcome", _broken_apply)
    assert generate_roadmap(db_session, user.id, fake_ai_factory(FakeScenario.OK)) is None
    assert db_session.query(Roadmap).filter(Roadmap.user_id == user.id).first() is None
