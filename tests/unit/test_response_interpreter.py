from conftest import FakeScenario

from wellness.core.prompt_composer import PERSONA
from wellness.core.response_interpreter import detect_alarm_time, interpret_reply, run_chat_turn
from wellness.core.tool_selector import Capability, ModelTier
from wellness.services.llm import ChatTurn


def test_detect_alarm_time_ru() -> None:
    assert detect_alarm_time("Поставь будильник на 7:30") == "07:30"
    assert detect_alarm_time("Разбуди меня в 6.05 пожалуйста") == "06:05"
    assert detect_alarm_time("Подъем в 05:45") == "05:45"


def test_detect_alarm_time_en_and_case() -> None:
    assert detect_alarm_time("Set an ALARM for 9:00") == "09:00"
    assert detect_alarm_time("wake me up at 6:15") == "06:15"


def test_detect_alarm_time_rejects_out_of_range() -> None:
    assert detect_alarm_time("будильник на 25:00") is None
    assert detect_alarm_time("будильник на 7:75") is None


def test_detect_alarm_time_needs_keyword() -> None:
    assert detect_alarm_time("Встреча в 7:30") is None
    assert detect_alarm_time("Поставь будильник") is None


def test_interpret_reply_without_tag() -> None:
    result = interpret_reply("  Пейте больше воды.  ")
    assert result.display_text == "Пейте больше воды."
    assert result.directive is None


def test_interpret_reply_extracts_first_tag_and_strips_all() -> None:
    result = interpret_reply("Согласен. [UPDATE_PLAN: больше кардио] Еще вот что. [UPDATE_PLAN: второй]")
    assert result.directive is not None
    assert result.directive.kind == "update_plan"
    assert result.directive.payload == "больше кардио"
    assert "[UPDATE_PLAN" not in result.display_text
    assert result.display_text.startswith("Согласен.")


def test_interpret_reply_tag_only_gives_empty_text() -> None:
    result = interpret_reply("[UPDATE_PLAN: всё сначала]")
    assert result.display_text == ""
    assert result.directive.payload == "всё сначала"


def test_alarm_short_circuits_ai(fake_ai_factory) -> None:
    fake = fake_ai_factory(FakeScenario.OK)
    result = run_chat_turn(user_message="Поставь будильник на 7:30", history=[], ai_client=fake, locale="ru")
    assert result.kind == "alarm"
    assert result.alarm_time == "07:30"
    assert "07:30" in result.display_text
    assert fake.calls == []


def test_plain_reply_uses_quality_model_and_history(fake_ai_factory) -> None:
    fake = fake_ai_factory(FakeScenario.OK)
    history = [ChatTurn(role="user", text="Привет"), ChatTurn(role="model", text="Здравствуйте!")]
    result = run_chat_turn(
        user_message="Как улучшить мой сон?",
        history=history,
        ai_client=fake,
        context_block="Данные пользователя:\n",
        locale="ru",
    )
    assert result.kind == "reply"
    assert result.display_text == "Попробуйте овсянку с ягодами на завтрак."
    _, call = fake.calls[0]
    assert call["history"] == history
    assert call["tier"] == ModelTier.quality
    assert call["tools"] == ()
    assert call["system_instruction"].startswith(PERSONA["ru"])


def test_search_reply_carries_grounding(fake_ai_factory) -> None:
    fake = fake_ai_factory(FakeScenario.OK)
    result = run_chat_turn(user_message="Найди рецепт овсянки", history=[], ai_client=fake, locale="ru")
    assert [ref.uri for ref in result.grounding] == ["https://example.org/oats"]
    _, call = fake.calls[0]
    assert Capability.search in call["tools"]
    assert call["tier"] == ModelTier.fast


def test_maps_reply_passes_location(fake_ai_factory) -> None:
    fake = fake_ai_factory(FakeScenario.OK)
    run_chat_turn(
        user_message="Где ближайший парк?",
        history=[],
        ai_client=fake,
        location=(55.75, 37.61),
        locale="ru",
    )
    _, call = fake.calls[0]
    assert call["location"] == (55.75, 37.61)
    assert call["tools"] == (Capability.maps,)


def test_plan_directive_surfaces(fake_ai_factory) -> None:
    fake = fake_ai_factory(FakeScenario.PLAN_UPDATE)
    result = run_chat_turn(user_message="Давай поменяем план", history=[], ai_client=fake, locale="ru")
    assert result.directive is not None
    assert result.directive.payload == "больше кардио, меньше силовых"
    assert result.display_text == "Хорошо, добавим больше кардио."


def test_empty_reply_falls_back_to_message(fake_ai_factory) -> None:
    fake = fake_ai_factory(FakeScenario.EMPTY_REPLY)
    result = run_chat_turn(user_message="Как дела?", history=[], ai_client=fake, locale="ru")
    assert result.kind == "reply"
    assert result.display_text == "Не удалось сгенерировать ответ."


def test_provider_failure_returns_unavailable(fake_ai_factory) -> None:
    fake = fake_ai_factory(FakeScenario.TIMEOUT)
    result = run_chat_turn(user_message="Как дела?", history=[], ai_client=fake, locale="ru")
    assert result.kind == "unavailable"
    assert result.display_text == "Извините, возникли проблемы с подключением к серверу."
    assert result.directive is None


def test_interpret_reply_keeps_inner_whitespace() -> None:
    result = interpret_reply("Хорошо! [UPDATE_PLAN: добавь йогу] Увидимся")
    assert result.display_text == "Хорошо!  Увидимся"
    assert result.directive is not None
    assert result.directive.kind == "update_plan"
    assert result.directive.payload == "добавь йогу"
