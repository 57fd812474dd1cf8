import os
from typing import Optional

DEFAULT_LOCALE = os.getenv("APP_LOCALE", "ru").strip().lower() or "ru"

# User-facing strings keyed by locale.
MESSAGES: dict[str, dict[str, str]] = {
    "ru": {
        "chat_greeting": (
            "Привет! Я твой ИИ-тренер по здоровью. Я вижу твои данные по питанию, сну и активности. "
            "Спрашивай меня о чем угодно!"
        ),
        "chat_unavailable": "Извините, возникли проблемы с подключением к серверу.",
        "chat_empty_reply": "Не удалось сгенерировать ответ.",
        "alarm_confirmation": "Готово! Я установил будильник на **{time}**.",
        "plan_updated": "**✅ План успешно обновлен!** Зайдите в профиль, чтобы увидеть новую стратегию.",
        "plan_update_failed": "❌ Не удалось обновить план. Попробуйте еще раз.",
        "roadmap_failed": "Не удалось сгенерировать план. Попробуйте позже.",
        "profile_required": "Сначала заполните профиль.",
        "location_unavailable": (
            "Разрешите доступ к геолокации, чтобы найти маршруты рядом, или укажите адрес вручную."
        ),
        "address_not_found": "Не удалось найти такой адрес. Попробуйте уточнить.",
        "address_required": "Сначала подтвердите адрес.",
        "routes_failed": "Не удалось найти маршруты. Попробуйте позже.",
        "route_title_fallback": "Прогулка до {end}",
        "food_analysis_failed": "Не удалось распознать блюдо. Попробуйте другое фото.",
        "entry_not_found": "Запись не найдена",
    },
    "en": {
        "chat_greeting": (
            "Hi! I'm your AI health coach. I can see your nutrition, sleep and activity data. "
            "Ask me anything!"
        ),
        "chat_unavailable": "Sorry, I'm having trouble reaching the server right now.",
        "chat_empty_reply": "I couldn't come up with a reply.",
        "alarm_confirmation": "Done! Your alarm is set for **{time}**.",
        "plan_updated": "**✅ Your plan has been updated!** Open your profile to see the new strategy.",
        "plan_update_failed": "❌ Couldn't update the plan. Please try again.",
        "roadmap_failed": "Couldn't generate a plan. Please try again later.",
        "profile_required": "Please fill in your profile first.",
        "location_unavailable": (
            "Allow location access to find routes nearby, or enter an address instead."
        ),
        "address_not_found": "We couldn't find that address. Try refining it.",
        "address_required": "Please confirm the address first.",
        "routes_failed": "Couldn't find routes. Please try again later.",
        "route_title_fallback": "Walk to {end}",
        "food_analysis_failed": "Couldn't recognise the dish. Try another photo.",
        "entry_not_found": "Entry not found",
    },
}


def resolve_locale(locale: Optional[str] = None) -> str:
    candidate = (locale or DEFAULT_LOCALE).strip().lower()
    return candidate if candidate in MESSAGES else "ru"


def message(key: str, locale: Optional[str] = None, **params: object) -> str:
    text = MESSAGES[resolve_locale(locale)][key]
    return text.format(**params) if params else text


def format_number(value: float) -> str:
    """Render numbers the way the client displays them: 55.0 -> "55", 7.5 -> "7.5"."""
    number = float(value)
    if number.is_integer():
        return str(int(number))
    return repr(number)
