from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from wellness.core.activity import round_half_up
from wellness.core.locale import format_number, message, resolve_locale
from wellness.core.tool_selector import Capability, ModelTier
from wellness.services.llm import AIClient, LLMRequestError, parse_llm_json_array

logger = logging.getLogger("uvicorn.error")

STRIDE_METERS = 0.7
MIN_DISTANCE_KM = 1.0
FALLBACK_STEPS = 3000
ROUTE_COUNT = 4
ROUND_TRIP_COUNT = 3
MINUTES_PER_KM = 12

YANDEX_ROUTE_URL = "https://yandex.ru/maps/?rtext={rtext}&rtt=pd"
GOOGLE_ROUTE_URL = (
    "https://www.google.com/maps/dir/?api=1&origin={origin}&destination={destination}&travelmode=walking"
)

# Same unreserved set as JavaScript's encodeURIComponent.
URI_COMPONENT_SAFE = "-_.!~*'()"


class WalkMode(str, Enum):
    nearby = "nearby"
    direct = "direct"
    custom_address = "custom_address"


class LocationUnavailableError(ValueError):
    pass


class AddressRequiredError(ValueError):
    pass


class WalkingRoute(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str
    description: str = ""
    estimated_steps: int = Field(alias="estimatedSteps", ge=0)
    duration_minutes: int = Field(alias="durationMinutes", ge=0)
    distance_km: float = Field(alias="distanceKm", ge=0)
    start_location: str = Field(alias="startLocation", min_length=1)
    end_location: str = Field(alias="endLocation", min_length=1)
    is_round_trip: bool = Field(default=False, alias="isRoundTrip")

    @field_validator("estimated_steps", "duration_minutes", mode="before")
    @classmethod
    def _round_counts(cls, value: Any) -> Any:
        if isinstance(value, float):
            return round_half_up(value)
        return value


@dataclass(frozen=True)
class RouteOption:
    route: WalkingRoute
    yandex_url: str
    google_url: str


@dataclass
class RouteSuggestion:
    mode: WalkMode
    steps: int
    target_km: float
    start: str
    routes: list[RouteOption] = field(default_factory=list)


ROUTE_PROMPTS = {
    "ru": {
        "address": 'СТАРТОВАЯ ТОЧКА: Адрес "{address}".',
        "coords": "СТАРТОВАЯ ТОЧКА: Координаты {lat}, {lng}.",
        "body": """Ты профессиональный гид-навигатор. Твоя задача - создать ровно 4 РАЗНЫХ пешеходных маршрута для пользователя.

{location}

ОБЩАЯ ЦЕЛЬ ДИСТАНЦИИ: Пройти {target_km} км (примерно {steps} шагов).

ИНСТРУКЦИИ ПО РЕЖИМАМ (СТРОГО):

Режим: {mode}

1. Если режим 'nearby' (Рядом):
   - Найди 4 ближайших парка или сквера.
   - Маршрут: От [Старт] до [Вход в парк] и прогулка внутри.
   - "isRoundTrip": false

2. Если режим 'direct' (От меня) или 'custom_address' (От адреса):
   - Сгенерируй ПЕРВЫЕ 3 маршрута как КРУГОВЫЕ (Туда-Обратно).
     Точка Б должна быть на расстоянии ~{half_km} км от старта.
     Пользователь идет: Старт -> Точка Б -> Старт.
   - Сгенерируй 4-й маршрут как ПРЯМОЙ (В одну сторону).
     Точка Б должна быть на расстоянии ~{target_km} км от старта.
     Пользователь идет: Старт -> Точка Б.

ВАЖНОЕ ПРАВИЛО "ТОЧКИ Б":
- Если это жилой район, выбери в качестве Точки Б: школу, ТЦ, станцию метро, памятник или перекресток крупных улиц.
- "endLocation" НЕ ДОЛЖЕН совпадать со "startLocation". Это должна быть другая точка.
- "title" придумай красивый, например "Прогулка до парка..." или "Круг через площадь...".

Верни СТРОГО валидный JSON массив из 4 объектов.
ОТВЕТ ДОЛЖЕН БЫТЬ ТОЛЬКО JSON. БЕЗ MARKDOWN.

Формат:
[
  {{
    "title": "Название маршрута",
    "description": "Краткое описание (например: дойдите до X, поверните к Y...)",
    "estimatedSteps": {steps},
    "durationMinutes": {duration},
    "distanceKm": {target_km},
    "startLocation": "Адрес старта (как в запросе)",
    "endLocation": "Адрес финиша/разворота",
    "isRoundTrip": true/false
  }}
]""",
        "normalize": (
            "Исправь и нормализуй этот адрес (на русском). Если это не адрес, верни NULL.\n"
            'Ввод: "{address}"\n'
            "Верни ТОЛЬКО полный корректный адрес одной строкой без кавычек."
        ),
    },
    "en": {
        "address": 'START POINT: Address "{address}".',
        "coords": "START POINT: Coordinates {lat}, {lng}.",
        "body": """You are a professional walking guide. Your task is to create exactly 4 DIFFERENT walking routes for the user.

{location}

OVERALL DISTANCE GOAL: Walk {target_km} km (about {steps} steps).

MODE INSTRUCTIONS (STRICT):

Mode: {mode}

1. If the mode is 'nearby':
   - Find the 4 closest parks or public gardens.
   - Route: From [Start] to [Park entrance] and a walk inside.
   - "isRoundTrip": false

2. If the mode is 'direct' (from me) or 'custom_address' (from an address):
   - Make the FIRST 3 routes ROUND TRIPS (out and back).
     Point B must be ~{half_km} km from the start.
     The user walks: Start -> Point B -> Start.
   - Make the 4th route ONE-WAY.
     Point B must be ~{target_km} km from the start.
     The user walks: Start -> Point B.

IMPORTANT "POINT B" RULE:
- In a residential area pick a school, mall, metro station, monument or a major crossroads as Point B.
- "endLocation" MUST NOT equal "startLocation". It must be a different place.
- Give each route an appealing "title", e.g. "Walk to the park..." or "Loop via the square...".

Return a STRICTLY valid JSON array of 4 objects.
THE ANSWER MUST BE JSON ONLY. NO MARKDOWN.

Format:
[
  {{
    "title": "Route name",
    "description": "Short description (e.g. walk to X, turn towards Y...)",
    "estimatedSteps": {steps},
    "durationMinutes": {duration},
    "distanceKm": {target_km},
    "startLocation": "Start address (as in the request)",
    "endLocation": "Finish/turnaround address",
    "isRoundTrip": true/false
  }}
]""",
        "normalize": (
            "Correct and normalize this address. If it is not an address, return NULL.\n"
            'Input: "{address}"\n'
            "Return ONLY the full correct address on one line without quotes."
        ),
    },
}


def steps_needed(daily_step_goal: int, current_steps: int) -> int:
    return max(0, daily_step_goal - current_steps)


def target_distance_km(steps: int) -> float:
    return max(MIN_DISTANCE_KM, steps * STRIDE_METERS / 1000)


def round_trip_leg_km(steps: int) -> float:
    return target_distance_km(steps) / 2


def encode_component(value: str) -> str:
    return quote(value, safe=URI_COMPONENT_SAFE)


def coordinates_token(lat: float, lng: float) -> str:
    return f"{format_number(lat)},{format_number(lng)}"


def normalize_address(ai_client: AIClient, text: str, locale: Optional[str] = None) -> Optional[str]:
    raw = (text or "").strip()
    if not raw:
        return None
    prompt = ROUTE_PROMPTS[resolve_locale(locale)]["normalize"].format(address=raw)
    try:
        reply = ai_client.generate_text(prompt, tier=ModelTier.fast)
    except (LLMRequestError, ValueError):
        logger.exception("address_normalize_failed length=%s", len(raw))
        return None
    normalized = (reply.text or "").strip()
    if not normalized or normalized.upper() == "NULL":
        return None
    return normalized


def build_route_prompt(
    steps: int,
    mode: WalkMode,
    *,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    address: Optional[str] = None,
    locale: Optional[str] = None,
) -> str:
    templates = ROUTE_PROMPTS[resolve_locale(locale)]
    target_km = target_distance_km(steps)
    if mode == WalkMode.custom_address and address:
        location = templates["address"].format(address=address)
    elif lat is not None and lng is not None:
        location = templates["coords"].format(lat=format_number(lat), lng=format_number(lng))
    else:
        raise LocationUnavailableError(mode.value)
    return templates["body"].format(
        location=location,
        target_km=f"{target_km:.1f}",
        half_km=f"{round_trip_leg_km(steps):.1f}",
        steps=steps,
        mode=mode.value,
        duration=round_half_up(target_km * MINUTES_PER_KM),
    )


def parse_route_candidates(text: str) -> list[WalkingRoute]:
    """Parse the model's JSON array; one malformed item discards the whole batch."""
    try:
        items = parse_llm_json_array(text or "")
    except ValueError:
        logger.warning("route_candidates_unparseable length=%s", len(text or ""))
        return []
    routes: list[WalkingRoute] = []
    for item in items:
        if not isinstance(item, dict):
            logger.warning("route_candidates_discarded reason=non_object")
            return []
        try:
            routes.append(WalkingRoute.model_validate(item))
        except ValidationError as exc:
            logger.warning("route_candidates_discarded reason=invalid_item errors=%s", exc.error_count())
            return []
    return routes


def repair_routes(routes: list[WalkingRoute], mode: WalkMode, locale: Optional[str] = None) -> list[WalkingRoute]:
    """Force the structural rules the prompt asked for, whatever the model returned."""
    repaired: list[WalkingRoute] = []
    fixes = 0
    for index, route in enumerate(routes[:ROUTE_COUNT]):
        if mode == WalkMode.nearby:
            round_trip = False
        else:
            round_trip = index < ROUND_TRIP_COUNT
        title = route.title
        if title.strip() == route.start_location.strip():
            title = message("route_title_fallback", locale, end=route.end_location)
        if round_trip != route.is_round_trip or title != route.title:
            fixes += 1
        repaired.append(route.model_copy(update={"is_round_trip": round_trip, "title": title}))
    if fixes or len(routes) > ROUTE_COUNT:
        logger.warning(
            "route_candidates_repaired mode=%s fixed=%s received=%s kept=%s",
            mode.value,
            fixes,
            len(routes),
            len(repaired),
        )
    return repaired


def yandex_route_link(start: str, route: WalkingRoute, mode: WalkMode) -> str:
    origin = encode_component(start)
    end = encode_component(route.end_location)
    if mode == WalkMode.nearby:
        chain = [origin, encode_component(route.start_location), end]
    elif route.is_round_trip:
        chain = [origin, end, origin]
    else:
        chain = [origin, end]
    return YANDEX_ROUTE_URL.format(rtext="~".join(chain))


def google_route_link(start: str, route: WalkingRoute, mode: WalkMode) -> str:
    origin = encode_component(start)
    destination = origin if route.is_round_trip else encode_component(route.end_location)
    waypoints = ""
    if mode == WalkMode.nearby:
        waypoints = encode_component(route.start_location)
    elif route.is_round_trip:
        waypoints = encode_component(route.end_location)
    link = GOOGLE_ROUTE_URL.format(origin=origin, destination=destination)
    if waypoints:
        link += f"&waypoints={waypoints}"
    return link


def resolve_start(
    mode: WalkMode,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    address: Optional[str] = None,
) -> str:
    if mode == WalkMode.custom_address:
        if not address or not address.strip():
            raise AddressRequiredError(mode.value)
        return address.strip()
    if lat is None or lng is None:
        raise LocationUnavailableError(mode.value)
    return coordinates_token(lat, lng)


def suggest_routes(
    ai_client: AIClient,
    steps: int,
    mode: WalkMode,
    *,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    address: Optional[str] = None,
    locale: Optional[str] = None,
    user_id: Optional[int] = None,
) -> RouteSuggestion:
    start = resolve_start(mode, lat, lng, address)
    steps = steps if steps > 0 else FALLBACK_STEPS
    suggestion = RouteSuggestion(mode=mode, steps=steps, target_km=target_distance_km(steps), start=start)

    prompt = build_route_prompt(steps, mode, lat=lat, lng=lng, address=start, locale=locale)
    location = (lat, lng) if lat is not None and lng is not None else None
    try:
        reply = ai_client.generate_text(prompt, tools=(Capability.maps,), location=location, tier=ModelTier.fast)
    except (LLMRequestError, ValueError):
        logger.exception("walk_routes_failed user_id=%s mode=%s steps=%s", user_id, mode.value, steps)
        return suggestion

    routes = repair_routes(parse_route_candidates(reply.text), mode, locale)
    suggestion.routes = [
        RouteOption(
            route=route,
            yandex_url=yandex_route_link(start, route, mode),
            google_url=google_route_link(start, route, mode),
        )
        for route in routes
    ]
    return suggestion
