from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol, Sequence

from wellness.core.locale import resolve_locale


class Capability(str, Enum):
    search = "search"
    maps = "maps"


class ModelTier(str, Enum):
    fast = "fast"
    quality = "quality"


SEARCH_KEYWORDS: dict[str, tuple[str, ...]] = {
    "ru": (
        "новости",
        "поиск",
        "найди",
        "инфо",
        "рецепт",
        "исследование",
        "цена",
        "сколько",
        "кто",
        "когда",
        "погода",
        "состав",
    ),
    "en": (
        "news",
        "search",
        "look up",
        "info",
        "recipe",
        "research",
        "study",
        "price",
        "how much",
        "how many",
        "who",
        "when",
        "weather",
        "ingredients",
    ),
}

MAPS_KEYWORDS: dict[str, tuple[str, ...]] = {
    "ru": (
        "где",
        "карта",
        "рядом",
        "найти",
        "адрес",
        "маршрут",
        "магазин",
        "зал",
        "аптека",
        "больница",
        "парк",
        "ресторан",
        "кафе",
        "прогулка",
    ),
    "en": (
        "where",
        "map",
        "nearby",
        "near me",
        "address",
        "route",
        "store",
        "shop",
        "gym",
        "pharmacy",
        "hospital",
        "park",
        "restaurant",
        "cafe",
        "walk",
    ),
}


class IntentClassifier(Protocol):
    def classify(self, text: str) -> frozenset[Capability]:
        ...


class KeywordIntentClassifier:
    """Case-insensitive substring match against search and maps keyword lists."""

    def __init__(self, search_keywords: Sequence[str], maps_keywords: Sequence[str]) -> None:
        self.search_keywords = tuple(word.lower() for word in search_keywords if word.strip())
        self.maps_keywords = tuple(word.lower() for word in maps_keywords if word.strip())

    def classify(self, text: str) -> frozenset[Capability]:
        lowered = (text or "").lower()
        capabilities: set[Capability] = set()
        if any(word in lowered for word in self.search_keywords):
            capabilities.add(Capability.search)
        if any(word in lowered for word in self.maps_keywords):
            capabilities.add(Capability.maps)
        return frozenset(capabilities)


def classifier_for_locale(locale: Optional[str] = None) -> KeywordIntentClassifier:
    key = resolve_locale(locale)
    return KeywordIntentClassifier(SEARCH_KEYWORDS[key], MAPS_KEYWORDS[key])


@dataclass(frozen=True)
class ToolSelection:
    capabilities: frozenset[Capability]
    model_tier: ModelTier

    @property
    def uses_search(self) -> bool:
        return Capability.search in self.capabilities

    @property
    def uses_maps(self) -> bool:
        return Capability.maps in self.capabilities


def select_tools(message: str, classifier: Optional[IntentClassifier] = None) -> ToolSelection:
    # Grounded calls go to the fast tier; the quality model handles plain conversation.
    classifier = classifier or classifier_for_locale()
    capabilities = classifier.classify(message)
    tier = ModelTier.fast if capabilities else ModelTier.quality
    return ToolSelection(capabilities=capabilities, model_tier=tier)
