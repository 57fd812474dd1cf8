import base64
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Protocol, Sequence

import httpx

from wellness.core.tool_selector import Capability, ModelTier

logger = logging.getLogger("uvicorn.error")

GEMINI_API_BASE = os.getenv("GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta")
AI_QUALITY_MODEL = os.getenv("AI_QUALITY_MODEL", "gemini-3-pro-preview")
AI_FAST_MODEL = os.getenv("AI_FAST_MODEL", "gemini-2.5-flash")
AI_TIMEOUT_SECONDS = float(os.getenv("AI_TIMEOUT_SECONDS", "15"))
AI_CONNECT_TIMEOUT_SECONDS = float(os.getenv("AI_CONNECT_TIMEOUT_SECONDS", "5"))

PROVIDER = "gemini"
PROVIDER_TOOLS: dict[Capability, dict[str, Any]] = {
    Capability.search: {"googleSearch": {}},
    Capability.maps: {"googleMaps": {}},
}


def _http_timeout() -> httpx.Timeout:
    # The whole exchange is bounded by AI_TIMEOUT_SECONDS; connecting gets a shorter budget.
    return httpx.Timeout(
        AI_TIMEOUT_SECONDS,
        connect=min(AI_CONNECT_TIMEOUT_SECONDS, AI_TIMEOUT_SECONDS),
    )


class LLMRequestError(RuntimeError):
    def __init__(self, provider: str, model: str, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.model = model
        self.status_code = status_code


@dataclass(frozen=True)
class GroundingReference:
    kind: str
    uri: str
    title: str


@dataclass
class AIReply:
    text: str
    grounding: list[GroundingReference] = field(default_factory=list)


@dataclass(frozen=True)
class ChatTurn:
    role: str
    text: str


def parse_llm_json(raw_text: str) -> dict[str, Any]:
    try:
        parsed = json.loads(raw_text)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    start = raw_text.find("{")
    end = raw_text.rfind("}")
    if start != -1 and end != -1 and end > start:
        try:
            parsed = json.loads(raw_text[start : end + 1])
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            pass
    raise ValueError("Invalid JSON response from LLM")


def parse_llm_json_array(raw_text: str) -> list[Any]:
    """Extract the outermost JSON array from free text (models like to wrap it in markdown)."""
    start = raw_text.find("[")
    end = raw_text.rfind("]")
    if start == -1 or end == -1 or end <= start:
        raise ValueError("No JSON array in LLM response")
    try:
        parsed = json.loads(raw_text[start : end + 1])
    except json.JSONDecodeError as exc:
        raise ValueError("Invalid JSON array in LLM response") from exc
    if not isinstance(parsed, list):
        raise ValueError("Invalid JSON array in LLM response")
    return parsed


def select_model_for_tier(tier: ModelTier) -> str:
    if tier == ModelTier.fast:
        return AI_FAST_MODEL
    return AI_QUALITY_MODEL


def _provider_tools(capabilities: Iterable[Capability]) -> list[dict[str, Any]]:
    # Stable order: search before maps.
    return [PROVIDER_TOOLS[cap] for cap in (Capability.search, Capability.maps) if cap in set(capabilities)]


def _tool_config(location: Optional[tuple[float, float]]) -> Optional[dict[str, Any]]:
    if location is None:
        return None
    lat, lng = location
    return {"retrievalConfig": {"latLng": {"latitude": lat, "longitude": lng}}}


def _candidate_text(data: dict[str, Any]) -> str:
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    parts = ((candidates[0] or {}).get("content") or {}).get("parts") or []
    return "".join(str(part.get("text", "")) for part in parts if isinstance(part, dict)).strip()


def extract_grounding(data: dict[str, Any]) -> list[GroundingReference]:
    candidates = data.get("candidates") or []
    if not candidates:
        return []
    chunks = ((candidates[0] or {}).get("groundingMetadata") or {}).get("groundingChunks") or []
    references: list[GroundingReference] = []
    for chunk in chunks:
        if not isinstance(chunk, dict):
            continue
        for kind in ("web", "maps"):
            source = chunk.get(kind)
            if isinstance(source, dict) and source.get("uri"):
                references.append(
                    GroundingReference(
                        kind=kind,
                        uri=str(source["uri"]),
                        title=str(source.get("title") or source["uri"]),
                    )
                )
    return references


def _log_usage(model: str, data: dict[str, Any]) -> None:
    usage = data.get("usageMetadata", {}) if isinstance(data, dict) else {}
    prompt_tokens = int(usage.get("promptTokenCount", 0) or 0)
    completion_tokens = int(usage.get("candidatesTokenCount", 0) or 0)
    total_tokens = int(usage.get("totalTokenCount", prompt_tokens + completion_tokens) or 0)
    logger.info(
        "ai_usage provider=%s model=%s prompt_tokens=%s completion_tokens=%s total_tokens=%s",
        PROVIDER,
        model,
        prompt_tokens,
        completion_tokens,
        total_tokens,
    )


def _gemini_request(model: str, api_key: str, payload: dict[str, Any]) -> dict[str, Any]:
    url = f"{GEMINI_API_BASE}/models/{model}:generateContent?key={api_key}"
    try:
        response = httpx.post(
            url,
            headers={"Content-Type": "application/json"},
            json=payload,
            timeout=_http_timeout(),
        )
        response.raise_for_status()
    except httpx.TimeoutException as exc:
        raise LLMRequestError(
            provider=PROVIDER,
            model=model,
            message="Gemini request timed out while waiting for response.",
        ) from exc
    except httpx.HTTPStatusError as exc:
        status = exc.response.status_code if exc.response is not None else None
        detail = ""
        if exc.response is not None:
            detail = (exc.response.text or "").strip()[:220]
        raise LLMRequestError(
            provider=PROVIDER,
            model=model,
            status_code=status,
            message=f"Gemini request failed (status={status}): {detail or 'no response body'}",
        ) from exc
    except httpx.HTTPError as exc:
        raise LLMRequestError(
            provider=PROVIDER,
            model=model,
            message=f"Gemini request failed: {str(exc)[:220]}",
        ) from exc
    data = response.json()
    if not isinstance(data, dict):
        raise ValueError("Gemini returned a non-object payload")
    _log_usage(model, data)
    return data


class AIClient(Protocol):
    def generate_json(
        self, prompt: str, schema: dict[str, Any], tier: ModelTier = ModelTier.quality
    ) -> dict[str, Any]:
        ...

    def generate_text(
        self,
        prompt: str,
        system_instruction: str = "",
        tools: Iterable[Capability] = (),
        location: Optional[tuple[float, float]] = None,
        tier: ModelTier = ModelTier.fast,
    ) -> AIReply:
        ...

    def chat(
        self,
        history: Sequence[ChatTurn],
        message: str,
        system_instruction: str = "",
        tools: Iterable[Capability] = (),
        location: Optional[tuple[float, float]] = None,
        tier: ModelTier = ModelTier.quality,
    ) -> AIReply:
        ...

    def analyze_image(
        self, image_bytes: bytes, mime_type: str, prompt: str, schema: dict[str, Any]
    ) -> dict[str, Any]:
        ...


class GeminiClient:
    def __init__(self, api_key: Optional[str] = None) -> None:
        self.api_key = api_key if api_key is not None else os.getenv("GEMINI_API_KEY", "")

    def _post(self, model: str, payload: dict[str, Any]) -> dict[str, Any]:
        if not self.api_key:
            raise LLMRequestError(provider=PROVIDER, model=model, message="AI config missing")
        return _gemini_request(model, self.api_key, payload)

    def _text_payload(
        self,
        contents: list[dict[str, Any]],
        system_instruction: str,
        tools: Iterable[Capability],
        location: Optional[tuple[float, float]],
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"contents": contents}
        if system_instruction:
            payload["systemInstruction"] = {"parts": [{"text": system_instruction}]}
        provider_tools = _provider_tools(tools)
        if provider_tools:
            payload["tools"] = provider_tools
            # Location only matters for map grounding.
            tool_config = _tool_config(location) if Capability.maps in set(tools) else None
            if tool_config:
                payload["toolConfig"] = tool_config
        return payload

    def generate_json(
        self, prompt: str, schema: dict[str, Any], tier: ModelTier = ModelTier.quality
    ) -> dict[str, Any]:
        model = select_model_for_tier(tier)
        data = self._post(
            model,
            {
                "contents": [{"role": "user", "parts": [{"text": prompt}]}],
                "generationConfig": {"responseMimeType": "application/json", "responseSchema": schema},
            },
        )
        raw = _candidate_text(data)
        if not raw:
            raise ValueError("Gemini returned an empty structured response")
        return parse_llm_json(raw)

    def generate_text(
        self,
        prompt: str,
        system_instruction: str = "",
        tools: Iterable[Capability] = (),
        location: Optional[tuple[float, float]] = None,
        tier: ModelTier = ModelTier.fast,
    ) -> AIReply:
        tools = tuple(tools)
        model = select_model_for_tier(tier)
        payload = self._text_payload(
            [{"role": "user", "parts": [{"text": prompt}]}], system_instruction, tools, location
        )
        data = self._post(model, payload)
        return AIReply(text=_candidate_text(data), grounding=extract_grounding(data))

    def chat(
        self,
        history: Sequence[ChatTurn],
        message: str,
        system_instruction: str = "",
        tools: Iterable[Capability] = (),
        location: Optional[tuple[float, float]] = None,
        tier: ModelTier = ModelTier.quality,
    ) -> AIReply:
        tools = tuple(tools)
        model = select_model_for_tier(tier)
        contents = [{"role": turn.role, "parts": [{"text": turn.text}]} for turn in history]
        contents.append({"role": "user", "parts": [{"text": message}]})
        data = self._post(model, self._text_payload(contents, system_instruction, tools, location))
        return AIReply(text=_candidate_text(data), grounding=extract_grounding(data))

    def analyze_image(
        self, image_bytes: bytes, mime_type: str, prompt: str, schema: dict[str, Any]
    ) -> dict[str, Any]:
        model = select_model_for_tier(ModelTier.quality)
        encoded = base64.b64encode(image_bytes).decode("ascii")
        data = self._post(
            model,
            {
                "contents": [
                    {
                        "role": "user",
                        "parts": [
                            {"inlineData": {"mimeType": mime_type, "data": encoded}},
                            {"text": prompt},
                        ],
                    }
                ],
                "generationConfig": {"responseMimeType": "application/json", "responseSchema": schema},
            },
        )
        raw = _candidate_text(data)
        if not raw:
            raise ValueError("Gemini returned an empty image analysis")
        return parse_llm_json(raw)


def get_ai_client() -> AIClient:
    return GeminiClient()
