from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Literal, Optional, Sequence

from wellness.core.locale import message
from wellness.core.prompt_composer import build_system_instruction
from wellness.core.tool_selector import IntentClassifier, ToolSelection, select_tools
from wellness.services.llm import AIClient, ChatTurn, GroundingReference, LLMRequestError

logger = logging.getLogger("uvicorn.error")

ALARM_PATTERN = re.compile(
    r"(?:будильник|разбуди|подъ[её]м|alarm|wake me|wake-up|wake up).+?(\d{1,2})[:.](\d{2})",
    re.IGNORECASE,
)
PLAN_TAG_PATTERN = re.compile(r"\[UPDATE_PLAN:\s*(.*?)\]")


@dataclass(frozen=True)
class Directive:
    kind: Literal["update_plan"]
    payload: str


@dataclass(frozen=True)
class InterpretedReply:
    display_text: str
    directive: Optional[Directive] = None


@dataclass
class ChatTurnResult:
    kind: Literal["alarm", "reply", "unavailable"]
    display_text: str
    grounding: list[GroundingReference] = field(default_factory=list)
    directive: Optional[Directive] = None
    alarm_time: Optional[str] = None
    selection: Optional[ToolSelection] = None


def detect_alarm_time(text: str) -> Optional[str]:
    match = ALARM_PATTERN.search(text or "")
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return None
    return f"{hours:02d}:{minutes:02d}"


def interpret_reply(text: str) -> InterpretedReply:
    """Split a model reply into the visible text and an optional plan-update directive."""
    raw = text or ""
    match = PLAN_TAG_PATTERN.search(raw)
    if not match:
        return InterpretedReply(display_text=raw.strip())
    # Later tags are dropped from the visible text too; only the first one is acted on.
    display = PLAN_TAG_PATTERN.sub("", raw).strip()
    return InterpretedReply(
        display_text=display,
        directive=Directive(kind="update_plan", payload=match.group(1).strip()),
    )


def run_chat_turn(
    *,
    user_message: str,
    history: Sequence[ChatTurn],
    ai_client: AIClient,
    context_block: Optional[str] = None,
    location: Optional[tuple[float, float]] = None,
    classifier: Optional[IntentClassifier] = None,
    locale: Optional[str] = None,
    user_id: Optional[int] = None,
) -> ChatTurnResult:
    alarm_time = detect_alarm_time(user_message)
    if alarm_time:
        return ChatTurnResult(
            kind="alarm",
            display_text=message("alarm_confirmation", locale, time=alarm_time),
            alarm_time=alarm_time,
        )

    selection = select_tools(user_message, classifier)
    try:
        reply = ai_client.chat(
            history,
            user_message,
            system_instruction=build_system_instruction(context_block, locale),
            tools=selection.capabilities,
            location=location,
            tier=selection.model_tier,
        )
    except (LLMRequestError, ValueError):
        logger.exception(
            "coach_chat_failed user_id=%s tools=%s",
            user_id,
            ",".join(sorted(cap.value for cap in selection.capabilities)) or "none",
        )
        return ChatTurnResult(
            kind="unavailable",
            display_text=message("chat_unavailable", locale),
            selection=selection,
        )

    interpreted = interpret_reply(reply.text)
    display_text = interpreted.display_text or message("chat_empty_reply", locale)
    return ChatTurnResult(
        kind="reply",
        display_text=display_text,
        grounding=list(reply.grounding),
        directive=interpreted.directive,
        selection=selection,
    )
