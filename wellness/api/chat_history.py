import json
import os
from datetime import datetime, timezone
from typing import Optional, Sequence

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from wellness.api.auth import get_current_user
from wellness.core.locale import message
from wellness.db.models import ChatMessage, User
from wellness.db.session import get_db
from wellness.services.llm import ChatTurn, GroundingReference

router = APIRouter(prefix="/coach", tags=["chat"])

CHAT_HISTORY_LIMIT = int(os.getenv("CHAT_HISTORY_LIMIT", "40"))
# "system" rows are app notices shown in the transcript; they are never sent to the model.
MODEL_ROLES = ("user", "model")


class GroundingItem(BaseModel):
    kind: str
    uri: str
    title: str


class MessageItem(BaseModel):
    id: Optional[int] = None
    role: str
    content: str
    grounding: list[GroundingItem] = []
    created_at: Optional[str] = None


class MessagesResponse(BaseModel):
    messages: list[MessageItem]


def append_message(
    db: Session,
    user_id: int,
    role: str,
    content: str,
    grounding: Optional[Sequence[GroundingReference]] = None,
) -> ChatMessage:
    row = ChatMessage(
        user_id=user_id,
        role=role,
        content=content[:20000],
        grounding_json=(
            json.dumps(
                [{"kind": ref.kind, "uri": ref.uri, "title": ref.title} for ref in grounding],
                ensure_ascii=False,
            )
            if grounding
            else None
        ),
        created_at=datetime.now(timezone.utc),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def load_history(db: Session, user_id: int, limit: int = CHAT_HISTORY_LIMIT) -> list[ChatTurn]:
    rows = (
        db.query(ChatMessage)
        .filter(ChatMessage.user_id == user_id, ChatMessage.role.in_(MODEL_ROLES))
        .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
        .limit(limit)
        .all()
    )
    return [ChatTurn(role=row.role, text=row.content) for row in reversed(rows)]


def _grounding_items(raw: Optional[str]) -> list[GroundingItem]:
    if not raw:
        return []
    try:
        items = json.loads(raw)
    except json.JSONDecodeError:
        return []
    return [GroundingItem(**item) for item in items if isinstance(item, dict)]


@router.get("/messages", response_model=MessagesResponse)
def get_messages(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> MessagesResponse:
    rows = (
        db.query(ChatMessage)
        .filter(ChatMessage.user_id == user.id)
        .order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc())
        .all()
    )
    if not rows:
        return MessagesResponse(messages=[MessageItem(role="model", content=message("chat_greeting"))])
    return MessagesResponse(
        messages=[
            MessageItem(
                id=row.id,
                role=row.role,
                content=row.content,
                grounding=_grounding_items(row.grounding_json),
                created_at=row.created_at.isoformat(),
            )
            for row in rows
        ]
    )
