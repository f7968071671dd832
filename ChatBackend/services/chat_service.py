from __future__ import annotations

import logging

from fastapi import HTTPException
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from ChatBackend.crud.chat import get_chat, get_chat_history, list_chats
from ChatBackend.schemas.chat import ChatMessageOut, ChatOut, ChatRequest, ChatsOut
from ChatBackend.services.chat_stream import StreamingRelay

logger = logging.getLogger(__name__)


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


class ChatService:
    # Initializes the service with a DB session used by the read-side CRUD helpers.
    def __init__(self, db: Session):
        self.db = db

    # Validates input, then delegates SSE streaming to the relay.
    @staticmethod
    async def stream_turn(*, payload: ChatRequest, relay: StreamingRelay) -> StreamingResponse:
        message = payload.message
        chat_id = payload.chat_id

        if not isinstance(message, str) or not message.strip():
            raise HTTPException(status_code=400, detail="Message is required and must be a string")
        if chat_id is not None and chat_id.strip() == "":
            raise HTTPException(status_code=400, detail="chatId cannot be empty string")

        history = None
        if payload.history is not None:
            history = [{"role": h.role, "content": h.content} for h in payload.history]

        turn = await relay.submit_turn(content=message, prior_messages=history, chat_id=chat_id)
        logger.info("chat.turn.start: chat=%s new=%s history=%d", turn.chat_id, turn.is_new_chat, len(turn.prior_messages))
        return relay.stream_response(turn)

    def list_chats(self) -> ChatsOut:
        chats = list_chats(self.db)
        return ChatsOut(
            chats=[
                ChatOut(id=c.id, title=c.title, created_at=_iso(c.created_at), updated_at=_iso(c.updated_at))
                for c in chats
            ]
        )

    def list_messages(self, *, chat_id: str) -> list[ChatMessageOut]:
        if get_chat(self.db, chat_id) is None:
            raise HTTPException(status_code=404, detail="Chat not found")
        messages = get_chat_history(self.db, chat_id)
        return [
            ChatMessageOut(
                id=m.id,
                chat_id=m.chat_id,
                role=m.role,
                kind=m.kind,
                content=m.content,
                image_url=m.image_url,
                created_at=_iso(m.created_at),
            )
            for m in messages
        ]
