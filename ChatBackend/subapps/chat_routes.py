from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ChatBackend.deps import get_db, get_relay
from ChatBackend.schemas.chat import ChatMessageOut, ChatRequest, ChatsOut
from ChatBackend.services.chat_service import ChatService
from ChatBackend.services.chat_stream import StreamingRelay


router = APIRouter()


# Streams one chat turn over SSE; the chat id is returned in the X-Chat-Id header
@router.post("/chat")
async def chat_stream(payload: ChatRequest, relay: StreamingRelay = Depends(get_relay)):
    return await ChatService.stream_turn(payload=payload, relay=relay)


# Alias for clients of the Next.js /api/chat-text route
@router.post("/api/chat-text", include_in_schema=False)
async def chat_text_alias(payload: ChatRequest, relay: StreamingRelay = Depends(get_relay)):
    return await ChatService.stream_turn(payload=payload, relay=relay)


# Retrieves all chats, most recently active first
@router.get("/chats")
def retrieve_chats(db: Session = Depends(get_db)) -> ChatsOut:
    svc = ChatService(db)
    return svc.list_chats()


# Retrieves all messages for a specific chat in creation order
@router.get("/chats/{chat_id}/messages")
def get_all_chat_messages(chat_id: str, db: Session = Depends(get_db)) -> list[ChatMessageOut]:
    svc = ChatService(db)
    return svc.list_messages(chat_id=chat_id)
