import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text

from ChatBackend.database import Base


class MessageRole:
    USER = "user"
    ASSISTANT = "assistant"

    ALL = (USER, ASSISTANT)


class MessageKind:
    TEXT = "text"
    IMAGE = "image"

    ALL = (TEXT, IMAGE)


def _new_id() -> str:
    return str(uuid.uuid4())


# Application-side timestamps keep microsecond precision on every backend (sqlite's now() is per-second)
def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# A conversation thread; created lazily by the relay, never deleted by it
class Chat(Base):
    __tablename__ = "chats"

    id = Column(String(36), primary_key=True, default=_new_id)
    title = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


# One turn of a chat; append-only
class Message(Base):
    __tablename__ = "messages"

    __table_args__ = (
        Index("ix_messages_chat_id_created_at", "chat_id", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    chat_id = Column(String(36), ForeignKey("chats.id"), index=True, nullable=False)
    role = Column(String(16), nullable=False)
    kind = Column(String(16), nullable=False, default=MessageKind.TEXT)
    content = Column(Text, nullable=False)
    image_url = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
