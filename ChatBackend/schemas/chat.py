from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# One prior turn sent by the client as conversation context
class HistoryMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")
    role: Literal["user", "assistant"]
    content: str


# Request body for the streaming chat endpoint (new message + optional history/chat id)
class ChatRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)
    message: str
    history: Optional[List[HistoryMessage]] = None
    chat_id: Optional[str] = Field(default=None, alias="chatId")


# Request body for single-shot image generation
class ImageRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)
    prompt: str
    chat_id: str = Field(alias="chatId")


class ImageResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    image_url: str = Field(serialization_alias="imageUrl")


# Single message returned from history endpoints
class ChatMessageOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    id: str
    chat_id: str = Field(serialization_alias="chatId")
    role: str
    kind: str
    content: str
    image_url: Optional[str] = Field(default=None, serialization_alias="imageUrl")
    created_at: Optional[str] = Field(default=None, serialization_alias="createdAt")


# Chat summary row (id + optional title + timestamps)
class ChatOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    id: str
    title: Optional[str] = None
    created_at: Optional[str] = Field(default=None, serialization_alias="createdAt")
    updated_at: Optional[str] = Field(default=None, serialization_alias="updatedAt")


class ChatsOut(BaseModel):
    chats: List[ChatOut]
