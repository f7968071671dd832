from typing import Iterator

from fastapi import Depends
from sqlalchemy.orm import Session

from ChatBackend.database import SessionLocal
from ChatBackend.services.chat_stream import DEFAULT_IDLE_TIMEOUT_SECONDS, ProviderFactory, StreamingRelay
from ChatBackend.services.image_service import DEFAULT_IMAGE_TIMEOUT_SECONDS, ImageService
from ChatBackend.services.message_store import MessageStore, SessionFactory
from ChatBackend.services.model_provider import build_model_provider, env_float


# Collaborators are resolved per request; tests swap them via app.dependency_overrides
def get_session_factory() -> SessionFactory:
    return SessionLocal


def get_provider_factory() -> ProviderFactory:
    return build_model_provider


def get_db(session_factory: SessionFactory = Depends(get_session_factory)) -> Iterator[Session]:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


def get_message_store(session_factory: SessionFactory = Depends(get_session_factory)) -> MessageStore:
    return MessageStore(session_factory)


def get_relay(
    store: MessageStore = Depends(get_message_store),
    provider_factory: ProviderFactory = Depends(get_provider_factory),
) -> StreamingRelay:
    return StreamingRelay(
        store,
        provider_factory,
        idle_timeout=env_float("STREAM_IDLE_TIMEOUT_SECONDS", DEFAULT_IDLE_TIMEOUT_SECONDS),
    )


def get_image_service(
    store: MessageStore = Depends(get_message_store),
    provider_factory: ProviderFactory = Depends(get_provider_factory),
) -> ImageService:
    return ImageService(
        store,
        provider_factory,
        timeout=env_float("IMAGE_TIMEOUT_SECONDS", DEFAULT_IMAGE_TIMEOUT_SECONDS),
    )
