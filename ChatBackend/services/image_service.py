import asyncio
import logging
from typing import Optional, Union

from fastapi import HTTPException
from fastapi.responses import JSONResponse

from ChatBackend.models.chat_models import MessageKind, MessageRole
from ChatBackend.schemas.chat import ImageRequest, ImageResponse
from ChatBackend.services.chat_stream import ProviderFactory
from ChatBackend.services.message_store import MessageStore
from ChatBackend.services.model_provider import EmptyProviderResponse, ModelProvider
from ChatBackend.services.provider_errors import FRIENDLY_MESSAGES, HTTP_STATUS, classify_provider_error

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_TIMEOUT_SECONDS = 60.0


def image_caption(prompt: str) -> str:
    return f'Here\'s the image you requested based on: "{prompt}".'


class ImageService:
    """Single-shot image generation: either a usable image reference or an error, never both."""

    def __init__(self, store: MessageStore, provider_factory: ProviderFactory, *, timeout: float = DEFAULT_IMAGE_TIMEOUT_SECONDS):
        self.store = store
        self.provider_factory = provider_factory
        self.timeout = timeout

    async def generate_image(self, *, payload: ImageRequest) -> Union[ImageResponse, JSONResponse]:
        prompt = payload.prompt
        chat_id = payload.chat_id
        if not isinstance(prompt, str) or not prompt.strip():
            raise HTTPException(status_code=400, detail="Prompt is required and must be a non-empty string")
        if not isinstance(chat_id, str) or not chat_id.strip():
            raise HTTPException(status_code=400, detail="chatId is required")

        chat_id, _ = await self.store.open_chat(chat_id)
        await self.store.persist_message(chat_id, MessageRole.USER, prompt, kind=MessageKind.IMAGE)

        provider: Optional[ModelProvider] = None
        try:
            provider = self.provider_factory()
            image_url = await asyncio.wait_for(provider.generate_image(prompt), timeout=self.timeout)
            if not image_url:
                raise EmptyProviderResponse("provider returned an empty image reference")
        except Exception as e:
            category = classify_provider_error(e)
            logger.exception("image.generate.error: chat=%s category=%s", chat_id, category.value)
            return JSONResponse(status_code=HTTP_STATUS[category], content={"error": FRIENDLY_MESSAGES[category]})
        finally:
            if provider is not None:
                try:
                    await provider.aclose()
                except Exception:
                    logger.exception("image.provider.close.error")

        await self.store.persist_message(
            chat_id,
            MessageRole.ASSISTANT,
            image_caption(prompt),
            kind=MessageKind.IMAGE,
            image_url=image_url,
        )
        logger.info("image.generate.done: chat=%s", chat_id)
        return ImageResponse(image_url=image_url)
