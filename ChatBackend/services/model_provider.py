import logging
import os
from typing import Any, AsyncGenerator, Optional, Protocol

from openai import AsyncOpenAI

from ChatBackend.services.openai_compatible_client import (
    DEFAULT_MODEL,
    get_async_openai_compatible_client,
    get_provider_name,
)

logger = logging.getLogger(__name__)


class EmptyProviderResponse(Exception):
    """Raised when the provider answers successfully but with nothing usable."""


class ModelProvider(Protocol):
    def stream_chat(self, messages: list[dict]) -> AsyncGenerator[str, None]: ...

    async def complete(self, messages: list[dict]) -> str: ...

    async def generate_image(self, prompt: str) -> str: ...

    async def aclose(self) -> None: ...


# Text + image generation over any OpenAI-compatible endpoint
class OpenAIModelProvider:
    def __init__(
        self,
        client: AsyncOpenAI,
        *,
        model: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = 1000,
        image_model: str = "dall-e-3",
        image_size: str = "1024x1024",
    ) -> None:
        self.client = client
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.image_model = image_model
        self.image_size = image_size

    def _completion_kwargs(self, messages: list[dict]) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
        }
        if self.max_tokens:
            kwargs["max_tokens"] = self.max_tokens
        return kwargs

    # Yield text pieces of a streaming chat completion; always closes the upstream stream
    async def stream_chat(self, messages: list[dict]) -> AsyncGenerator[str, None]:
        stream = await self.client.chat.completions.create(stream=True, **self._completion_kwargs(messages))
        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                for piece in _extract_text_pieces(chunk.choices[0]):
                    yield piece
        finally:
            await stream.close()

    async def complete(self, messages: list[dict]) -> str:
        response = await self.client.chat.completions.create(**self._completion_kwargs(messages))
        content = response.choices[0].message.content if response.choices else None
        return content or ""

    # Returns a URL for the generated image (data: URL when the provider only returns base64)
    async def generate_image(self, prompt: str) -> str:
        response = await self.client.images.generate(
            model=self.image_model,
            prompt=prompt,
            n=1,
            size=self.image_size,
        )
        data = response.data or []
        if not data:
            raise EmptyProviderResponse("image response contained no data")
        item = data[0]
        if item.url:
            return item.url
        if item.b64_json:
            return f"data:image/png;base64,{item.b64_json}"
        raise EmptyProviderResponse("image response contained neither url nor b64_json")

    async def aclose(self) -> None:
        await self.client.close()


# Extract streamed text fragments; some providers surface streaming text on choice.text
def _extract_text_pieces(choice: Any) -> list[str]:
    pieces: list[str] = []
    delta = getattr(choice, "delta", None)
    if delta is not None:
        content = getattr(delta, "content", None)
        if isinstance(content, str) and content:
            pieces.append(content)
    text_piece = getattr(choice, "text", None)
    if isinstance(text_piece, str) and text_piece:
        pieces.append(text_piece)
    return pieces


def env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("config.invalid: %s=%r, using %s", name, raw, default)
        return default


# Build the provider configured by CHAT_PROVIDER / CHAT_MODEL / IMAGE_MODEL
def build_model_provider() -> OpenAIModelProvider:
    provider = get_provider_name()
    client = get_async_openai_compatible_client(provider)
    max_tokens = int(env_float("CHAT_MAX_TOKENS", 1000)) or None
    return OpenAIModelProvider(
        client,
        model=os.getenv("CHAT_MODEL") or DEFAULT_MODEL.get(provider, "gpt-4"),
        temperature=env_float("CHAT_TEMPERATURE", 0.7),
        max_tokens=max_tokens,
        image_model=os.getenv("IMAGE_MODEL") or "dall-e-3",
        image_size=os.getenv("IMAGE_SIZE") or "1024x1024",
    )
