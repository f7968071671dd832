import asyncio
from types import SimpleNamespace

import openai
import pytest

from ChatBackend.services.model_provider import EmptyProviderResponse, OpenAIModelProvider
from ChatBackend.services.openai_compatible_client import get_async_openai_compatible_client
from ChatBackend.services.provider_errors import ProviderErrorCategory, classify_provider_error

from .conftest import connection_error, status_error


class _FakeStream:
    def __init__(self, chunks):
        self._chunks = list(chunks)
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._chunks:
            raise StopAsyncIteration
        return self._chunks.pop(0)

    async def close(self):
        self.closed = True


def _chunk(content=None, text=None):
    choice = SimpleNamespace(delta=SimpleNamespace(content=content), text=text, finish_reason=None)
    return SimpleNamespace(choices=[choice])


class _FakeClient:
    def __init__(self, stream=None, images=None):
        self.stream = stream
        self.calls = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))
        self.images = SimpleNamespace(generate=self._generate)
        self._images = images

    async def _create(self, **kwargs):
        self.calls.append(kwargs)
        if kwargs.get("stream"):
            return self.stream
        message = SimpleNamespace(content="A title")
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])

    async def _generate(self, **kwargs):
        self.calls.append(kwargs)
        return SimpleNamespace(data=self._images)

    async def close(self):
        pass


def _collect(provider, messages):
    async def run():
        return [p async for p in provider.stream_chat(messages)]

    return asyncio.run(run())


def test_stream_chat_yields_text_pieces_and_closes_stream():
    stream = _FakeStream([_chunk("Hel"), _chunk(None), SimpleNamespace(choices=[]), _chunk(text="lo"), _chunk("!")])
    client = _FakeClient(stream=stream)
    provider = OpenAIModelProvider(client, model="gpt-4", temperature=0.7, max_tokens=1000)

    pieces = _collect(provider, [{"role": "user", "content": "Hi"}])

    assert pieces == ["Hel", "lo", "!"]
    assert stream.closed
    assert client.calls[0] == {
        "stream": True,
        "model": "gpt-4",
        "messages": [{"role": "user", "content": "Hi"}],
        "temperature": 0.7,
        "max_tokens": 1000,
    }


def test_complete_returns_message_content():
    provider = OpenAIModelProvider(_FakeClient(), model="gpt-4", max_tokens=None)
    assert asyncio.run(provider.complete([{"role": "user", "content": "Hi"}])) == "A title"


def test_generate_image_prefers_url_then_base64():
    url_item = SimpleNamespace(url="https://img.example.com/1.png", b64_json=None)
    b64_item = SimpleNamespace(url=None, b64_json="aGVsbG8=")

    provider = OpenAIModelProvider(_FakeClient(images=[url_item]), model="gpt-4")
    assert asyncio.run(provider.generate_image("a cat")) == "https://img.example.com/1.png"

    provider = OpenAIModelProvider(_FakeClient(images=[b64_item]), model="gpt-4")
    assert asyncio.run(provider.generate_image("a cat")) == "data:image/png;base64,aGVsbG8="


def test_generate_image_empty_response_raises():
    provider = OpenAIModelProvider(_FakeClient(images=[]), model="gpt-4")
    with pytest.raises(EmptyProviderResponse):
        asyncio.run(provider.generate_image("a cat"))


def test_missing_api_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(ValueError, match="OPENAI_API_KEY"):
        get_async_openai_compatible_client("openai")
    with pytest.raises(ValueError, match="Unsupported provider"):
        get_async_openai_compatible_client("nope")


@pytest.mark.parametrize("exc,expected", [
    (asyncio.TimeoutError(), ProviderErrorCategory.TIMEOUT),
    (openai.APITimeoutError(request=connection_error().request), ProviderErrorCategory.TIMEOUT),
    (connection_error(), ProviderErrorCategory.NETWORK),
    (status_error(openai.RateLimitError, 429), ProviderErrorCategory.RATE_LIMITED),
    (status_error(openai.InternalServerError, 500), ProviderErrorCategory.SERVICE_UNAVAILABLE),
    (status_error(openai.BadRequestError, 400), ProviderErrorCategory.UNKNOWN),
    (ValueError("Missing API key"), ProviderErrorCategory.SERVICE_UNAVAILABLE),
    (EmptyProviderResponse("nothing"), ProviderErrorCategory.UNKNOWN),
    (RuntimeError("boom"), ProviderErrorCategory.UNKNOWN),
])
def test_classify_provider_error(exc, expected):
    assert classify_provider_error(exc) == expected
