import asyncio
import json

import httpx
import openai
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from ChatBackend.app import app
from ChatBackend.database import init_db
from ChatBackend.deps import get_provider_factory, get_session_factory
from ChatBackend.services.message_store import MessageStore


OPENAI_URL = "https://api.openai.com/v1/chat/completions"


class FakeProvider:
    """Scripted stand-in for the model provider."""

    def __init__(self, chunks=None, *, fail_after=None, error=None, stall_after=None, stall_seconds=5.0,
                 image_url="https://images.example.com/red-bicycle.png", image_error=None, title="Greeting"):
        self.chunks = list(chunks if chunks is not None else ["Hello", "!", " How", " can", " I", " help?"])
        self.fail_after = fail_after
        self.error = error or connection_error()
        self.stall_after = stall_after
        self.stall_seconds = stall_seconds
        self.image_url = image_url
        self.image_error = image_error
        self.title = title
        self.stream_calls = []
        self.image_calls = []
        self.closed = 0

    async def stream_chat(self, messages):
        self.stream_calls.append(messages)
        for i, chunk in enumerate(self.chunks):
            if self.fail_after == i:
                raise self.error
            if self.stall_after == i:
                await asyncio.sleep(self.stall_seconds)
            await asyncio.sleep(0)
            yield chunk
        if self.fail_after is not None and self.fail_after >= len(self.chunks):
            raise self.error

    async def complete(self, messages):
        return self.title

    async def generate_image(self, prompt):
        self.image_calls.append(prompt)
        if self.image_error is not None:
            raise self.image_error
        return self.image_url

    async def aclose(self):
        self.closed += 1


def connection_error():
    return openai.APIConnectionError(request=httpx.Request("POST", OPENAI_URL))


def status_error(cls, status_code):
    request = httpx.Request("POST", OPENAI_URL)
    response = httpx.Response(status_code, request=request)
    return cls("upstream said no", response=response, body=None)


def parse_sse(text):
    events = []
    for frame in text.split("\n\n"):
        frame = frame.strip()
        if not frame:
            continue
        assert frame.startswith("data: ")
        events.append(json.loads(frame[len("data: "):]))
    return events


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'chat.db'}", connect_args={"check_same_thread": False})
    init_db(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return MessageStore(session_factory)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def client(session_factory, provider):
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_provider_factory] = lambda: (lambda: provider)
    yield TestClient(app)
    app.dependency_overrides.clear()
