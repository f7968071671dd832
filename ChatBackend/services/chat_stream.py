import asyncio
import json
import logging
import pathlib
import re
import time
from typing import AsyncIterator, Callable, Optional

from fastapi.responses import StreamingResponse

from ChatBackend.models.chat_models import MessageRole
from ChatBackend.services.message_store import MessageStore
from ChatBackend.services.model_provider import ModelProvider
from ChatBackend.services.provider_errors import FRIENDLY_MESSAGES, classify_provider_error

logger = logging.getLogger(__name__)
_BACKEND_DIR = pathlib.Path(__file__).resolve().parents[1]

CHAT_ID_HEADER = "X-Chat-Id"
DEFAULT_IDLE_TIMEOUT_SECONDS = 45.0
DEFAULT_QUEUE_SIZE = 2048

ProviderFactory = Callable[[], ModelProvider]

# Strong references to detached generation tasks; the event loop only keeps weak ones
_BACKGROUND_TASKS: set[asyncio.Task] = set()


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


class StreamingRelay:
    """Relays one chat turn from the client to the model provider and back.

    Generation runs in a detached task that always finishes and writes to the store;
    the HTTP body only drains a bounded queue while the client is connected. A client
    disconnect therefore stops forwarding but not accumulation or persistence.
    """

    def __init__(
        self,
        store: MessageStore,
        provider_factory: ProviderFactory,
        *,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT_SECONDS,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ):
        self.store = store
        self.provider_factory = provider_factory
        self.idle_timeout = idle_timeout
        self.queue_size = queue_size

    # Resolves/creates the chat and starts generation before any body byte is written,
    # so the id can go in a header and the turn completes even if the body is never read
    async def submit_turn(
        self,
        *,
        content: str,
        prior_messages: Optional[list[dict]] = None,
        chat_id: Optional[str] = None,
    ) -> "RelayTurn":
        chat_id, created = await self.store.open_chat(chat_id)
        if prior_messages is None:
            prior_messages = [] if created else await self.store.load_history(chat_id)
        turn = RelayTurn(self, chat_id=chat_id, content=content, prior_messages=prior_messages, is_new_chat=created)
        turn.start()
        return turn

    def stream_response(self, turn: "RelayTurn") -> StreamingResponse:
        return StreamingResponse(
            turn.events(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive", CHAT_ID_HEADER: turn.chat_id},
        )


class RelayTurn:
    def __init__(
        self,
        relay: StreamingRelay,
        *,
        chat_id: str,
        content: str,
        prior_messages: list[dict],
        is_new_chat: bool,
    ):
        self.relay = relay
        self.chat_id = chat_id
        self.content = content
        self.prior_messages = prior_messages
        self.is_new_chat = is_new_chat
        self.task: Optional[asyncio.Task] = None
        self._queue: asyncio.Queue[Optional[str]] = asyncio.Queue(maxsize=relay.queue_size)
        # "done" or "error" once the upstream leg has ended
        self.outcome: Optional[str] = None
        self.reply = ""
        self._forwarding = True
        self._finished = False

    def start(self) -> None:
        if self.task is not None:
            return
        self.task = asyncio.create_task(self._run())
        _BACKGROUND_TASKS.add(self.task)
        self.task.add_done_callback(_bg_done)

    # Client-facing body: one SSE frame per upstream chunk, then a terminal done/error frame
    async def events(self) -> AsyncIterator[str]:
        queue = self._queue
        try:
            while True:
                item = await queue.get()
                if item is None:
                    break
                yield item
        finally:
            # Client gone or stream over: stop forwarding but DO NOT cancel generation.
            self.stop_forwarding()

    def stop_forwarding(self) -> None:
        self._forwarding = False
        while not self._queue.empty():
            self._queue.get_nowait()

    # Wait for generation and persistence to finish (used after a disconnect)
    async def wait(self) -> None:
        if self.task is not None:
            await self.task

    async def _emit(self, payload: dict) -> None:
        if self._forwarding:
            await self._put(_sse(payload))

    # A body that stops reading for a whole idle window counts as a disconnect
    async def _put(self, item: Optional[str]) -> None:
        try:
            await asyncio.wait_for(self._queue.put(item), timeout=self.relay.idle_timeout)
        except asyncio.TimeoutError:
            logger.warning("chat.stream.client.stalled: chat=%s", self.chat_id)
            self.stop_forwarding()

    async def _finish(self) -> None:
        if self._finished:
            return
        self._finished = True
        if self._forwarding:
            await self._put(None)

    async def _run(self) -> None:
        store = self.relay.store
        provider: Optional[ModelProvider] = None
        try:
            # Persist user message ASAP; failure is logged by the store and not fatal.
            await store.persist_message(self.chat_id, MessageRole.USER, self.content)

            messages = [*self.prior_messages, {"role": MessageRole.USER, "content": self.content}]
            try:
                provider = self.relay.provider_factory()
                self.reply = await self._forward(provider, messages)
            except Exception as e:
                category = classify_provider_error(e)
                logger.exception("chat.stream.upstream.error: chat=%s category=%s", self.chat_id, category.value)
                self.outcome = "error"
                # A partial answer is never recorded as if it were complete.
                await self._emit({"error": FRIENDLY_MESSAGES[category]})
                return

            if self.reply.strip():
                await store.persist_message(self.chat_id, MessageRole.ASSISTANT, self.reply)
            else:
                logger.warning("chat.stream.empty: chat=%s", self.chat_id)
            self.outcome = "done"
            await self._emit({"done": True})
            await self._finish()

            if self.is_new_chat:
                title = await generate_chat_title(provider, self.content)
                await store.set_title(self.chat_id, title)
        finally:
            await self._finish()
            if provider is not None:
                try:
                    await provider.aclose()
                except Exception:
                    logger.exception("chat.provider.close.error")

    async def _forward(self, provider: ModelProvider, messages: list[dict]) -> str:
        parts: list[str] = []
        t0 = time.perf_counter()
        stream = provider.stream_chat(messages)
        try:
            while True:
                try:
                    piece = await asyncio.wait_for(stream.__anext__(), timeout=self.relay.idle_timeout)
                except StopAsyncIteration:
                    break
                parts.append(piece)
                await self._emit({"content": piece})
        finally:
            await stream.aclose()

        reply = "".join(parts)
        logger.info(
            "chat.stream.done: chat=%s chunks=%d chars=%d ms=%d",
            self.chat_id,
            len(parts),
            len(reply),
            int((time.perf_counter() - t0) * 1000),
        )
        return reply


def _bg_done(task: asyncio.Task) -> None:
    _BACKGROUND_TASKS.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("chat.stream.bg.task.error", exc_info=exc)


# Generate a short conversation title from the first user message
async def generate_chat_title(provider: ModelProvider, first_user_message: str) -> str:
    try:
        title_prompt_path = _BACKEND_DIR / "resources" / "chat_title_prompt.txt"
        title_prompt = title_prompt_path.read_text(encoding="utf-8")
        content = await provider.complete([{"role": "user", "content": f"{title_prompt}{first_user_message[:100]}"}])
        if not content:
            return "New Chat"
        title = re.sub(r"^title:\s*", "", content.strip(), flags=re.IGNORECASE)
        title = title.strip().strip("\"'.:")
        if len(title) > 60:
            title = title[:57] + "..."
        return title if title else "New Chat"
    except Exception:
        logger.exception("chat.title.error")
        return "New Chat"
