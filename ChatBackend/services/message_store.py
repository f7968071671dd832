import asyncio
import logging
import uuid
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ChatBackend.crud.chat import create_message, get_chat, get_chat_history, get_or_create_chat, update_chat_title
from ChatBackend.models.chat_models import MessageKind, MessageRole

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


class MessageStore:
    """Best-effort persistence used by the relay and the image endpoint.

    Every write opens its own short-lived session so a failure in one write cannot
    poison another. Failures are logged and reported through the return value; they
    never raise into the caller. There is no per-chat locking: concurrent turns on
    the same chat interleave by creation time.
    """

    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    # Resolve the chat id for a turn, creating the row when absent. Returns (chat_id, created).
    async def open_chat(self, chat_id: Optional[str] = None) -> tuple[str, bool]:
        return await asyncio.to_thread(self._open_chat, chat_id or str(uuid.uuid4()))

    def _open_chat(self, chat_id: str) -> tuple[str, bool]:
        session = self.session_factory()
        try:
            if get_chat(session, chat_id) is not None:
                return chat_id, False
            get_or_create_chat(session, chat_id)
            session.commit()
            return chat_id, True
        except Exception:
            logger.exception("chat.open.error: chat=%s", chat_id)
            session.rollback()
            return chat_id, False
        finally:
            session.close()

    # Prior text turns of a chat in the provider's {role, content} shape
    async def load_history(self, chat_id: str) -> list[dict]:
        return await asyncio.to_thread(self._load_history, chat_id)

    def _load_history(self, chat_id: str) -> list[dict]:
        session = self.session_factory()
        try:
            msgs: list[dict] = []
            for m in get_chat_history(session, chat_id):
                if m.kind != MessageKind.TEXT:
                    continue
                role = MessageRole.ASSISTANT if m.role == MessageRole.ASSISTANT else MessageRole.USER
                if isinstance(m.content, str) and m.content.strip():
                    msgs.append({"role": role, "content": m.content})
            return msgs
        except Exception:
            logger.exception("chat.history.error: chat=%s", chat_id)
            return []
        finally:
            session.close()

    async def persist_message(
        self,
        chat_id: str,
        role: str,
        content: str,
        kind: str = MessageKind.TEXT,
        image_url: Optional[str] = None,
    ) -> bool:
        return await asyncio.to_thread(self._persist_message, chat_id, role, content, kind, image_url)

    def _persist_message(self, chat_id, role, content, kind, image_url) -> bool:
        session = self.session_factory()
        try:
            create_message(session, chat_id, role, content, kind=kind, image_url=image_url)
            session.commit()
            return True
        except Exception:
            logger.exception("chat.persist.error: chat=%s role=%s kind=%s", chat_id, role, kind)
            session.rollback()
            return False
        finally:
            session.close()

    async def set_title(self, chat_id: str, title: str) -> bool:
        return await asyncio.to_thread(self._set_title, chat_id, title)

    def _set_title(self, chat_id: str, title: str) -> bool:
        session = self.session_factory()
        try:
            chat = get_chat(session, chat_id)
            if chat is None or chat.title:
                return False
            update_chat_title(session, chat_id, title)
            session.commit()
            return True
        except Exception:
            logger.exception("chat.title.persist.error: chat=%s", chat_id)
            session.rollback()
            return False
        finally:
            session.close()
