from sqlalchemy.exc import IntegrityError

from ChatBackend.models.chat_models import Chat, Message, MessageKind, MessageRole, utcnow


# Create a new chat (id is generated when not supplied)
def create_chat(session, chat_id=None, title=None):
    chat = Chat(id=chat_id, title=title) if chat_id else Chat(title=title)
    session.add(chat)
    session.flush()
    return chat


def get_chat(session, chat_id):
    return session.get(Chat, chat_id)


# Get an existing chat or create it under the given id
def get_or_create_chat(session, chat_id):
    chat = get_chat(session, chat_id)
    if chat:
        return chat

    # Use a nested transaction so an IntegrityError here doesn't blow away the caller's transaction.
    try:
        with session.begin_nested():
            chat = create_chat(session, chat_id)
    except IntegrityError:
        # Another request likely created it concurrently.
        return get_chat(session, chat_id)
    return chat


# Append a message to a chat and bump the chat's last-updated timestamp
def create_message(session, chat_id, role, content, kind=MessageKind.TEXT, image_url=None, created_at=None):
    if role not in MessageRole.ALL:
        raise ValueError(f"Unsupported message role: {role}")
    if kind not in MessageKind.ALL:
        raise ValueError(f"Unsupported message kind: {kind}")
    now = utcnow()
    msg = Message(
        chat_id=chat_id,
        role=role,
        kind=kind,
        content=content,
        image_url=image_url if kind == MessageKind.IMAGE else None,
        created_at=created_at or now,
    )
    session.add(msg)
    chat = get_chat(session, chat_id)
    if chat is not None:
        chat.updated_at = now
    session.flush()
    return msg


# Get chat history ordered by creation time
def get_chat_history(session, chat_id):
    return (
        session.query(Message)
        .filter_by(chat_id=chat_id)
        .order_by(Message.created_at, Message.id)
        .all()
    )


def update_chat_title(session, chat_id, title):
    chat = get_chat(session, chat_id)
    if not chat:
        return None
    chat.title = title
    session.flush()
    return chat


# List chats, most recently active first
def list_chats(session):
    return session.query(Chat).order_by(Chat.updated_at.desc(), Chat.id).all()
