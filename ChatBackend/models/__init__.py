# Import all SQLAlchemy models so Base.metadata knows every table before create_all().

from .chat_models import Chat, Message, MessageKind, MessageRole  # noqa: F401
