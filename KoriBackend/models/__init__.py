# Import all SQLAlchemy models so Alembic autogenerate can discover tables via Base.metadata.
# Alembic's env.py and the test suite import this package for side effects.

from .user_model import AuthProvider, GeneratedImage, RefreshToken, User, UserRole  # noqa: F401
from .chat_models import (  # noqa: F401
    DEFAULT_CHAT_SETTINGS,
    Chat,
    ChatCategory,
    ChatQuestion,
    ChatStatus,
    Prompt,
    PromptCategory,
)
from .message_models import MESSAGE_ROLES, MessageRole, MessageThread, ThreadMessage  # noqa: F401
