import enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from KoriBackend.database import Base
from KoriBackend.models.columns import new_id, utcnow


class MessageRole(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    BOT = "bot"
    MODERATOR = "moderator"
    NOTIFICATION = "notification"
    TOOL = "tool"
    FUNCTION = "function"
    ERROR = "error"


MESSAGE_ROLES = tuple(r.value for r in MessageRole)


# One thread per (chat, prompt) pair; soft-deleted threads keep their history
class MessageThread(Base):
    __tablename__ = "message_threads"

    __table_args__ = (
        Index("ix_message_threads_chat_id_prompt_id", "chat_id", "prompt_id"),
        Index("ix_message_threads_chat_id_deleted_updated_at", "chat_id", "deleted", "updated_at"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    chat_id = Column(String(36), ForeignKey("chats.id", ondelete="CASCADE"), nullable=False)
    prompt_id = Column(String(36), ForeignKey("prompts.id", ondelete="CASCADE"), index=True, nullable=False)
    user_id = Column(String(64), index=True, nullable=False)
    deleted = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    chat = relationship("Chat", back_populates="threads")
    prompt = relationship("Prompt")
    messages = relationship(
        "ThreadMessage",
        back_populates="thread",
        order_by=lambda: [ThreadMessage.timestamp, ThreadMessage.id],
        cascade="all, delete-orphan",
    )


# Individual role-tagged entry of a thread; append-only
class ThreadMessage(Base):
    __tablename__ = "thread_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    thread_id = Column(String(36), ForeignKey("message_threads.id", ondelete="CASCADE"), index=True, nullable=False)
    role = Column(String(16), nullable=False)
    content = Column(Text, nullable=False)
    timestamp = Column(DateTime, nullable=False, default=utcnow)
    token_count = Column(Integer, nullable=True)
    processing_time = Column(Integer, nullable=True)
    model = Column(String(100), nullable=True)

    thread = relationship("MessageThread", back_populates="messages")
