import enum

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from KoriBackend.database import Base
from KoriBackend.models.columns import new_id, utcnow


class ChatStatus(str, enum.Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"
    DELETED = "deleted"


class ChatCategory(str, enum.Enum):
    EVALUATIVE = "evaluative"
    EXPLORATIVE = "explorative"


# Industry of the simulated interview respondent
class PromptCategory(str, enum.Enum):
    TECHNOLOGY = "technology"
    HEALTHCARE = "healthcare"
    FINANCE = "finance"
    EDUCATION = "education"
    RETAIL = "retail"
    MANUFACTURING = "manufacturing"
    MEDIA = "media"
    GOVERNMENT = "government"
    HOSPITALITY = "hospitality"
    OTHER = "other"


DEFAULT_CHAT_SETTINGS = {
    "maxMessages": 100,
    "autoArchive": False,
    "autoArchiveDays": 30,
}


def _default_settings() -> dict:
    return dict(DEFAULT_CHAT_SETTINGS)


class Chat(Base):
    __tablename__ = "chats"

    __table_args__ = (
        Index("ix_chats_user_id_created_at", "user_id", "created_at"),
        Index("ix_chats_user_id_status", "user_id", "status"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(64), index=True, nullable=False)
    title = Column(String(200), nullable=True)
    initial_prompt = Column(String(1000), nullable=True)
    category = Column(String(32), nullable=True)
    status = Column(String(16), nullable=False, default=ChatStatus.ACTIVE.value)
    settings = Column(JSON, nullable=False, default=_default_settings)
    tags = Column(JSON, nullable=False, default=list)
    last_activity = Column(DateTime, nullable=False, default=utcnow)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    prompts = relationship(
        "Prompt",
        back_populates="chat",
        order_by="Prompt.position",
        cascade="all, delete-orphan",
    )
    questions = relationship(
        "ChatQuestion",
        back_populates="chat",
        order_by="ChatQuestion.position",
        cascade="all, delete-orphan",
    )
    threads = relationship(
        "MessageThread",
        back_populates="chat",
        cascade="all, delete-orphan",
    )

    @property
    def active_prompts(self) -> list:
        return [p for p in self.prompts if p.is_active]


# Persona of a simulated interview respondent, owned by exactly one chat
class Prompt(Base):
    __tablename__ = "prompts"

    id = Column(String(36), primary_key=True, default=new_id)
    chat_id = Column(String(36), ForeignKey("chats.id", ondelete="CASCADE"), index=True, nullable=False)
    position = Column(Integer, nullable=False, default=0)
    name = Column(String(100), nullable=True)
    designation = Column(String(150), nullable=True)
    age = Column(Integer, nullable=True)
    unique_perspective = Column(String(500), nullable=True)
    background = Column(String(2000), nullable=True)
    category = Column(String(32), nullable=True)
    image_url = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    chat = relationship("Chat", back_populates="prompts")


# Predefined interview question attached to a chat
class ChatQuestion(Base):
    __tablename__ = "chat_questions"

    id = Column(String(36), primary_key=True, default=new_id)
    chat_id = Column(String(36), ForeignKey("chats.id", ondelete="CASCADE"), index=True, nullable=False)
    position = Column(Integer, nullable=False, default=0)
    category = Column(String(100), nullable=False)
    question = Column(String(500), nullable=False)

    chat = relationship("Chat", back_populates="questions")
