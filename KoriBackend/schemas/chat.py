import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, Field, field_validator

from KoriBackend.models.chat_models import ChatCategory, ChatStatus, PromptCategory
from KoriBackend.models.message_models import MessageRole
from KoriBackend.schemas.common import CamelModel, Pagination


IMAGE_URL_RE = re.compile(r"^https?://.+\.(jpg|jpeg|png|gif|webp)$", re.IGNORECASE)
MAX_MESSAGE_LENGTH = 10000


# ---------------------------------------------------------------------------
# Chat requests
# ---------------------------------------------------------------------------
class ChatSettingsIn(CamelModel):
    max_messages: Optional[int] = Field(None, ge=1, le=500)
    auto_archive: Optional[bool] = None
    auto_archive_days: Optional[int] = Field(None, ge=1, le=365)

    def as_stored(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class CreateChatRequest(CamelModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    initial_prompt: Optional[str] = Field(None, max_length=1000)
    category: Optional[ChatCategory] = None
    settings: Optional[ChatSettingsIn] = None
    tags: Optional[List[str]] = None

    @field_validator("title", "initial_prompt", mode="before")
    @classmethod
    def strip_text(cls, value):
        return value.strip() if isinstance(value, str) else value


class UpdateChatRequest(CamelModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    initial_prompt: Optional[str] = Field(None, max_length=1000)
    status: Optional[ChatStatus] = None
    settings: Optional[ChatSettingsIn] = None
    tags: Optional[List[str]] = None

    @field_validator("tags")
    @classmethod
    def check_tags(cls, value):
        if value is None:
            return value
        cleaned = [t.strip() for t in value]
        if any(not t or len(t) > 50 for t in cleaned):
            raise ValueError("Each tag must be between 1 and 50 characters")
        return cleaned


class InitialPromptRequest(CamelModel):
    initial_prompt: str = Field(..., min_length=1, max_length=1000)


# ---------------------------------------------------------------------------
# Message requests
# ---------------------------------------------------------------------------
class MessagePayload(CamelModel):
    text: Optional[str] = None
    content: Optional[str] = None
    message: Optional[str] = None

    def as_text(self) -> str:
        return self.text or self.content or self.message or ""


class SendMessageRequest(CamelModel):
    # Either a plain string or a structured payload carrying text/content/message
    message: Union[str, MessagePayload]
    prompt_id: Optional[str] = None
    reset: bool = False
    generate_reply: bool = True

    @field_validator("message")
    @classmethod
    def normalize_message(cls, value):
        text = value.as_text() if isinstance(value, MessagePayload) else value
        text = (text or "").strip()
        if not text:
            raise ValueError("Message content is required")
        if len(text) > MAX_MESSAGE_LENGTH:
            raise ValueError("Message content must be between 1 and 10,000 characters")
        return text


class MessageMetadataIn(CamelModel):
    token_count: Optional[int] = Field(None, ge=0)
    processing_time: Optional[int] = Field(None, ge=0)
    model: Optional[str] = Field(None, min_length=1, max_length=100)

    def as_stored(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class AddMessageRequest(CamelModel):
    role: MessageRole
    content: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH)
    metadata: Optional[MessageMetadataIn] = None
    prompt_id: Optional[str] = None

    @field_validator("content", mode="before")
    @classmethod
    def strip_content(cls, value):
        return value.strip() if isinstance(value, str) else value


# ---------------------------------------------------------------------------
# Prompt / question requests
# ---------------------------------------------------------------------------
class PromptProfileIn(CamelModel):
    name: Optional[str] = Field(None, max_length=100)
    designation: Optional[str] = Field(
        None,
        max_length=150,
        validation_alias=AliasChoices("designation", "occupation"),
    )
    age: Optional[int] = Field(None, ge=18, le=100)
    unique_perspective: Optional[str] = Field(
        None,
        max_length=500,
        validation_alias=AliasChoices("uniquePerspective", "unique_perspective"),
    )


class PromptFields(CamelModel):
    background: Optional[str] = Field(None, max_length=2000)
    category: Optional[PromptCategory] = None
    image_url: Optional[str] = None

    @field_validator("image_url")
    @classmethod
    def check_image_url(cls, value):
        if value is None or value == "":
            return None
        value = value.strip()
        if not IMAGE_URL_RE.match(value):
            raise ValueError("Invalid image URL format")
        return value


class CreatePromptRequest(PromptFields):
    profile: PromptProfileIn = Field(default_factory=PromptProfileIn)
    # Older clients sent unique perspective next to the profile instead of inside it
    unique_perspective: Optional[str] = Field(None, max_length=500)
    is_active: bool = True


class UpdatePromptRequest(PromptFields):
    profile: Optional[PromptProfileIn] = None
    unique_perspective: Optional[str] = Field(None, max_length=500)
    is_active: Optional[bool] = None


class QuestionRequest(CamelModel):
    category: str = Field(..., min_length=1, max_length=100)
    question: str = Field(..., min_length=1, max_length=500)


class UpdateQuestionRequest(CamelModel):
    category: Optional[str] = Field(None, min_length=1, max_length=100)
    question: Optional[str] = Field(None, min_length=1, max_length=500)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------
class PromptProfileOut(CamelModel):
    name: Optional[str] = None
    designation: Optional[str] = None
    age: Optional[int] = None
    unique_perspective: Optional[str] = None


class PromptOut(CamelModel):
    id: str
    chat_id: str
    profile: PromptProfileOut
    background: Optional[str] = None
    category: Optional[str] = None
    image_url: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None

    @classmethod
    def from_prompt(cls, prompt) -> "PromptOut":
        return cls(
            id=prompt.id,
            chat_id=prompt.chat_id,
            profile=PromptProfileOut(
                name=prompt.name,
                designation=prompt.designation,
                age=prompt.age,
                unique_perspective=prompt.unique_perspective,
            ),
            background=prompt.background,
            category=prompt.category,
            image_url=prompt.image_url,
            is_active=bool(prompt.is_active),
            created_at=prompt.created_at,
        )


class QuestionOut(CamelModel):
    id: str
    category: str
    question: str


class ChatOut(CamelModel):
    id: str
    user_id: str
    title: Optional[str] = None
    initial_prompt: Optional[str] = None
    category: Optional[str] = None
    status: str
    settings: Dict[str, Any] = {}
    tags: List[str] = []
    last_activity: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    prompts: List[PromptOut] = []
    questions: List[QuestionOut] = []

    @classmethod
    def from_chat(cls, chat, *, active_prompts_only: bool = False) -> "ChatOut":
        prompts = chat.active_prompts if active_prompts_only else chat.prompts
        return cls(
            id=chat.id,
            user_id=chat.user_id,
            title=chat.title,
            initial_prompt=chat.initial_prompt,
            category=chat.category,
            status=chat.status,
            settings=dict(chat.settings or {}),
            tags=list(chat.tags or []),
            last_activity=chat.last_activity,
            created_at=chat.created_at,
            updated_at=chat.updated_at,
            prompts=[PromptOut.from_prompt(p) for p in prompts],
            questions=[QuestionOut.model_validate(q) for q in chat.questions],
        )


class MessageMetadataOut(CamelModel):
    token_count: Optional[int] = None
    processing_time: Optional[int] = None
    model: Optional[str] = None


class MessageOut(CamelModel):
    id: int
    role: str
    content: str
    timestamp: Optional[datetime] = None
    metadata: MessageMetadataOut = Field(default_factory=MessageMetadataOut)

    @classmethod
    def from_message(cls, msg) -> "MessageOut":
        return cls(
            id=msg.id,
            role=msg.role,
            content=msg.content,
            timestamp=msg.timestamp,
            metadata=MessageMetadataOut(
                token_count=msg.token_count,
                processing_time=msg.processing_time,
                model=msg.model,
            ),
        )


class ThreadOut(CamelModel):
    id: str
    chat_id: str
    prompt_id: str
    user_id: str
    deleted: bool
    message_count: int
    messages: List[MessageOut]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_thread(cls, thread) -> "ThreadOut":
        return cls(
            id=thread.id,
            chat_id=thread.chat_id,
            prompt_id=thread.prompt_id,
            user_id=thread.user_id,
            deleted=bool(thread.deleted),
            message_count=len(thread.messages),
            messages=[MessageOut.from_message(m) for m in thread.messages],
            created_at=thread.created_at,
            updated_at=thread.updated_at,
        )


class SearchHitOut(MessageOut):
    thread_id: str
    prompt_id: str
    chat_id: str


class ChatListOut(CamelModel):
    chats: List[ChatOut]
    total_chats: int
    pagination: Pagination


class MessagesPageOut(CamelModel):
    messages: List[ThreadOut]
    total: int
    pagination: Pagination


class SearchResultOut(CamelModel):
    messages: List[SearchHitOut]
    total: int
    pagination: Pagination


class PromptListOut(CamelModel):
    prompts: List[PromptOut]
    total_prompts: int
    pagination: Pagination


class SendMessageOut(CamelModel):
    chat_id: str
    prompt_id: str
    user_message: MessageOut
    assistant_message: Optional[MessageOut] = None


class AddMessageOut(CamelModel):
    chat_id: str
    prompt_id: str
    message: MessageOut


class ChatStatisticsOut(CamelModel):
    total_messages: int
    total_tokens: int
    last_activity: Optional[datetime] = None
    messages_by_role: Dict[str, int]
    average_response_time: float
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ChatWithDataOut(ChatOut):
    messages: List[MessageOut] = []
    statistics: Optional[ChatStatisticsOut] = None


class ChatsWithDataSummary(CamelModel):
    total_chats: int
    total_messages: int
    total_tokens: int


class ChatsWithDataOut(CamelModel):
    chats: List[ChatWithDataOut]
    summary: ChatsWithDataSummary


class RecentChatOut(CamelModel):
    id: str
    title: Optional[str] = None
    last_activity: Optional[datetime] = None
    total_messages: int


class DashboardOut(CamelModel):
    total_chats: int
    total_messages: int
    total_tokens: int
    active_chats: int
    recent_chats: List[RecentChatOut]
    period: str


class ConversationEntryOut(CamelModel):
    role: str
    content: str
    timestamp: Optional[datetime] = None


class GeminiRequest(CamelModel):
    prompt: Optional[str] = None
