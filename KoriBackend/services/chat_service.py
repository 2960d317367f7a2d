from __future__ import annotations

import logging
import uuid
from collections import Counter
from datetime import timedelta
from typing import Iterable, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from KoriBackend.crud import chat as chat_crud
from KoriBackend.crud import message as message_crud
from KoriBackend.crud import user as user_crud
from KoriBackend.errors import BadRequest, NotFound
from KoriBackend.models.chat_models import DEFAULT_CHAT_SETTINGS, Chat, ChatQuestion, ChatStatus, Prompt, PromptCategory
from KoriBackend.models.columns import utcnow
from KoriBackend.models.message_models import MESSAGE_ROLES, MessageRole, ThreadMessage
from KoriBackend.schemas.chat import (
    AddMessageOut,
    ChatListOut,
    ChatOut,
    ChatsWithDataOut,
    ChatsWithDataSummary,
    ChatStatisticsOut,
    ChatWithDataOut,
    ConversationEntryOut,
    CreateChatRequest,
    CreatePromptRequest,
    DashboardOut,
    MessageOut,
    MessagesPageOut,
    PromptListOut,
    PromptOut,
    QuestionOut,
    RecentChatOut,
    SearchHitOut,
    SearchResultOut,
    SendMessageOut,
    ThreadOut,
    UpdateChatRequest,
    UpdatePromptRequest,
)
from KoriBackend.schemas.common import Pagination
from KoriBackend.services import chat_export
from KoriBackend.services.ai.gemini_chat import GeminiChat, format_conversation, mock_reply


logger = logging.getLogger(__name__)

DEFAULT_PROMPT = {
    "name": "Assistant",
    "designation": "AI Helper",
    "background": "General conversation",
    "category": PromptCategory.OTHER.value,
}
NO_ACTIVE_PROMPT = "No active prompt found. Please provide promptId or create a prompt first."
RECENT_CHATS = 5


def parse_id(value: Optional[str], label: str = "chat ID") -> str:
    try:
        return str(uuid.UUID(str(value)))
    except (TypeError, ValueError):
        raise BadRequest(f"Invalid {label}")


# Mean delay in ms between each user message and the assistant message directly after it
def average_response_time(messages: Sequence[ThreadMessage]) -> float:
    deltas = []
    for prev, nxt in zip(messages, messages[1:]):
        if prev.role == MessageRole.USER.value and nxt.role == MessageRole.ASSISTANT.value:
            if prev.timestamp and nxt.timestamp:
                deltas.append((nxt.timestamp - prev.timestamp).total_seconds() * 1000)
    if not deltas:
        return 0
    return sum(deltas) / len(deltas)


def _role_counts(messages: Iterable[ThreadMessage]) -> dict:
    counts = Counter(m.role for m in messages)
    result = {MessageRole.USER.value: 0, MessageRole.ASSISTANT.value: 0, MessageRole.SYSTEM.value: 0}
    result.update(counts)
    return result


def _persona(prompt: Prompt) -> str:
    parts = []
    if prompt.name:
        parts.append(f"You are {prompt.name}" + (f", {prompt.designation}" if prompt.designation else "") + ".")
    if prompt.age:
        parts.append(f"You are {prompt.age} years old.")
    if prompt.background:
        parts.append(f"Background: {prompt.background}")
    if prompt.unique_perspective:
        parts.append(f"Perspective: {prompt.unique_perspective}")
    return " ".join(parts)


# Chats, their personas and questions, per-(chat, prompt) message threads, statistics and export
class ChatService:
    def __init__(self, db: Session, ai: Optional[GeminiChat] = None):
        self.db = db
        self.ai = ai

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def _owned_chat(self, chat_id: str, user_id: str) -> Chat:
        chat = chat_crud.get_owned_chat(self.db, parse_id(chat_id), user_id)
        if chat is None:
            raise NotFound("Chat not found")
        return chat

    @staticmethod
    def _chat_prompt(chat: Chat, prompt_id: str) -> Prompt:
        prompt_id = parse_id(prompt_id, "prompt ID")
        for prompt in chat.prompts:
            if prompt.id == prompt_id:
                return prompt
        raise NotFound("Prompt not found")

    @staticmethod
    def _chat_question(chat: Chat, question_id: str) -> ChatQuestion:
        question_id = parse_id(question_id, "question ID")
        for question in chat.questions:
            if question.id == question_id:
                return question
        raise NotFound("Question not found")

    def _touch(self, chat: Chat) -> None:
        chat.last_activity = utcnow()

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------
    def create_chat(self, user_id: str, payload: Optional[CreateChatRequest] = None) -> ChatOut:
        if user_crud.get_user(self.db, user_id) is None:
            raise NotFound("User not found")
        payload = payload or CreateChatRequest()

        settings = dict(DEFAULT_CHAT_SETTINGS)
        if payload.settings:
            settings.update(payload.settings.as_stored())
        now = utcnow()
        chat = Chat(
            user_id=user_id,
            title=payload.title or f"Chat {now.strftime('%Y-%m-%d')}",
            initial_prompt=payload.initial_prompt or None,
            category=payload.category.value if payload.category else None,
            status=ChatStatus.ACTIVE.value,
            settings=settings,
            tags=list(payload.tags or []),
            last_activity=now,
            created_at=now,
            updated_at=now,
        )
        self.db.add(chat)
        self.db.commit()
        self.db.refresh(chat)
        logger.info("chat.create chat_id=%s user_id=%s", chat.id, user_id)
        return ChatOut.from_chat(chat)

    def get_user_chats(self, user_id: str, *, status: str = ChatStatus.ACTIVE.value, page: int = 1, limit: int = 10) -> ChatListOut:
        total = chat_crud.count_user_chats(self.db, user_id, status)
        chats = chat_crud.list_user_chats(self.db, user_id, status, offset=(page - 1) * limit, limit=limit)
        return ChatListOut(
            chats=[ChatOut.from_chat(c, active_prompts_only=True) for c in chats],
            total_chats=total,
            pagination=Pagination.build(page, limit, total),
        )

    def get_chat_by_id(self, chat_id: str, user_id: str, *, include_messages: bool = True) -> ChatWithDataOut:
        chat = self._owned_chat(chat_id, user_id)
        out = ChatWithDataOut(**ChatOut.from_chat(chat).model_dump())
        if include_messages:
            out.messages = [MessageOut.from_message(m) for m in message_crud.chat_messages(self.db, chat.id)]
        return out

    # Every chat of a status with its messages and statistics, plus totals
    def get_all_user_chats_with_data(self, user_id: str, *, status: str = ChatStatus.ACTIVE.value) -> ChatsWithDataOut:
        chats = chat_crud.list_user_chats(self.db, user_id, status)
        grouped = message_crud.messages_by_chat(self.db, [c.id for c in chats])

        items = []
        total_messages = 0
        total_tokens = 0
        for chat in chats:
            messages = grouped.get(chat.id, [])
            stats = self._statistics(chat, messages)
            total_messages += stats.total_messages
            total_tokens += stats.total_tokens
            item = ChatWithDataOut(**ChatOut.from_chat(chat).model_dump())
            item.messages = [MessageOut.from_message(m) for m in messages]
            item.statistics = stats
            items.append(item)

        return ChatsWithDataOut(
            chats=items,
            summary=ChatsWithDataSummary(total_chats=len(items), total_messages=total_messages, total_tokens=total_tokens),
        )

    def search_by_initial_prompt(self, user_id: str, text: str, *, limit: int = 10) -> list[ChatOut]:
        text = (text or "").strip()
        if not text:
            raise BadRequest("Search text is required")
        return [ChatOut.from_chat(c) for c in chat_crud.search_by_initial_prompt(self.db, user_id, text, limit)]

    # Whitelisted partial update; settings are shallow-merged into the stored ones
    def update_chat(self, chat_id: str, user_id: str, payload: UpdateChatRequest) -> ChatOut:
        chat = self._owned_chat(chat_id, user_id)
        changes = payload.model_dump(exclude_unset=True)

        if "title" in changes and changes["title"] is not None:
            chat.title = changes["title"]
        if "initial_prompt" in changes:
            chat.initial_prompt = changes["initial_prompt"]
        if "status" in changes and changes["status"] is not None:
            chat.status = payload.status.value
        if "tags" in changes and changes["tags"] is not None:
            chat.tags = list(changes["tags"])
        if payload.settings is not None:
            merged = dict(chat.settings or {})
            merged.update(payload.settings.as_stored())
            chat.settings = merged

        self.db.commit()
        self.db.refresh(chat)
        return ChatOut.from_chat(chat)

    def update_initial_prompt(self, chat_id: str, user_id: str, initial_prompt: str) -> ChatOut:
        return self.update_chat(chat_id, user_id, UpdateChatRequest(initial_prompt=initial_prompt.strip()))

    def remove_initial_prompt(self, chat_id: str, user_id: str) -> ChatOut:
        return self.update_chat(chat_id, user_id, UpdateChatRequest(initial_prompt=None))

    # Soft delete flips status; permanent delete removes the chat with prompts, questions and threads
    def delete_chat(self, chat_id: str, user_id: str, *, permanent: bool = False) -> bool:
        chat = self._owned_chat(chat_id, user_id)
        if permanent:
            self.db.delete(chat)
        else:
            chat.status = ChatStatus.DELETED.value
        self.db.commit()
        logger.info("chat.delete chat_id=%s permanent=%s", chat_id, permanent)
        return True

    def get_current_session(self, user_id: str) -> Optional[ChatOut]:
        chat = chat_crud.latest_active_chat(self.db, user_id)
        return ChatOut.from_chat(chat) if chat else None

    # Archives the current active chat (if any) and opens a fresh one
    def start_new_session(self, user_id: str, payload: Optional[CreateChatRequest] = None) -> ChatOut:
        current = chat_crud.latest_active_chat(self.db, user_id)
        if current is not None:
            current.status = ChatStatus.ARCHIVED.value
            self.db.flush()
        return self.create_chat(user_id, payload)

    def archive_old_chats(self, days: int = 30) -> int:
        cutoff = utcnow() - timedelta(days=days)
        changed = chat_crud.archive_chats_created_before(self.db, cutoff)
        self.db.commit()
        logger.info("chat.archive.sweep days=%s archived=%s", days, changed)
        return changed

    # ------------------------------------------------------------------
    # Prompts
    # ------------------------------------------------------------------
    def add_prompt(self, chat_id: str, user_id: str, payload: CreatePromptRequest) -> PromptOut:
        chat = self._owned_chat(chat_id, user_id)
        profile = payload.profile
        prompt = Prompt(
            position=len(chat.prompts),
            name=profile.name,
            designation=profile.designation,
            age=profile.age,
            unique_perspective=profile.unique_perspective or payload.unique_perspective,
            background=payload.background,
            category=payload.category.value if payload.category else None,
            image_url=payload.image_url,
            is_active=payload.is_active,
            created_at=utcnow(),
        )
        chat.prompts.append(prompt)
        self._touch(chat)
        self.db.commit()
        self.db.refresh(prompt)
        return PromptOut.from_prompt(prompt)

    def get_chat_prompts(
        self, chat_id: str, user_id: str, *, category: Optional[str] = None, page: int = 1, limit: int = 10
    ) -> PromptListOut:
        chat = self._owned_chat(chat_id, user_id)
        prompts = chat.active_prompts
        if category:
            prompts = [p for p in prompts if p.category == category]
        total = len(prompts)
        start = (page - 1) * limit
        return PromptListOut(
            prompts=[PromptOut.from_prompt(p) for p in prompts[start:start + limit]],
            total_prompts=total,
            pagination=Pagination.build(page, limit, total),
        )

    def get_prompt_by_id(self, chat_id: str, prompt_id: str, user_id: str) -> PromptOut:
        chat = self._owned_chat(chat_id, user_id)
        return PromptOut.from_prompt(self._chat_prompt(chat, prompt_id))

    # Profile fields are merged one by one; unset fields keep their stored value
    def update_prompt(self, chat_id: str, prompt_id: str, user_id: str, payload: UpdatePromptRequest) -> PromptOut:
        chat = self._owned_chat(chat_id, user_id)
        prompt = self._chat_prompt(chat, prompt_id)
        changes = payload.model_dump(exclude_unset=True)

        if payload.profile is not None:
            for field, value in payload.profile.model_dump(exclude_unset=True).items():
                setattr(prompt, field, value)
        if "unique_perspective" in changes:
            prompt.unique_perspective = payload.unique_perspective
        if "background" in changes:
            prompt.background = payload.background
        if "category" in changes:
            prompt.category = payload.category.value if payload.category else None
        if "image_url" in changes:
            prompt.image_url = payload.image_url
        if payload.is_active is not None:
            prompt.is_active = payload.is_active

        self._touch(chat)
        self.db.commit()
        self.db.refresh(prompt)
        return PromptOut.from_prompt(prompt)

    # Deactivates the prompt; deleting an inactive prompt again is a no-op
    def delete_prompt(self, chat_id: str, prompt_id: str, user_id: str) -> bool:
        chat = self._owned_chat(chat_id, user_id)
        prompt = self._chat_prompt(chat, prompt_id)
        if prompt.is_active:
            prompt.is_active = False
            self._touch(chat)
            self.db.commit()
        return True

    # ------------------------------------------------------------------
    # Questions
    # ------------------------------------------------------------------
    def add_question(self, chat_id: str, user_id: str, *, category: str, question: str) -> QuestionOut:
        chat = self._owned_chat(chat_id, user_id)
        row = ChatQuestion(position=len(chat.questions), category=category.strip(), question=question.strip())
        chat.questions.append(row)
        self.db.commit()
        self.db.refresh(row)
        return QuestionOut.model_validate(row)

    def get_questions(self, chat_id: str, user_id: str, *, category: Optional[str] = None) -> list[QuestionOut]:
        chat = self._owned_chat(chat_id, user_id)
        rows = [q for q in chat.questions if not category or q.category == category]
        return [QuestionOut.model_validate(q) for q in rows]

    def update_question(
        self, chat_id: str, question_id: str, user_id: str, *, category: Optional[str] = None, question: Optional[str] = None
    ) -> QuestionOut:
        chat = self._owned_chat(chat_id, user_id)
        row = self._chat_question(chat, question_id)
        if category:
            row.category = category.strip()
        if question:
            row.question = question.strip()
        self.db.commit()
        self.db.refresh(row)
        return QuestionOut.model_validate(row)

    def delete_question(self, chat_id: str, question_id: str, user_id: str) -> bool:
        chat = self._owned_chat(chat_id, user_id)
        row = self._chat_question(chat, question_id)
        chat.questions.remove(row)
        self.db.commit()
        return True

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------
    # Explicit prompt, else the first active one, else a default persona created on the fly
    def _resolve_prompt(self, chat: Chat, prompt_id: Optional[str]) -> Prompt:
        if prompt_id:
            prompt = self._chat_prompt(chat, prompt_id)
            if not prompt.is_active:
                raise NotFound("Prompt not found")
            return prompt

        active = chat.active_prompts
        if active:
            return active[0]

        prompt = Prompt(position=len(chat.prompts), is_active=True, created_at=utcnow(), **DEFAULT_PROMPT)
        chat.prompts.append(prompt)
        self.db.flush()
        logger.info("chat.prompt.default chat_id=%s prompt_id=%s", chat.id, prompt.id)
        return prompt

    # Stores the user's message, then (optionally) asks the AI and stores its reply
    async def send_message(
        self,
        chat_id: str,
        user_id: str,
        message: str,
        *,
        prompt_id: Optional[str] = None,
        reset: bool = False,
        generate_reply: bool = True,
    ) -> SendMessageOut:
        chat = self._owned_chat(chat_id, user_id)
        prompt = self._resolve_prompt(chat, prompt_id)

        if reset:
            message_crud.soft_delete_threads(self.db, chat.id, prompt.id)
        user_msg = message_crud.append_message(
            self.db,
            chat_id=chat.id,
            prompt_id=prompt.id,
            user_id=user_id,
            role=MessageRole.USER.value,
            content=message,
        )
        self._touch(chat)
        self.db.commit()

        out = SendMessageOut(chat_id=chat.id, prompt_id=prompt.id, user_message=MessageOut.from_message(user_msg))
        if not generate_reply:
            return out

        history = [(m.role, m.content) for m in message_crud.chat_messages(self.db, chat.id, prompt.id)]
        conversation = format_conversation(history, persona=_persona(prompt))
        reply = await self.ai.complete_or_mock(conversation) if self.ai else mock_reply(conversation)

        try:
            bot_msg = message_crud.append_message(
                self.db,
                chat_id=chat.id,
                prompt_id=prompt.id,
                user_id=user_id,
                role=MessageRole.ASSISTANT.value,
                content=reply.content,
                metadata=reply.as_metadata(),
            )
            self._touch(chat)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("chat.reply.save.error chat_id=%s error=%s", chat.id, e)
            return out

        out.assistant_message = MessageOut.from_message(bot_msg)
        return out

    def add_message(
        self,
        chat_id: str,
        user_id: str,
        *,
        role: str,
        content: str,
        metadata: Optional[dict] = None,
        prompt_id: Optional[str] = None,
    ) -> AddMessageOut:
        role = getattr(role, "value", role)
        if role not in MESSAGE_ROLES:
            raise BadRequest(f"Invalid role. Must be one of: {', '.join(MESSAGE_ROLES)}")
        content = (content or "").strip()
        if not content:
            raise BadRequest("Message content is required")

        chat = self._owned_chat(chat_id, user_id)
        if prompt_id:
            prompt = self._chat_prompt(chat, prompt_id)
        else:
            active = chat.active_prompts
            if not active:
                raise BadRequest(NO_ACTIVE_PROMPT)
            prompt = active[0]

        msg = message_crud.append_message(
            self.db,
            chat_id=chat.id,
            prompt_id=prompt.id,
            user_id=user_id,
            role=role,
            content=content,
            metadata=metadata,
        )
        self._touch(chat)
        self.db.commit()
        return AddMessageOut(chat_id=chat.id, prompt_id=prompt.id, message=MessageOut.from_message(msg))

    def get_messages(
        self, chat_id: str, user_id: str, *, prompt_id: Optional[str] = None, page: int = 1, limit: int = 50
    ) -> MessagesPageOut:
        chat = self._owned_chat(chat_id, user_id)
        if prompt_id:
            prompt_id = parse_id(prompt_id, "prompt ID")
        total = message_crud.count_threads(self.db, chat.id, prompt_id)
        threads = message_crud.list_threads(self.db, chat.id, prompt_id, offset=(page - 1) * limit, limit=limit)
        return MessagesPageOut(
            messages=[ThreadOut.from_thread(t) for t in threads],
            total=total,
            pagination=Pagination.build(page, limit, total),
        )

    def search_messages(
        self, chat_id: str, user_id: str, query: str, *, prompt_id: Optional[str] = None, page: int = 1, limit: int = 20
    ) -> SearchResultOut:
        query = (query or "").strip()
        if not query:
            raise BadRequest("Search query is required")
        chat = self._owned_chat(chat_id, user_id)
        if prompt_id:
            prompt_id = parse_id(prompt_id, "prompt ID")

        hits = message_crud.search_messages(self.db, chat.id, query, prompt_id)
        start = (page - 1) * limit
        return SearchResultOut(
            messages=[
                SearchHitOut(
                    **MessageOut.from_message(msg).model_dump(),
                    thread_id=thread.id,
                    prompt_id=thread.prompt_id,
                    chat_id=thread.chat_id,
                )
                for thread, msg in hits[start:start + limit]
            ],
            total=len(hits),
            pagination=Pagination.build(page, limit, len(hits)),
        )

    def get_conversation_history(
        self, chat_id: str, user_id: str, *, prompt_id: Optional[str] = None, include_system: bool = True
    ) -> list[ConversationEntryOut]:
        chat = self._owned_chat(chat_id, user_id)
        if prompt_id:
            prompt_id = parse_id(prompt_id, "prompt ID")
        entries = []
        for m in message_crud.chat_messages(self.db, chat.id, prompt_id):
            if not include_system and m.role == MessageRole.SYSTEM.value:
                continue
            entries.append(ConversationEntryOut(role=m.role, content=m.content, timestamp=m.timestamp))
        return entries

    # Soft-deletes the live thread of one persona so the next message starts fresh
    def clear_thread(self, chat_id: str, prompt_id: str, user_id: str) -> int:
        chat = self._owned_chat(chat_id, user_id)
        prompt = self._chat_prompt(chat, prompt_id)
        cleared = message_crud.soft_delete_threads(self.db, chat.id, prompt.id)
        self.db.commit()
        return cleared

    # ------------------------------------------------------------------
    # Statistics, export, dashboard
    # ------------------------------------------------------------------
    def _statistics(self, chat: Chat, messages: Sequence[ThreadMessage]) -> ChatStatisticsOut:
        return ChatStatisticsOut(
            total_messages=len(messages),
            total_tokens=sum(m.token_count or 0 for m in messages),
            last_activity=chat.last_activity,
            messages_by_role=_role_counts(messages),
            average_response_time=average_response_time(messages),
            created_at=chat.created_at,
            updated_at=chat.updated_at,
        )

    def get_chat_statistics(self, chat_id: str, user_id: str) -> ChatStatisticsOut:
        chat = self._owned_chat(chat_id, user_id)
        return self._statistics(chat, message_crud.chat_messages(self.db, chat.id))

    # Returns (body, filename, content type)
    def export_chat(self, chat_id: str, user_id: str, fmt: str = "json") -> tuple[str, str, str]:
        try:
            export_format = chat_export.ExportFormat(str(fmt).lower())
        except ValueError:
            raise BadRequest("Invalid export format. Must be one of: json, txt, csv")

        chat = self._owned_chat(chat_id, user_id)
        messages = message_crud.chat_messages(self.db, chat.id)
        stats = self._statistics(chat, messages).model_dump(mode="json", by_alias=True)
        payload = chat_export.export_payload(chat, messages, stats)
        body = chat_export.render(payload, export_format)
        filename = f"chat-{chat.id}.{export_format.value}"
        return body, filename, chat_export.CONTENT_TYPES[export_format]

    # Totals over chats created in the trailing window, plus the most recently active chats
    def get_dashboard_data(self, user_id: str, *, days: int = 30) -> DashboardOut:
        since = utcnow() - timedelta(days=days)
        chats = chat_crud.chats_created_since(self.db, user_id, since)
        grouped = message_crud.messages_by_chat(self.db, [c.id for c in chats])

        total_messages = sum(len(msgs) for msgs in grouped.values())
        total_tokens = sum(m.token_count or 0 for msgs in grouped.values() for m in msgs)
        active = sum(1 for c in chats if c.status == ChatStatus.ACTIVE.value)

        recent = chat_crud.list_user_chats(self.db, user_id, ChatStatus.ACTIVE.value, limit=RECENT_CHATS)
        recent_counts = message_crud.messages_by_chat(self.db, [c.id for c in recent])
        return DashboardOut(
            total_chats=len(chats),
            total_messages=total_messages,
            total_tokens=total_tokens,
            active_chats=active,
            recent_chats=[
                RecentChatOut(
                    id=c.id,
                    title=c.title,
                    last_activity=c.last_activity,
                    total_messages=len(recent_counts.get(c.id, [])),
                )
                for c in recent
            ],
            period=f"{days} days",
        )
