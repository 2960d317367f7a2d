from typing import Any, Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from KoriBackend.models.columns import utcnow
from KoriBackend.models.message_models import MessageThread, ThreadMessage


# Get the live thread for a (chat, prompt) pair
def get_active_thread(session: Session, chat_id: str, prompt_id: str) -> Optional[MessageThread]:
    stmt = (
        select(MessageThread)
        .where(
            MessageThread.chat_id == chat_id,
            MessageThread.prompt_id == prompt_id,
            MessageThread.deleted.is_(False),
        )
        .order_by(MessageThread.updated_at.desc())
        .limit(1)
    )
    return session.execute(stmt).scalar_one_or_none()


# Append one entry to the (chat, prompt) thread, creating the thread on first message
def append_message(
    session: Session,
    *,
    chat_id: str,
    prompt_id: str,
    user_id: str,
    role: str,
    content: str,
    metadata: Optional[dict[str, Any]] = None,
) -> ThreadMessage:
    thread = get_active_thread(session, chat_id, prompt_id)
    if thread is None:
        thread = MessageThread(chat_id=chat_id, prompt_id=prompt_id, user_id=user_id)
        session.add(thread)
        session.flush()

    metadata = metadata or {}
    msg = ThreadMessage(
        role=role,
        content=content,
        timestamp=utcnow(),
        token_count=metadata.get("tokenCount"),
        processing_time=metadata.get("processingTime"),
        model=metadata.get("model"),
    )
    thread.messages.append(msg)
    thread.updated_at = msg.timestamp
    session.flush()
    return msg


def _thread_filter(chat_id: str, prompt_id: Optional[str], include_deleted: bool = False) -> list:
    clauses = [MessageThread.chat_id == chat_id]
    if prompt_id:
        clauses.append(MessageThread.prompt_id == prompt_id)
    if not include_deleted:
        clauses.append(MessageThread.deleted.is_(False))
    return clauses


# Page of threads in a chat (optionally one prompt), newest first
def list_threads(session: Session, chat_id: str, prompt_id: Optional[str] = None, offset: int = 0, limit: int = 50) -> list[MessageThread]:
    stmt = (
        select(MessageThread)
        .where(*_thread_filter(chat_id, prompt_id))
        .order_by(MessageThread.updated_at.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(session.execute(stmt).scalars())


def count_threads(session: Session, chat_id: str, prompt_id: Optional[str] = None) -> int:
    stmt = select(func.count(MessageThread.id)).where(*_thread_filter(chat_id, prompt_id))
    return int(session.execute(stmt).scalar_one())


# All live messages of a chat (optionally one prompt) in conversation order
def chat_messages(session: Session, chat_id: str, prompt_id: Optional[str] = None) -> list[ThreadMessage]:
    stmt = (
        select(ThreadMessage)
        .join(MessageThread, ThreadMessage.thread_id == MessageThread.id)
        .where(*_thread_filter(chat_id, prompt_id))
        .order_by(ThreadMessage.timestamp, ThreadMessage.id)
    )
    return list(session.execute(stmt).scalars())


# Live messages for many chats at once, grouped by chat id
def messages_by_chat(session: Session, chat_ids: Iterable[str]) -> dict[str, list[ThreadMessage]]:
    ids = list(chat_ids)
    grouped: dict[str, list[ThreadMessage]] = {cid: [] for cid in ids}
    if not ids:
        return grouped
    stmt = (
        select(MessageThread.chat_id, ThreadMessage)
        .select_from(ThreadMessage)
        .join(MessageThread, ThreadMessage.thread_id == MessageThread.id)
        .where(MessageThread.chat_id.in_(ids), MessageThread.deleted.is_(False))
        .order_by(ThreadMessage.timestamp, ThreadMessage.id)
    )
    for chat_id, msg in session.execute(stmt):
        grouped[chat_id].append(msg)
    return grouped


# Linear case-insensitive substring scan over message content
def search_messages(session: Session, chat_id: str, query: str, prompt_id: Optional[str] = None) -> list[tuple[MessageThread, ThreadMessage]]:
    needle = query.lower()
    stmt = (
        select(MessageThread, ThreadMessage)
        .select_from(MessageThread)
        .join(ThreadMessage, ThreadMessage.thread_id == MessageThread.id)
        .where(*_thread_filter(chat_id, prompt_id))
        .order_by(ThreadMessage.timestamp, ThreadMessage.id)
    )
    return [(thread, msg) for thread, msg in session.execute(stmt) if needle in (msg.content or "").lower()]


def soft_delete_threads(session: Session, chat_id: str, prompt_id: str) -> int:
    stmt = (
        update(MessageThread)
        .where(*_thread_filter(chat_id, prompt_id))
        .values(deleted=True, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return session.execute(stmt).rowcount or 0


def soft_delete_user_threads(session: Session, user_id: str) -> int:
    stmt = (
        update(MessageThread)
        .where(MessageThread.user_id == user_id)
        .values(deleted=True)
        .execution_options(synchronize_session=False)
    )
    return session.execute(stmt).rowcount or 0
