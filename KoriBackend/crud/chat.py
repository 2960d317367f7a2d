from datetime import datetime
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from KoriBackend.models.chat_models import Chat, ChatStatus


# Get a chat only if it belongs to the given user
def get_owned_chat(session: Session, chat_id: str, user_id: str) -> Optional[Chat]:
    stmt = select(Chat).where(Chat.id == chat_id, Chat.user_id == user_id)
    return session.execute(stmt).scalar_one_or_none()


# Page of a user's chats by status, most recently active first
def list_user_chats(session: Session, user_id: str, status: str, offset: int = 0, limit: Optional[int] = None) -> list[Chat]:
    stmt = (
        select(Chat)
        .where(Chat.user_id == user_id, Chat.status == status)
        .order_by(Chat.last_activity.desc(), Chat.created_at.desc())
        .offset(offset)
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(session.execute(stmt).scalars())


def count_user_chats(session: Session, user_id: str, status: str) -> int:
    stmt = select(func.count(Chat.id)).where(Chat.user_id == user_id, Chat.status == status)
    return int(session.execute(stmt).scalar_one())


# Case-insensitive substring search over the initial prompt of active chats
def search_by_initial_prompt(session: Session, user_id: str, text: str, limit: int = 10) -> list[Chat]:
    stmt = (
        select(Chat)
        .where(
            Chat.user_id == user_id,
            Chat.status == ChatStatus.ACTIVE.value,
            func.lower(Chat.initial_prompt).contains(text.lower(), autoescape=True),
        )
        .order_by(Chat.created_at.desc())
        .limit(limit)
    )
    return list(session.execute(stmt).scalars())


# Chats created on or after `since` (dashboard window)
def chats_created_since(session: Session, user_id: str, since: datetime) -> list[Chat]:
    stmt = select(Chat).where(Chat.user_id == user_id, Chat.created_at >= since)
    return list(session.execute(stmt).scalars())


def latest_active_chat(session: Session, user_id: str) -> Optional[Chat]:
    chats = list_user_chats(session, user_id, ChatStatus.ACTIVE.value, limit=1)
    return chats[0] if chats else None


def mark_user_chats(session: Session, user_id: str, status: str) -> int:
    stmt = update(Chat).where(Chat.user_id == user_id).values(status=status).execution_options(synchronize_session=False)
    return session.execute(stmt).rowcount or 0


# Flip active chats created before `cutoff` to archived; returns number changed
def archive_chats_created_before(session: Session, cutoff: datetime) -> int:
    stmt = (
        update(Chat)
        .where(Chat.status == ChatStatus.ACTIVE.value, Chat.created_at < cutoff)
        .values(status=ChatStatus.ARCHIVED.value)
        .execution_options(synchronize_session=False)
    )
    return session.execute(stmt).rowcount or 0
