from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from KoriBackend.models.columns import utcnow
from KoriBackend.models.user_model import RefreshToken, User


REFRESH_TOKEN_TTL = timedelta(days=7)


# Get user by primary key
def get_user(session: Session, user_id: str) -> Optional[User]:
    return session.get(User, user_id)


# Get user by email (case-insensitive; emails are stored lower-cased)
def get_user_by_email(session: Session, email: str) -> Optional[User]:
    stmt = select(User).where(User.email == (email or "").strip().lower())
    return session.execute(stmt).scalar_one_or_none()


def get_user_by_google_id(session: Session, google_id: str) -> Optional[User]:
    stmt = select(User).where(User.google_id == google_id)
    return session.execute(stmt).scalar_one_or_none()


# Find the user holding an unexpired hashed reset token
def get_user_by_reset_token(session: Session, hashed_token: str, now: Optional[datetime] = None) -> Optional[User]:
    now = now or utcnow()
    stmt = select(User).where(
        User.reset_password_token == hashed_token,
        User.reset_password_expire > now,
    )
    return session.execute(stmt).scalar_one_or_none()


def email_taken_by_other(session: Session, email: str, user_id: str) -> bool:
    stmt = select(User.id).where(User.email == email.strip().lower(), User.id != user_id)
    return session.execute(stmt).first() is not None


# Append a refresh token, dropping expired ones and keeping only the newest `keep`
def add_refresh_token(session: Session, user: User, token: str, keep: int = 5) -> RefreshToken:
    now = utcnow()
    for stale in [t for t in user.refresh_tokens if t.created_at and now - t.created_at > REFRESH_TOKEN_TTL]:
        user.refresh_tokens.remove(stale)

    row = RefreshToken(token=token, created_at=now)
    user.refresh_tokens.append(row)
    overflow = len(user.refresh_tokens) - keep
    if overflow > 0:
        for old in list(user.refresh_tokens[:overflow]):
            user.refresh_tokens.remove(old)
    session.flush()
    return row


def has_refresh_token(user: User, token: str) -> bool:
    now = utcnow()
    return any(
        t.token == token and (t.created_at is None or now - t.created_at <= REFRESH_TOKEN_TTL)
        for t in user.refresh_tokens
    )


def remove_refresh_token(session: Session, user: User, token: str) -> None:
    for row in [t for t in user.refresh_tokens if t.token == token]:
        user.refresh_tokens.remove(row)
    session.flush()


def clear_refresh_tokens(session: Session, user: User) -> None:
    user.refresh_tokens.clear()
    session.flush()
