from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from KoriBackend.config import get_settings
from KoriBackend.crud import chat as chat_crud
from KoriBackend.crud import message as message_crud
from KoriBackend.crud import user as user_crud
from KoriBackend.errors import BadRequest, Conflict, InternalError, NotFound, Unauthorized
from KoriBackend.models.chat_models import ChatStatus
from KoriBackend.models.columns import utcnow
from KoriBackend.models.user_model import AuthProvider, User, UserRole
from KoriBackend.schemas.auth import UserOut
from KoriBackend.services import tokens
from KoriBackend.services.google_oauth import GoogleIdentity, GoogleOAuthClient
from KoriBackend.services.passwords import hash_password, verify_password


logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"
ACCOUNT_LOCKED = "Account temporarily locked due to too many failed login attempts. Please try again later."
RESET_REQUESTED = "If an account with that email exists, a password reset link has been sent."


@dataclass(frozen=True)
class AuthResult:
    user: UserOut
    access_token: str
    refresh_token: str


def _hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


# Registration, login with lockout, JWT pair issuance/rotation, password lifecycle and Google linking
class AuthService:
    def __init__(self, db: Session, google: Optional[GoogleOAuthClient] = None):
        self.db = db
        self.settings = get_settings()
        self._google = google

    @property
    def google(self) -> GoogleOAuthClient:
        if self._google is None:
            self._google = GoogleOAuthClient(self.settings)
        return self._google

    def _require_user(self, user_id: str) -> User:
        user = user_crud.get_user(self.db, user_id)
        if not user:
            raise NotFound("User not found")
        return user

    def _issue_tokens(self, user: User) -> AuthResult:
        pair = tokens.create_token_pair(user.id, user.email)
        user_crud.add_refresh_token(self.db, user, pair.refresh_token, keep=self.settings.max_refresh_tokens)
        self.db.commit()
        self.db.refresh(user)
        return AuthResult(
            user=UserOut.model_validate(user),
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
        )

    def register(self, *, full_name: str, email: str, password: str) -> AuthResult:
        email = email.strip().lower()
        if user_crud.get_user_by_email(self.db, email):
            raise Conflict("User with this email already exists")

        user = User(
            full_name=full_name,
            email=email,
            password_hash=hash_password(password),
            auth_provider=AuthProvider.LOCAL.value,
            role=UserRole.USER.value,
            is_verified=False,
        )
        self.db.add(user)
        self.db.flush()
        logger.info("auth.register user_id=%s", user.id)
        return self._issue_tokens(user)

    # Failed attempt bookkeeping: an expired lock restarts the count at 1
    def _register_failed_attempt(self, user: User) -> None:
        now = utcnow()
        if user.lock_until and user.lock_until < now:
            user.lock_until = None
            user.login_attempts = 1
            return

        was_locked = user.is_locked(now)
        user.login_attempts = (user.login_attempts or 0) + 1
        if user.login_attempts >= self.settings.max_login_attempts and not was_locked:
            user.lock_until = now + timedelta(seconds=self.settings.lock_time_seconds)
            logger.warning("auth.login.locked user_id=%s", user.id)

    def login(self, *, email: str, password: str) -> AuthResult:
        user = user_crud.get_user_by_email(self.db, email)
        if not user:
            raise Unauthorized(INVALID_CREDENTIALS)

        if user.is_locked():
            self._register_failed_attempt(user)
            self.db.commit()
            raise Unauthorized(ACCOUNT_LOCKED)

        if not verify_password(password, user.password_hash):
            self._register_failed_attempt(user)
            self.db.commit()
            raise Unauthorized(INVALID_CREDENTIALS)

        user.login_attempts = 0
        user.lock_until = None
        logger.info("auth.login user_id=%s", user.id)
        return self._issue_tokens(user)

    def refresh_access_token(self, refresh_token: Optional[str]) -> str:
        if not refresh_token:
            raise Unauthorized("Refresh token is required")
        payload = tokens.verify_refresh_token(refresh_token)

        user = user_crud.get_user(self.db, payload["userId"])
        if not user:
            raise Unauthorized("User not found")
        if not user_crud.has_refresh_token(user, refresh_token):
            raise Unauthorized("Invalid refresh token")
        return tokens.create_access_token(user.id, user.email)

    def logout(self, user_id: str, refresh_token: Optional[str]) -> dict:
        user = self._require_user(user_id)
        if refresh_token:
            user_crud.remove_refresh_token(self.db, user, refresh_token)
            self.db.commit()
        return {"message": "Logged out successfully"}

    def logout_all(self, user_id: str) -> dict:
        user = self._require_user(user_id)
        user_crud.clear_refresh_tokens(self.db, user)
        self.db.commit()
        return {"message": "Logged out from all devices successfully"}

    def get_profile(self, user_id: str) -> UserOut:
        return UserOut.model_validate(self._require_user(user_id))

    def update_profile(self, user_id: str, *, full_name: Optional[str] = None, email: Optional[str] = None) -> UserOut:
        user = self._require_user(user_id)
        if email:
            email = email.strip().lower()
            if user_crud.email_taken_by_other(self.db, email, user_id):
                raise Conflict("Email is already in use")
            user.email = email
        if full_name:
            user.full_name = full_name
        self.db.commit()
        self.db.refresh(user)
        return UserOut.model_validate(user)

    def change_password(self, user_id: str, *, current_password: str, new_password: str) -> dict:
        user = self._require_user(user_id)
        if not verify_password(current_password, user.password_hash):
            raise Unauthorized("Current password is incorrect")

        user.password_hash = hash_password(new_password)
        user_crud.clear_refresh_tokens(self.db, user)
        self.db.commit()
        logger.info("auth.password.changed user_id=%s", user.id)
        return {"message": "Password changed successfully. Please log in again."}

    def generate_password_reset_token(self, email: str) -> dict:
        result = {"message": RESET_REQUESTED}
        user = user_crud.get_user_by_email(self.db, email)
        if not user:
            return result

        raw_token = secrets.token_hex(32)
        user.reset_password_token = _hash_reset_token(raw_token)
        user.reset_password_expire = utcnow() + timedelta(seconds=self.settings.reset_token_ttl_seconds)
        self.db.commit()

        # No mail integration yet: hand the raw token back outside production
        if not self.settings.is_production:
            result["resetToken"] = raw_token
        return result

    def reset_password(self, token: str, new_password: str) -> dict:
        user = user_crud.get_user_by_reset_token(self.db, _hash_reset_token(token))
        if not user:
            raise BadRequest("Password reset token is invalid or has expired")

        user.password_hash = hash_password(new_password)
        user.reset_password_token = None
        user.reset_password_expire = None
        user_crud.clear_refresh_tokens(self.db, user)
        self.db.commit()
        return {"message": "Password reset successful. Please log in with your new password."}

    def verify_account(self, user_id: str) -> dict:
        user = self._require_user(user_id)
        user.is_verified = True
        self.db.commit()
        return {"message": "Account verified successfully"}

    def google_auth_url(self, state: Optional[str] = None) -> str:
        return self.google.auth_url(state)

    def google_sign_in_with_id_token(self, id_token: str) -> AuthResult:
        return self._google_sign_in(self.google.verify_id_token(id_token))

    def google_sign_in_with_code(self, code: str) -> AuthResult:
        identity = self.google.exchange_code(code)
        if not identity.email_verified:
            raise BadRequest("Google email is not verified")
        return self._google_sign_in(identity)

    # Creates or links the Google account; refuses to take over a local-password account by email
    def _google_sign_in(self, identity: GoogleIdentity) -> AuthResult:
        user = user_crud.get_user_by_google_id(self.db, identity.google_id)
        if user is None:
            existing = user_crud.get_user_by_email(self.db, identity.email)
            if existing and existing.auth_provider == AuthProvider.LOCAL.value:
                raise Conflict("An account with this email already exists. Please sign in with your password.")
            if existing:
                existing.google_id = identity.google_id
                user = existing
            else:
                user = User(
                    full_name=identity.name or identity.email.split("@")[0],
                    email=identity.email.strip().lower(),
                    google_id=identity.google_id,
                    auth_provider=AuthProvider.GOOGLE.value,
                    role=UserRole.USER.value,
                )
                self.db.add(user)
                logger.info("auth.google.signup email_domain=%s", identity.email.split("@")[-1])

        if identity.name and user.full_name != identity.name:
            user.full_name = identity.name
        if identity.picture and user.avatar != identity.picture:
            user.avatar = identity.picture
        user.is_verified = True
        self.db.flush()
        return self._issue_tokens(user)

    # Soft-deletes the user's chats and threads, then removes the account row
    def delete_profile(self, user_id: str) -> dict:
        user = self._require_user(user_id)
        try:
            chat_crud.mark_user_chats(self.db, user.id, ChatStatus.DELETED.value)
            message_crud.soft_delete_user_threads(self.db, user.id)
            self.db.delete(user)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("auth.profile.delete.error user_id=%s", user_id)
            raise InternalError(f"Failed to delete user profile: {e}")
        return {"message": "Profile deleted successfully"}
