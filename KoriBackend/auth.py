import logging
from typing import Callable, Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from KoriBackend.crud.user import get_user
from KoriBackend.database import get_db
from KoriBackend.errors import Forbidden, Unauthorized
from KoriBackend.models.user_model import User
from KoriBackend.services.tokens import extract_bearer_token, verify_access_token

logger = logging.getLogger(__name__)


# Verifies the bearer access token from the Authorization header and loads its user
def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    token = extract_bearer_token(request.headers.get("Authorization"))
    if not token:
        raise Unauthorized("Access token is required")

    payload = verify_access_token(token)
    user = get_user(db, payload["userId"])
    if user is None:
        raise Unauthorized("User not found")
    return user


# Same as `get_current_user` but anonymous requests (or bad tokens) resolve to None
def optional_user(request: Request, db: Session = Depends(get_db)) -> Optional[User]:
    token = extract_bearer_token(request.headers.get("Authorization"))
    if not token:
        return None
    try:
        payload = verify_access_token(token)
    except Unauthorized:
        return None
    return get_user(db, payload["userId"])


def require_role(*roles: str) -> Callable[..., User]:
    allowed = {getattr(r, "value", r) for r in roles}

    def _dependency(user: User = Depends(get_current_user)) -> User:
        if user.role not in allowed:
            logger.warning("auth.forbidden user_id=%s role=%s", user.id, user.role)
            raise Forbidden("Insufficient permissions")
        return user

    return _dependency


def require_verified(user: User = Depends(get_current_user)) -> User:
    if not user.is_verified:
        raise Forbidden("Email verification required")
    return user
