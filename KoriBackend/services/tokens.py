import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from KoriBackend.config import Settings, get_settings
from KoriBackend.errors import Unauthorized


JWT_ALG = "HS256"


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


def _encode(claims: dict[str, Any], secret: str, ttl: timedelta, token_type: str) -> str:
    now = datetime.now(timezone.utc)
    payload = dict(claims)
    payload.update({"iat": int(now.timestamp()), "exp": now + ttl, "type": token_type})
    return jwt.encode(payload, secret, algorithm=JWT_ALG)


def create_access_token(user_id: str, email: str, settings: Optional[Settings] = None) -> str:
    settings = settings or get_settings()
    return _encode(
        {"userId": user_id, "email": email},
        settings.jwt_secret,
        timedelta(minutes=settings.jwt_expire_minutes),
        "access",
    )


def create_refresh_token(user_id: str, email: str, settings: Optional[Settings] = None) -> str:
    settings = settings or get_settings()
    # jti keeps two tokens minted in the same second distinct
    return _encode(
        {"userId": user_id, "email": email, "jti": secrets.token_hex(8)},
        settings.jwt_refresh_secret,
        timedelta(days=settings.jwt_refresh_expire_days),
        "refresh",
    )


def create_token_pair(user_id: str, email: str) -> TokenPair:
    settings = get_settings()
    return TokenPair(
        access_token=create_access_token(user_id, email, settings),
        refresh_token=create_refresh_token(user_id, email, settings),
    )


def _decode(token: str, secret: str, token_type: str, label: str) -> dict[str, Any]:
    try:
        payload = jwt.decode(token, secret, algorithms=[JWT_ALG])
    except ExpiredSignatureError:
        raise Unauthorized(f"{label} has expired")
    except JWTError:
        raise Unauthorized(f"Invalid {label.lower()}")
    if payload.get("type") != token_type or not payload.get("userId"):
        raise Unauthorized(f"Invalid {label.lower()}")
    return payload


def verify_access_token(token: str) -> dict[str, Any]:
    return _decode(token, get_settings().jwt_secret, "access", "Access token")


def verify_refresh_token(token: str) -> dict[str, Any]:
    return _decode(token, get_settings().jwt_refresh_secret, "refresh", "Refresh token")


def extract_bearer_token(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    parts = header.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        return None
    return parts[1]
