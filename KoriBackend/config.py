import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


_ROOT = Path(__file__).resolve().parents[1]
load_dotenv(_ROOT / ".env", override=False)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


@dataclass(frozen=True)
class Settings:
    database_url: Optional[str]
    app_env: str
    jwt_secret: str
    jwt_refresh_secret: str
    jwt_expire_minutes: int
    jwt_refresh_expire_days: int
    bcrypt_rounds: int
    max_login_attempts: int
    lock_time_seconds: int
    max_refresh_tokens: int
    reset_token_ttl_seconds: int
    gemini_api_key: Optional[str]
    gemini_model: str
    google_client_id: Optional[str]
    google_client_secret: Optional[str]
    google_redirect_uri: Optional[str]
    frontend_url: str
    redis_url: Optional[str]

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


# Reads all runtime configuration from env once; call `get_settings.cache_clear()` after changing env
@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("DATABASE_URL")
    if database_url and database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql+psycopg2://", 1)

    return Settings(
        database_url=database_url,
        app_env=(os.getenv("APP_ENV") or "development").strip().lower(),
        jwt_secret=os.getenv("JWT_SECRET") or "dev-access-secret-change-in-production",
        jwt_refresh_secret=os.getenv("JWT_REFRESH_SECRET") or "dev-refresh-secret-change-in-production",
        jwt_expire_minutes=_int_env("JWT_EXPIRE_MINUTES", 15),
        jwt_refresh_expire_days=_int_env("JWT_REFRESH_EXPIRE_DAYS", 7),
        bcrypt_rounds=_int_env("BCRYPT_ROUNDS", 12),
        max_login_attempts=_int_env("MAX_LOGIN_ATTEMPTS", 5),
        lock_time_seconds=_int_env("LOCK_TIME_SECONDS", 2 * 60 * 60),
        max_refresh_tokens=5,
        reset_token_ttl_seconds=10 * 60,
        gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
        gemini_model=os.getenv("GEMINI_MODEL") or "gemini-1.5-flash",
        google_client_id=os.getenv("GOOGLE_CLIENT_ID") or None,
        google_client_secret=os.getenv("GOOGLE_CLIENT_SECRET") or None,
        google_redirect_uri=os.getenv("GOOGLE_REDIRECT_URI") or None,
        frontend_url=(os.getenv("FRONTEND_URL") or "http://localhost:5173").rstrip("/"),
        redis_url=os.getenv("REDIS_URL") or os.getenv("CELERY_BROKER_URL") or None,
    )
