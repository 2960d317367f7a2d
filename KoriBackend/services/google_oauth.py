import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import requests
from jose import JWTError, jwt

from KoriBackend.config import Settings, get_settings
from KoriBackend.errors import BadRequest, InternalError, Unauthorized

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_JWKS_URL = "https://www.googleapis.com/oauth2/v3/certs"
GOOGLE_ISSUERS = ("accounts.google.com", "https://accounts.google.com")
GOOGLE_SCOPES = (
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
)

_JWKS_CACHE: Optional[Dict[str, Any]] = None
_JWKS_CACHE_TS: float = 0.0
_JWKS_TTL_SECONDS: int = 300


@dataclass(frozen=True)
class GoogleIdentity:
    google_id: str
    email: str
    name: Optional[str]
    picture: Optional[str]
    email_verified: bool


# Fetches Google's signing keys (cached for a short TTL); a stale cache beats failing outright
def get_google_jwks(timeout: float = 3.0) -> list:
    global _JWKS_CACHE, _JWKS_CACHE_TS
    now = time.time()
    if _JWKS_CACHE is not None and (now - _JWKS_CACHE_TS) < _JWKS_TTL_SECONDS:
        return _JWKS_CACHE.get("keys", [])
    try:
        response = requests.get(GOOGLE_JWKS_URL, timeout=timeout)
        response.raise_for_status()
        data = response.json()
        _JWKS_CACHE = data
        _JWKS_CACHE_TS = now
        return data.get("keys", [])
    except requests.RequestException as e:
        if _JWKS_CACHE is not None:
            return _JWKS_CACHE.get("keys", [])
        logger.error("auth.google.jwks.unavailable error=%s", e)
        raise InternalError("Unable to fetch Google signing keys")


# Finds the JWK matching the token header `kid`
def _signing_key(token: str) -> dict:
    try:
        kid = jwt.get_unverified_header(token).get("kid")
    except JWTError:
        raise Unauthorized("Invalid Google token")
    for key in get_google_jwks():
        if key.get("kid") == kid:
            return key
    raise Unauthorized("Invalid Google token")


# Verifies Google identity assertions (ID tokens, or auth codes exchanged for ID tokens)
class GoogleOAuthClient:
    def __init__(self, settings: Optional[Settings] = None, http_timeout: float = 10.0):
        self.settings = settings or get_settings()
        self.http_timeout = http_timeout

    def _require_client_id(self) -> str:
        if not self.settings.google_client_id:
            raise InternalError("Google OAuth is not configured")
        return self.settings.google_client_id

    def auth_url(self, state: Optional[str] = None) -> str:
        params = {
            "client_id": self._require_client_id(),
            "redirect_uri": self.settings.google_redirect_uri or "",
            "response_type": "code",
            "scope": " ".join(GOOGLE_SCOPES),
            "access_type": "offline",
            "prompt": "consent",
        }
        if state:
            params["state"] = state
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    def verify_id_token(self, token: str) -> GoogleIdentity:
        client_id = self._require_client_id()
        if not token or token.count(".") != 2:
            raise Unauthorized("Invalid Google token")
        try:
            claims = jwt.decode(
                token,
                _signing_key(token),
                algorithms=["RS256"],
                audience=client_id,
                options={"verify_at_hash": False},
            )
        except JWTError as e:
            logger.info("auth.google.id_token.invalid: %s", e)
            raise Unauthorized("Invalid Google token")
        if claims.get("iss") not in GOOGLE_ISSUERS:
            raise Unauthorized("Invalid Google token")

        email = claims.get("email")
        if not email:
            raise BadRequest("Email not provided by Google")
        return GoogleIdentity(
            google_id=str(claims["sub"]),
            email=email,
            name=claims.get("name"),
            picture=claims.get("picture"),
            email_verified=bool(claims.get("email_verified")),
        )

    def exchange_code(self, code: str) -> GoogleIdentity:
        client_id = self._require_client_id()
        try:
            response = requests.post(
                GOOGLE_TOKEN_URL,
                data={
                    "code": code,
                    "client_id": client_id,
                    "client_secret": self.settings.google_client_secret or "",
                    "redirect_uri": self.settings.google_redirect_uri or "",
                    "grant_type": "authorization_code",
                },
                timeout=self.http_timeout,
            )
        except requests.RequestException as e:
            logger.error("auth.google.code_exchange.unreachable error=%s", e)
            raise InternalError("Google authorization failed")
        if response.status_code >= 400:
            body = response.text or ""
            if "invalid_grant" in body:
                raise Unauthorized("Invalid or expired authorization code")
            logger.warning("auth.google.code_exchange.failed status=%s", response.status_code)
            raise Unauthorized("Google authorization failed")

        id_token = response.json().get("id_token")
        if not id_token:
            raise Unauthorized("Google did not return an ID token")
        return self.verify_id_token(id_token)
