import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from KoriBackend.auth import get_current_user
from KoriBackend.config import get_settings
from KoriBackend.database import get_db
from KoriBackend.errors import ApiError
from KoriBackend.models.user_model import User
from KoriBackend.rate_limiters.rate_limiter import rate_limit
from KoriBackend.responses import api_response
from KoriBackend.schemas.auth import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    GoogleTokenRequest,
    LoginRequest,
    RefreshTokenRequest,
    RegisterRequest,
    ResetPasswordRequest,
    UpdateProfileRequest,
)
from KoriBackend.services.auth_service import AuthResult, AuthService


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", dependencies=[Depends(rate_limit("general"))])

REFRESH_COOKIE = "refreshToken"
REFRESH_COOKIE_MAX_AGE = 7 * 24 * 60 * 60


def _set_refresh_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        REFRESH_COOKIE,
        token,
        max_age=REFRESH_COOKIE_MAX_AGE,
        httponly=True,
        samesite="strict",
        secure=get_settings().is_production,
    )


def _clear_refresh_cookie(response: Response) -> None:
    response.delete_cookie(
        REFRESH_COOKIE,
        httponly=True,
        samesite="strict",
        secure=get_settings().is_production,
    )


# Cookie first, then the request body
def _refresh_token_from(request: Request, payload: Optional[RefreshTokenRequest]) -> Optional[str]:
    token = request.cookies.get(REFRESH_COOKIE)
    if not token and payload is not None:
        token = payload.refresh_token
    return token


def _session_response(result: AuthResult, message: str, status_code: int = 200) -> Response:
    response = api_response(message, {"user": result.user, "accessToken": result.access_token}, status_code)
    _set_refresh_cookie(response, result.refresh_token)
    return response


@router.post("/register", dependencies=[Depends(rate_limit("auth"))])
def register(payload: RegisterRequest, db: Session = Depends(get_db)):
    result = AuthService(db).register(full_name=payload.full_name, email=payload.email, password=payload.password)
    return _session_response(result, "User registered successfully", 201)


@router.post("/login", dependencies=[Depends(rate_limit("auth"))])
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    result = AuthService(db).login(email=payload.email, password=payload.password)
    return _session_response(result, "Login successful")


@router.post("/refresh-token")
def refresh_token(request: Request, payload: Optional[RefreshTokenRequest] = None, db: Session = Depends(get_db)):
    access_token = AuthService(db).refresh_access_token(_refresh_token_from(request, payload))
    return api_response("Token refreshed successfully", {"accessToken": access_token})


@router.post("/forgot-password", dependencies=[Depends(rate_limit("auth"))])
def forgot_password(payload: ForgotPasswordRequest, db: Session = Depends(get_db)):
    result = AuthService(db).generate_password_reset_token(payload.email)
    message = result.pop("message")
    return api_response(message, result or None)


@router.post("/reset-password", dependencies=[Depends(rate_limit("auth"))])
def reset_password(payload: ResetPasswordRequest, db: Session = Depends(get_db)):
    result = AuthService(db).reset_password(payload.token, payload.password)
    return api_response(result["message"])


@router.post("/logout")
def logout(
    request: Request,
    payload: Optional[RefreshTokenRequest] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result = AuthService(db).logout(user.id, _refresh_token_from(request, payload))
    response = api_response(result["message"])
    _clear_refresh_cookie(response)
    return response


@router.post("/logout-all")
def logout_all(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    result = AuthService(db).logout_all(user.id)
    response = api_response(result["message"])
    _clear_refresh_cookie(response)
    return response


@router.get("/profile")
def get_profile(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return api_response("Profile retrieved successfully", {"user": AuthService(db).get_profile(user.id)})


@router.get("/me")
def me(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return api_response("User retrieved successfully", {"user": AuthService(db).get_profile(user.id)})


@router.put("/profile")
def update_profile(payload: UpdateProfileRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    updated = AuthService(db).update_profile(user.id, full_name=payload.full_name, email=payload.email)
    return api_response("Profile updated successfully", {"user": updated})


@router.delete("/profile")
def delete_profile(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    result = AuthService(db).delete_profile(user.id)
    response = api_response(result["message"])
    _clear_refresh_cookie(response)
    return response


@router.put("/change-password")
def change_password(payload: ChangePasswordRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    result = AuthService(db).change_password(
        user.id, current_password=payload.current_password, new_password=payload.new_password
    )
    response = api_response(result["message"])
    _clear_refresh_cookie(response)
    return response


@router.post("/verify")
def verify_account(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    result = AuthService(db).verify_account(user.id)
    return api_response(result["message"])


# Sign in with a Google ID token obtained by the frontend
@router.post("/google", dependencies=[Depends(rate_limit("auth"))])
def google_token(payload: GoogleTokenRequest, db: Session = Depends(get_db)):
    result = AuthService(db).google_sign_in_with_id_token(payload.token)
    return _session_response(result, "Google authentication successful")


@router.get("/google")
def google_redirect(db: Session = Depends(get_db)):
    return RedirectResponse(AuthService(db).google_auth_url())


@router.get("/google/url")
def google_url(db: Session = Depends(get_db)):
    return api_response("Google auth URL generated", {"url": AuthService(db).google_auth_url()})


# Authorization-code callback: sets the refresh cookie and hands the access token to the frontend
@router.get("/google/callback")
def google_callback(code: Optional[str] = None, error: Optional[str] = None, db: Session = Depends(get_db)):
    frontend_url = get_settings().frontend_url
    if error or not code:
        query = urlencode({"error": error or "missing_code"})
        return RedirectResponse(f"{frontend_url}/login?{query}")

    try:
        result = AuthService(db).google_sign_in_with_code(code)
    except ApiError as e:
        logger.warning("auth.google.callback.failed status=%s", e.status_code)
        return RedirectResponse(f"{frontend_url}/login?{urlencode({'error': e.message})}")

    response = RedirectResponse(f"{frontend_url}/auth/callback?{urlencode({'token': result.access_token})}")
    _set_refresh_cookie(response, result.refresh_token)
    return response
