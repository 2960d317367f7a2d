from dataclasses import replace
from types import SimpleNamespace
from urllib.parse import parse_qs, urlparse

import pytest

from KoriBackend.config import get_settings
from KoriBackend.errors import InternalError, Unauthorized
from KoriBackend.services import google_oauth
from KoriBackend.services.google_oauth import GoogleOAuthClient


@pytest.fixture
def google():
    settings = replace(
        get_settings(),
        google_client_id="client-123",
        google_client_secret="shh",
        google_redirect_uri="http://localhost:8000/api/auth/google/callback",
    )
    return GoogleOAuthClient(settings)


def test_auth_url_requests_offline_consent(google):
    url = urlparse(google.auth_url(state="xyz"))
    query = parse_qs(url.query)

    assert url.netloc == "accounts.google.com"
    assert query["client_id"] == ["client-123"]
    assert query["access_type"] == ["offline"]
    assert query["prompt"] == ["consent"]
    assert query["state"] == ["xyz"]
    assert "userinfo.email" in query["scope"][0]


def test_unconfigured_client_is_internal_error():
    with pytest.raises(InternalError):
        GoogleOAuthClient(replace(get_settings(), google_client_id=None)).auth_url()


def test_malformed_id_token_is_rejected(google):
    with pytest.raises(Unauthorized):
        google.verify_id_token("not-a-jwt")


def test_invalid_grant_maps_to_unauthorized(google, monkeypatch):
    def fake_post(url, data, timeout):
        assert data["grant_type"] == "authorization_code"
        return SimpleNamespace(status_code=400, text='{"error": "invalid_grant"}')

    monkeypatch.setattr(google_oauth.requests, "post", fake_post)

    with pytest.raises(Unauthorized) as exc:
        google.exchange_code("stale-code")
    assert exc.value.message == "Invalid or expired authorization code"


def test_code_exchange_verifies_returned_id_token(google, monkeypatch):
    identity = google_oauth.GoogleIdentity("g-1", "ana@example.com", "Ana", None, True)
    monkeypatch.setattr(
        google_oauth.requests,
        "post",
        lambda url, data, timeout: SimpleNamespace(status_code=200, text="", json=lambda: {"id_token": "a.b.c"}),
    )
    monkeypatch.setattr(GoogleOAuthClient, "verify_id_token", lambda self, token: identity)

    assert google.exchange_code("fresh-code") == identity


def test_code_exchange_network_failure_is_internal_error(google, monkeypatch):
    def fake_post(url, data, timeout):
        raise google_oauth.requests.ConnectionError("connection reset by peer")

    monkeypatch.setattr(google_oauth.requests, "post", fake_post)

    with pytest.raises(InternalError) as exc:
        google.exchange_code("any-code")
    assert exc.value.message == "Google authorization failed"
