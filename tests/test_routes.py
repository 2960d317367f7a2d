from types import SimpleNamespace

from conftest import auth_headers, register
from KoriBackend.app import app
from KoriBackend.services.ai.gemini_chat import GeminiChat, get_gemini_chat


def _login(client, email="ana@example.com", password="secret123"):
    return client.post("/api/auth/login", json={"email": email, "password": password})


def test_register_returns_envelope_and_sets_refresh_cookie(client):
    resp = register(client)

    assert resp.status_code == 201
    body = resp.json()
    assert set(body) == {"statusCode", "message", "data", "success", "timestamp"}
    assert body["success"] is True
    assert body["statusCode"] == 201
    assert body["timestamp"].endswith("Z")
    assert body["data"]["user"]["email"] == "ana@example.com"
    assert body["data"]["user"]["fullName"] == "Ana Silva"
    assert "passwordHash" not in body["data"]["user"]
    assert body["data"]["accessToken"]

    set_cookie = resp.headers["set-cookie"]
    assert "refreshToken=" in set_cookie
    assert "HttpOnly" in set_cookie
    assert "samesite=strict" in set_cookie.lower()
    assert "Max-Age=604800" in set_cookie


def test_duplicate_registration_is_conflict(client):
    register(client)

    resp = register(client, email="ANA@example.com")

    assert resp.status_code == 409
    assert resp.json()["message"] == "User with this email already exists"


def test_validation_errors_are_400_with_fields(client):
    resp = client.post("/api/auth/register", json={"fullName": "A", "email": "not-an-email", "password": "123"})

    assert resp.status_code == 400
    body = resp.json()
    assert body["message"] == "Validation failed"
    fields = {e["field"] for e in body["data"]["errors"]}
    assert {"fullName", "email", "password"} <= fields


def test_unknown_route_is_404_envelope(client):
    resp = client.get("/api/nope")

    assert resp.status_code == 404
    assert resp.json()["message"] == "Route /api/nope not found"


def test_protected_routes_require_bearer_token(client):
    resp = client.get("/api/auth/me")
    assert resp.status_code == 401
    assert resp.json()["message"] == "Access token is required"

    resp = client.get("/api/auth/me", headers=auth_headers("garbage"))
    assert resp.status_code == 401
    assert resp.json()["message"] == "Invalid access token"


def test_refresh_cookie_round_trip_and_logout(client):
    token = register(client).json()["data"]["accessToken"]

    resp = client.post("/api/auth/refresh-token")
    assert resp.status_code == 200
    assert resp.json()["data"]["accessToken"]

    refresh_token = client.cookies.get("refreshToken")
    resp = client.post("/api/auth/logout", headers=auth_headers(token))
    assert resp.status_code == 200

    resp = client.post("/api/auth/refresh-token", json={"refreshToken": refresh_token})
    assert resp.status_code == 401


def test_login_and_profile(client):
    register(client)
    token = _login(client).json()["data"]["accessToken"]

    resp = client.get("/api/auth/profile", headers=auth_headers(token))

    assert resp.status_code == 200
    assert resp.json()["data"]["user"]["generatedImages"] == []


def test_forgot_password_exposes_token_outside_production(client):
    register(client)

    resp = client.post("/api/auth/forgot-password", json={"email": "ana@example.com"})
    token = resp.json()["data"]["resetToken"]
    resp = client.post("/api/auth/reset-password", json={"token": token, "password": "fresh-pass"})

    assert resp.status_code == 200
    assert _login(client, password="fresh-pass").status_code == 200


def test_chat_flow_over_http(client):
    token = register(client).json()["data"]["accessToken"]
    headers = auth_headers(token)

    chat = client.post("/api/chat/create", json={"title": "Study"}, headers=headers).json()["data"]["chat"]
    resp = client.post(f"/api/chat/{chat['id']}/messages", json={"message": {"text": " Hello "}}, headers=headers)

    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["userMessage"]["content"] == "Hello"
    assert data["assistantMessage"]["metadata"]["model"] == "mock-ai-model"

    stats = client.get(f"/api/chat/{chat['id']}/statistics", headers=headers).json()["data"]["statistics"]
    assert stats["totalMessages"] == 2

    export = client.get(f"/api/chat/{chat['id']}/export", params={"format": "csv"}, headers=headers)
    assert export.headers["content-type"].startswith("text/csv")
    assert len(export.text.splitlines()) == 3
    assert "attachment" in export.headers["content-disposition"]


def test_empty_message_is_rejected(client):
    headers = auth_headers(register(client).json()["data"]["accessToken"])
    chat = client.post("/api/chat/create", json={}, headers=headers).json()["data"]["chat"]

    resp = client.post(f"/api/chat/{chat['id']}/messages", json={"message": "   "}, headers=headers)

    assert resp.status_code == 400


def test_other_users_chat_is_404(client):
    owner = auth_headers(register(client).json()["data"]["accessToken"])
    chat = client.post("/api/chat/create", json={}, headers=owner).json()["data"]["chat"]
    intruder = auth_headers(register(client, email="bo@example.com").json()["data"]["accessToken"])

    resp = client.get(f"/api/chat/{chat['id']}", headers=intruder)

    assert resp.status_code == 404
    assert resp.json()["message"] == "Chat not found"


def test_malformed_chat_id_is_400(client):
    headers = auth_headers(register(client).json()["data"]["accessToken"])

    resp = client.get("/api/chat/not-a-uuid", headers=headers)

    assert resp.status_code == 400
    assert resp.json()["message"] == "Invalid chat ID"


def test_archive_endpoint_is_admin_only(client):
    headers = auth_headers(register(client).json()["data"]["accessToken"])

    resp = client.post("/api/chat/archive-old", headers=headers)

    assert resp.status_code == 403
    assert resp.json()["message"] == "Insufficient permissions"


def test_misc_routes(client):
    assert client.get("/api/test").json()["message"] == "API is working"
    assert client.get("/api/protected").status_code == 401


def test_gemini_proxy_validation_and_config(client):
    resp = client.post("/api/gemini", json={})
    assert resp.status_code == 400
    assert resp.json()["message"] == "Prompt is required"

    app.dependency_overrides[get_gemini_chat] = lambda: GeminiChat(api_key=None)
    resp = client.post("/api/gemini", json={"prompt": "Hi"})
    assert resp.status_code == 500
    assert resp.json()["message"] == "Gemini API key is not configured"


def test_gemini_proxy_returns_text(client):
    class _Completions:
        async def create(self, **kwargs):
            return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content="Hello back"))])

    fake = GeminiChat(api_key="k", client=SimpleNamespace(chat=SimpleNamespace(completions=_Completions())))
    app.dependency_overrides[get_gemini_chat] = lambda: fake

    resp = client.post("/api/gemini", json={"prompt": "Hi"})

    assert resp.status_code == 200
    assert resp.json()["data"]["text"] == "Hello back"


def test_prompt_image_url_and_age_are_validated_over_http(client):
    headers = auth_headers(register(client).json()["data"]["accessToken"])
    chat = client.post("/api/chat/create", json={}, headers=headers).json()["data"]["chat"]
    url = f"/api/chat/{chat['id']}/prompts"

    resp = client.post(url, json={"profile": {"name": "Ana"}, "imageUrl": "https://cdn.example.com/ana.gif"}, headers=headers)
    assert resp.status_code == 201
    assert resp.json()["data"]["prompt"]["imageUrl"] == "https://cdn.example.com/ana.gif"

    resp = client.post(url, json={"profile": {"name": "Ana"}, "imageUrl": "https://cdn.example.com/ana.txt"}, headers=headers)
    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert body["message"] == "Validation failed"
    assert any(e["field"] == "imageUrl" for e in body["data"]["errors"])

    resp = client.post(url, json={"profile": {"age": 101}}, headers=headers)
    assert resp.status_code == 400
