import asyncio
import json
import uuid
from datetime import timedelta
from types import SimpleNamespace

import pytest
from pydantic import ValidationError

from KoriBackend.crud import message as message_crud
from KoriBackend.errors import BadRequest, NotFound
from KoriBackend.models.chat_models import Chat, ChatStatus
from KoriBackend.models.columns import utcnow
from KoriBackend.schemas.chat import CreateChatRequest, CreatePromptRequest, UpdateChatRequest, UpdatePromptRequest
from KoriBackend.services.ai.gemini_chat import MOCK_MODEL, GeminiChat
from KoriBackend.services.chat_service import NO_ACTIVE_PROMPT, ChatService


class _FailingCompletions:
    async def create(self, **kwargs):
        raise RuntimeError("provider down")


def _prompt_payload(**overrides) -> CreatePromptRequest:
    data = {
        "profile": {"name": "Ana", "occupation": "Nurse", "age": 34, "uniquePerspective": "Night shifts"},
        "background": "Works in a city hospital",
        "category": "healthcare",
    }
    data.update(overrides)
    return CreatePromptRequest.model_validate(data)


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def svc(db):
    return ChatService(db)


@pytest.fixture
def chat(svc, user):
    return svc.create_chat(user.id, CreateChatRequest(title="Nurse interviews", initial_prompt="Talk about burnout"))


def test_create_chat_applies_defaults(svc, user):
    chat = svc.create_chat(user.id)

    assert chat.title.startswith("Chat ")
    assert chat.status == ChatStatus.ACTIVE.value
    assert chat.settings == {"maxMessages": 100, "autoArchive": False, "autoArchiveDays": 30}
    assert chat.tags == []


def test_create_chat_for_unknown_user(svc):
    with pytest.raises(NotFound):
        svc.create_chat(str(uuid.uuid4()))


def test_chat_of_another_user_is_not_found(svc, chat, make_user):
    other = make_user(email="bo@example.com")

    with pytest.raises(NotFound):
        svc.get_chat_by_id(chat.id, other.id)


def test_malformed_chat_id_is_bad_request(svc, user):
    with pytest.raises(BadRequest):
        svc.get_chat_by_id("not-a-uuid", user.id)


def test_send_message_twice_creates_one_default_prompt(svc, chat, user, db):
    first = asyncio.run(svc.send_message(chat.id, user.id, "Hello"))
    second = asyncio.run(svc.send_message(chat.id, user.id, "Again"))

    assert first.prompt_id == second.prompt_id
    stored = db.get(Chat, chat.id)
    assert len(stored.prompts) == 1
    assert stored.prompts[0].name == "Assistant"
    assert stored.prompts[0].category == "other"

    messages = message_crud.chat_messages(db, chat.id)
    assert [m.role for m in messages] == ["user", "assistant", "user", "assistant"]
    assert second.assistant_message.metadata.model == MOCK_MODEL


def test_send_message_uses_first_active_prompt(svc, chat, user):
    prompt = svc.add_prompt(chat.id, user.id, _prompt_payload())

    result = asyncio.run(svc.send_message(chat.id, user.id, "How was your week?", generate_reply=False))

    assert result.prompt_id == prompt.id
    assert result.assistant_message is None
    assert result.user_message.content == "How was your week?"


def test_send_message_falls_back_when_ai_fails(db, chat, user):
    ai = GeminiChat(api_key="test-key", client=SimpleNamespace(chat=SimpleNamespace(completions=_FailingCompletions())))
    svc = ChatService(db, ai)

    result = asyncio.run(svc.send_message(chat.id, user.id, "Hello"))

    assert result.user_message.role == "user"
    assert result.assistant_message.metadata.model == MOCK_MODEL
    assert result.assistant_message.metadata.token_count > 0


def test_send_message_with_reset_starts_a_new_thread(svc, chat, user, db):
    first = asyncio.run(svc.send_message(chat.id, user.id, "Old topic", generate_reply=False))
    asyncio.run(svc.send_message(chat.id, user.id, "New topic", prompt_id=first.prompt_id, reset=True, generate_reply=False))

    contents = [m.content for m in message_crud.chat_messages(db, chat.id)]
    assert contents == ["New topic"]


def test_prompt_round_trip(svc, chat, user):
    created = svc.add_prompt(chat.id, user.id, _prompt_payload())

    fetched = svc.get_prompt_by_id(chat.id, created.id, user.id)

    assert fetched.profile.age == 34
    assert fetched.profile.designation == "Nurse"
    assert fetched.profile.unique_perspective == "Night shifts"
    assert fetched.category == "healthcare"
    assert fetched.is_active is True


def test_update_prompt_merges_profile(svc, chat, user):
    created = svc.add_prompt(chat.id, user.id, _prompt_payload())

    updated = svc.update_prompt(
        chat.id, created.id, user.id, UpdatePromptRequest.model_validate({"profile": {"age": 40}})
    )

    assert updated.profile.age == 40
    assert updated.profile.name == "Ana"
    assert updated.background == "Works in a city hospital"


def test_delete_prompt_twice_is_idempotent(svc, chat, user):
    created = svc.add_prompt(chat.id, user.id, _prompt_payload())

    assert svc.delete_prompt(chat.id, created.id, user.id) is True
    assert svc.delete_prompt(chat.id, created.id, user.id) is True

    assert svc.get_prompt_by_id(chat.id, created.id, user.id).is_active is False
    assert svc.get_chat_prompts(chat.id, user.id).total_prompts == 0


def test_get_chat_prompts_filters_by_category(svc, chat, user):
    svc.add_prompt(chat.id, user.id, _prompt_payload())
    svc.add_prompt(chat.id, user.id, _prompt_payload(category="finance"))

    result = svc.get_chat_prompts(chat.id, user.id, category="finance")

    assert result.total_prompts == 1
    assert result.prompts[0].category == "finance"


def test_add_message_requires_active_prompt(svc, chat, user):
    with pytest.raises(BadRequest) as exc:
        svc.add_message(chat.id, user.id, role="user", content="hi")
    assert exc.value.message == NO_ACTIVE_PROMPT


def test_add_message_rejects_unknown_role(svc, chat, user):
    svc.add_prompt(chat.id, user.id, _prompt_payload())

    with pytest.raises(BadRequest):
        svc.add_message(chat.id, user.id, role="narrator", content="hi")


def test_statistics_average_response_time_pairs_user_then_assistant(svc, chat, user, db):
    svc.add_prompt(chat.id, user.id, _prompt_payload())
    svc.add_message(chat.id, user.id, role="user", content="q1", metadata={"tokenCount": 3})
    svc.add_message(chat.id, user.id, role="assistant", content="a1", metadata={"tokenCount": 5})
    svc.add_message(chat.id, user.id, role="user", content="q2")

    base = utcnow() - timedelta(minutes=1)
    for msg, offset_ms in zip(message_crud.chat_messages(db, chat.id), (0, 100, 150)):
        msg.timestamp = base + timedelta(milliseconds=offset_ms)
    db.commit()

    stats = svc.get_chat_statistics(chat.id, user.id)

    assert stats.total_messages == 3
    assert stats.total_tokens == 8
    assert stats.messages_by_role["user"] == 2
    assert stats.messages_by_role["assistant"] == 1
    assert stats.messages_by_role["system"] == 0
    assert stats.average_response_time == pytest.approx(100)


def test_statistics_without_pairs_is_zero(svc, chat, user):
    svc.add_prompt(chat.id, user.id, _prompt_payload())
    svc.add_message(chat.id, user.id, role="user", content="only question")

    assert svc.get_chat_statistics(chat.id, user.id).average_response_time == 0


def test_export_csv_has_header_plus_one_line_per_message(svc, chat, user):
    svc.add_prompt(chat.id, user.id, _prompt_payload())
    svc.add_message(chat.id, user.id, role="user", content='She said "hi"')
    svc.add_message(chat.id, user.id, role="assistant", content="Hello\nthere")
    svc.add_message(chat.id, user.id, role="user", content="Bye")

    body, filename, content_type = svc.export_chat(chat.id, user.id, "csv")

    lines = body.splitlines()
    assert len(lines) == 4
    assert lines[0] == "Index,Role,Timestamp,Content,TokenCount"
    assert '"She said ""hi"""' in lines[1]
    assert filename == f"chat-{chat.id}.csv"
    assert content_type == "text/csv"


def test_export_json_is_default_and_parseable(svc, chat, user):
    svc.add_prompt(chat.id, user.id, _prompt_payload())
    svc.add_message(chat.id, user.id, role="user", content="hi")

    body, _, content_type = svc.export_chat(chat.id, user.id)

    payload = json.loads(body)
    assert content_type == "application/json"
    assert payload["chatId"] == chat.id
    assert payload["messages"][0]["content"] == "hi"
    assert payload["statistics"]["totalMessages"] == 1


def test_export_rejects_unknown_format(svc, chat, user):
    with pytest.raises(BadRequest):
        svc.export_chat(chat.id, user.id, "pdf")


def test_update_chat_merges_settings(svc, chat, user):
    updated = svc.update_chat(
        chat.id, user.id, UpdateChatRequest.model_validate({"settings": {"autoArchive": True}, "tags": [" nurses "]})
    )

    assert updated.settings == {"maxMessages": 100, "autoArchive": True, "autoArchiveDays": 30}
    assert updated.tags == ["nurses"]
    assert updated.title == "Nurse interviews"


def test_initial_prompt_update_and_removal(svc, chat, user):
    assert svc.update_initial_prompt(chat.id, user.id, " Ask about pay ").initial_prompt == "Ask about pay"
    assert svc.remove_initial_prompt(chat.id, user.id).initial_prompt is None


def test_search_messages_is_case_insensitive(svc, chat, user):
    svc.add_prompt(chat.id, user.id, _prompt_payload())
    svc.add_message(chat.id, user.id, role="user", content="Tell me about BURNOUT")
    svc.add_message(chat.id, user.id, role="assistant", content="Sure")

    result = svc.search_messages(chat.id, user.id, "burnout")

    assert result.total == 1
    assert result.messages[0].content == "Tell me about BURNOUT"
    assert result.messages[0].chat_id == chat.id


def test_search_by_initial_prompt(svc, chat, user):
    found = svc.search_by_initial_prompt(user.id, "BURNOUT")

    assert [c.id for c in found] == [chat.id]


def test_search_by_initial_prompt_treats_wildcards_literally(svc, user):
    svc.create_chat(user.id, CreateChatRequest(title="Staffing", initial_prompt="Interview about 1000 nurses"))

    assert svc.search_by_initial_prompt(user.id, "10%") == []
    assert svc.search_by_initial_prompt(user.id, "n_rses") == []
    assert len(svc.search_by_initial_prompt(user.id, "1000 NURSES")) == 1


def test_soft_and_permanent_delete(svc, chat, user, db):
    svc.delete_chat(chat.id, user.id)
    assert db.get(Chat, chat.id).status == ChatStatus.DELETED.value

    svc.delete_chat(chat.id, user.id, permanent=True)
    db.expire_all()
    assert db.get(Chat, chat.id) is None


def test_permanent_delete_removes_threads(svc, chat, user, db):
    asyncio.run(svc.send_message(chat.id, user.id, "Hello"))

    svc.delete_chat(chat.id, user.id, permanent=True)

    assert message_crud.chat_messages(db, chat.id) == []


def test_dashboard_totals(svc, chat, user):
    other = svc.create_chat(user.id, CreateChatRequest(title="Second"))
    asyncio.run(svc.send_message(chat.id, user.id, "Hello"))
    svc.delete_chat(other.id, user.id)

    dashboard = svc.get_dashboard_data(user.id, days=30)

    assert dashboard.total_chats == 2
    assert dashboard.active_chats == 1
    assert dashboard.total_messages == 2
    assert dashboard.total_tokens > 0
    assert [c.id for c in dashboard.recent_chats] == [chat.id]
    assert dashboard.recent_chats[0].total_messages == 2
    assert dashboard.period == "30 days"


def test_get_user_chats_paginates(svc, user):
    for i in range(3):
        svc.create_chat(user.id, CreateChatRequest(title=f"Chat {i}"))

    page = svc.get_user_chats(user.id, page=2, limit=2)

    assert page.total_chats == 3
    assert len(page.chats) == 1
    assert page.pagination.has_prev is True
    assert page.pagination.has_next is False


def test_start_new_session_archives_current(svc, chat, user, db):
    fresh = svc.start_new_session(user.id)

    assert db.get(Chat, chat.id).status == ChatStatus.ARCHIVED.value
    assert svc.get_current_session(user.id).id == fresh.id


def test_questions_crud(svc, chat, user):
    q = svc.add_question(chat.id, user.id, category="work", question="What is a normal day like?")
    svc.add_question(chat.id, user.id, category="pay", question="Are you paid fairly?")

    assert [x.id for x in svc.get_questions(chat.id, user.id, category="work")] == [q.id]
    assert svc.update_question(chat.id, q.id, user.id, question="Describe a typical day").question == "Describe a typical day"

    svc.delete_question(chat.id, q.id, user.id)
    with pytest.raises(NotFound):
        svc.delete_question(chat.id, q.id, user.id)
    assert len(svc.get_questions(chat.id, user.id)) == 1


def test_conversation_history_can_skip_system(svc, chat, user):
    svc.add_prompt(chat.id, user.id, _prompt_payload())
    svc.add_message(chat.id, user.id, role="system", content="Stay in character")
    svc.add_message(chat.id, user.id, role="user", content="Hi")

    history = svc.get_conversation_history(chat.id, user.id, include_system=False)

    assert [h.role for h in history] == ["user"]


def test_clear_thread_hides_messages(svc, chat, user):
    prompt = svc.add_prompt(chat.id, user.id, _prompt_payload())
    svc.add_message(chat.id, user.id, role="user", content="Hi")

    assert svc.clear_thread(chat.id, prompt.id, user.id) == 1
    assert svc.get_messages(chat.id, user.id).total == 0


def test_archive_old_chats(svc, chat, user, db):
    stored = db.get(Chat, chat.id)
    stored.created_at = utcnow() - timedelta(days=45)
    db.commit()
    svc.create_chat(user.id, CreateChatRequest(title="Recent"))

    assert svc.archive_old_chats(days=30) == 1
    db.expire_all()
    assert db.get(Chat, chat.id).status == ChatStatus.ARCHIVED.value


@pytest.mark.parametrize("age", [17, 101])
def test_prompt_age_outside_bounds_is_rejected(age):
    with pytest.raises(ValidationError):
        CreatePromptRequest.model_validate({"profile": {"age": age}})


@pytest.mark.parametrize("age", [18, 100])
def test_prompt_age_bounds_are_inclusive(age):
    assert CreatePromptRequest.model_validate({"profile": {"age": age}}).profile.age == age


@pytest.mark.parametrize("url", ["ftp://cdn.example.com/a.png", "https://cdn.example.com/a.bmp", "not a url"])
def test_prompt_image_url_must_be_http_image(url):
    with pytest.raises(ValidationError):
        _prompt_payload(imageUrl=url)


def test_prompt_image_url_accepts_http_image():
    assert _prompt_payload(imageUrl="https://cdn.example.com/ana.WEBP").image_url == "https://cdn.example.com/ana.WEBP"


def test_user_chat_list_hides_deactivated_prompts(svc, chat, user):
    kept = svc.add_prompt(chat.id, user.id, _prompt_payload())
    dropped = svc.add_prompt(chat.id, user.id, _prompt_payload(category="finance"))
    svc.update_prompt(chat.id, dropped.id, user.id, UpdatePromptRequest.model_validate({"isActive": False}))

    listed = svc.get_user_chats(user.id).chats[0]

    assert [p.id for p in listed.prompts] == [kept.id]
    assert len(svc.get_chat_by_id(chat.id, user.id).prompts) == 2
