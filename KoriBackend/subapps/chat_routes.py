from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from KoriBackend.auth import get_current_user, require_role
from KoriBackend.database import get_db
from KoriBackend.models.chat_models import ChatStatus
from KoriBackend.models.user_model import User, UserRole
from KoriBackend.rate_limiters.rate_limiter import rate_limit
from KoriBackend.responses import api_response
from KoriBackend.schemas.chat import (
    AddMessageRequest,
    CreateChatRequest,
    CreatePromptRequest,
    InitialPromptRequest,
    QuestionRequest,
    SendMessageRequest,
    UpdateChatRequest,
    UpdatePromptRequest,
    UpdateQuestionRequest,
)
from KoriBackend.services.ai.gemini_chat import GeminiChat, get_gemini_chat
from KoriBackend.services.chat_export import ExportFormat
from KoriBackend.services.chat_service import ChatService


router = APIRouter(prefix="/api/chat", dependencies=[Depends(rate_limit("general"))])


def get_chat_service(db: Session = Depends(get_db), ai: GeminiChat = Depends(get_gemini_chat)) -> ChatService:
    return ChatService(db, ai)


# ---------------------------------------------------------------------------
# Collection-level routes (declared before /{chat_id})
# ---------------------------------------------------------------------------
@router.post("/create", dependencies=[Depends(rate_limit("chat"))])
def create_chat(
    payload: Optional[CreateChatRequest] = None,
    user: User = Depends(get_current_user),
    svc: ChatService = Depends(get_chat_service),
):
    chat = svc.create_chat(user.id, payload)
    return api_response("Chat created successfully", {"chat": chat}, 201)


@router.get("/user-chats")
def get_user_chats(
    status: ChatStatus = ChatStatus.ACTIVE,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: User = Depends(get_current_user),
    svc: ChatService = Depends(get_chat_service),
):
    result = svc.get_user_chats(user.id, status=status.value, page=page, limit=limit)
    return api_response("Chats retrieved successfully", result)


@router.get("/all-with-data")
def get_all_user_chats_with_data(
    status: ChatStatus = ChatStatus.ACTIVE,
    user: User = Depends(get_current_user),
    svc: ChatService = Depends(get_chat_service),
):
    result = svc.get_all_user_chats_with_data(user.id, status=status.value)
    return api_response("Chats with data retrieved successfully", result)


@router.get("/dashboard")
def get_dashboard(
    days: int = Query(30, ge=1, le=365),
    user: User = Depends(get_current_user),
    svc: ChatService = Depends(get_chat_service),
):
    return api_response("Dashboard data retrieved successfully", svc.get_dashboard_data(user.id, days=days))


# Chats whose initial prompt contains the text
@router.get("/search")
def search_by_initial_prompt(
    q: str = Query(..., min_length=1, max_length=1000),
    limit: int = Query(10, ge=1, le=50),
    user: User = Depends(get_current_user),
    svc: ChatService = Depends(get_chat_service),
):
    chats = svc.search_by_initial_prompt(user.id, q, limit=limit)
    return api_response("Chats retrieved successfully", {"chats": chats})


@router.get("/current-session")
def get_current_session(user: User = Depends(get_current_user), svc: ChatService = Depends(get_chat_service)):
    chat = svc.get_current_session(user.id)
    message = "Current session retrieved successfully" if chat else "No active session found"
    return api_response(message, {"chat": chat})


@router.post("/new-session")
def start_new_session(
    payload: Optional[CreateChatRequest] = None,
    user: User = Depends(get_current_user),
    svc: ChatService = Depends(get_chat_service),
):
    chat = svc.start_new_session(user.id, payload)
    return api_response("New session started successfully", {"chat": chat}, 201)


@router.post("/archive-old")
def archive_old_chats(
    days: int = Query(30, ge=1, le=3650),
    user: User = Depends(require_role(UserRole.ADMIN)),
    svc: ChatService = Depends(get_chat_service),
):
    archived = svc.archive_old_chats(days)
    return api_response("Old chats archived successfully", {"archivedCount": archived})


# ---------------------------------------------------------------------------
# Single chat
# ---------------------------------------------------------------------------
@router.get("/{chat_id}")
def get_chat(
    chat_id: str,
    include_messages: bool = Query(True, alias="includeMessages"),
    user: User = Depends(get_current_user),
    svc: ChatService = Depends(get_chat_service),
):
    chat = svc.get_chat_by_id(chat_id, user.id, include_messages=include_messages)
    return api_response("Chat retrieved successfully", {"chat": chat})


@router.put("/{chat_id}")
def update_chat(
    chat_id: str,
    payload: UpdateChatRequest,
    user: User = Depends(get_current_user),
    svc: ChatService = Depends(get_chat_service),
):
    return api_response("Chat updated successfully", {"chat": svc.update_chat(chat_id, user.id, payload)})


@router.delete("/{chat_id}")
def delete_chat(
    chat_id: str,
    permanent: bool = False,
    user: User = Depends(get_current_user),
    svc: ChatService = Depends(get_chat_service),
):
    svc.delete_chat(chat_id, user.id, permanent=permanent)
    message = "Chat permanently deleted" if permanent else "Chat deleted successfully"
    return api_response(message)


@router.put("/{chat_id}/initial-prompt")
def update_initial_prompt(
    chat_id: str,
    payload: InitialPromptRequest,
    user: User = Depends(get_current_user),
    svc: ChatService = Depends(get_chat_service),
):
    chat = svc.update_initial_prompt(chat_id, user.id, payload.initial_prompt)
    return api_response("Initial prompt updated successfully", {"chat": chat})


@router.delete("/{chat_id}/initial-prompt")
def remove_initial_prompt(chat_id: str, user: User = Depends(get_current_user), svc: ChatService = Depends(get_chat_service)):
    chat = svc.remove_initial_prompt(chat_id, user.id)
    return api_response("Initial prompt removed successfully", {"chat": chat})


@router.get("/{chat_id}/statistics")
def get_chat_statistics(chat_id: str, user: User = Depends(get_current_user), svc: ChatService = Depends(get_chat_service)):
    return api_response("Chat statistics retrieved successfully", {"statistics": svc.get_chat_statistics(chat_id, user.id)})


# Downloads the transcript as a file rather than an enveloped JSON body
@router.get("/{chat_id}/export")
def export_chat(
    chat_id: str,
    format: ExportFormat = ExportFormat.JSON,
    user: User = Depends(get_current_user),
    svc: ChatService = Depends(get_chat_service),
):
    body, filename, content_type = svc.export_chat(chat_id, user.id, format.value)
    return Response(
        content=body,
        media_type=content_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------
@router.post("/{chat_id}/messages", dependencies=[Depends(rate_limit("chat"))])
async def send_message(
    chat_id: str,
    payload: SendMessageRequest,
    user: User = Depends(get_current_user),
    svc: ChatService = Depends(get_chat_service),
):
    result = await svc.send_message(
        chat_id,
        user.id,
        payload.message,
        prompt_id=payload.prompt_id,
        reset=payload.reset,
        generate_reply=payload.generate_reply,
    )
    return api_response("Message sent successfully", result, 201)


@router.post("/{chat_id}/messages/add")
def add_message(
    chat_id: str,
    payload: AddMessageRequest,
    user: User = Depends(get_current_user),
    svc: ChatService = Depends(get_chat_service),
):
    result = svc.add_message(
        chat_id,
        user.id,
        role=payload.role.value,
        content=payload.content,
        metadata=payload.metadata.as_stored() if payload.metadata else None,
        prompt_id=payload.prompt_id,
    )
    return api_response("Message added successfully", result, 201)


@router.get("/{chat_id}/messages")
def get_messages(
    chat_id: str,
    prompt_id: Optional[str] = Query(None, alias="promptId"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    user: User = Depends(get_current_user),
    svc: ChatService = Depends(get_chat_service),
):
    result = svc.get_messages(chat_id, user.id, prompt_id=prompt_id, page=page, limit=limit)
    return api_response("Messages retrieved successfully", result)


@router.get("/{chat_id}/messages/search")
def search_messages(
    chat_id: str,
    q: str = Query(..., min_length=1, max_length=1000),
    prompt_id: Optional[str] = Query(None, alias="promptId"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    svc: ChatService = Depends(get_chat_service),
):
    result = svc.search_messages(chat_id, user.id, q, prompt_id=prompt_id, page=page, limit=limit)
    return api_response("Search completed successfully", result)


@router.get("/{chat_id}/history")
def get_conversation_history(
    chat_id: str,
    prompt_id: Optional[str] = Query(None, alias="promptId"),
    include_system: bool = Query(True, alias="includeSystem"),
    user: User = Depends(get_current_user),
    svc: ChatService = Depends(get_chat_service),
):
    history = svc.get_conversation_history(chat_id, user.id, prompt_id=prompt_id, include_system=include_system)
    return api_response("Conversation history retrieved successfully", {"history": history})


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------
@router.post("/{chat_id}/prompts")
def add_prompt(
    chat_id: str,
    payload: CreatePromptRequest,
    user: User = Depends(get_current_user),
    svc: ChatService = Depends(get_chat_service),
):
    return api_response("Prompt added successfully", {"prompt": svc.add_prompt(chat_id, user.id, payload)}, 201)


@router.get("/{chat_id}/prompts")
def get_chat_prompts(
    chat_id: str,
    category: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: User = Depends(get_current_user),
    svc: ChatService = Depends(get_chat_service),
):
    result = svc.get_chat_prompts(chat_id, user.id, category=category, page=page, limit=limit)
    return api_response("Prompts retrieved successfully", result)


@router.get("/{chat_id}/prompts/{prompt_id}")
def get_prompt(chat_id: str, prompt_id: str, user: User = Depends(get_current_user), svc: ChatService = Depends(get_chat_service)):
    return api_response("Prompt retrieved successfully", {"prompt": svc.get_prompt_by_id(chat_id, prompt_id, user.id)})


@router.put("/{chat_id}/prompts/{prompt_id}")
def update_prompt(
    chat_id: str,
    prompt_id: str,
    payload: UpdatePromptRequest,
    user: User = Depends(get_current_user),
    svc: ChatService = Depends(get_chat_service),
):
    prompt = svc.update_prompt(chat_id, prompt_id, user.id, payload)
    return api_response("Prompt updated successfully", {"prompt": prompt})


@router.delete("/{chat_id}/prompts/{prompt_id}")
def delete_prompt(chat_id: str, prompt_id: str, user: User = Depends(get_current_user), svc: ChatService = Depends(get_chat_service)):
    svc.delete_prompt(chat_id, prompt_id, user.id)
    return api_response("Prompt deleted successfully")


@router.delete("/{chat_id}/prompts/{prompt_id}/thread")
def clear_thread(chat_id: str, prompt_id: str, user: User = Depends(get_current_user), svc: ChatService = Depends(get_chat_service)):
    cleared = svc.clear_thread(chat_id, prompt_id, user.id)
    return api_response("Conversation cleared successfully", {"clearedThreads": cleared})


# ---------------------------------------------------------------------------
# Interview questions
# ---------------------------------------------------------------------------
@router.post("/{chat_id}/questions")
def add_question(
    chat_id: str,
    payload: QuestionRequest,
    user: User = Depends(get_current_user),
    svc: ChatService = Depends(get_chat_service),
):
    question = svc.add_question(chat_id, user.id, category=payload.category, question=payload.question)
    return api_response("Question added successfully", {"question": question}, 201)


@router.get("/{chat_id}/questions")
def get_questions(
    chat_id: str,
    category: Optional[str] = None,
    user: User = Depends(get_current_user),
    svc: ChatService = Depends(get_chat_service),
):
    return api_response("Questions retrieved successfully", {"questions": svc.get_questions(chat_id, user.id, category=category)})


@router.put("/{chat_id}/questions/{question_id}")
def update_question(
    chat_id: str,
    question_id: str,
    payload: UpdateQuestionRequest,
    user: User = Depends(get_current_user),
    svc: ChatService = Depends(get_chat_service),
):
    question = svc.update_question(
        chat_id, question_id, user.id, category=payload.category, question=payload.question
    )
    return api_response("Question updated successfully", {"question": question})


@router.delete("/{chat_id}/questions/{question_id}")
def delete_question(chat_id: str, question_id: str, user: User = Depends(get_current_user), svc: ChatService = Depends(get_chat_service)):
    svc.delete_question(chat_id, question_id, user.id)
    return api_response("Question deleted successfully")
