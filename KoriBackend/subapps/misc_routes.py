import logging

from fastapi import APIRouter, Depends

from KoriBackend.auth import get_current_user
from KoriBackend.errors import BadRequest, InternalError
from KoriBackend.models.user_model import User
from KoriBackend.responses import api_response
from KoriBackend.schemas.auth import UserOut
from KoriBackend.schemas.chat import GeminiRequest
from KoriBackend.services.ai.gemini_chat import GeminiChat, get_gemini_chat


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


@router.get("/test")
def test():
    return api_response("API is working")


@router.get("/protected")
def protected(user: User = Depends(get_current_user)):
    return api_response("Access granted to protected route", {"user": UserOut.model_validate(user)})


# Direct prompt-in / text-out proxy to Gemini, without the mock fallback
@router.post("/gemini")
async def gemini(payload: GeminiRequest, ai: GeminiChat = Depends(get_gemini_chat)):
    prompt = (payload.prompt or "").strip()
    if not prompt:
        raise BadRequest("Prompt is required")
    if not ai.configured:
        raise InternalError("Gemini API key is not configured")

    try:
        reply = await ai.complete(prompt)
    except Exception as e:
        logger.error("gemini.proxy.error model=%s error=%s", ai.model, e)
        raise InternalError("Failed to generate content")
    return api_response("Content generated successfully", {"text": reply.content, "model": reply.model})
