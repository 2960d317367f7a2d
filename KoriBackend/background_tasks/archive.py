from __future__ import annotations

import logging

from KoriBackend.celery import celery
from KoriBackend.database import SessionLocal
from KoriBackend.services.chat_service import ChatService


logger = logging.getLogger(__name__)


# On-demand sweep: active chats created more than `days` ago become archived
@celery.task(name="archive_old_chats")
def archive_old_chats(days: int = 30) -> dict[str, int]:
    with SessionLocal() as session:
        archived = ChatService(session).archive_old_chats(days)
    logger.info("archive_old_chats: archived=%s days=%s", archived, days)
    return {"archived": archived}
