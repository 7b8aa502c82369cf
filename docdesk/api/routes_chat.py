"""Routes de génération IA et de chat.

Ce module expose les deux endpoints coûteux de l'application: la génération de document
(`ai-generate`) et l'assistant de chat (`chat`). Leur protection est assurée en amont par le
middleware d'admission; les routes se contentent de déléguer au générateur configuré.
"""

from __future__ import annotations

import time

import structlog
from fastapi import APIRouter, Depends

from docdesk.api.routes_auth import get_optional_user
from docdesk.api.schemas import ChatPayload, GeneratePayload
from docdesk.core.container import Container, get_container

router = APIRouter(prefix="/api", tags=["ai"])

logger = structlog.get_logger(__name__)


@router.post("/documents/generate")
def generate_document(
    payload: GeneratePayload,
    user: dict | None = Depends(get_optional_user),
    container: Container = Depends(get_container),
):
    """Génère le contenu d'un document à partir des champs du formulaire."""
    start = time.perf_counter()
    content = container.generator.generate_document(
        payload.documentType, payload.title, payload.fields
    )
    elapsed_ms = int((time.perf_counter() - start) * 1000)
    logger.info(
        "document_generated",
        document_type=payload.documentType,
        authenticated=bool(user),
        processing_time_ms=elapsed_ms,
    )
    return {
        "success": True,
        "data": {"generatedContent": content, "processingTimeMs": elapsed_ms},
    }


@router.post("/chat")
def chat(
    payload: ChatPayload,
    user: dict | None = Depends(get_optional_user),
    container: Container = Depends(get_container),
):
    """Répond à un message de l'assistant."""
    answer = container.generator.reply(payload.message, payload.history)
    logger.debug("chat_reply", authenticated=bool(user), turns=len(payload.history) + 1)
    return {"success": True, "data": {"reply": answer}}
