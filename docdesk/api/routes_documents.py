"""Routes du dépôt de documents.

Ce module expose la création, la lecture, la mise à jour, la suppression et la duplication des
documents d'un utilisateur authentifié, ainsi que la liste paginée, les favoris et les
statistiques. Chaque document appartient à son créateur; les autres utilisateurs reçoivent 403.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Any, Literal

import structlog
from fastapi import APIRouter, Depends

from docdesk.api.routes_auth import get_current_user, get_optional_user
from docdesk.api.schemas import DocumentPayload, DocumentUpdate, FavoritePayload
from docdesk.apigw.errors import forbidden, not_found, validation_error
from docdesk.app.metrics import DOCUMENT_WRITES
from docdesk.core.container import Container, get_container
from docdesk.core.http_constants import HTTP_CREATED
from docdesk.infra.repositories import DocumentQuery

router = APIRouter(prefix="/api/documents", tags=["documents"])

logger = structlog.get_logger(__name__)

REQUIRED_FIELDS = ("documentType", "title", "content")
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _owned_document(container: Container, doc_id: int, user: dict[str, Any]) -> dict[str, Any]:
    """Charge un document et vérifie qu'il appartient à l'utilisateur."""
    document = container.document_repo.get(doc_id)
    if document is None:
        raise not_found("Document not found.")
    if not document.get("userId") or document["userId"] != user["id"]:
        raise forbidden()
    return document


@router.get("")
def list_documents(
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    sortBy: Literal["createdAt", "updatedAt", "title"] = "createdAt",
    order: Literal["asc", "desc"] = "desc",
    status: Literal["draft", "completed"] | None = None,
    documentType: str | None = None,
    isFavorite: bool | None = None,
    search: str | None = None,
    user: dict | None = Depends(get_optional_user),
    container: Container = Depends(get_container),
):
    """Liste paginée des documents de l'utilisateur; vide pour un appelant anonyme.

    `page` est ramené à 1 au minimum et `limit` à l'intervalle 1..100.
    """
    query = DocumentQuery(
        page=max(1, page),
        limit=min(MAX_PAGE_SIZE, max(1, limit)),
        sort_by=sortBy,
        order=order,
        status=status,
        document_type=documentType,
        is_favorite=isFavorite,
        search=search,
    )
    if user:
        documents, total = container.document_repo.list_page(user["id"], query)
    else:
        documents, total = [], 0
    pagination = {
        "total": total,
        "page": query.page,
        "limit": query.limit,
        "totalPages": max(1, math.ceil(total / query.limit)),
    }
    return {"success": True, "data": {"documents": documents, "pagination": pagination}}


@router.get("/stats")
def get_document_stats(
    user: dict = Depends(get_current_user),
    container: Container = Depends(get_container),
):
    """Totaux par type et par statut, favoris et activité récente de l'utilisateur."""
    return {"success": True, "data": container.document_repo.stats(user["id"])}


@router.get("/{doc_id}")
def get_document(
    doc_id: int,
    user: dict = Depends(get_current_user),
    container: Container = Depends(get_container),
):
    """Retourne un document du propriétaire et incrémente son compteur de vues."""
    document = _owned_document(container, doc_id, user)
    updated = container.document_repo.update(
        doc_id, {"viewCount": int(document.get("viewCount") or 0) + 1}
    )
    return {"success": True, "data": updated or document}


@router.post("", status_code=HTTP_CREATED)
def create_document(
    payload: DocumentPayload,
    user: dict = Depends(get_current_user),
    container: Container = Depends(get_container),
):
    """Crée un document (sans IA) pour l'utilisateur courant."""
    missing = [name for name in REQUIRED_FIELDS if not getattr(payload, name).strip()]
    if missing:
        DOCUMENT_WRITES.labels(operation="create", status="rejected").inc()
        raise validation_error("Required fields are missing.", {"fields": missing})

    now = _now()
    document = container.document_repo.create(
        {
            "userId": user["id"],
            "documentType": payload.documentType,
            "title": payload.title,
            "content": payload.content,
            "metadata": payload.metadata,
            "generatedContent": payload.generatedContent or payload.content,
            "status": payload.status,
            "isFavorite": False,
            "viewCount": 0,
            "editCount": 0,
            "createdAt": now,
            "updatedAt": now,
        }
    )
    DOCUMENT_WRITES.labels(operation="create", status="ok").inc()
    logger.info("document_created", document_id=document["id"], status=payload.status)
    return {"success": True, "data": {"id": document["id"], "message": "Document saved."}}


@router.put("/{doc_id}")
def update_document(
    doc_id: int,
    payload: DocumentUpdate,
    user: dict = Depends(get_current_user),
    container: Container = Depends(get_container),
):
    """Met à jour les champs fournis d'un document du propriétaire."""
    document = _owned_document(container, doc_id, user)
    changes = payload.model_dump(exclude_unset=True)
    for name in REQUIRED_FIELDS:
        if name in changes and not (changes[name] or "").strip():
            DOCUMENT_WRITES.labels(operation="update", status="rejected").inc()
            raise validation_error(f"{name} cannot be empty.", {"fields": [name]})

    changes["updatedAt"] = _now()
    changes["editCount"] = int(document.get("editCount") or 0) + 1
    updated = container.document_repo.update(doc_id, changes)
    if updated is None:
        raise not_found("Document not found.")
    DOCUMENT_WRITES.labels(operation="update", status="ok").inc()
    logger.debug("document_updated", document_id=doc_id, fields=sorted(changes))
    return {"success": True, "data": updated}


@router.patch("/{doc_id}/favorite")
def set_favorite(
    doc_id: int,
    payload: FavoritePayload,
    user: dict = Depends(get_current_user),
    container: Container = Depends(get_container),
):
    """Marque ou démarque un document comme favori."""
    _owned_document(container, doc_id, user)
    updated = container.document_repo.update(
        doc_id, {"isFavorite": payload.isFavorite, "updatedAt": _now()}
    )
    if updated is None:
        raise not_found("Document not found.")
    DOCUMENT_WRITES.labels(operation="favorite", status="ok").inc()
    message = "Added to favorites." if payload.isFavorite else "Removed from favorites."
    return {"success": True, "data": {"isFavorite": updated["isFavorite"], "message": message}}


@router.delete("/{doc_id}")
def delete_document(
    doc_id: int,
    user: dict = Depends(get_current_user),
    container: Container = Depends(get_container),
):
    """Supprime un document du propriétaire."""
    _owned_document(container, doc_id, user)
    if not container.document_repo.delete(doc_id):
        raise not_found("Document not found.")
    DOCUMENT_WRITES.labels(operation="delete", status="ok").inc()
    return {"success": True, "data": {"id": doc_id, "message": "Document deleted."}}


@router.post("/{doc_id}/duplicate", status_code=HTTP_CREATED)
def duplicate_document(
    doc_id: int,
    user: dict = Depends(get_current_user),
    container: Container = Depends(get_container),
):
    """Duplique un document; la copie repart en brouillon."""
    document = _owned_document(container, doc_id, user)
    now = _now()
    copy = {
        k: v for k, v in document.items() if k not in ("id", "viewCount", "editCount")
    }
    copy.update(
        {
            "title": f"{document.get('title', '')} (copy)",
            "status": "draft",
            "isFavorite": False,
            "viewCount": 0,
            "editCount": 0,
            "createdAt": now,
            "updatedAt": now,
        }
    )
    duplicated = container.document_repo.create(copy)
    DOCUMENT_WRITES.labels(operation="duplicate", status="ok").inc()
    return {"success": True, "data": {"id": duplicated["id"], "message": "Document copied."}}
