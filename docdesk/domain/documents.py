"""
Entités du domaine "document en cours d'édition".

Ce module définit le brouillon manipulé par une session d'édition (`DocumentDraft`), le statut de
publication et l'instantané d'une tentative de sauvegarde (`SaveAttempt`).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class DocumentStatus(str, Enum):
    """Statut de publication d'un document."""

    DRAFT = "draft"
    COMPLETED = "completed"


class IdentityAlreadyAssigned(RuntimeError):
    """Raised when a draft that already has an identity is given another one."""


@dataclass
class DocumentDraft:
    """Brouillon détenu exclusivement par une session d'édition.

    `identity` est absente jusqu'à la première création réussie, puis immuable pour la session.
    `last_fingerprint` est l'empreinte du dernier contenu persisté avec succès.
    """

    document_type: str
    title: str = ""
    content: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    generated_content: str | None = None
    status: DocumentStatus = DocumentStatus.DRAFT
    identity: int | None = None
    last_saved_at: datetime | None = None
    last_fingerprint: str | None = None

    def assign_identity(self, identity: int) -> None:
        """Capture the server-assigned identity; it may only be set once."""
        if self.identity is not None and self.identity != identity:
            raise IdentityAlreadyAssigned(
                f"draft already bound to document {self.identity}, refusing {identity}"
            )
        self.identity = identity

    def to_payload(self, status: DocumentStatus) -> dict[str, Any]:
        """Body of `POST /api/documents` and `PUT /api/documents/{id}`."""
        payload: dict[str, Any] = {
            "documentType": self.document_type,
            "title": self.title,
            "content": self.content,
            "metadata": dict(self.metadata),
            "status": status.value,
        }
        if self.generated_content is not None:
            payload["generatedContent"] = self.generated_content
        return payload


@dataclass(frozen=True)
class SaveAttempt:
    """Une sauvegarde déclenchée, figée au moment du déclenchement."""

    generation: int
    target_status: DocumentStatus
    payload: dict[str, Any]
    fingerprint: str
    automatic: bool = False
