"""Détection de changements d'un brouillon par empreinte de contenu.

L'empreinte couvre les champs éditables (type, titre, contenu, métadonnées, contenu généré) et
exclut l'identité, l'horodatage de sauvegarde et le statut. La sérialisation est canonique: l'ordre
d'insertion des clés de métadonnées n'influe pas sur le résultat.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

from docdesk.domain.documents import DocumentDraft


def _canonical(draft: DocumentDraft) -> str:
    fields: dict[str, Any] = {
        "documentType": draft.document_type,
        "title": draft.title,
        "content": draft.content,
        "metadata": draft.metadata,
        "generatedContent": draft.generated_content,
    }
    return json.dumps(
        fields, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str
    )


def fingerprint(draft: DocumentDraft) -> str:
    """Stable SHA-256 fingerprint of the draft's editable fields."""
    return hashlib.sha256(_canonical(draft).encode("utf-8")).hexdigest()


def should_save(draft: DocumentDraft, last_fingerprint: str | None) -> tuple[bool, str]:
    """Return `(dirty, new_fingerprint)` against the last persisted fingerprint."""
    current = fingerprint(draft)
    return current != last_fingerprint, current
