"""Client de persistance des brouillons (création ou mise à jour).

Le client encapsule les appels `POST /api/documents`, `PUT /api/documents/{id}` et
`GET /api/documents/{id}`:
- la première création réussie fixe l'identité du brouillon pour toute la session;
- chaque appel porte une génération strictement croissante; une réponse plus ancienne que la
  dernière génération appliquée est ignorée (elle n'écrase pas l'état plus récent);
- tout échec est classé en `ErrorKind` et renvoyé comme valeur, jamais levé.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, ValidationError

from docdesk.client.change_detector import fingerprint
from docdesk.core.http_constants import (
    HTTP_BAD_REQUEST,
    HTTP_FORBIDDEN,
    HTTP_INTERNAL_SERVER_ERROR,
    HTTP_NOT_FOUND,
    HTTP_TOO_MANY_REQUESTS,
    HTTP_UNAUTHORIZED,
)
from docdesk.core.settings import Settings
from docdesk.domain.documents import DocumentDraft, DocumentStatus, SaveAttempt
from docdesk.domain.results import ErrorKind, SaveError, SaveResult, SaveSuccess

DOCUMENTS_PATH = "/api/documents"


class DocumentRecord(BaseModel):
    """Enregistrement renvoyé par le serveur (validé une seule fois, à la frontière)."""

    model_config = ConfigDict(extra="allow")

    id: int
    documentType: str | None = None
    title: str | None = None
    content: str | None = None
    metadata: dict[str, Any] | None = None
    generatedContent: str | None = None
    status: DocumentStatus | None = None
    updatedAt: datetime | None = None


class DocumentEnvelope(BaseModel):
    """Réponse `{"data": {...}}` des endpoints documents."""

    data: DocumentRecord


def classify_response(response: httpx.Response, generation: int | None = None) -> SaveError:
    """Map a non-2xx response onto the client error taxonomy."""
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    message = body.get("message") or body.get("error") or response.reason_phrase or "error"
    if not isinstance(message, str):
        message = str(message)
    status = response.status_code

    if status == HTTP_UNAUTHORIZED:
        kind = ErrorKind.AUTH_REQUIRED
    elif status == HTTP_FORBIDDEN:
        # Signed in, but the document belongs to someone else
        kind = ErrorKind.FORBIDDEN
    elif status == HTTP_TOO_MANY_REQUESTS:
        return SaveError(
            kind=ErrorKind.RATE_LIMITED,
            message=message,
            status_code=status,
            retry_after=_retry_after(body, response),
            generation=generation,
        )
    elif status == HTTP_NOT_FOUND:
        kind = ErrorKind.NOT_FOUND
    elif status >= HTTP_INTERNAL_SERVER_ERROR:
        kind = ErrorKind.SERVER_ERROR
    elif status >= HTTP_BAD_REQUEST:
        # 400, 409, 422...
        kind = ErrorKind.VALIDATION_ERROR
    else:
        kind = ErrorKind.SERVER_ERROR
    return SaveError(kind=kind, message=message, status_code=status, generation=generation)


def _retry_after(body: dict[str, Any], response: httpx.Response) -> int | None:
    for raw in (body.get("retryAfter"), response.headers.get("Retry-After")):
        try:
            if raw is not None:
                return max(0, int(float(raw)))
        except (TypeError, ValueError):
            continue
    return None


def _utcnow() -> datetime:
    return datetime.now(UTC)


class PersistenceClient:
    """Client HTTP asynchrone du dépôt de documents pour une session d'édition."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._http = http
        self._clock = clock
        self._generation = 0
        self._applied_generation = 0
        self._log = structlog.get_logger(__name__).bind(component="persistence_client")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> PersistenceClient:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        http = httpx.AsyncClient(
            base_url=settings.CLIENT_BASE_URL,
            headers=headers,
            timeout=httpx.Timeout(settings.CLIENT_TIMEOUT_S),
            transport=transport,
        )
        return cls(http)

    @property
    def applied_generation(self) -> int:
        return self._applied_generation

    def prepare(
        self, draft: DocumentDraft, status: DocumentStatus, automatic: bool = False
    ) -> SaveAttempt:
        """Snapshot the draft and tag it with the next generation."""
        self._generation += 1
        return SaveAttempt(
            generation=self._generation,
            target_status=status,
            payload=draft.to_payload(status),
            fingerprint=fingerprint(draft),
            automatic=automatic,
        )

    async def save(self, draft: DocumentDraft, status: DocumentStatus) -> SaveResult:
        """Create or update `draft` with the given status."""
        return await self.execute(draft, self.prepare(draft, status))

    async def execute(self, draft: DocumentDraft, attempt: SaveAttempt) -> SaveResult:
        """Send a prepared attempt and reconcile the draft with the response."""
        identity = draft.identity
        try:
            if identity is None:
                response = await self._http.post(DOCUMENTS_PATH, json=attempt.payload)
            else:
                response = await self._http.put(
                    f"{DOCUMENTS_PATH}/{identity}", json=attempt.payload
                )
        except httpx.HTTPError as exc:
            self._log.warning(
                "save_transport_error", generation=attempt.generation, error=str(exc)
            )
            return SaveError(
                kind=ErrorKind.NETWORK_ERROR, message=str(exc), generation=attempt.generation
            )

        if response.is_error:
            error = classify_response(response, attempt.generation)
            self._log.info(
                "save_rejected",
                generation=attempt.generation,
                status_code=response.status_code,
                kind=error.kind.value,
            )
            return error

        try:
            record = DocumentEnvelope.model_validate(response.json()).data
        except (ValueError, ValidationError) as exc:
            self._log.error("save_malformed_response", generation=attempt.generation, error=str(exc))
            return SaveError(
                kind=ErrorKind.SERVER_ERROR,
                message="Malformed response from the document store.",
                status_code=response.status_code,
                generation=attempt.generation,
            )

        if draft.identity is None:
            draft.assign_identity(record.id)
            self._log.info("document_identity_assigned", identity=record.id)

        saved_at = self._clock()
        if attempt.generation < self._applied_generation:
            self._log.debug(
                "stale_save_discarded",
                generation=attempt.generation,
                applied_generation=self._applied_generation,
            )
            return SaveSuccess(
                identity=draft.identity,
                saved_at=saved_at,
                generation=attempt.generation,
                applied=False,
            )

        self._applied_generation = attempt.generation
        draft.last_saved_at = saved_at
        draft.last_fingerprint = attempt.fingerprint
        draft.status = attempt.target_status
        return SaveSuccess(identity=draft.identity, saved_at=saved_at, generation=attempt.generation)

    async def load(self, identity: int) -> DocumentDraft | SaveError:
        """Hydrate an existing draft from the store at session start."""
        try:
            response = await self._http.get(f"{DOCUMENTS_PATH}/{identity}")
        except httpx.HTTPError as exc:
            self._log.warning("load_transport_error", identity=identity, error=str(exc))
            return SaveError(kind=ErrorKind.NETWORK_ERROR, message=str(exc))
        if response.is_error:
            return classify_response(response)

        try:
            body = response.json()
            raw = body.get("data", body) if isinstance(body, dict) else body
            record = DocumentRecord.model_validate(raw)
        except (ValueError, ValidationError) as exc:
            self._log.error("load_malformed_response", identity=identity, error=str(exc))
            return SaveError(
                kind=ErrorKind.SERVER_ERROR,
                message="Malformed response from the document store.",
                status_code=response.status_code,
            )

        draft = DocumentDraft(
            document_type=record.documentType or "",
            title=record.title or "",
            content=record.content or "",
            metadata=dict(record.metadata or {}),
            generated_content=record.generatedContent,
            status=record.status or DocumentStatus.DRAFT,
            identity=record.id,
            last_saved_at=record.updatedAt,
        )
        draft.last_fingerprint = fingerprint(draft)
        return draft

    async def aclose(self) -> None:
        await self._http.aclose()
