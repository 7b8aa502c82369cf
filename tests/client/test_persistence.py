"""Tests du client de persistance (classement des erreurs, identité, garde de génération)."""

import json

import httpx
import pytest

from docdesk.client.change_detector import fingerprint
from docdesk.client.persistence import PersistenceClient, classify_response
from docdesk.domain.documents import DocumentDraft, DocumentStatus
from docdesk.domain.results import ErrorKind, SaveError, SaveSuccess


class FakeStore:
    """Serveur documents minimal pour `httpx.MockTransport`."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.next_id = 41
        self.documents: dict[int, dict] = {}
        self.fail_with: httpx.Response | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            return self.fail_with
        if request.method == "POST":
            self.next_id += 1
            self.documents[self.next_id] = {"id": self.next_id, **json.loads(request.content)}
            return httpx.Response(201, json={"success": True, "data": {"id": self.next_id}})
        doc_id = int(request.url.path.rsplit("/", 1)[-1])
        if doc_id not in self.documents:
            return httpx.Response(404, json={"error": "NOT_FOUND", "message": "gone"})
        if request.method == "PUT":
            self.documents[doc_id].update(json.loads(request.content))
        return httpx.Response(200, json={"success": True, "data": self.documents[doc_id]})


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
async def persistence(store: FakeStore):
    http = httpx.AsyncClient(transport=httpx.MockTransport(store), base_url="http://docdesk.test")
    client = PersistenceClient(http)
    yield client
    await client.aclose()


def _draft() -> DocumentDraft:
    return DocumentDraft(
        document_type="absence-report",
        title="Absence",
        content="Motif",
        metadata={"date": "2026-03-03"},
    )


async def test_first_save_creates_then_updates(persistence, store) -> None:
    draft = _draft()

    first = await persistence.save(draft, DocumentStatus.DRAFT)
    draft.title = "Absence (suite)"
    second = await persistence.save(draft, DocumentStatus.DRAFT)

    assert isinstance(first, SaveSuccess) and isinstance(second, SaveSuccess)
    assert [r.method for r in store.requests] == ["POST", "PUT"]
    assert store.requests[1].url.path == "/api/documents/42"
    assert draft.identity == 42
    assert first.identity == second.identity == 42
    assert store.documents[42]["title"] == "Absence (suite)"


async def test_successful_save_records_fingerprint_and_status(persistence) -> None:
    draft = _draft()

    result = await persistence.save(draft, DocumentStatus.COMPLETED)

    assert draft.last_fingerprint == fingerprint(draft)
    assert draft.status is DocumentStatus.COMPLETED
    assert draft.last_saved_at == result.saved_at
    assert persistence.applied_generation == result.generation


async def test_stale_response_does_not_overwrite_newer_state(persistence) -> None:
    draft = _draft()
    await persistence.save(draft, DocumentStatus.DRAFT)

    draft.content = "v1"
    older = persistence.prepare(draft, DocumentStatus.DRAFT, automatic=True)
    draft.content = "v2"
    newer = persistence.prepare(draft, DocumentStatus.COMPLETED)

    newer_result = await persistence.execute(draft, newer)
    older_result = await persistence.execute(draft, older)

    assert newer_result.applied is True
    assert older_result.applied is False
    assert persistence.applied_generation == newer.generation
    assert draft.last_fingerprint == newer.fingerprint
    assert draft.status is DocumentStatus.COMPLETED


async def test_identity_survives_failed_save(persistence, store) -> None:
    draft = _draft()
    await persistence.save(draft, DocumentStatus.DRAFT)
    store.fail_with = httpx.Response(500, json={"error": "INTERNAL_ERROR", "message": "db"})

    result = await persistence.save(draft, DocumentStatus.DRAFT)

    assert isinstance(result, SaveError)
    assert result.kind is ErrorKind.SERVER_ERROR
    assert draft.identity == 42


async def test_rate_limited_response_carries_retry_after(persistence, store) -> None:
    store.fail_with = httpx.Response(
        429,
        json={"error": "RATE_LIMITED", "message": "slow down", "retryAfter": 17},
        headers={"Retry-After": "17"},
    )

    result = await persistence.save(_draft(), DocumentStatus.DRAFT)

    assert result.kind is ErrorKind.RATE_LIMITED
    assert result.retry_after == 17
    assert result.status_code == 429


async def test_transport_failure_is_network_error() -> None:
    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    http = httpx.AsyncClient(transport=httpx.MockTransport(unreachable), base_url="http://x")
    client = PersistenceClient(http)
    draft = _draft()

    result = await client.save(draft, DocumentStatus.DRAFT)
    await client.aclose()

    assert result.kind is ErrorKind.NETWORK_ERROR
    assert draft.identity is None
    assert draft.last_fingerprint is None


async def test_malformed_success_body_is_server_error(persistence, store) -> None:
    store.fail_with = httpx.Response(201, json={"success": True, "data": {"message": "no id"}})

    result = await persistence.save(_draft(), DocumentStatus.DRAFT)

    assert result.kind is ErrorKind.SERVER_ERROR


async def test_load_hydrates_draft(persistence, store) -> None:
    draft = _draft()
    await persistence.save(draft, DocumentStatus.COMPLETED)

    loaded = await persistence.load(42)

    assert isinstance(loaded, DocumentDraft)
    assert loaded.identity == 42
    assert loaded.status is DocumentStatus.COMPLETED
    assert loaded.metadata == {"date": "2026-03-03"}
    assert loaded.last_fingerprint == fingerprint(loaded)


async def test_load_unknown_document(persistence) -> None:
    result = await persistence.load(7)

    assert isinstance(result, SaveError)
    assert result.kind is ErrorKind.NOT_FOUND


@pytest.mark.parametrize(
    ("status", "kind"),
    [
        (400, ErrorKind.VALIDATION_ERROR),
        (401, ErrorKind.AUTH_REQUIRED),
        (403, ErrorKind.FORBIDDEN),
        (404, ErrorKind.NOT_FOUND),
        (409, ErrorKind.VALIDATION_ERROR),
        (422, ErrorKind.VALIDATION_ERROR),
        (429, ErrorKind.RATE_LIMITED),
        (500, ErrorKind.SERVER_ERROR),
        (503, ErrorKind.SERVER_ERROR),
    ],
)
def test_classify_response(status: int, kind: ErrorKind) -> None:
    error = classify_response(httpx.Response(status, json={"message": "m"}), generation=3)

    assert error.kind is kind
    assert error.generation == 3
    assert error.message == "m"


def test_retry_after_header_used_when_body_lacks_it() -> None:
    response = httpx.Response(429, text="busy", headers={"Retry-After": "9"})

    assert classify_response(response).retry_after == 9
