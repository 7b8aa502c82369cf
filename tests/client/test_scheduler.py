"""Tests de la machine à états d'autosauvegarde (temps simulé, sans réseau)."""

from datetime import UTC, datetime

import httpx
import pytest

from docdesk.client.persistence import PersistenceClient
from docdesk.client.reconciler import Action
from docdesk.client.scheduler import AutosaveScheduler, SchedulerState, SessionClosed
from docdesk.domain.documents import DocumentDraft, DocumentStatus
from docdesk.domain.results import ErrorKind, SaveError, SaveSuccess, Trigger

SAVED_AT = datetime(2026, 3, 3, 12, 0, tzinfo=UTC)


def _unused(request: httpx.Request) -> httpx.Response:
    raise AssertionError("scheduler tests never hit the network")


@pytest.fixture
def persistence() -> PersistenceClient:
    return PersistenceClient(httpx.AsyncClient(transport=httpx.MockTransport(_unused)))


@pytest.fixture
def draft() -> DocumentDraft:
    return DocumentDraft(document_type="absence-report", title="Absence", content="Motif")


def _success(attempt, identity: int = 42) -> SaveSuccess:
    return SaveSuccess(identity=identity, saved_at=SAVED_AT, generation=attempt.generation)


def _mark_saved(persistence: PersistenceClient, draft: DocumentDraft, attempt) -> None:
    """What PersistenceClient.execute does on an applied success."""
    persistence._applied_generation = attempt.generation
    draft.last_fingerprint = attempt.fingerprint
    if draft.identity is None:
        draft.assign_identity(42)


def test_edits_coalesce_into_one_save_after_quiescence(persistence, draft) -> None:
    scheduler = AutosaveScheduler(draft, persistence, interval_seconds=30)

    assert scheduler.on_change(0.0)
    draft.title = "Absence du 3"
    assert scheduler.on_change(10.0)

    assert scheduler.poll(30.0) is None
    assert scheduler.poll(39.9) is None
    attempt = scheduler.poll(40.0)

    assert attempt is not None
    assert attempt.automatic is True
    assert attempt.target_status is DocumentStatus.DRAFT
    assert attempt.payload["title"] == "Absence du 3"
    assert scheduler.state is SchedulerState.SAVING
    assert scheduler.poll(80.0) is None


def test_state_transitions(persistence, draft) -> None:
    scheduler = AutosaveScheduler(draft, persistence, interval_seconds=30)
    assert scheduler.state is SchedulerState.IDLE

    scheduler.on_change(0.0)
    assert scheduler.state is SchedulerState.PENDING_TIMER

    attempt = scheduler.poll(30.0)
    assert scheduler.state is SchedulerState.SAVING
    assert scheduler.indicator.is_saving is True

    _mark_saved(persistence, draft, attempt)
    report = scheduler.complete(attempt, _success(attempt))

    assert report.ok
    assert scheduler.state is SchedulerState.IDLE
    assert scheduler.indicator.last_saved_at == SAVED_AT
    assert scheduler.indicator.is_saving is False


def test_clean_draft_does_not_arm_timer(persistence, draft) -> None:
    scheduler = AutosaveScheduler(draft, persistence)
    attempt = scheduler.request_save(DocumentStatus.COMPLETED)
    _mark_saved(persistence, draft, attempt)
    scheduler.complete(attempt, _success(attempt))

    assert scheduler.on_change(100.0) is False
    assert scheduler.state is SchedulerState.IDLE


def test_draft_reverted_to_saved_content_skips_save(persistence, draft) -> None:
    scheduler = AutosaveScheduler(draft, persistence, interval_seconds=30)
    attempt = scheduler.request_save(DocumentStatus.DRAFT)
    _mark_saved(persistence, draft, attempt)
    scheduler.complete(attempt, _success(attempt))

    draft.title = "Autre"
    scheduler.on_change(0.0)
    draft.title = "Absence"

    assert scheduler.poll(30.0) is None
    assert scheduler.state is SchedulerState.IDLE


def test_anonymous_session_never_autosaves(persistence, draft) -> None:
    scheduler = AutosaveScheduler(draft, persistence, authenticated=lambda: False)

    assert scheduler.on_change(0.0) is False
    assert scheduler.poll(1_000.0) is None


def test_anonymous_explicit_save_requires_login(persistence, draft) -> None:
    scheduler = AutosaveScheduler(draft, persistence, authenticated=lambda: False)

    decision = scheduler.request_save(DocumentStatus.COMPLETED)
    report = scheduler.reject(decision, Trigger.EXPLICIT)

    assert decision is ErrorKind.AUTH_REQUIRED
    assert report.action is Action.REDIRECT_TO_LOGIN
    assert persistence.applied_generation == 0


def test_explicit_save_bypasses_debounce(persistence, draft) -> None:
    scheduler = AutosaveScheduler(draft, persistence, interval_seconds=30)
    scheduler.on_change(0.0)

    attempt = scheduler.request_save(DocumentStatus.COMPLETED)

    assert attempt.automatic is False
    assert attempt.target_status is DocumentStatus.COMPLETED
    assert scheduler.deadline is None


def test_explicit_save_waits_for_inflight_create(persistence, draft) -> None:
    scheduler = AutosaveScheduler(draft, persistence, interval_seconds=30)
    scheduler.on_change(0.0)
    create = scheduler.poll(30.0)

    assert scheduler.saving is True
    assert scheduler.request_save(DocumentStatus.COMPLETED) is None

    _mark_saved(persistence, draft, create)
    scheduler.complete(create, _success(create))
    retry = scheduler.request_save(DocumentStatus.COMPLETED)

    assert retry is not None
    assert retry.generation > create.generation


def test_explicit_save_waits_for_inflight_update(persistence, draft) -> None:
    scheduler = AutosaveScheduler(draft, persistence, interval_seconds=30)
    draft.assign_identity(42)
    scheduler.on_change(0.0)
    update = scheduler.poll(30.0)
    draft.content = "Motif final"

    assert scheduler.request_save(DocumentStatus.COMPLETED) is None
    assert scheduler.state is SchedulerState.SAVING

    _mark_saved(persistence, draft, update)
    report = scheduler.complete(update, _success(update))
    explicit = scheduler.request_save(DocumentStatus.COMPLETED)

    assert report.follow_up is None
    assert explicit.generation > update.generation
    assert explicit.payload["content"] == "Motif final"
    assert explicit.target_status is DocumentStatus.COMPLETED


def test_timer_during_inflight_save_is_deferred(persistence, draft) -> None:
    scheduler = AutosaveScheduler(draft, persistence, interval_seconds=30)
    scheduler.on_change(0.0)
    first = scheduler.poll(30.0)

    draft.content = "Motif modifié"
    scheduler.on_change(31.0)
    assert scheduler.poll(61.0) is None

    _mark_saved(persistence, draft, first)
    report = scheduler.complete(first, _success(first))

    assert report.follow_up is not None
    assert report.follow_up.automatic is True
    assert report.follow_up.payload["content"] == "Motif modifié"


def test_automatic_failure_is_silent(persistence, draft) -> None:
    scheduler = AutosaveScheduler(draft, persistence, interval_seconds=30)
    scheduler.on_change(0.0)
    attempt = scheduler.poll(30.0)

    report = scheduler.complete(
        attempt,
        SaveError(
            kind=ErrorKind.RATE_LIMITED,
            message="slow down",
            retry_after=20,
            generation=attempt.generation,
        ),
    )

    assert report.action is Action.SILENT_RETRY_LATER
    assert "20 seconds" in scheduler.indicator.error
    assert scheduler.state is SchedulerState.IDLE
    # The edit stays dirty; the next change re-arms the timer
    assert scheduler.on_change(40.0) is True


def test_explicit_failure_is_surfaced(persistence, draft) -> None:
    scheduler = AutosaveScheduler(draft, persistence)
    attempt = scheduler.request_save(DocumentStatus.COMPLETED)

    report = scheduler.complete(
        attempt,
        SaveError(kind=ErrorKind.AUTH_REQUIRED, message="expired", status_code=401),
    )

    assert report.action is Action.REDIRECT_TO_LOGIN
    assert report.ok is False


def test_failure_of_superseded_save_is_ignored(persistence, draft) -> None:
    scheduler = AutosaveScheduler(draft, persistence)
    draft.assign_identity(42)
    # A save from a previous request that was still on the wire
    older = persistence.prepare(draft, DocumentStatus.DRAFT, automatic=True)
    newer = scheduler.request_save(DocumentStatus.COMPLETED)
    _mark_saved(persistence, draft, newer)
    scheduler.complete(newer, _success(newer))

    report = scheduler.complete(
        older,
        SaveError(kind=ErrorKind.SERVER_ERROR, message="late", generation=older.generation),
    )

    assert report.superseded is True
    assert report.action is None
    assert scheduler.indicator.error is None


def test_teardown_cancels_pending_timer(persistence, draft) -> None:
    scheduler = AutosaveScheduler(draft, persistence, interval_seconds=30)
    scheduler.on_change(0.0)

    scheduler.teardown()

    assert scheduler.poll(30.0) is None
    assert scheduler.on_change(31.0) is False
    with pytest.raises(SessionClosed):
        scheduler.request_save(DocumentStatus.COMPLETED)
