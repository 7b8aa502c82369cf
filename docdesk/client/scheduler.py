"""Planificateur d'autosauvegarde (machine à états synchrone).

États: `IDLE → PENDING_TIMER → SAVING → IDLE`. Une modification re-arme l'échéance de
quiescence (jamais deux minuteries), l'échéance déclenche une sauvegarde automatique en statut
brouillon, et la fin d'une sauvegarde ramène à `IDLE`.

Les transitions sont des appels synchrones prenant l'instant courant en paramètre; le pilotage
asynchrone réel (minuterie, tâches réseau) est assuré par `docdesk.client.session`.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

import structlog

from docdesk.client.change_detector import should_save
from docdesk.client.persistence import PersistenceClient
from docdesk.client.reconciler import Action, ErrorReconciler
from docdesk.domain.documents import DocumentDraft, DocumentStatus, SaveAttempt
from docdesk.domain.results import ErrorKind, SaveError, SaveResult, SaveSuccess, Trigger

DEFAULT_INTERVAL_SECONDS = 30.0


class SchedulerState(str, Enum):
    IDLE = "idle"
    PENDING_TIMER = "pending_timer"
    SAVING = "saving"


class SessionClosed(RuntimeError):
    """Raised when a save is requested after the editing session was torn down."""


@dataclass
class SaveIndicator:
    """Indicateur passif d'autosauvegarde (sauvegarde en cours, dernière réussite, échec)."""

    is_saving: bool = False
    last_saved_at: datetime | None = None
    error: str | None = None


@dataclass(frozen=True)
class SaveReport:
    """Issue d'une sauvegarde une fois réconciliée."""

    result: SaveResult
    action: Action | None = None
    message: str | None = None
    follow_up: SaveAttempt | None = None
    superseded: bool = False

    @property
    def ok(self) -> bool:
        return isinstance(self.result, SaveSuccess)


class AutosaveScheduler:
    """Décide quand et quoi sauvegarder pour un brouillon d'une session d'édition."""

    def __init__(
        self,
        draft: DocumentDraft,
        persistence: PersistenceClient,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        authenticated: Callable[[], bool] = lambda: True,
        reconciler: ErrorReconciler | None = None,
    ) -> None:
        self.draft = draft
        self.persistence = persistence
        self.interval_seconds = interval_seconds
        self._authenticated = authenticated
        self.reconciler = reconciler or ErrorReconciler()
        self._deadline: float | None = None
        self._in_flight: dict[int, SaveAttempt] = {}
        self._deferred_automatic = False
        self._closed = False
        self._last_saved_at: datetime | None = draft.last_saved_at
        self._last_error: str | None = None
        self._log = structlog.get_logger(__name__).bind(component="autosave_scheduler")

    @property
    def state(self) -> SchedulerState:
        if self._in_flight:
            return SchedulerState.SAVING
        if self._deadline is not None:
            return SchedulerState.PENDING_TIMER
        return SchedulerState.IDLE

    @property
    def deadline(self) -> float | None:
        return self._deadline

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def saving(self) -> bool:
        return bool(self._in_flight)

    @property
    def indicator(self) -> SaveIndicator:
        return SaveIndicator(
            is_saving=bool(self._in_flight),
            last_saved_at=self._last_saved_at,
            error=self._last_error,
        )

    def on_change(self, now: float) -> bool:
        """Record an edit; (re)arm the quiescence deadline if the draft is dirty.

        Returns True when the deadline was armed. Anonymous sessions never arm it.
        """
        if self._closed or not self._authenticated():
            return False
        dirty, _ = should_save(self.draft, self.draft.last_fingerprint)
        if not dirty:
            return False
        self._deadline = now + self.interval_seconds
        return True

    def poll(self, now: float) -> SaveAttempt | None:
        """Fire the deadline if it has elapsed at `now`."""
        if self._deadline is None or now < self._deadline:
            return None
        return self.fire()

    def fire(self) -> SaveAttempt | None:
        """Timer expiry: start an automatic draft save if one is still warranted."""
        if self._deadline is None:
            return None
        self._deadline = None
        return self._begin_automatic()

    def _begin_automatic(self) -> SaveAttempt | None:
        if self._closed or not self._authenticated():
            return None
        dirty, _ = should_save(self.draft, self.draft.last_fingerprint)
        if not dirty:
            self._log.debug("autosave_skipped_clean")
            return None
        if self._in_flight:
            # One automatic save at a time; resumes when the current one completes
            self._deferred_automatic = True
            return None
        return self._start(DocumentStatus.DRAFT, automatic=True)

    def request_save(self, status: DocumentStatus) -> SaveAttempt | ErrorKind | None:
        """Explicit save, bypassing the debounce.

        Returns the attempt to run, `ErrorKind.AUTH_REQUIRED` for an anonymous session (no
        network call), or None while another save is in flight: the caller waits for it, so
        writes reach the store in generation order and only one create is ever issued.
        """
        if self._closed:
            raise SessionClosed("editing session is closed")
        if not self._authenticated():
            return ErrorKind.AUTH_REQUIRED
        self._deadline = None
        self._deferred_automatic = False
        if self._in_flight:
            return None
        return self._start(status, automatic=False)

    def _start(self, status: DocumentStatus, automatic: bool) -> SaveAttempt:
        attempt = self.persistence.prepare(self.draft, status, automatic=automatic)
        self._in_flight[attempt.generation] = attempt
        self._log.debug(
            "save_started",
            generation=attempt.generation,
            status=status.value,
            automatic=automatic,
            identity=self.draft.identity,
        )
        return attempt

    def reject(self, kind: ErrorKind, trigger: Trigger) -> SaveReport:
        """Report a save refused before reaching the network."""
        error = SaveError(kind=kind, message=kind.value)
        message = self.reconciler.describe(error)
        if trigger is Trigger.AUTOMATIC:
            self._last_error = message
        return SaveReport(
            result=error, action=self.reconciler.handle(kind, trigger), message=message
        )

    def complete(self, attempt: SaveAttempt, result: SaveResult) -> SaveReport:
        """Post the outcome of `attempt` back into the state machine."""
        self._in_flight.pop(attempt.generation, None)
        if self._closed:
            return SaveReport(result=result, superseded=True)

        trigger = Trigger.AUTOMATIC if attempt.automatic else Trigger.EXPLICIT
        if isinstance(result, SaveSuccess):
            superseded = not result.applied
            if result.applied:
                self._last_saved_at = result.saved_at
                self._last_error = None
            report = SaveReport(result=result, superseded=superseded)
        elif attempt.generation < self.persistence.applied_generation:
            # A newer save already landed; this failure is moot
            report = SaveReport(result=result, superseded=True)
        else:
            action = self.reconciler.handle(result.kind, trigger)
            message = self.reconciler.describe(result)
            self._last_error = message
            self._log.info(
                "save_failed",
                generation=attempt.generation,
                kind=result.kind.value,
                trigger=trigger.value,
                action=action.value,
            )
            report = SaveReport(result=result, action=action, message=message)

        if self._deferred_automatic and not self._in_flight:
            self._deferred_automatic = False
            follow_up = self._begin_automatic()
            if follow_up is not None:
                report = SaveReport(
                    result=report.result,
                    action=report.action,
                    message=report.message,
                    follow_up=follow_up,
                    superseded=report.superseded,
                )
        return report

    def teardown(self) -> None:
        """End of the editing session: drop the deadline and ignore late results."""
        self._closed = True
        self._deadline = None
        self._deferred_automatic = False
