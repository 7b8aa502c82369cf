"""Session d'édition asynchrone: pilote le planificateur avec une minuterie asyncio.

Usage typique:

    async with AutosaveSession(draft, persistence, AutosaveConfig.from_settings(settings)) as s:
        draft.title = "Nouveau titre"
        s.notify_change()
        report = await s.save(DocumentStatus.COMPLETED)

Toute la configuration est passée explicitement à la session (aucun état global).
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass

import structlog

from docdesk.client.persistence import PersistenceClient
from docdesk.client.reconciler import ErrorReconciler
from docdesk.client.scheduler import (
    DEFAULT_INTERVAL_SECONDS,
    AutosaveScheduler,
    SaveIndicator,
    SaveReport,
)
from docdesk.core.settings import Settings
from docdesk.domain.documents import DocumentDraft, DocumentStatus, SaveAttempt
from docdesk.domain.results import ErrorKind, Trigger


@dataclass(frozen=True)
class AutosaveConfig:
    interval_seconds: float = DEFAULT_INTERVAL_SECONDS

    @classmethod
    def from_settings(cls, settings: Settings) -> AutosaveConfig:
        return cls(interval_seconds=settings.AUTOSAVE_INTERVAL_MS / 1000)


class AutosaveSession:
    """Une session d'édition d'un brouillon (une minuterie au plus, sauvegardes en tâche)."""

    def __init__(
        self,
        draft: DocumentDraft,
        persistence: PersistenceClient,
        config: AutosaveConfig | None = None,
        authenticated: Callable[[], bool] = lambda: True,
        reconciler: ErrorReconciler | None = None,
        on_identity: Callable[[int], None] | None = None,
    ) -> None:
        self.draft = draft
        self.persistence = persistence
        self.config = config or AutosaveConfig()
        self.scheduler = AutosaveScheduler(
            draft,
            persistence,
            interval_seconds=self.config.interval_seconds,
            authenticated=authenticated,
            reconciler=reconciler,
        )
        self._on_identity = on_identity
        self._timer: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task[SaveReport]] = set()
        self._reports: list[SaveReport] = []
        self._log = structlog.get_logger(__name__).bind(component="autosave_session")

    async def __aenter__(self) -> AutosaveSession:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    @property
    def indicator(self) -> SaveIndicator:
        return self.scheduler.indicator

    @property
    def reports(self) -> list[SaveReport]:
        """Reports of completed saves, automatic ones included, in completion order."""
        return list(self._reports)

    def notify_change(self) -> None:
        """Signal an edit of the draft. Re-arms the single debounce timer."""
        loop = asyncio.get_running_loop()
        if not self.scheduler.on_change(loop.time()):
            return
        self._cancel_timer()
        self._timer = loop.call_later(self.config.interval_seconds, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        attempt = self.scheduler.fire()
        if attempt is not None:
            self._spawn(attempt)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _spawn(self, attempt: SaveAttempt) -> asyncio.Task[SaveReport]:
        task = asyncio.create_task(self._run(attempt))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, attempt: SaveAttempt) -> SaveReport:
        had_identity = self.draft.identity is not None
        result = await self.persistence.execute(self.draft, attempt)
        report = self.scheduler.complete(attempt, result)
        self._reports.append(report)
        if not had_identity and self.draft.identity is not None and self._on_identity:
            self._on_identity(self.draft.identity)
        if report.follow_up is not None:
            self._spawn(report.follow_up)
        return report

    async def save(self, status: DocumentStatus = DocumentStatus.COMPLETED) -> SaveReport:
        """Explicit save: bypasses the debounce and reports the reconciled outcome."""
        self._cancel_timer()
        while True:
            decision = self.scheduler.request_save(status)
            if isinstance(decision, ErrorKind):
                return self.scheduler.reject(decision, Trigger.EXPLICIT)
            if decision is not None:
                break
            # Another save has not answered yet
            pending = set(self._tasks)
            if not pending:
                raise RuntimeError("save in flight without a running task")
            await asyncio.wait(pending)
        return await self._spawn(decision)

    async def drain(self) -> None:
        """Wait until no save is in flight (follow-up saves included)."""
        while self._tasks:
            await asyncio.wait(set(self._tasks))

    async def aclose(self) -> None:
        """Tear the session down. In-flight saves finish but are not reconciled."""
        self._cancel_timer()
        self.scheduler.teardown()
        self._log.debug("session_closed", identity=self.draft.identity)
