"""
Conteneur d'injection de dépendances de l'application.

Instancie les composants centraux (settings, dépôts, contrôle d'admission, générateur) pour la
durée de vie du processus serveur. Le conteneur est passé à `create_app` et exposé aux routes via
`request.app.state.container`; il n'existe pas d'instance globale.
"""

from __future__ import annotations

import time

import structlog
from fastapi import Request

from docdesk.apigw.rate_limit import (
    AdmissionController,
    BucketStore,
    InMemoryBucketStore,
    load_tier_tables,
)
from docdesk.apigw.redis_store import RedisBucketStore
from docdesk.core.settings import Settings, get_settings
from docdesk.infra.llm.base import Generator
from docdesk.infra.llm.template import TemplateGenerator
from docdesk.infra.repositories import (
    InMemoryDocumentRepo,
    InMemoryUserRepo,
    RedisDocumentRepo,
    RedisUserRepo,
)

logger = structlog.get_logger(__name__)


class Container:
    def __init__(
        self,
        settings: Settings | None = None,
        bucket_store: BucketStore | None = None,
        generator: Generator | None = None,
    ):
        self.settings = settings or get_settings()
        self.generator = generator or TemplateGenerator()

        if self.settings.REDIS_URL:
            try:
                self.document_repo = RedisDocumentRepo(self.settings.REDIS_URL)
                self.user_repo = RedisUserRepo(self.settings.REDIS_URL)
                self.storage_backend = "redis"
            except Exception as err:
                if self.settings.REQUIRE_REDIS:
                    raise RuntimeError("Redis required but unavailable") from err
                logger.warning("redis_unavailable", fallback="memory", error=str(err))
                self._use_memory_repos("memory-fallback")
        else:
            if self.settings.REQUIRE_REDIS:
                raise RuntimeError("Redis required but REDIS_URL not set")
            self._use_memory_repos("memory")

        if bucket_store is None:
            # Without a shared store each process counts on its own (≈ L per instance)
            if self.settings.REDIS_URL:
                bucket_store = RedisBucketStore(self.settings)
            else:
                bucket_store = InMemoryBucketStore()
        # Redis windows are shared across hosts and need epoch time; in-process ones use a
        # clock that never steps back
        clock = time.monotonic if isinstance(bucket_store, InMemoryBucketStore) else time.time
        self.admission = AdmissionController(
            load_tier_tables(self.settings.RATE_LIMIT_TIERS_JSON), bucket_store, clock=clock
        )

    def _use_memory_repos(self, backend: str) -> None:
        self.document_repo = InMemoryDocumentRepo()
        self.user_repo = InMemoryUserRepo()
        self.storage_backend = backend


def get_container(request: Request) -> Container:
    """Dépendance FastAPI: conteneur attaché à l'application courante."""
    return request.app.state.container
