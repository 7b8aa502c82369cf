"""
Contrôle d'admission (rate limiting) par paliers pour l'API.

Ce module implémente un rate limiting à fenêtres fixes: chaque classe d'endpoint est protégée par
une liste ordonnée de paliers indépendants (minute, heure, jour...). Une requête n'est admise que
si tous les paliers l'acceptent; seules les requêtes admises sont comptées.

Le store en mémoire est atomique au sein d'un processus. En déploiement multi-instances sans
Redis, chaque instance applique ses propres compteurs: la limite effective devient
approximativement "L par instance". Utiliser `RedisBucketStore` pour des compteurs partagés.
"""

from __future__ import annotations

import json
import logging
import math
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response as StarletteResponse

from docdesk.apigw.auth_utils import resolve_identity_key
from docdesk.apigw.errors import ErrorCodes, rate_limited_response
from docdesk.app.metrics import (
    ADMISSION_BLOCKS,
    ADMISSION_DECISIONS,
    ADMISSION_EVALUATION_TIME,
)
from docdesk.core.http_constants import FIFTEEN_MINUTES, ONE_DAY, ONE_HOUR, ONE_MINUTE

log = logging.getLogger(__name__)

EXEMPT_PREFIXES = ("/health", "/metrics", "/docs", "/openapi.json")


class EndpointClass(str, Enum):
    """Classes d'endpoints partageant une même table de paliers."""

    CHAT = "chat"
    AI_GENERATE = "ai-generate"
    GENERAL = "general"
    LOGIN = "login"


@dataclass(frozen=True)
class Tier:
    """Un palier: au plus `limit` requêtes admises par fenêtre de `window_seconds`.

    Le nom sert de portée du compteur: deux classes listant un palier de même nom partagent
    le même bucket pour une identité donnée.
    """

    name: str
    limit: int
    window_seconds: float


@dataclass
class RateLimitBucket:
    """Compteur d'une paire (identité, palier) sur la fenêtre courante."""

    key: str
    tier_name: str
    window_start: float
    count: int
    limit: int
    window_seconds: float

    def expired(self, now: float) -> bool:
        return now >= self.window_start + self.window_seconds

    def roll(self, now: float) -> None:
        """Reset the window wholesale once it has elapsed."""
        if self.expired(now):
            self.window_start = now
            self.count = 0
        elif now < self.window_start:
            # Clock stepped back: the window may not end later than now + window_seconds
            self.window_start = now

    def retry_after(self, now: float) -> float:
        remaining = self.window_start + self.window_seconds - now
        return min(self.window_seconds, max(0.0, remaining))


@dataclass(frozen=True)
class AdmissionDecision:
    """Résultat d'un contrôle d'admission."""

    allowed: bool
    violated_tier: str | None = None
    retry_after: float | None = None
    limit: int | None = None
    remaining: int | None = None

    @property
    def retry_after_seconds(self) -> int | None:
        """Retry-after rounded up to whole seconds (at least 1) for HTTP headers."""
        if self.retry_after is None:
            return None
        return max(1, math.ceil(self.retry_after))


ALLOW_ALL = AdmissionDecision(allowed=True)

DEFAULT_TIER_TABLES: dict[EndpointClass, tuple[Tier, ...]] = {
    EndpointClass.CHAT: (
        Tier("chat:minute", 10, ONE_MINUTE),
        Tier("chat:hour", 100, ONE_HOUR),
    ),
    EndpointClass.AI_GENERATE: (
        Tier("ai-generate:minute", 5, ONE_MINUTE),
        Tier("ai-generate:hour", 50, ONE_HOUR),
        Tier("ai-daily", 200, ONE_DAY),
    ),
    EndpointClass.GENERAL: (Tier("general:minute", 100, ONE_MINUTE),),
    EndpointClass.LOGIN: (Tier("login:15min", 5, FIFTEEN_MINUTES),),
}


def _ordered(tiers: Sequence[Tier]) -> tuple[Tier, ...]:
    """Shortest window first, so the tightest retry hint is surfaced on rejection."""
    return tuple(sorted(tiers, key=lambda t: t.window_seconds))


def load_tier_tables(raw_json: str | None) -> dict[EndpointClass, tuple[Tier, ...]]:
    """
    Construit les tables de paliers à partir des défauts et d'un override JSON.

    Format: `{"chat": [{"name": "chat:minute", "limit": 10, "window_seconds": 60}]}`.
    Une classe présente dans le JSON remplace entièrement sa table par défaut.
    Un JSON invalide est journalisé et ignoré.
    """
    tables = dict(DEFAULT_TIER_TABLES)
    try:
        overrides: dict[str, Any] = json.loads(raw_json or "{}")
        for class_name, tiers in overrides.items():
            tables[EndpointClass(class_name)] = tuple(
                Tier(
                    name=str(t["name"]),
                    limit=int(t["limit"]),
                    window_seconds=float(t["window_seconds"]),
                )
                for t in tiers
            )
    except (ValueError, KeyError, TypeError) as exc:
        log.warning(
            "Invalid RATE_LIMIT_TIERS_JSON, using default tiers",
            extra={"error": str(exc)},
        )
        tables = dict(DEFAULT_TIER_TABLES)
    return {cls: _ordered(tiers) for cls, tiers in tables.items()}


class BucketStore(Protocol):
    """Stockage des buckets; `admit` doit être atomique pour une identité donnée."""

    def admit(self, key: str, tiers: Sequence[Tier], now: float) -> AdmissionDecision: ...


class InMemoryBucketStore:
    """Store de buckets en mémoire, sûr entre threads d'un même processus.

    Le check-then-increment de tous les paliers d'une requête se fait sous un verrou propre à
    l'identité, si bien que deux requêtes concurrentes ne peuvent pas observer toutes deux
    `count < limit` puis dépasser la limite.

    Les identités dont tous les buckets ont expiré sont purgées (buckets et verrou) au plus une
    fois par `sweep_interval`, pour que la mémoire reste bornée par les identités actives.
    """

    def __init__(self, sweep_interval: float = ONE_MINUTE) -> None:
        self.sweep_interval = sweep_interval
        self._buckets: dict[str, dict[str, RateLimitBucket]] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._next_sweep: float | None = None

    def __len__(self) -> int:
        """Number of identities currently tracked."""
        return len(self._locks)

    def _lock_for(self, key: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def _acquire(self, key: str) -> threading.Lock:
        """Take the identity lock, retrying if a sweep retired it meanwhile."""
        while True:
            lock = self._lock_for(key)
            lock.acquire()
            if self._locks.get(key) is lock:
                return lock
            lock.release()

    def _sweep(self, now: float) -> None:
        if self._next_sweep is not None and now < self._next_sweep:
            return
        self._next_sweep = now + self.sweep_interval
        removed = 0
        with self._locks_guard:
            for key, lock in list(self._locks.items()):
                # Identities being evaluated right now are left for the next sweep
                if not lock.acquire(blocking=False):
                    continue
                try:
                    buckets = self._buckets.get(key, {})
                    if all(bucket.expired(now) for bucket in buckets.values()):
                        self._buckets.pop(key, None)
                        del self._locks[key]
                        removed += 1
                finally:
                    lock.release()
        if removed:
            log.debug("Expired rate limit buckets purged", extra={"identities": removed})

    def _bucket(self, key: str, tier: Tier, now: float) -> RateLimitBucket:
        per_key = self._buckets.setdefault(key, {})
        bucket = per_key.get(tier.name)
        if bucket is None:
            bucket = RateLimitBucket(
                key=key,
                tier_name=tier.name,
                window_start=now,
                count=0,
                limit=tier.limit,
                window_seconds=tier.window_seconds,
            )
            per_key[tier.name] = bucket
        else:
            bucket.limit = tier.limit
            bucket.window_seconds = tier.window_seconds
            bucket.roll(now)
        return bucket

    def get(self, key: str, tier_name: str) -> RateLimitBucket | None:
        return self._buckets.get(key, {}).get(tier_name)

    def admit(self, key: str, tiers: Sequence[Tier], now: float) -> AdmissionDecision:
        self._sweep(now)
        lock = self._acquire(key)
        try:
            buckets = []
            for tier in tiers:
                bucket = self._bucket(key, tier, now)
                if bucket.count >= bucket.limit:
                    return AdmissionDecision(
                        allowed=False,
                        violated_tier=tier.name,
                        retry_after=bucket.retry_after(now),
                        limit=bucket.limit,
                        remaining=0,
                    )
                buckets.append(bucket)

            for bucket in buckets:
                bucket.count += 1

            tightest = min(buckets, key=lambda b: b.limit - b.count)
            return AdmissionDecision(
                allowed=True,
                limit=tightest.limit,
                remaining=tightest.limit - tightest.count,
            )
        finally:
            lock.release()


class AdmissionController:
    """Porte d'admission consultée par tout appel atteignant un endpoint protégé."""

    def __init__(
        self,
        tier_tables: Mapping[EndpointClass, Sequence[Tier]],
        store: BucketStore,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.tier_tables = {cls: _ordered(tiers) for cls, tiers in tier_tables.items()}
        self.store = store
        self._clock = clock

    def check(self, identity_key: str, endpoint_class: EndpointClass) -> AdmissionDecision:
        """Evaluate every tier of `endpoint_class` for `identity_key` (logical AND)."""
        tiers = self.tier_tables.get(endpoint_class)
        if not tiers:
            return ALLOW_ALL

        start = time.perf_counter()
        try:
            decision = self.store.admit(identity_key, tiers, self._clock())
        finally:
            ADMISSION_EVALUATION_TIME.labels(endpoint_class=endpoint_class.value).observe(
                time.perf_counter() - start
            )

        if decision.allowed:
            ADMISSION_DECISIONS.labels(endpoint_class=endpoint_class.value, result="allow").inc()
        else:
            ADMISSION_DECISIONS.labels(endpoint_class=endpoint_class.value, result="block").inc()
            ADMISSION_BLOCKS.labels(
                endpoint_class=endpoint_class.value, tier=decision.violated_tier or "unknown"
            ).inc()
        return decision


def classify_request(method: str, path: str) -> EndpointClass | None:
    """Map a request to its endpoint class; None means the route is not guarded."""
    if path.startswith(EXEMPT_PREFIXES):
        return None
    if method == "POST" and path.rstrip("/") == "/auth/login":
        return EndpointClass.LOGIN
    if method == "POST" and path.rstrip("/") == "/api/documents/generate":
        return EndpointClass.AI_GENERATE
    if method == "POST" and path.rstrip("/") == "/api/chat":
        return EndpointClass.CHAT
    if path.startswith(("/api/", "/auth/")):
        return EndpointClass.GENERAL
    return None


class AdmissionMiddleware(BaseHTTPMiddleware):
    """Middleware appliquant le contrôle d'admission avant d'atteindre la route."""

    async def dispatch(self, request: Request, call_next: Any) -> StarletteResponse:
        container = request.app.state.container
        if not container.settings.RATE_LIMIT_ENABLED:
            return await call_next(request)

        endpoint_class = classify_request(request.method, request.url.path)
        if endpoint_class is None:
            return await call_next(request)

        identity_key = resolve_identity_key(request, container.settings)
        decision = container.admission.check(identity_key, endpoint_class)

        if not decision.allowed:
            log.warning(
                "Rate limit exceeded",
                extra={
                    "identity_key": identity_key,
                    "endpoint_class": endpoint_class.value,
                    "tier": decision.violated_tier,
                    "path": request.url.path,
                    "method": request.method,
                    "retry_after": decision.retry_after_seconds,
                    "trace_id": getattr(request.state, "trace_id", None),
                },
            )
            return rate_limited_response(
                message=f"Too many {endpoint_class.value} requests. Try again later.",
                retry_after=decision.retry_after_seconds,
                code=ErrorCodes.RATE_LIMITED,
            )

        response = await call_next(request)
        if decision.limit is not None:
            response.headers["X-RateLimit-Limit"] = str(decision.limit)
            response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        return response
