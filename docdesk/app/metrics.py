"""
Métriques Prometheus pour l'application.

Ce module définit les métriques Prometheus du contrôle d'admission, de l'API documents et des
requêtes HTTP, ainsi que l'endpoint `/metrics`.
"""

import re
import time

from fastapi import APIRouter, Request
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

metrics_router = APIRouter()

_NUMERIC_SEGMENT_RE = re.compile(r"/\d+(?=/|$)")

REQUEST_COUNT = Counter(
    "http_requests_total", "Total HTTP requests", ["method", "route", "status"]
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds", "Latency of HTTP requests", ["route"]
)

# Admission control (low cardinality: no identity keys in labels)
ADMISSION_DECISIONS = Counter(
    "admission_decisions_total",
    "Admission decisions per endpoint class",
    ["endpoint_class", "result"],
)
ADMISSION_BLOCKS = Counter(
    "admission_blocks_total",
    "Requests rejected by admission control, by violated tier",
    ["endpoint_class", "tier"],
)
ADMISSION_EVALUATION_TIME = Histogram(
    "admission_evaluation_seconds",
    "Time spent evaluating rate-limit tiers",
    ["endpoint_class"],
    buckets=[0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1],
)
ADMISSION_STORE_ERRORS = Counter(
    "admission_store_errors_total",
    "Shared counter store failures (request admitted, fail-open)",
    ["error_type"],
)

# Document store
DOCUMENT_WRITES = Counter(
    "document_writes_total",
    "Document create/update/delete operations",
    ["operation", "status"],
)


def normalize_route(path: str) -> str:
    """Replace numeric path segments with `{id}` to keep label cardinality bounded."""
    if not path:
        return "/"
    return _NUMERIC_SEGMENT_RE.sub("/{id}", path)


@metrics_router.get("/metrics")
def metrics():
    """
    Expose les métriques Prometheus au format texte.

    Returns:
        Response: Réponse HTTP contenant les métriques au format Prometheus.
    """
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """
    Middleware Prometheus pour mesurer les métriques HTTP.

    Collecte les métriques de comptage des requêtes et de latence par route normalisée.
    """

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response: Response = await call_next(request)
        route = normalize_route(request.url.path)
        REQUEST_COUNT.labels(request.method, route, str(response.status_code)).inc()
        REQUEST_LATENCY.labels(route).observe(time.perf_counter() - start)
        return response
