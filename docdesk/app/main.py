"""
Application principale FastAPI.

Ce module assemble les composants du serveur documents : middlewares, contrôle d'admission,
routes, métriques et gestion d'erreurs.

Responsabilités du module:
- Initialiser le logging structuré
- Construire l'application FastAPI et y attacher le conteneur (durée de vie = processus)
- Ajouter les middlewares (request id, admission, métriques)
- Monter les routers (santé, auth, documents, IA, métriques)

Lancement: `uvicorn docdesk.app.main:create_app --factory`.
"""

from __future__ import annotations

from fastapi import FastAPI

from docdesk.api.routes_auth import router as auth_router
from docdesk.api.routes_chat import router as ai_router
from docdesk.api.routes_documents import router as documents_router
from docdesk.api.routes_health import router as health_router
from docdesk.apigw.errors import register_error_handlers
from docdesk.apigw.rate_limit import AdmissionMiddleware
from docdesk.app.metrics import PrometheusMiddleware, metrics_router
from docdesk.core.container import Container
from docdesk.core.logging import setup_logging
from docdesk.middlewares.request_id import RequestIDMiddleware


def create_app(container: Container | None = None) -> FastAPI:
    """
    Construit et retourne l'application FastAPI prête à l'usage.

    Étapes:
    - Configure le logging structuré (structlog)
    - Construit (ou reçoit) le conteneur de dépendances
    - Ajoute les middlewares; le request id est le plus externe pour tracer les refus 429
    - Publie les routes et les handlers d'erreurs
    """
    container = container or Container()
    setup_logging(container.settings)
    settings = container.settings
    app = FastAPI(title=settings.APP_NAME, debug=settings.APP_DEBUG)
    app.state.container = container

    register_error_handlers(app)
    app.add_middleware(AdmissionMiddleware)
    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(ai_router)
    app.include_router(documents_router)
    app.include_router(metrics_router)
    return app
