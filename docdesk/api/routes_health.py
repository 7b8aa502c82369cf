"""
Endpoint de santé pour vérifier la disponibilité de l'API et du backend.

Expose `/health` pour signaler l'état général de l'application, du stockage et du store de
rate limiting. Cet endpoint n'est jamais soumis au contrôle d'admission.
"""

from fastapi import APIRouter, Depends

from docdesk.apigw.redis_store import RedisBucketStore
from docdesk.core.container import Container, get_container

router = APIRouter(tags=["health"])


@router.get("/health")
def health(container: Container = Depends(get_container)):
    """Vérifie la disponibilité de l'API et les backends de stockage."""
    shared = isinstance(container.admission.store, RedisBucketStore)
    return {
        "status": "ok",
        "storage": container.storage_backend,
        "rate_limit_store": "redis" if shared else "memory",
        "rate_limit_enabled": container.settings.RATE_LIMIT_ENABLED,
    }
