"""Configuration de test pour pytest avec gestion des chemins.

Ce module ajoute la racine du projet au sys.path et fournit une application construite sur un
conteneur en mémoire (aucun Redis requis) ainsi que des helpers d'authentification.
"""

import os
import sys

import pytest
from fastapi.testclient import TestClient

# Ensure project root is on sys.path so that
# imports like `from docdesk...` resolve.
CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from docdesk.app.main import create_app  # noqa: E402
from docdesk.core.container import Container  # noqa: E402
from docdesk.core.settings import Settings  # noqa: E402

TEST_PASSWORD = "correct-horse-battery"


@pytest.fixture
def settings() -> Settings:
    """Settings isolés de l'environnement (stores en mémoire)."""
    return Settings(
        REDIS_URL=None,
        REQUIRE_REDIS=False,
        JWT_SECRET="test-secret",
        RATE_LIMIT_ENABLED=True,
        RATE_LIMIT_TIERS_JSON="{}",
        RATE_LIMIT_TRUST_FORWARDED=False,
    )


@pytest.fixture
def container(settings: Settings) -> Container:
    return Container(settings=settings)


@pytest.fixture
def app(container: Container):
    return create_app(container)


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


def signup_and_login(client: TestClient, email: str = "user@example.com") -> dict[str, str]:
    """Inscrit un utilisateur, le connecte et retourne l'en-tête Authorization."""
    r = client.post("/auth/signup", json={"email": email, "password": TEST_PASSWORD})
    assert r.status_code == 201, r.text
    r = client.post("/auth/login", json={"email": email, "password": TEST_PASSWORD})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest.fixture
def auth_headers(client: TestClient) -> dict[str, str]:
    return signup_and_login(client)


@pytest.fixture
def login(client: TestClient):
    """Factory: `login("other@example.com")` retourne les en-têtes d'un nouvel utilisateur."""

    def _login(email: str = "user@example.com") -> dict[str, str]:
        return signup_and_login(client, email)

    return _login
