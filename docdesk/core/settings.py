"""Définition et chargement des paramètres de configuration applicative.

Objectif du module
------------------
- Centraliser les paramètres (env/.env) via Pydantic Settings
- Résoudre le fichier `.env` à utiliser selon la stratégie: ENV_FILE > .env.{APP_ENV} > .env
"""

import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Détermination du fichier .env à utiliser avec priorité:
# 1) ENV_FILE (chemin explicite)
# 2) .env.{APP_ENV} si présent
# 3) .env (défaut)
_cwd = Path.cwd()
_env_file_from_env = os.getenv("ENV_FILE")
if _env_file_from_env:
    _ENV_FILE_PATH = _env_file_from_env
else:
    _app_env = os.getenv("APP_ENV", "dev")
    _candidate_specific = _cwd / f".env.{_app_env}"
    _candidate_default = _cwd / ".env"
    if _candidate_specific.exists():
        _ENV_FILE_PATH = _candidate_specific
    else:
        _ENV_FILE_PATH = _candidate_default


class Settings(BaseSettings):
    """Modèle de configuration chargé depuis l'environnement et .env."""

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE_PATH,
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
    )
    APP_NAME: str = "docdesk-backend"
    APP_ENV: str = "dev"
    APP_DEBUG: bool = False

    REDIS_URL: str | None = None
    REQUIRE_REDIS: bool = False
    # JWT/Auth
    JWT_SECRET: str = "dev-secret-change-me"
    JWT_ALG: str = "HS256"
    JWT_EXPIRES_MIN: int = 60

    # Admission control
    RATE_LIMIT_ENABLED: bool = True
    # JSON: {"chat": [{"name": "chat:minute", "limit": 10, "window_seconds": 60}, ...]}
    RATE_LIMIT_TIERS_JSON: str = "{}"
    # Honour X-Forwarded-For only behind a trusted reverse proxy
    RATE_LIMIT_TRUST_FORWARDED: bool = False
    RL_CONNECT_TIMEOUT_MS: int = 200
    RL_READ_TIMEOUT_MS: int = 200

    # Editing session (client side)
    AUTOSAVE_INTERVAL_MS: int = 30_000
    CLIENT_BASE_URL: str = "http://localhost:8000"
    CLIENT_TIMEOUT_S: float = 10.0


def get_settings() -> Settings:
    """Construit et retourne la configuration de l'application."""
    return Settings()
