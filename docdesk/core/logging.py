"""Configuration de logging basée sur structlog.

Objectif du module
------------------
- Logs console lisibles en développement, JSON une ligne par évènement ailleurs.
- Router les logs stdlib (`logging.getLogger`) des middlewares vers la même sortie.
- Propager le `trace_id` lié par le middleware de request id (contextvars).
"""

import logging
import sys

import structlog

from docdesk.core.settings import Settings

DEV_ENVS = ("dev", "local", "test")


def setup_logging(settings: Settings) -> None:
    """Configure structlog selon l'environnement (rendu, niveau)."""
    level = logging.DEBUG if settings.APP_DEBUG else logging.INFO
    if settings.APP_ENV in DEV_ENVS:
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(stream=sys.stdout, level=level, format="%(levelname)s %(name)s %(message)s")
