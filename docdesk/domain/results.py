"""
Types de résultat des appels de persistance.

Chaque appel réseau de la session d'édition renvoie soit un `SaveSuccess`, soit un `SaveError`
classé selon `ErrorKind`; aucune exception de transport ne remonte au-delà du client.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class ErrorKind(str, Enum):
    """Taxonomie des échecs vus par la session d'édition."""

    AUTH_REQUIRED = "auth_required"
    FORBIDDEN = "forbidden"
    VALIDATION_ERROR = "validation_error"
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"
    SERVER_ERROR = "server_error"
    NETWORK_ERROR = "network_error"


class Trigger(str, Enum):
    """Origine d'une sauvegarde."""

    AUTOMATIC = "automatic"
    EXPLICIT = "explicit"


@dataclass(frozen=True)
class SaveSuccess:
    """Sauvegarde acceptée par le serveur.

    `applied` vaut False lorsque la réponse concerne une génération dépassée: elle a été ignorée.
    """

    identity: int
    saved_at: datetime
    generation: int
    applied: bool = True


@dataclass(frozen=True)
class SaveError:
    """Échec classé d'un appel de persistance."""

    kind: ErrorKind
    message: str
    status_code: int | None = None
    retry_after: int | None = None
    generation: int | None = None


SaveResult = SaveSuccess | SaveError
