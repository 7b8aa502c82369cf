"""Interface de base pour la génération de contenu assistée par IA."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class Generator(ABC):
    """Interface abstraite des générateurs de contenu (documents et chat)."""

    @abstractmethod
    def generate_document(
        self, document_type: str, title: str, fields: dict[str, Any]
    ) -> str:
        """Génère le contenu d'un document à partir des champs saisis."""
        ...

    @abstractmethod
    def reply(self, message: str, history: list[dict[str, str]] | None = None) -> str:
        """Produit une réponse de chat."""
        ...
