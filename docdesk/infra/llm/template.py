"""Générateur déterministe fondé sur des gabarits.

Utilisé par défaut (dev/tests): aucun appel externe, sortie stable pour une même entrée.
"""

from __future__ import annotations

from typing import Any

from docdesk.infra.llm.base import Generator


class TemplateGenerator(Generator):
    """Rend les champs saisis sous forme de document texte structuré."""

    def generate_document(
        self, document_type: str, title: str, fields: dict[str, Any]
    ) -> str:
        lines = [f"[{document_type}] {title}".strip(), ""]
        for key in sorted(fields):
            value = fields[key]
            if value in (None, "", [], {}):
                continue
            lines.append(f"{key}: {value}")
        return "\n".join(lines).rstrip() + "\n"

    def reply(self, message: str, history: list[dict[str, str]] | None = None) -> str:
        turns = len(history or []) + 1
        return f"(#{turns}) {message.strip()}"
