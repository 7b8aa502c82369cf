"""Réconciliation des échecs de sauvegarde.

Point unique décidant, pour un échec classé, s'il faut réessayer silencieusement plus tard,
l'afficher à l'utilisateur ou rediriger vers la connexion. Les appelants n'inspectent jamais les
erreurs de transport brutes.
"""

from __future__ import annotations

from enum import Enum

from docdesk.domain.results import ErrorKind, SaveError, Trigger


class Action(str, Enum):
    """Suite à donner à un échec."""

    SILENT_RETRY_LATER = "silent_retry_later"
    SURFACE_TO_USER = "surface_to_user"
    REDIRECT_TO_LOGIN = "redirect_to_login"


_MESSAGES = {
    ErrorKind.AUTH_REQUIRED: "Login required. Please sign in to save this document.",
    ErrorKind.FORBIDDEN: "You do not have access to this document.",
    ErrorKind.VALIDATION_ERROR: "The document could not be saved: some required fields are missing.",
    ErrorKind.NOT_FOUND: "This document no longer exists.",
    ErrorKind.SERVER_ERROR: "Saving failed because of a server error. Please try again.",
    ErrorKind.NETWORK_ERROR: "Saving failed: the server could not be reached. Please try again.",
}


class ErrorReconciler:
    """Applique la politique retry / affichage / redirection."""

    def handle(self, error_kind: ErrorKind, triggered_by: Trigger) -> Action:
        if triggered_by is Trigger.AUTOMATIC:
            # Edits stay in memory; the next change or a manual save re-attempts
            return Action.SILENT_RETRY_LATER
        if error_kind is ErrorKind.AUTH_REQUIRED:
            return Action.REDIRECT_TO_LOGIN
        return Action.SURFACE_TO_USER

    def describe(self, error: SaveError) -> str:
        """User-facing message; rate limiting includes the retry-after hint."""
        if error.kind is ErrorKind.RATE_LIMITED:
            if error.retry_after:
                return f"Too many requests. Please try again in {error.retry_after} seconds."
            return "Too many requests. Please try again shortly."
        return _MESSAGES.get(error.kind, error.message)
