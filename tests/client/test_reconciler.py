"""Tests de la politique de réconciliation des échecs."""

import pytest

from docdesk.client.reconciler import Action, ErrorReconciler
from docdesk.domain.results import ErrorKind, SaveError, Trigger


@pytest.mark.parametrize("kind", list(ErrorKind))
def test_automatic_failures_are_silent(kind: ErrorKind) -> None:
    assert ErrorReconciler().handle(kind, Trigger.AUTOMATIC) is Action.SILENT_RETRY_LATER


def test_explicit_auth_failure_redirects() -> None:
    action = ErrorReconciler().handle(ErrorKind.AUTH_REQUIRED, Trigger.EXPLICIT)

    assert action is Action.REDIRECT_TO_LOGIN


@pytest.mark.parametrize(
    "kind",
    [
        ErrorKind.FORBIDDEN,
        ErrorKind.VALIDATION_ERROR,
        ErrorKind.RATE_LIMITED,
        ErrorKind.NOT_FOUND,
        ErrorKind.SERVER_ERROR,
        ErrorKind.NETWORK_ERROR,
    ],
)
def test_other_explicit_failures_are_surfaced(kind: ErrorKind) -> None:
    assert ErrorReconciler().handle(kind, Trigger.EXPLICIT) is Action.SURFACE_TO_USER


def test_rate_limited_message_includes_retry_hint() -> None:
    error = SaveError(kind=ErrorKind.RATE_LIMITED, message="slow down", retry_after=42)

    assert "42 seconds" in ErrorReconciler().describe(error)


def test_rate_limited_message_without_hint() -> None:
    error = SaveError(kind=ErrorKind.RATE_LIMITED, message="slow down")

    assert ErrorReconciler().describe(error) == "Too many requests. Please try again shortly."


def test_forbidden_is_surfaced_without_login_redirect() -> None:
    error = SaveError(kind=ErrorKind.FORBIDDEN, message="Forbidden", status_code=403)
    reconciler = ErrorReconciler()

    assert reconciler.handle(error.kind, Trigger.EXPLICIT) is Action.SURFACE_TO_USER
    assert reconciler.describe(error) == "You do not have access to this document."
